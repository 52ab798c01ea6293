"""
Parser for condition expressions

Recursive descent over the token stream. Precedence, lowest first:

    ||  or
    &&  and
    ==  ===  !=  !==  <  <=  >  >=  ~
    +  -
    *  /  %
    !  not  unary -
    literals, variable paths, ( ... )

Function calls, assignment and reflective names are rejected at parse time.
"""

from typing import List, Set, Union

from app.expressions.parser.lexer import Lexer, Token, TokenType
from app.expressions.parser.ast import (
    ExprNode,
    LiteralNode,
    VariableNode,
    BinaryOpNode,
    LogicalOpNode,
    UnaryOpNode,
    MathOp,
    ComparisonOp,
    LogicalOp
)
from app.flow_engine.path_resolver import is_reserved_key


class ParseError(Exception):
    """Error during parsing."""
    def __init__(self, message: str, token: Token = None):
        self.token = token
        if token:
            super().__init__(f"{message} at position {token.position}")
        else:
            super().__init__(message)


class ExpressionParser:
    """
    Parser for the condition expression grammar.

    Converts tokenized input into an AST for evaluation.
    """

    # Maximum nesting of parentheses / unary operators
    MAX_DEPTH = 50

    # Lowest precedence first
    BINARY_LEVELS = [
        ({TokenType.OR: LogicalOp.OR}, LogicalOpNode),
        ({TokenType.AND: LogicalOp.AND}, LogicalOpNode),
        ({
            TokenType.EQUALS_EQUALS: ComparisonOp.EQ,
            TokenType.STRICT_EQUALS: ComparisonOp.STRICT_EQ,
            TokenType.NOT_EQUALS: ComparisonOp.NE,
            TokenType.STRICT_NOT_EQUALS: ComparisonOp.STRICT_NE,
            TokenType.GT: ComparisonOp.GT,
            TokenType.GTE: ComparisonOp.GTE,
            TokenType.LT: ComparisonOp.LT,
            TokenType.LTE: ComparisonOp.LTE,
            TokenType.CONTAINS: ComparisonOp.CONTAINS,
        }, BinaryOpNode),
        ({TokenType.PLUS: MathOp.ADD, TokenType.MINUS: MathOp.SUB}, BinaryOpNode),
        ({TokenType.MULTIPLY: MathOp.MUL, TokenType.DIVIDE: MathOp.DIV, TokenType.MODULO: MathOp.MOD}, BinaryOpNode),
    ]

    LITERALS = {
        TokenType.TRUE: True,
        TokenType.FALSE: False,
        TokenType.NULL: None,
    }

    def __init__(self):
        self.tokens: List[Token] = []
        self.pos = 0
        self._depth = 0

    def parse(self, text: str) -> ExprNode:
        """
        Parse an expression into an AST.

        Raises:
            LexerError: On characters outside the grammar
            ParseError: On any construct outside the grammar
        """
        self.tokens = Lexer(text).tokenize()
        self.pos = 0
        self._depth = 0

        if self._is_at_end():
            raise ParseError("Empty expression")

        node = self._parse_binary()

        if not self._is_at_end():
            token = self._current()
            if token.type == TokenType.LPAREN:
                raise ParseError("Function calls are not allowed", token)
            raise ParseError(f"Unexpected token {token.type.name}", token)

        return node

    def extract_variables(self, text: str) -> List[str]:
        """Return the root variable names referenced by an expression."""
        names: List[str] = []
        seen: Set[str] = set()

        def walk(node):
            if isinstance(node, VariableNode):
                root = node.path[0]
                if root not in seen:
                    seen.add(root)
                    names.append(root)
            elif isinstance(node, (BinaryOpNode, LogicalOpNode)):
                walk(node.left)
                walk(node.right)
            elif isinstance(node, UnaryOpNode):
                walk(node.operand)

        walk(self.parse(text))
        return names

    def _parse_binary(self, level: int = 0) -> ExprNode:
        """Left-associative binary operators, one precedence level per call."""
        if level == len(self.BINARY_LEVELS):
            return self._parse_unary()

        operators, node_type = self.BINARY_LEVELS[level]
        left = self._parse_binary(level + 1)

        while self._current().type in operators:
            token = self._advance()
            right = self._parse_binary(level + 1)
            left = node_type(left=left, operator=operators[token.type], right=right, position=token.position)

        return left

    def _parse_unary(self) -> ExprNode:
        """Parse unary operators (-, !, not)."""
        if self._check(TokenType.MINUS) or self._check(TokenType.NOT):
            token = self._advance()
            self._enter(token)
            try:
                operand = self._parse_unary()
            finally:
                self._depth -= 1
            operator = '-' if token.type == TokenType.MINUS else '!'
            return UnaryOpNode(operator=operator, operand=operand, position=token.position)

        return self._parse_primary()

    def _parse_primary(self) -> ExprNode:
        """Parse literals, variable paths and parentheses."""
        token = self._current()

        if token.type == TokenType.NUMBER:
            self._advance()
            value = float(token.value) if '.' in token.value else int(token.value)
            return LiteralNode(value=value, position=token.position)

        if token.type == TokenType.STRING:
            self._advance()
            return LiteralNode(value=token.value, position=token.position)

        if token.type in self.LITERALS:
            self._advance()
            return LiteralNode(value=self.LITERALS[token.type], position=token.position)

        if token.type == TokenType.IDENTIFIER:
            return self._parse_variable()

        if token.type == TokenType.LPAREN:
            self._advance()
            self._enter(token)
            try:
                expr = self._parse_binary()
            finally:
                self._depth -= 1
            self._expect(TokenType.RPAREN)
            return expr

        raise ParseError(f"Unexpected token in expression: {token.type.name}", token)

    def _parse_variable(self) -> VariableNode:
        """Parse a lookup path: name(.name | [number] | ['key'])*"""
        start = self._current()
        path: List[Union[str, int]] = [self._checked_key(self._advance())]

        while True:
            if self._check(TokenType.DOT):
                self._advance()
                token = self._current()
                # Keywords are valid property names after a dot (body.null)
                if token.type not in (TokenType.IDENTIFIER, TokenType.TRUE, TokenType.FALSE,
                                      TokenType.NULL, TokenType.AND, TokenType.OR, TokenType.NOT,
                                      TokenType.NUMBER):
                    raise ParseError("Expected property name after '.'", token)
                self._advance()
                if token.type == TokenType.NUMBER:
                    if not token.value.isdigit():
                        raise ParseError("Invalid array index", token)
                    path.append(int(token.value))
                else:
                    path.append(self._checked_key(token))
            elif self._check(TokenType.LBRACKET):
                self._advance()
                token = self._current()
                if token.type == TokenType.NUMBER and token.value.isdigit():
                    self._advance()
                    path.append(int(token.value))
                elif token.type == TokenType.STRING:
                    self._advance()
                    path.append(self._checked_key(token))
                else:
                    raise ParseError("Index must be a number or string literal", token)
                self._expect(TokenType.RBRACKET)
            else:
                break

            if len(path) > self.MAX_DEPTH:
                raise ParseError("Variable path too deep", start)

        if self._check(TokenType.LPAREN):
            raise ParseError("Function calls are not allowed", self._current())

        return VariableNode(path=path, position=start.position)

    def _checked_key(self, token: Token) -> str:
        if is_reserved_key(token.value):
            raise ParseError(f"Access to '{token.value}' is not allowed", token)
        return token.value

    def _enter(self, token: Token):
        self._depth += 1
        if self._depth > self.MAX_DEPTH:
            raise ParseError("Maximum nesting depth exceeded", token)

    # Helper methods

    def _current(self) -> Token:
        if self.pos >= len(self.tokens):
            return Token(TokenType.EOF, '', len(self.tokens))
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        """Advance and return previous token."""
        token = self._current()
        if not self._is_at_end():
            self.pos += 1
        return token

    def _check(self, token_type: TokenType) -> bool:
        return self._current().type == token_type

    def _expect(self, token_type: TokenType) -> Token:
        token = self._current()
        if token.type != token_type:
            raise ParseError(f"Expected {token_type.name}, got {token.type.name}", token)
        return self._advance()

    def _is_at_end(self) -> bool:
        return self._current().type == TokenType.EOF
