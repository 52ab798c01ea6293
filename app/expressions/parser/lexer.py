"""
Lexer for condition expressions

Tokenizes expressions such as:
    login.status == 200 && body.items.length > 0
    user['display-name'] ~ "Ann" or not flags.disabled

Scanning is regex driven: one alternation per token class, tried at the
current position. Anything the alternation does not match is rejected.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List


class TokenType(Enum):
    STRING = 'STRING'
    NUMBER = 'NUMBER'
    IDENTIFIER = 'IDENTIFIER'
    TRUE = 'TRUE'
    FALSE = 'FALSE'
    NULL = 'NULL'

    DOT = 'DOT'
    COMMA = 'COMMA'
    LPAREN = 'LPAREN'
    RPAREN = 'RPAREN'
    LBRACKET = 'LBRACKET'
    RBRACKET = 'RBRACKET'

    EQUALS_EQUALS = 'EQUALS_EQUALS'
    STRICT_EQUALS = 'STRICT_EQUALS'
    NOT_EQUALS = 'NOT_EQUALS'
    STRICT_NOT_EQUALS = 'STRICT_NOT_EQUALS'
    GT = 'GT'
    GTE = 'GTE'
    LT = 'LT'
    LTE = 'LTE'
    CONTAINS = 'CONTAINS'

    AND = 'AND'
    OR = 'OR'
    NOT = 'NOT'

    PLUS = 'PLUS'
    MINUS = 'MINUS'
    MULTIPLY = 'MULTIPLY'
    DIVIDE = 'DIVIDE'
    MODULO = 'MODULO'

    EOF = 'EOF'


SYMBOLS = {
    '===': TokenType.STRICT_EQUALS,
    '!==': TokenType.STRICT_NOT_EQUALS,
    '==': TokenType.EQUALS_EQUALS,
    '!=': TokenType.NOT_EQUALS,
    '>=': TokenType.GTE,
    '<=': TokenType.LTE,
    '&&': TokenType.AND,
    '||': TokenType.OR,
    '>': TokenType.GT,
    '<': TokenType.LT,
    '~': TokenType.CONTAINS,
    '!': TokenType.NOT,
    '+': TokenType.PLUS,
    '-': TokenType.MINUS,
    '*': TokenType.MULTIPLY,
    '/': TokenType.DIVIDE,
    '%': TokenType.MODULO,
    '.': TokenType.DOT,
    ',': TokenType.COMMA,
    '(': TokenType.LPAREN,
    ')': TokenType.RPAREN,
    '[': TokenType.LBRACKET,
    ']': TokenType.RBRACKET,
}

KEYWORDS = {
    'true': TokenType.TRUE,
    'false': TokenType.FALSE,
    'null': TokenType.NULL,
    'and': TokenType.AND,
    'or': TokenType.OR,
    'not': TokenType.NOT,
}

ESCAPES = {'n': '\n', 't': '\t', 'r': '\r'}

# Longer symbols must come first in the alternation
_SYMBOL_PATTERN = '|'.join(re.escape(s) for s in sorted(SYMBOLS, key=len, reverse=True))

TOKEN_PATTERN = re.compile(
    r"""
    (?P<space>[ \t\r\n]+)
    | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<number>\d+(?:\.\d+)?)(?P<bad_suffix>[A-Za-z_]?)
    | (?P<name>[A-Za-z_$][A-Za-z0-9_$]*)
    | (?P<symbol>""" + _SYMBOL_PATTERN + r""")
    """,
    re.VERBOSE | re.DOTALL,
)

ESCAPE_PATTERN = re.compile(r'\\(.)', re.DOTALL)


@dataclass
class Token:
    type: TokenType
    value: str
    position: int

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r}, pos={self.position})"


class LexerError(Exception):
    def __init__(self, message: str, position: int):
        self.position = position
        super().__init__(f"{message} at position {position}")


def _unescape(literal: str) -> str:
    return ESCAPE_PATTERN.sub(lambda m: ESCAPES.get(m.group(1), m.group(1)), literal[1:-1])


class Lexer:
    """
    Tokenizer for the expression grammar.

    Usage:
        tokens = Lexer("a.b >= 2").tokenize()
    """

    def __init__(self, text: str):
        self.text = text
        self.tokens: List[Token] = []

    def tokenize(self) -> List[Token]:
        """
        Tokenize the entire input text.

        Returns:
            List of tokens ending with EOF

        Raises:
            LexerError: On characters outside the grammar
        """
        self.tokens = []
        pos = 0
        length = len(self.text)

        while pos < length:
            match = TOKEN_PATTERN.match(self.text, pos)
            if match is None:
                self._reject(pos)

            kind = match.lastgroup
            if kind == 'bad_suffix':
                if match.group('bad_suffix'):
                    raise LexerError(f"Invalid number literal near {match.group('bad_suffix')!r}",
                                     match.start('bad_suffix'))
                self.tokens.append(Token(TokenType.NUMBER, match.group('number'), pos))
            elif kind == 'string':
                self.tokens.append(Token(TokenType.STRING, _unescape(match.group('string')), pos))
            elif kind == 'name':
                value = match.group('name')
                self.tokens.append(Token(KEYWORDS.get(value, TokenType.IDENTIFIER), value, pos))
            elif kind == 'symbol':
                value = match.group('symbol')
                self.tokens.append(Token(SYMBOLS[value], value, pos))

            pos = match.end()

        self.tokens.append(Token(TokenType.EOF, '', length))
        return self.tokens

    def _reject(self, pos: int):
        char = self.text[pos]
        if char in '"\'':
            raise LexerError("Unterminated string", pos)
        if char == '=':
            raise LexerError("Assignment is not allowed", pos)
        raise LexerError(f"Unexpected character: {char!r}", pos)
