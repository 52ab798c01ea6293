"""
Expression Parser Module

Provides lexing and parsing of condition expressions into an AST.
"""

from app.expressions.parser.lexer import Lexer, LexerError, Token, TokenType
from app.expressions.parser.ast import (
    ExprNode,
    LiteralNode,
    VariableNode,
    BinaryOpNode,
    LogicalOpNode,
    UnaryOpNode
)
from app.expressions.parser.parser import ExpressionParser, ParseError

__all__ = [
    'Lexer',
    'LexerError',
    'Token',
    'TokenType',
    'ExpressionParser',
    'ParseError',
    'ExprNode',
    'LiteralNode',
    'VariableNode',
    'BinaryOpNode',
    'LogicalOpNode',
    'UnaryOpNode'
]
