"""
Abstract Syntax Tree (AST) nodes for condition expressions.
"""

from dataclasses import dataclass, field
from typing import Any, List, Union
from enum import Enum


class ComparisonOp(Enum):
    """Comparison operators."""
    EQ = '=='
    STRICT_EQ = '==='
    NE = '!='
    STRICT_NE = '!=='
    GT = '>'
    GTE = '>='
    LT = '<'
    LTE = '<='
    CONTAINS = '~'


class LogicalOp(Enum):
    """Logical operators for combining conditions."""
    AND = '&&'
    OR = '||'


class MathOp(Enum):
    """Mathematical operators."""
    ADD = '+'
    SUB = '-'
    MUL = '*'
    DIV = '/'
    MOD = '%'


@dataclass
class ExprNode:
    """Base class for all AST nodes."""
    position: int = 0


@dataclass
class LiteralNode(ExprNode):
    """A number, string, boolean or null literal."""
    value: Any = None


@dataclass
class VariableNode(ExprNode):
    """
    A variable lookup.

    Example: login.response.body['items'][0]

    Attributes:
        path: Segments ['login', 'response', 'body', 'items', 0]
    """
    path: List[Union[str, int]] = field(default_factory=list)


@dataclass
class BinaryOpNode(ExprNode):
    """
    A binary operation (math or comparison).

    Example: amount * 1.1, status >= 400
    """
    left: ExprNode = None
    operator: Union[MathOp, ComparisonOp] = None
    right: ExprNode = None


@dataclass
class LogicalOpNode(ExprNode):
    """
    A short-circuit logical operation.

    Example: status == 200 && body.ok
    """
    left: ExprNode = None
    operator: LogicalOp = None
    right: ExprNode = None


@dataclass
class UnaryOpNode(ExprNode):
    """
    A unary operation.

    Example: !active, -amount
    """
    operator: str = ""
    operand: ExprNode = None
