"""
Expression Evaluator for condition nodes.

Walks the AST produced by ExpressionParser against an explicit context
mapping. There is no eval(), no attribute access and no function call; the
only reachable data is what the caller puts in the context.
"""

from typing import Any, Dict, List, Mapping, Union

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
from app.flow_engine.path_resolver import MISSING, resolve_segments


class EvaluationError(Exception):
    """Error during expression evaluation."""
    pass


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _type_name(value: Any) -> str:
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'boolean'
    if _is_number(value):
        return 'number'
    if isinstance(value, str):
        return 'string'
    if isinstance(value, (list, tuple)):
        return 'array'
    if isinstance(value, dict):
        return 'object'
    return type(value).__name__


class ExpressionEvaluator:
    """
    Evaluates expression ASTs.

    Supports:
    - Arithmetic on numbers: +, -, *, /, %  (+ also joins two strings)
    - Comparisons: == (numeric strings compare as numbers), === (strict),
      !=, !==, >, <, >=, <=, ~ (contains)
    - Logical: &&, ||, ! (always produce booleans)
    """

    # Operator chains are folded in a loop, so only right operands and unary
    # operands add depth. Anything ExpressionParser accepts stays well below this.
    MAX_DEPTH = 300

    def __init__(self, context: Mapping[str, Any]):
        self.context = context if context is not None else {}
        self._depth = 0

    def evaluate(self, node: ExprNode) -> Any:
        """
        Evaluate an AST node.

        Raises:
            EvaluationError: On unknown variables, type mismatches,
                division by zero or excessive depth
        """
        self._depth += 1

        if self._depth > self.MAX_DEPTH:
            raise EvaluationError("Maximum recursion depth exceeded")

        try:
            return self._evaluate_node(node)
        finally:
            self._depth -= 1

    def _evaluate_node(self, node: ExprNode) -> Any:
        """Dispatch evaluation based on node type."""
        if isinstance(node, LiteralNode):
            return node.value

        if isinstance(node, VariableNode):
            return self._evaluate_variable(node)

        if isinstance(node, BinaryOpNode):
            return self._evaluate_binary_op(node)

        if isinstance(node, LogicalOpNode):
            return self._evaluate_logical_op(node)

        if isinstance(node, UnaryOpNode):
            return self._evaluate_unary_op(node)

        raise EvaluationError(f"Unknown node type: {type(node).__name__}")

    def _evaluate_variable(self, node: VariableNode) -> Any:
        root = node.path[0]
        if root not in self.context:
            raise EvaluationError(f"Unknown variable: {root}")

        value = resolve_segments(self.context, node.path)
        # Missing nested keys read as null
        return None if value is MISSING else value

    def _left_spine(self, node: ExprNode, node_type: type) -> List[ExprNode]:
        """Nodes along the left edge of a chain like a + b + c, innermost first."""
        spine = []
        while isinstance(node, node_type):
            spine.append(node)
            node = node.left
        spine.append(node)
        spine.reverse()
        return spine

    def _evaluate_binary_op(self, node: BinaryOpNode) -> Any:
        spine = self._left_spine(node, BinaryOpNode)
        value = self.evaluate(spine[0])

        for current in spine[1:]:
            right = self.evaluate(current.right)
            op = current.operator

            if isinstance(op, MathOp):
                value = self._apply_math_op(op, value, right)
            elif isinstance(op, ComparisonOp):
                value = self._apply_comparison_op(op, value, right)
            else:
                raise EvaluationError(f"Unknown operator: {op}")

        return value

    def _apply_math_op(self, op: MathOp, left: Any, right: Any) -> Union[int, float, str]:
        if op == MathOp.ADD and isinstance(left, str) and isinstance(right, str):
            return left + right

        if not (_is_number(left) and _is_number(right)):
            raise EvaluationError(
                f"Operator '{op.value}' not supported between {_type_name(left)} and {_type_name(right)}"
            )

        if op == MathOp.ADD:
            return left + right
        elif op == MathOp.SUB:
            return left - right
        elif op == MathOp.MUL:
            return left * right
        elif op == MathOp.DIV:
            if right == 0:
                raise EvaluationError("Division by zero")
            if isinstance(left, int) and isinstance(right, int) and left % right == 0:
                return left // right
            return left / right
        elif op == MathOp.MOD:
            if right == 0:
                raise EvaluationError("Modulo by zero")
            return left % right

        raise EvaluationError(f"Unknown math operator: {op}")

    def _apply_comparison_op(self, op: ComparisonOp, left: Any, right: Any) -> bool:
        if op == ComparisonOp.CONTAINS:
            return self._contains(left, right)

        if op == ComparisonOp.STRICT_EQ:
            return self._strict_equals(left, right)
        if op == ComparisonOp.STRICT_NE:
            return not self._strict_equals(left, right)
        if op == ComparisonOp.EQ:
            return self._loose_equals(left, right)
        if op == ComparisonOp.NE:
            return not self._loose_equals(left, right)

        # Ordering needs two numbers or two strings
        if _is_number(left) and _is_number(right):
            pass
        elif isinstance(left, str) and isinstance(right, str):
            pass
        else:
            raise EvaluationError(
                f"Cannot compare {_type_name(left)} {op.value} {_type_name(right)}"
            )

        if op == ComparisonOp.GT:
            return left > right
        elif op == ComparisonOp.GTE:
            return left >= right
        elif op == ComparisonOp.LT:
            return left < right
        elif op == ComparisonOp.LTE:
            return left <= right

        raise EvaluationError(f"Unknown comparison operator: {op}")

    def _strict_equals(self, left: Any, right: Any) -> bool:
        if _type_name(left) != _type_name(right):
            return False
        return left == right

    def _loose_equals(self, left: Any, right: Any) -> bool:
        # "200" == 200
        if _is_number(left) and isinstance(right, str):
            number = self._parse_number(right)
            return number is not None and number == left
        if _is_number(right) and isinstance(left, str):
            number = self._parse_number(left)
            return number is not None and number == right
        return self._strict_equals(left, right)

    def _parse_number(self, text: str) -> Union[int, float, None]:
        text = text.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return None

    def _contains(self, container: Any, item: Any) -> bool:
        if isinstance(container, str):
            if not isinstance(item, str):
                raise EvaluationError(f"Cannot search string for {_type_name(item)}")
            return item in container
        if isinstance(container, (list, tuple)):
            return any(self._strict_equals(element, item) for element in container)
        if isinstance(container, dict):
            return isinstance(item, str) and item in container
        raise EvaluationError(f"'~' is not supported on {_type_name(container)}")

    def _evaluate_logical_op(self, node: LogicalOpNode) -> bool:
        spine = self._left_spine(node, LogicalOpNode)
        value = self._to_bool(self.evaluate(spine[0]))

        # Short-circuit: the right side only runs when it can change the result
        for current in spine[1:]:
            if current.operator == LogicalOp.AND:
                if value:
                    value = self._to_bool(self.evaluate(current.right))
            elif current.operator == LogicalOp.OR:
                if not value:
                    value = self._to_bool(self.evaluate(current.right))
            else:
                raise EvaluationError(f"Unknown logical operator: {current.operator}")

        return value

    def _evaluate_unary_op(self, node: UnaryOpNode) -> Any:
        operand = self.evaluate(node.operand)

        if node.operator == '-':
            if not _is_number(operand):
                raise EvaluationError(f"Cannot negate {_type_name(operand)}")
            return -operand

        elif node.operator == '!':
            return not self._to_bool(operand)

        raise EvaluationError(f"Unknown unary operator: {node.operator}")

    def _to_bool(self, value: Any) -> bool:
        if value is None:
            return False
        if isinstance(value, bool):
            return value
        if _is_number(value):
            return value != 0
        if isinstance(value, str):
            return value != ''
        if isinstance(value, (list, tuple, dict)):
            return len(value) > 0
        return bool(value)


def evaluate_node(node: ExprNode, context: Dict[str, Any]) -> Any:
    return ExpressionEvaluator(context).evaluate(node)
