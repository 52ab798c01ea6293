"""
Safe expression evaluation for condition nodes.

Usage:
    evaluator = SafeExpressionEvaluator()
    evaluator.evaluate("login.status == 200 && login.data.ok", context)
    evaluator.test_expression("a >")  # {'valid': False, ...}
"""

import logging
from typing import Any, Dict, Mapping, Optional

from app.expressions.parser import ExpressionParser, LexerError, ParseError
from app.expressions.parser.ast import ExprNode
from app.expressions.engine import ExpressionEvaluator, EvaluationError
from app.flow_engine.errors import ErrorCode, ExpressionError, ExpressionValidationError

logger = logging.getLogger(__name__)

MAX_EXPRESSION_LENGTH = 1000


class SafeExpressionEvaluator:
    """
    Validates, parses and evaluates expressions against an explicit context.

    Failure modes:
    - Empty or over-long input: ExpressionValidationError (UNSAFE_EXPRESSION),
      raised before any parsing
    - Anything outside the grammar: ExpressionError (UNSAFE_EXPRESSION)
    - Runtime failures: ExpressionError (CONDITION_EVALUATION_ERROR)
    """

    def __init__(self, max_length: int = MAX_EXPRESSION_LENGTH):
        self.max_length = max_length

    def validate(self, expression: Any) -> str:
        if not isinstance(expression, str):
            raise ExpressionValidationError(
                "Expression must be a string", ErrorCode.UNSAFE_EXPRESSION
            )
        if len(expression) > self.max_length:
            raise ExpressionValidationError(
                f"Expression exceeds maximum length of {self.max_length} characters",
                ErrorCode.UNSAFE_EXPRESSION,
                context={'length': len(expression)},
            )
        if not expression.strip():
            raise ExpressionValidationError("Expression is empty", ErrorCode.UNSAFE_EXPRESSION)
        return expression

    def parse(self, expression: Any) -> ExprNode:
        """Validate and parse; never evaluates."""
        text = self.validate(expression)
        try:
            return ExpressionParser().parse(text)
        except (LexerError, ParseError) as e:
            raise ExpressionError(
                f"Unsafe or invalid expression: {e}",
                ErrorCode.UNSAFE_EXPRESSION,
                cause=e,
                context={'expression': text[:100]},
            )

    def evaluate(self, expression: Any, context: Optional[Mapping[str, Any]] = None) -> Any:
        """
        Evaluate an expression.

        Args:
            expression: Expression text
            context: The only data the expression can read

        Returns:
            The expression value (bool for comparisons and logic)
        """
        tree = self.parse(expression)
        try:
            return ExpressionEvaluator(context or {}).evaluate(tree)
        except EvaluationError as e:
            raise ExpressionError(
                f"Condition evaluation failed: {e}",
                ErrorCode.CONDITION_EVALUATION_ERROR,
                cause=e,
                context={'expression': expression[:100]},
            )

    def test_expression(self, expression: Any) -> Dict[str, Any]:
        """
        Syntax-only dry run for authoring tools.

        Returns:
            Dict with 'valid', 'error', 'code' and 'variables'
        """
        try:
            self.parse(expression)
            variables = ExpressionParser().extract_variables(expression)
        except ExpressionError as e:
            logger.debug(f"Expression rejected: {e}")
            return {'valid': False, 'error': e.message, 'code': e.code.value, 'variables': []}

        return {'valid': True, 'error': None, 'code': None, 'variables': variables}


_default = SafeExpressionEvaluator()


def evaluate(expression: Any, context: Optional[Mapping[str, Any]] = None) -> Any:
    return _default.evaluate(expression, context)


def test_expression(expression: Any) -> Dict[str, Any]:
    return _default.test_expression(expression)


__all__ = [
    'SafeExpressionEvaluator',
    'MAX_EXPRESSION_LENGTH',
    'evaluate',
    'test_expression',
]
