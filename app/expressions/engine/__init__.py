"""
Expression Engine Module

Provides evaluation of parsed expression ASTs.
"""

from app.expressions.engine.evaluator import ExpressionEvaluator, EvaluationError, evaluate_node

__all__ = [
    'ExpressionEvaluator',
    'EvaluationError',
    'evaluate_node'
]
