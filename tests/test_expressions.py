"""
Tests for the safe expression evaluator
"""

import pytest

from app import expressions
from app.expressions import SafeExpressionEvaluator
from app.expressions.parser import ExpressionParser, Lexer, LexerError, ParseError
from app.flow_engine.errors import ErrorCode, ExpressionError, ExpressionValidationError


@pytest.fixture
def evaluator():
    return SafeExpressionEvaluator()


class TestArithmetic:
    """Test arithmetic operators"""

    def test_addition(self):
        """evaluate('1+1') is 2"""
        assert expressions.evaluate('1+1') == 2

    def test_precedence(self, evaluator):
        """Multiplication binds tighter than addition"""
        assert evaluator.evaluate('2 + 3 * 4') == 14
        assert evaluator.evaluate('(2 + 3) * 4') == 20

    def test_division(self, evaluator):
        """Exact integer division stays integral"""
        assert evaluator.evaluate('10 / 2') == 5
        assert isinstance(evaluator.evaluate('10 / 2'), int)
        assert evaluator.evaluate('7 / 2') == 3.5
        assert evaluator.evaluate('7 % 4') == 3

    def test_unary_minus(self, evaluator):
        assert evaluator.evaluate('-x + 1', {'x': 3}) == -2

    def test_string_concat(self, evaluator):
        """+ joins two strings"""
        assert evaluator.evaluate("'a' + 'b'") == 'ab'

    def test_division_by_zero(self, evaluator):
        """Division by zero is an evaluation error"""
        with pytest.raises(ExpressionError) as exc:
            evaluator.evaluate('1 / 0')

        assert exc.value.code == ErrorCode.CONDITION_EVALUATION_ERROR

    def test_type_mismatch(self, evaluator):
        """Arithmetic on strings and numbers fails"""
        with pytest.raises(ExpressionError) as exc:
            evaluator.evaluate("'a' - 1")

        assert exc.value.code == ErrorCode.CONDITION_EVALUATION_ERROR


class TestComparisons:
    """Test comparison operators"""

    def test_loose_equality(self, evaluator):
        """Numeric strings compare equal to numbers with =="""
        assert evaluator.evaluate("status == 200", {'status': '200'}) is True
        assert evaluator.evaluate("status === 200", {'status': '200'}) is False
        assert evaluator.evaluate("status !== 200", {'status': 200}) is False

    def test_ordering(self, evaluator):
        assert evaluator.evaluate('a > 1 and a <= 3', {'a': 3}) is True
        assert evaluator.evaluate("'abc' < 'abd'") is True

    def test_ordering_type_mismatch(self, evaluator):
        """Ordering a number against a string fails"""
        with pytest.raises(ExpressionError):
            evaluator.evaluate("1 < 'a'")

    def test_contains(self, evaluator):
        """~ works on strings, lists and object keys"""
        context = {'msg': 'hello world', 'tags': ['a', 'b'], 'obj': {'k': 1}}

        assert evaluator.evaluate("msg ~ 'world'", context) is True
        assert evaluator.evaluate("tags ~ 'c'", context) is False
        assert evaluator.evaluate("obj ~ 'k'", context) is True

    def test_null_literal(self, evaluator):
        assert evaluator.evaluate('value == null', {'value': None}) is True


class TestLogic:
    """Test logical operators"""

    def test_short_circuit(self, evaluator):
        """The right side is not evaluated when the left decides"""
        assert evaluator.evaluate('false && missing.value') is False
        assert evaluator.evaluate('true || missing.value') is True

    def test_logic_returns_bool(self, evaluator):
        assert evaluator.evaluate("'x' && 1") is True
        assert evaluator.evaluate('!items', {'items': []}) is True
        assert evaluator.evaluate('not 0') is True

    def test_long_chains(self, evaluator):
        """Flat operator chains are not treated as nesting"""
        assert evaluator.evaluate('+'.join(['1'] * 60)) == 60

        clauses = ' || '.join(f'n == {i}' for i in range(60))
        assert evaluator.evaluate(clauses, {'n': 59}) is True
        assert evaluator.evaluate(clauses, {'n': 99}) is False
        assert expressions.test_expression(clauses)['valid'] is True

    def test_and_chain_stops_at_first_false(self, evaluator):
        expression = ' && '.join(['true'] * 55 + ['false', 'missing.value'])

        assert evaluator.evaluate(expression) is False


class TestVariables:
    """Test variable access"""

    def test_paths(self, evaluator):
        """Dots and indices walk the context"""
        context = {'login': {'response': {'status': 200, 'body': {'items': [{'id': 9}]}}}}

        assert evaluator.evaluate('login.response.status == 200', context) is True
        assert evaluator.evaluate("login.response.body['items'][0].id", context) == 9

    def test_unknown_root(self, evaluator):
        """Unknown root identifiers fail"""
        with pytest.raises(ExpressionError) as exc:
            evaluator.evaluate('ghost == 1', {})

        assert exc.value.code == ErrorCode.CONDITION_EVALUATION_ERROR

    def test_missing_nested_key_is_null(self, evaluator):
        assert evaluator.evaluate('user.nickname == null', {'user': {}}) is True


class TestUnsafeInput:
    """Test rejection of anything outside the grammar"""

    @pytest.mark.parametrize('expression', [
        'process.exit()',
        "__import__('os')",
        'a.__class__',
        'x = 1',
        'a.constructor',
        'eval("1")',
        '1 +',
        "'unterminated",
        '3abc',
    ])
    def test_rejected(self, evaluator, expression):
        with pytest.raises(ExpressionError) as exc:
            evaluator.evaluate(expression, {'a': {}, 'x': 1})

        assert exc.value.code == ErrorCode.UNSAFE_EXPRESSION

    def test_length_cap(self):
        """Over-long input is rejected before parsing"""
        evaluator = SafeExpressionEvaluator(max_length=10)

        with pytest.raises(ExpressionValidationError):
            evaluator.evaluate('1 + 1 + 1 + 1')

    def test_empty(self, evaluator):
        with pytest.raises(ExpressionValidationError):
            evaluator.evaluate('   ')

    def test_nesting_limit(self, evaluator):
        """Deep nesting is refused"""
        with pytest.raises(ExpressionError) as exc:
            evaluator.evaluate('(' * 60 + '1' + ')' * 60)

        assert exc.value.code == ErrorCode.UNSAFE_EXPRESSION

    def test_deepest_accepted_nesting_evaluates(self, evaluator):
        assert evaluator.evaluate('1 + (' * 49 + '1' + ')' * 49) == 50


class TestExpressionCheck:
    """Test the syntax-only dry run"""

    def test_valid(self):
        result = expressions.test_expression('login.status == 200 && user.id > 0')

        assert result['valid'] is True
        assert result['error'] is None
        assert result['variables'] == ['login', 'user']

    def test_invalid(self):
        result = expressions.test_expression('process.exit()')

        assert result['valid'] is False
        assert result['code'] == 'UNSAFE_EXPRESSION'
        assert result['variables'] == []


class TestParserInternals:
    """Test lexer and parser directly"""

    def test_lexer_rejects_assignment(self):
        with pytest.raises(LexerError):
            Lexer('a = 1').tokenize()

    def test_parser_rejects_trailing_tokens(self):
        with pytest.raises(ParseError):
            ExpressionParser().parse('1 2')
