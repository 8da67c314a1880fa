"""Tests for the term grammar: parsing, printing and e-node conversion."""

from fractions import Fraction

import pytest
from fpsimp.errors import ParseError
from fpsimp.language import (
    CONSTANT, VARIABLE, OPERATORS, MAX_DEPTH, ENode,
    arity, children, constant, variable, pattern_var, pattern_vars,
    parse_expr, parse_pattern, parse_sexpr, format_expr,
    to_enode, from_enode,
)


class TestOperatorTable:
    """Tests for the fixed operator arities."""

    def test_arities(self):
        """Representative operators have their fixed arity."""
        assert OPERATORS["PI"] == 0
        assert OPERATORS["not"] == 1
        assert OPERATORS["and"] == 2
        assert OPERATORS["if"] == 3
        assert OPERATORS["+.p16"] == 2
        assert OPERATORS["real->posit"] == 1

    def test_all_arities_in_range(self):
        """No operator takes more than three children."""
        assert all(0 <= n <= 3 for n in OPERATORS.values())

    def test_leaf_arity(self):
        """Constant and variable leaves have no children."""
        assert arity(CONSTANT) == 0
        assert arity(VARIABLE) == 0
        assert arity("fma") == 3


class TestParseExpr:
    """Tests for parse_expr."""

    def test_simple(self):
        """Parse a binary application."""
        assert parse_expr("(+ 1 x)") == ["+", Fraction(1), "x"]

    def test_nested(self):
        """Parse nested applications."""
        assert parse_expr("(* (sqrt x) (neg 2))") == [
            "*", ["sqrt", "x"], ["neg", Fraction(2)]
        ]

    def test_numerals_are_exact(self):
        """Integer, rational and decimal numerals become Fractions."""
        assert parse_expr("3") == Fraction(3)
        assert parse_expr("-7") == Fraction(-7)
        assert parse_expr("1/3") == Fraction(1, 3)
        assert parse_expr("0.25") == Fraction(1, 4)

    def test_named_constants(self):
        """Nullary tokens parse as themselves, with or without parens."""
        assert parse_expr("PI") == "PI"
        assert parse_expr("(PI)") == "PI"
        assert parse_expr("1_PI") == "1_PI"

    def test_variables(self):
        """Unknown symbols are variables."""
        assert parse_expr("x") == "x"
        assert parse_expr("(- x y)") == ["-", "x", "y"]

    def test_ternary(self):
        """if takes three arguments."""
        assert parse_expr("(if (< x 0) (neg x) x)") == [
            "if", ["<", "x", Fraction(0)], ["neg", "x"], "x"
        ]

    def test_whitespace(self):
        """Newlines and extra spaces are ignored."""
        assert parse_expr("  (+\n  x\t1 ) ") == ["+", "x", Fraction(1)]


class TestParseErrors:
    """Tests for ParseError reporting."""

    def test_unknown_operator(self):
        """An unknown operator carries its token."""
        with pytest.raises(ParseError) as exc_info:
            parse_expr("(frobnicate x)")
        assert exc_info.value.text == "frobnicate"
        assert "Unknown operator" in str(exc_info.value)

    @pytest.mark.parametrize("text", ["(+ 1)", "(+ 1 2 3)", "(sqrt 1 2)", "(if x y)"])
    def test_arity_mismatch(self, text):
        """Too few or too many arguments is an error."""
        with pytest.raises(ParseError) as exc_info:
            parse_expr(text)
        assert "expects" in str(exc_info.value)

    def test_bare_operator(self):
        """A non-nullary operator cannot stand alone."""
        with pytest.raises(ParseError):
            parse_expr("+")

    @pytest.mark.parametrize("token", ["1/0", "1.2.3", "3x", "1/2/3"])
    def test_malformed_numeral(self, token):
        """Malformed numerals are reported, not read as variables."""
        with pytest.raises(ParseError) as exc_info:
            parse_expr(f"(+ {token} 1)")
        assert exc_info.value.text == token

    @pytest.mark.parametrize("text", ["", "   ", "(+ 1 2", "(+ 1 2))", ")", "()", "x y"])
    def test_malformed_structure(self, text):
        """Empty, unbalanced or trailing input is an error."""
        with pytest.raises(ParseError):
            parse_expr(text)

    def test_pattern_variable_in_expression(self):
        """?x is only allowed in patterns."""
        with pytest.raises(ParseError):
            parse_expr("(+ ?x 1)")

    def test_operator_position_must_be_symbol(self):
        """((f) x) is rejected."""
        with pytest.raises(ParseError):
            parse_expr("((+ 1 2) 3)")

    def test_nesting_limit(self):
        """Nesting up to MAX_DEPTH is accepted, deeper is a ParseError."""
        deepest = "(neg " * MAX_DEPTH + "x" + ")" * MAX_DEPTH
        assert parse_expr(deepest)[0] == "neg"
        with pytest.raises(ParseError) as exc_info:
            parse_expr("(neg " + deepest + ")")
        assert "nested" in str(exc_info.value)


class TestParsePattern:
    """Tests for parse_pattern."""

    def test_pattern_variables(self):
        """?name becomes a pattern variable."""
        assert parse_pattern("(+ ?a 0)") == ["+", ["?", "a"], Fraction(0)]

    def test_bare_pattern_variable(self):
        """A pattern may be a single variable."""
        assert parse_pattern("?x") == ["?", "x"]

    def test_nameless_pattern_variable(self):
        """A lone ? is an error."""
        with pytest.raises(ParseError):
            parse_pattern("(+ ? 1)")

    def test_pattern_vars(self):
        """pattern_vars lists names in first-occurrence order."""
        pat = parse_pattern("(+ ?b (* ?a ?b))")
        assert pattern_vars(pat) == ["b", "a"]


class TestFormat:
    """Tests for printing expressions."""

    def test_format_rational(self):
        """Rationals print as n/d."""
        assert format_expr(["+", Fraction(1, 2), "x"]) == "(+ 1/2 x)"

    def test_format_pattern(self):
        """Pattern variables print with their ? prefix."""
        assert format_expr(parse_pattern("(+ ?a 0)")) == "(+ ?a 0)"

    @pytest.mark.parametrize("text", [
        "(+ 1 x)",
        "(if (< x 0) (neg x) x)",
        "(sqrt (/ 4 9))",
        "(fma x y -1/3)",
        "(+.p16 (real->posit x) PI)",
        "(pow x 0.5)",
    ])
    def test_print_then_parse(self, text):
        """Printing and re-parsing gives back the same term."""
        expr = parse_expr(text)
        assert parse_expr(format_expr(expr)) == expr

    def test_format_sexpr_raw(self):
        """parse_sexpr keeps atoms uninterpreted."""
        assert parse_sexpr("(+ 1 (f y))") == ["+", "1", ["f", "y"]]


class TestPredicatesAndNodes:
    """Tests for expression predicates and e-node conversion."""

    def test_predicates(self):
        """constant / variable / pattern_var classify atoms."""
        assert constant(Fraction(1))
        assert not constant("x")
        assert variable("x")
        assert not variable("PI")
        assert pattern_var(["?", "a"])
        assert not pattern_var(["neg", "a"])

    def test_children(self):
        """Only applications have children."""
        assert children(parse_expr("(+ x 1)")) == ["x", Fraction(1)]
        assert children("x") == []
        assert children(["?", "a"]) == []

    def test_to_enode(self):
        """Leaves carry payloads, applications carry child ids."""
        assert to_enode(Fraction(2)) == ENode(CONSTANT, (), Fraction(2))
        assert to_enode("x") == ENode(VARIABLE, (), "x")
        assert to_enode("PI") == ENode("PI")
        assert to_enode(parse_expr("(+ x 1)"), [4, 7]) == ENode("+", (4, 7))

    def test_from_enode(self):
        """from_enode inverts to_enode."""
        assert from_enode(ENode(CONSTANT, (), Fraction(2)), []) == Fraction(2)
        assert from_enode(ENode(VARIABLE, (), "x"), []) == "x"
        assert from_enode(ENode("PI"), []) == "PI"
        assert from_enode(ENode("neg", (3,)), ["x"]) == ["neg", "x"]

    def test_leaf(self):
        """Nullary constants and payload leaves are leaves."""
        assert ENode("PI").is_leaf()
        assert ENode(CONSTANT, (), Fraction(1)).is_leaf()
        assert not ENode("neg", (0,)).is_leaf()
