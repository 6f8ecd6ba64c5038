"""
Tests for output canonicalization and comparison.
"""

from grading_service.comparator import ComparisonPolicy, normalize_output, outputs_match, values_equal


class TestNormalizeOutput:
    def test_strips_and_unifies_newlines(self):
        assert normalize_output("  a\r\nb\r ") == "a b"

    def test_keeps_newlines_when_not_collapsing(self):
        policy = ComparisonPolicy(collapse_whitespace=False)
        assert normalize_output(" a\r\nb ", policy) == "a\nb"

    def test_none_is_empty(self):
        assert normalize_output(None) == ""


class TestOutputsMatch:
    def test_identical_scalars(self):
        assert outputs_match("5", "5")

    def test_trailing_whitespace_ignored(self):
        assert outputs_match("5\n", "  5")

    def test_different_scalars(self):
        assert not outputs_match("6", "5")

    def test_integral_float_equals_int(self):
        assert outputs_match("5.0", "5")

    def test_json_spacing_is_irrelevant(self):
        assert outputs_match("[1,2,3]", "[1, 2, 3]")

    def test_list_order_matters(self):
        assert not outputs_match("[3,2,1]", "[1, 2, 3]")

    def test_object_key_order_ignored(self):
        assert outputs_match('{"b":2,"a":1}', '{"a": 1, "b": 2}')

    def test_booleans_are_not_numbers(self):
        assert not outputs_match("true", "1")

    def test_plain_text(self):
        assert outputs_match("hello  world", "hello world")
        assert not outputs_match("Hello", "hello")

    def test_empty_output_never_matches_a_value(self):
        assert not outputs_match("", "0")


class TestFloatTolerance:
    def test_default_tolerance_absorbs_rounding_noise(self):
        assert outputs_match("0.30000000000000004", "0.3")

    def test_tolerance_is_configurable(self):
        strict = ComparisonPolicy(float_rel_tolerance=0.0)
        loose = ComparisonPolicy(float_abs_tolerance=0.01)
        assert not outputs_match("3.14159", "3.14", strict)
        assert outputs_match("3.141", "3.14", loose)

    def test_huge_integers_compare_exactly(self):
        big = str(10 ** 30)
        assert values_equal(10 ** 30, 10 ** 30)
        assert not outputs_match(big, str(10 ** 30 + 1))
