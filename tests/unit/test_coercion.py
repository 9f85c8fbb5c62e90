"""
Unit tests for the coercion/validation engine.
"""
import math
from datetime import date, datetime

import pytest

from machina import build
from machina.kernel.coercion import MISSING, coerce, coerce_with_problems, is_valid
from machina.kernel.errors import ValidationFault
from machina.kernel.exemplar import (
    BOOLEAN,
    NUMBER,
    PASSTHROUGH,
    STRING,
    WILDCARD,
    dictionary,
    infer,
    list_of,
)


class TestStrings:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("abc", "abc"),
            (True, "true"),
            (False, "false"),
            (42, "42"),
            (1.5, "1.5"),
            (date(2024, 1, 2), "2024-01-02"),
            (datetime(2024, 1, 2, 3, 4, 5), "2024-01-02T03:04:05"),
        ],
    )
    def test_accepts(self, value, expected):
        assert coerce(value, STRING) == expected

    @pytest.mark.parametrize("value", [None, MISSING, math.nan, math.inf, {}, [], len])
    def test_rejects(self, value):
        with pytest.raises(ValidationFault):
            coerce(value, STRING)

    def test_fallback(self):
        assert coerce(None, STRING, allow_base_fallback=True) == ""


class TestNumbers:
    @pytest.mark.parametrize(
        "value, expected",
        [(3, 3), (2.5, 2.5), ("42", 42), (" -7 ", -7), ("3.25", 3.25), ("1e3", 1000), ("2.0", 2), (True, 1)],
    )
    def test_accepts(self, value, expected):
        result = coerce(value, NUMBER)
        assert result == expected
        assert type(result) is type(expected)

    @pytest.mark.parametrize("value", ["", "abc", "Infinity", "NaN", "1e999", math.nan, -math.inf, None, {}, []])
    def test_rejects(self, value):
        with pytest.raises(ValidationFault):
            coerce(value, NUMBER)

    def test_fallback(self):
        assert coerce("abc", NUMBER, allow_base_fallback=True) == 0


class TestBooleans:
    @pytest.mark.parametrize(
        "value, expected",
        [(True, True), ("TRUE", True), ("false", False), ("1", True), ("0", False), (1, True), (0, False)],
    )
    def test_accepts(self, value, expected):
        assert coerce(value, BOOLEAN) is expected

    @pytest.mark.parametrize("value", ["yes", 2, None, "", []])
    def test_rejects(self, value):
        with pytest.raises(ValidationFault):
            coerce(value, BOOLEAN)


class TestDictionaries:
    def test_undeclared_keys_are_dropped(self):
        exemplar = infer({"a": 1})
        assert coerce({"a": "2", "b": 3}, exemplar) == {"a": 2}

    def test_missing_key_fails(self):
        with pytest.raises(ValidationFault) as excinfo:
            coerce({}, infer({"a": {"b": 1}}))
        problem = excinfo.value.errors[0]
        assert problem.path == "a"
        assert "Missing property (expecting a dictionary)" in problem.message

    def test_missing_key_allowed_for_passthrough(self):
        exemplar = dictionary({"ref": PASSTHROUGH, "n": NUMBER})
        assert coerce({"n": 1}, exemplar) == {"n": 1}

    def test_passthrough_keeps_the_reference(self):
        thing = object()
        assert coerce({"ref": thing}, dictionary({"ref": PASSTHROUGH}))["ref"] is thing

    def test_generic_dictionary_is_dehydrated(self):
        assert coerce({"a": [1, len], "b": date(2020, 5, 1), 3: "x"}, dictionary()) == {
            "a": [1],
            "b": "2020-05-01",
        }

    def test_fallback_fills_base_values(self):
        exemplar = infer({"a": "x", "b": [1]})
        assert coerce({"a": None}, exemplar, allow_base_fallback=True) == {"a": "", "b": []}


class TestLists:
    def test_items_are_coerced(self):
        assert coerce(["1", 2], list_of(NUMBER)) == [1, 2]

    def test_problems_accumulate_with_indices(self):
        value, problems = coerce_with_problems(
            {"xs": [1, "a", "b"]}, infer({"xs": [1]}), input_name="payload"
        )
        assert [problem.path for problem in problems] == ["xs[1]", "xs[2]"]
        assert problems[0].input == "payload"
        assert problems[0].message == "@ `payload.xs[1]`: Expecting a number, but got a string."

    def test_generic_list_strips_non_json(self):
        assert coerce([1, object(), "a"], list_of(None)) == [1, "a"]

    def test_not_a_list(self):
        assert not is_valid("abc", list_of(None))


class TestWildcard:
    def test_deep_copies(self):
        original = {"a": [1, {"b": 2}]}
        copied = coerce(original, WILDCARD)
        assert copied == original
        assert copied is not original
        assert copied["a"] is not original["a"]

    def test_null_is_json(self):
        assert coerce(None, WILDCARD) is None

    def test_missing_fails(self):
        assert not is_valid(MISSING, WILDCARD)

    def test_function_alone_fails(self):
        assert not is_valid(len, WILDCARD)

    def test_circular_reference_fails(self):
        loop = []
        loop.append(loop)
        value, problems = coerce_with_problems(loop, WILDCARD)
        assert problems and "Circular" in problems[0].message


class TestLargeIntegers:
    huge = 10**400

    def test_number(self):
        assert coerce(self.huge, NUMBER) == self.huge

    def test_string(self):
        assert coerce(self.huge, STRING) == str(self.huge)

    def test_wildcard(self):
        assert coerce({"n": [self.huge]}, WILDCARD) == {"n": [self.huge]}

    def test_described_as_a_number(self):
        value, problems = coerce_with_problems(self.huge, BOOLEAN)
        assert value is False
        assert "got a number" in problems[0].message

    def test_through_a_machine(self):
        machine = build(
            {
                "identity": "square",
                "sync": True,
                "inputs": {"n": {"example": 1, "required": True}},
                "exits": {"success": {"example": 1}},
                "fn": lambda inputs, exits: exits.success(inputs["n"] ** 2),
            }
        )
        assert machine(n=self.huge).exec_sync() == self.huge**2


def test_fault_lists_every_problem():
    with pytest.raises(ValidationFault) as excinfo:
        coerce({"a": "x", "b": "y"}, infer({"a": 1, "b": True}))
    fault = excinfo.value
    assert fault.code == "E_VALIDATION"
    assert len(fault.errors) == 2
    assert "2 validation errors" in str(fault)
