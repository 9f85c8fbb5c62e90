"""
Unit tests for exemplar inference, intersection and base values.
"""
import math

import pytest

from machina.kernel.errors import IncompatibleExemplarsError, InvalidExemplarError
from machina.kernel.exemplar import (
    BOOLEAN,
    NUMBER,
    PASSTHROUGH,
    STRING,
    WILDCARD,
    base_value,
    dictionary,
    display_type,
    from_typeclass,
    infer,
    infer_from_value,
    intersect,
    list_of,
)
from machina.kernel.schema import ContractDef, ExemplarKind


class TestInfer:
    def test_primitives(self):
        assert infer("hello") == STRING
        assert infer(3) == NUMBER
        assert infer(2.5) == NUMBER
        assert infer(True) == BOOLEAN

    def test_bool_is_not_a_number(self):
        assert infer(False).kind is ExemplarKind.BOOLEAN

    def test_sentinels(self):
        assert infer("*") == WILDCARD
        assert infer("===") == PASSTHROUGH
        lam = infer("->", ContractDef(sync=True))
        assert lam.kind is ExemplarKind.CALLABLE
        assert lam.contract.sync is True

    def test_nested_structures(self):
        exemplar = infer({"name": "Ada", "tags": ["x"], "meta": {}})
        assert exemplar == dictionary(
            {"name": STRING, "tags": list_of(STRING), "meta": dictionary()}
        )

    def test_empty_list_means_any_list(self):
        assert infer([]) == list_of(None)

    def test_ambiguous_list_is_rejected(self):
        with pytest.raises(InvalidExemplarError, match="Ambiguous"):
            infer([1, 2])

    @pytest.mark.parametrize("bad", [None, math.nan, math.inf, object()])
    def test_invalid_examples(self, bad):
        with pytest.raises(InvalidExemplarError):
            infer(bad)

    def test_error_points_at_the_offending_hop(self):
        with pytest.raises(InvalidExemplarError, match=r"`a\.b\[0\]`"):
            infer({"a": {"b": [None]}})

    def test_circular_example(self):
        loop = {}
        loop["self"] = loop
        with pytest.raises(InvalidExemplarError, match="Circular"):
            infer(loop)


class TestTypeclass:
    def test_shortcuts(self):
        assert from_typeclass("*") == WILDCARD
        assert from_typeclass("dictionary") == dictionary()
        assert from_typeclass("array") == list_of(None)
        assert from_typeclass("ref") == PASSTHROUGH

    def test_unknown(self):
        with pytest.raises(InvalidExemplarError, match="typeclass"):
            from_typeclass("number")


class TestInferFromValue:
    def test_sentinel_strings_are_plain_strings(self):
        assert infer_from_value("*") == STRING

    def test_none_widens(self):
        assert infer_from_value(None) == WILDCARD

    def test_objects_pass_through(self):
        assert infer_from_value(object()) == PASSTHROUGH
        assert infer_from_value(len) == PASSTHROUGH

    def test_lists_use_first_item(self):
        assert infer_from_value([1, "a"]) == list_of(NUMBER)
        assert infer_from_value([]) == list_of(None)


class TestIntersect:
    def test_identity(self):
        exemplar = infer({"a": [1]})
        assert intersect(exemplar, exemplar) == exemplar

    def test_passthrough_and_wildcard_yield_the_other_side(self):
        assert intersect(PASSTHROUGH, STRING) == STRING
        assert intersect(NUMBER, PASSTHROUGH) == NUMBER
        assert intersect(WILDCARD, BOOLEAN) == BOOLEAN
        assert intersect(list_of(STRING), WILDCARD) == list_of(STRING)

    def test_dictionaries_merge_keys(self):
        left = dictionary({"a": NUMBER, "b": WILDCARD})
        right = dictionary({"b": STRING, "c": BOOLEAN})
        assert intersect(left, right) == dictionary({"a": NUMBER, "b": STRING, "c": BOOLEAN})

    def test_empty_containers_yield_the_other_side(self):
        assert intersect(dictionary(), dictionary({"a": NUMBER})) == dictionary({"a": NUMBER})
        assert intersect(list_of(NUMBER), list_of(None)) == list_of(NUMBER)

    def test_incompatible_kinds(self):
        with pytest.raises(IncompatibleExemplarsError) as excinfo:
            intersect(dictionary({"a": NUMBER}), dictionary({"a": STRING}))
        assert excinfo.value.hops == ["a"]
        assert excinfo.value.code == "E_INCOMPATIBLE_EXEMPLARS"


class TestBaseValue:
    def test_base_values(self):
        assert base_value(STRING) == ""
        assert base_value(NUMBER) == 0
        assert base_value(BOOLEAN) is False
        assert base_value(list_of(NUMBER)) == []
        assert base_value(WILDCARD) is None
        assert base_value(infer({"a": "x", "b": {"c": 1}})) == {"a": "", "b": {"c": 0}}

    def test_display_type(self):
        assert display_type(list_of(None)) == "array"
        assert display_type(WILDCARD, article=True) == "a JSON-compatible value"
        assert display_type(list_of(None), article=True) == "an array"
