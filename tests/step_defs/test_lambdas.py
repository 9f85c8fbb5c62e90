"""
Step definitions for function-typed ("->") inputs.
"""
import json

import pytest
from pytest_bdd import given, parsers, scenarios, then, when

from machina import build

scenarios("../features/lambdas.feature")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_context():
    """Shared context for passing data between steps."""
    return {"machine": None, "seen": [], "delivered": []}


ITERATEES = {
    "doubles": lambda seen: lambda inputs, exits: exits.success(inputs["item"] * 2),
    "returns strings": lambda seen: lambda inputs, exits: exits.success(str(inputs["item"])),
    "records its input": lambda seen: lambda inputs, exits: (seen.append(dict(inputs)), exits.success(inputs["item"])),
    "fails": lambda seen: lambda inputs, exits: exits.error(),
}


# =============================================================================
# Given Steps
# =============================================================================


@given(parsers.parse('a "{identity}" machine taking a list of numbers and an "{name}" function'))
def map_machine(test_context, identity, name):
    def map_numbers(inputs, exits):
        results = []
        for index, number in enumerate(inputs["numbers"]):
            results.append(inputs[name](item=number, index=index).exec_sync())
        exits.success(results)

    test_context["machine"] = build(
        {
            "identity": identity,
            "sync": True,
            "inputs": {
                "numbers": {"example": [0], "required": True},
                name: {
                    "example": "->",
                    "required": True,
                    "contract": {
                        "sync": True,
                        "provides": {
                            "item": {"item_of": "numbers"},
                            "index": {"example": 0},
                        },
                        "expects": {"success": {"item_of": "numbers"}},
                    },
                },
            },
            "exits": {"success": {"like": "numbers"}},
            "fn": map_numbers,
        }
    )


# =============================================================================
# When Steps
# =============================================================================


def _run(test_context, numbers, iteratee):
    test_context["machine"](numbers=numbers, iteratee=iteratee).exec(
        {
            "success": lambda output: test_context["delivered"].append(("success", output)),
            "error": lambda err: test_context["delivered"].append(("error", err)),
        }
    )


@when(parsers.parse("I run it over {numbers} with an iteratee that {behavior}"))
def run_with_iteratee(test_context, numbers, behavior):
    _run(test_context, json.loads(numbers), ITERATEES[behavior](test_context["seen"]))


@when(parsers.parse('I run it over {numbers} with the iteratee "{value}"'))
def run_with_value(test_context, numbers, value):
    _run(test_context, json.loads(numbers), value)


# =============================================================================
# Then Steps
# =============================================================================


@then(parsers.parse("the success output is {expected}"))
def success_output(test_context, expected):
    assert test_context["delivered"] == [("success", json.loads(expected))]


@then(parsers.parse("the iteratee saw {expected}"))
def iteratee_saw(test_context, expected):
    assert test_context["seen"] == [json.loads(expected)]


@then(parsers.parse('the error code delivered is "{code}"'))
def error_delivered(test_context, code):
    assert len(test_context["delivered"]) == 1
    exit_name, err = test_context["delivered"][0]
    assert exit_name == "error"
    assert err.code == code
