"""
Step definitions for exit shapes: like, item_of, get_example and void exits.
"""
import json
import logging

import pytest
from pytest_bdd import given, parsers, scenarios, then, when

from machina import build

scenarios("../features/exit_shapes.feature")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_context():
    """Shared context for passing data between steps."""
    return {"machine": None, "emit": None, "delivered": []}


def _emitting(test_context, twice=False):
    def fn(inputs, exits):
        exits.success(test_context["emit"])
        if twice:
            exits.success("second")

    return fn


# =============================================================================
# Given Steps
# =============================================================================


@given(parsers.parse('a machine whose success exit is like its "{name}" input'))
def like_machine(test_context, name):
    test_context["machine"] = build(
        {
            "identity": "echo-name",
            "inputs": {name: {"example": "Ada Lovelace"}},
            "exits": {"success": {"like": name}},
            "fn": _emitting(test_context),
        }
    )


@given(parsers.parse('a machine whose success exit is an item of its "{name}" input'))
def item_of_machine(test_context, name):
    test_context["machine"] = build(
        {
            "identity": "pick-score",
            "inputs": {name: {"example": [0]}},
            "exits": {"success": {"item_of": name}},
            "fn": _emitting(test_context),
        }
    )


@given(parsers.parse('a machine whose success exit is like its generic "{name}" input'))
def like_generic_machine(test_context, name):
    test_context["machine"] = build(
        {
            "identity": "echo-record",
            "inputs": {name: {"typeclass": "dictionary"}},
            "exits": {"success": {"like": name}},
            "fn": _emitting(test_context),
        }
    )


@given("a machine whose success exit example comes from get_example")
def get_example_machine(test_context):
    test_context["machine"] = build(
        {
            "identity": "numbers",
            "exits": {"success": {"get_example": lambda inputs, env: [1, 2, 3]}},
            "fn": _emitting(test_context),
        }
    )


@given(parsers.parse("a machine whose success exit example is {example}"))
def example_machine(test_context, example):
    test_context["machine"] = build(
        {
            "identity": "shaped",
            "exits": {"success": {"example": json.loads(example)}},
            "fn": _emitting(test_context),
        }
    )


@given("a machine with a void success exit")
def void_machine(test_context):
    test_context["machine"] = build(
        {
            "identity": "fire-and-forget",
            "exits": {"success": {"void": True}},
            "fn": _emitting(test_context),
        }
    )


@given("a machine that exits twice")
def twice_machine(test_context):
    test_context["machine"] = build({"identity": "stutter", "fn": _emitting(test_context, twice=True)})


# =============================================================================
# When Steps
# =============================================================================


def _run(test_context, argins, output):
    test_context["emit"] = json.loads(output)
    test_context["machine"](argins).exec(
        {
            "success": test_context["delivered"].append,
            "error": lambda err: pytest.fail(f"unexpected error: {err}"),
        }
    )


@when(parsers.parse("it is run with {name:w} {value} and exits with {output}"))
def run_with(test_context, name, value, output):
    _run(test_context, {name: json.loads(value)}, output)


@when(parsers.parse("it is run without {name:w} and exits with {output}"))
def run_without(test_context, name, output):
    _run(test_context, {}, output)


@when(parsers.parse("it is run and exits with {output}"))
def run_plain(test_context, output):
    _run(test_context, {}, output)


# =============================================================================
# Then Steps
# =============================================================================


@then(parsers.parse("the success output is {expected}"))
def success_output(test_context, expected):
    assert test_context["delivered"] == [json.loads(expected)]


@then("a warning about the second exit is logged")
def second_exit_warned(caplog):
    messages = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert any("already exited via `success`" in message for message in messages)
