"""
Lambda Contract Builder.

An input whose example is ``"->"`` accepts a function. Its contract says
what the function will be given (``provides``) and which exits it may
call (``expects``). When a caller passes a plain function, it is wrapped
into a full machine built from that contract, so it gets the same
validation, coercion and exit handling as any other machine.

Contract entries may borrow their shape from the parent machine::

    "provides": {"item": {"item_of": "items"}}    # one element of `items`
    "expects": {"success": {"like": "seed"}}      # same shape as `seed`
"""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Dict, Optional

from .errors import (
    ImplementationError,
    InputNotArrayError,
    UnrecognizedInputError,
    UsageFault,
)
from .exemplar import WILDCARD, declared_exemplar, display_type
from .schema import ContractDef, Exemplar, ExemplarKind, ExitDef, InputDef, MachineDefinition

if TYPE_CHECKING:
    from .engine import Machine

Scope = Dict[str, Optional[Exemplar]]


def verify_reference(
    directive: str,
    reference: str,
    owner: str,
    scope: Scope,
    identity: str,
) -> Exemplar:
    """Check a like/item_of reference and return the exemplar it stands for.

    ``scope`` maps each input name to its concrete exemplar, or None when the
    input has none (get_example, validate-only, or itself borrowed).
    """
    if reference not in scope:
        raise UnrecognizedInputError(
            f"{owner} of `{identity}` declares `{directive}: {reference!r}`, "
            f"but there is no input named `{reference}`.",
            reference=reference,
        )
    exemplar = scope[reference]
    if exemplar is None:
        raise UnrecognizedInputError(
            f"{owner} of `{identity}` declares `{directive}: {reference!r}`, "
            f"but input `{reference}` does not declare an explicit example.",
            reference=reference,
        )
    if directive == "item_of":
        if exemplar.kind is not ExemplarKind.LIST:
            raise InputNotArrayError(
                f"{owner} of `{identity}` declares `item_of: {reference!r}`, "
                f"but input `{reference}` is {display_type(exemplar, article=True)}, not an array.",
                reference=reference,
            )
        return exemplar.pattern or WILDCARD
    return exemplar


def borrowed_exemplar(
    definition: Any,
    owner: str,
    scope: Scope,
    identity: str,
) -> Optional[Exemplar]:
    if definition.like is not None and definition.item_of is not None:
        raise ImplementationError(f"{owner} of `{identity}` declares both `like` and `item_of`.")
    if definition.like is not None:
        return verify_reference("like", definition.like, owner, scope, identity)
    if definition.item_of is not None:
        return verify_reference("item_of", definition.item_of, owner, scope, identity)
    return None


def resolve_contract(contract: ContractDef, scope: Scope, identity: str, input_name: str) -> ContractDef:
    """Replace like/item_of in a contract with the exemplars they refer to.

    Nested contracts are checked against this contract's own ``provides``,
    where borrowed entries do not count as concrete: references never chain.
    """
    provides: Dict[str, InputDef] = {}
    inner_scope: Scope = {}
    for name, entry in contract.provides.items():
        owner = f"Contract input `{name}` of `{input_name}`"
        borrowed = borrowed_exemplar(entry, owner, scope, identity)
        if borrowed is not None:
            provides[name] = entry.model_copy(
                update={"exemplar": borrowed, "like": None, "item_of": None}
            )
            inner_scope[name] = None
        else:
            provides[name] = entry
            inner_scope[name] = declared_exemplar(entry)

    _check_nested_contracts(inner_scope, f"{identity}.{input_name}")

    expects: Dict[str, ExitDef] = {}
    for name, entry in contract.expects.items():
        owner = f"Contract exit `{name}` of `{input_name}`"
        borrowed = borrowed_exemplar(entry, owner, scope, identity)
        if borrowed is not None:
            expects[name] = entry.model_copy(
                update={"exemplar": borrowed, "like": None, "item_of": None}
            )
        else:
            expects[name] = entry

    return ContractDef(sync=contract.sync, provides=provides, expects=expects)


def _check_nested_contracts(scope: Scope, identity: str) -> None:
    """Reject bad references inside contracts of function-valued entries.

    Only the check matters: each nested contract is resolved again, against
    its own scope, when the lambda prototype holding it is compiled.
    """
    for name, exemplar in scope.items():
        if exemplar is not None and exemplar.kind is ExemplarKind.CALLABLE and exemplar.contract:
            resolve_contract(exemplar.contract, scope, identity, name)


def _unbound(inputs: Dict[str, Any], exits: Any) -> None:
    raise UsageFault("This lambda machine has no implementation bound to it.")


def build_lambda_definition(contract: ContractDef, input_name: str, parent_identity: str) -> MachineDefinition:
    """Definition of the machine a function for `input_name` will run as."""
    return MachineDefinition(
        identity=f"{parent_identity}.{input_name}",
        description=f"Function supplied for `{input_name}`.",
        sync=contract.sync,
        inputs=dict(contract.provides),
        exits=dict(contract.expects),
        fn=_unbound,
    )


def build_lambda_machine(value: Any, prototype: "Machine", depth: int) -> "Machine":
    """Bind a caller-supplied function to a lambda prototype."""
    if isinstance(value, type(prototype)):
        return value.at_depth(depth)
    if not callable(value):
        raise ImplementationError(
            f"Expected a function for `{prototype.identity}`, got {type(value).__name__}."
        )
    if prototype.sync and inspect.iscoroutinefunction(value):
        raise ImplementationError(
            f"`{prototype.identity}` must be synchronous, but an async function was supplied."
        )
    return prototype.with_fn(value, depth)
