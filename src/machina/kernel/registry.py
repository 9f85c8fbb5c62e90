from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Protocol

from .engine import DefinitionLike, Machine, build, to_definition
from .errors import UsageFault
from .schema import MachineDefinition
from .settings import MachineSettings


class DefinitionResolver(Protocol):
    def resolve(self, name: str) -> MachineDefinition: ...


@dataclass
class MachineRecord:
    definition: MachineDefinition
    machine: Machine


class MachineRegistry:
    """In-memory DefinitionResolver.

    Machines registered here are built with the registry as their resolver,
    so their fn can reach siblings through ``env.resolve(name)``.
    """

    def __init__(self, settings: Optional[MachineSettings] = None) -> None:
        self._registry: Dict[str, MachineRecord] = {}
        self._settings = settings

    def register(self, definition: DefinitionLike, name: Optional[str] = None) -> Machine:
        machine = build(to_definition(definition), settings=self._settings, resolver=self)
        key = name or machine.identity
        self._registry[key] = MachineRecord(definition=machine.definition, machine=machine)
        return machine

    def resolve(self, name: str) -> MachineDefinition:
        return self.get(name).definition

    def get(self, name: str) -> MachineRecord:
        try:
            return self._registry[name]
        except KeyError:
            known = ", ".join(sorted(self._registry)) or "none"
            raise UsageFault(f"No machine registered as `{name}` (registered: {known}).") from None

    def machine(self, name: str) -> Machine:
        return self.get(name).machine

    def __contains__(self, name: Any) -> bool:
        return name in self._registry

    def __iter__(self) -> Iterator[str]:
        return iter(self._registry)

    def __len__(self) -> int:
        return len(self._registry)
