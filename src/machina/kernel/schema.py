from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .errors import UsageFault

logger = logging.getLogger(__name__)


class ExemplarKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DICTIONARY = "dictionary"
    LIST = "list"
    WILDCARD = "wildcard"
    PASSTHROUGH = "passthrough"
    CALLABLE = "callable"


class Exemplar(BaseModel):
    """Structural type derived from an example value.

    Only the attribute matching ``kind`` is populated:
    ``fields`` for DICTIONARY (empty means any dictionary),
    ``pattern`` for LIST (None means any list),
    ``contract`` for CALLABLE.
    """

    kind: ExemplarKind
    fields: Optional[Dict[str, Exemplar]] = None
    pattern: Optional[Exemplar] = None
    contract: Optional[ContractDef] = None

    model_config = ConfigDict(frozen=True)


class InputDef(BaseModel):
    description: Optional[str] = None
    example: Any = None
    typeclass: Optional[str] = None
    exemplar: Optional[Exemplar] = None
    validate_fn: Optional[Callable[..., Any]] = Field(default=None, alias="validate")
    get_example: Optional[Callable[..., Any]] = None
    required: bool = False
    defaults_to: Any = None
    contract: Optional[ContractDef] = None
    # Only meaningful inside a contract's `provides`
    like: Optional[str] = None
    item_of: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)


class ExitDef(BaseModel):
    description: Optional[str] = None
    example: Any = None
    exemplar: Optional[Exemplar] = None
    like: Optional[str] = None
    item_of: Optional[str] = None
    get_example: Optional[Callable[..., Any]] = None
    void: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True)


class ContractDef(BaseModel):
    """Shape of a function accepted by a callable (``"->"``) input."""

    sync: bool = False
    provides: Dict[str, InputDef] = Field(
        default_factory=dict, validation_alias=AliasChoices("provides", "inputs")
    )
    expects: Dict[str, ExitDef] = Field(
        default_factory=dict, validation_alias=AliasChoices("expects", "exits")
    )

    model_config = ConfigDict(populate_by_name=True)


class MachineDefinition(BaseModel):
    identity: Optional[str] = None
    friendly_name: Optional[str] = None
    description: Optional[str] = None
    sync: bool = False
    inputs: Dict[str, InputDef] = Field(default_factory=dict)
    exits: Dict[str, ExitDef] = Field(default_factory=dict)
    fn: Callable[..., Any]
    max_recursion: Optional[int] = Field(default=None, ge=0)

    model_config = ConfigDict(arbitrary_types_allowed=True)


Exemplar.model_rebuild()
InputDef.model_rebuild()
ExitDef.model_rebuild()
ContractDef.model_rebuild()
MachineDefinition.model_rebuild()


def render_hops(hops: List[Union[str, int]]) -> str:
    """Render hops as a path, e.g. ``["a", "b", 2, "c"]`` -> ``a.b[2].c``."""
    rendered = ""
    for hop in hops:
        if isinstance(hop, int):
            rendered += f"[{hop}]"
        elif rendered:
            rendered += f".{hop}"
        else:
            rendered = hop
    return rendered


class ValidationProblem(BaseModel):
    """One mismatch between a value and its exemplar."""

    input: Optional[str] = None
    hops: List[Union[str, int]] = Field(default_factory=list)
    expected: str
    actual: Any = None
    message: str

    @property
    def path(self) -> str:
        return render_hops(self.hops)


class InstanceStatus(str, Enum):
    CONFIGURED = "configured"
    RUNNING = "running"
    EXITED = "exited"
    DELIVERED = "delivered"


class Environment(BaseModel):
    """Ambient context handed to a machine's fn as its third argument.

    Carries the recursion depth explicitly so that machines obtained from
    here (this_machine, resolve) run one level deeper.

    The output_sink follows the I/O membrane pattern: the fn emits, the
    caller decides where output goes. Without a sink, output is logged.
    """

    depth: int = 0
    ambient: Dict[str, Any] = Field(default_factory=dict)

    # Injected collaborators, never serialized
    machine: Optional[Any] = Field(default=None, exclude=True)
    resolver: Optional[Any] = Field(default=None, exclude=True)
    scheduler: Optional[Any] = Field(default=None, exclude=True)
    output_sink: Optional[Callable[[str], None]] = Field(default=None, exclude=True)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def get(self, key: str, default: Any = None) -> Any:
        return self.ambient.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.ambient[key]

    def this_machine(self) -> Any:
        """The running machine, ready to be configured one level deeper."""
        if self.machine is None:
            raise UsageFault("No machine is bound to this environment.")
        return self.machine.at_depth(self.depth + 1)

    def resolve(self, name: str) -> Any:
        """Build a sibling machine by name through the injected resolver."""
        if self.resolver is None:
            raise UsageFault(f"Cannot resolve `{name}`: no resolver was configured.")
        if self.machine is None:
            raise UsageFault("No machine is bound to this environment.")
        definition = self.resolver.resolve(name)
        return type(self.machine)(
            definition,
            settings=self.machine.settings,
            resolver=self.resolver,
            depth=self.depth + 1,
        )

    def defer(self, callback: Callable[..., Any], *args: Any) -> None:
        """Run callback on a later tick of the current scheduler."""
        if self.scheduler is None:
            raise UsageFault("No scheduler is bound to this environment.")
        self.scheduler.defer(callback, *args)

    def emit(self, content: str) -> None:
        """Send output to the configured sink, or to the module logger."""
        if self.output_sink:
            self.output_sink(content)
        else:
            logger.info(content)
