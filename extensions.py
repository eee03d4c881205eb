from __future__ import annotations

import hashlib
import importlib.util
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple


EXTENSION_API_VERSION = 1


class MRTExtensionError(Exception):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


# ---- Instructions ----

# (engine, resolved arguments, line) -> optional loop signal
InstructionImpl = Callable[[Any, List[str], Any], Any]
# runtime -> text
VariableImpl = Callable[[Any], str]


@dataclass(frozen=True)
class InstructionSpec:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: InstructionImpl
    doc: str = ""
    origin: str = "core"

    def arity_problem(self, supplied: int) -> Optional[str]:
        if supplied < self.min_args:
            return f"{self.name} expects at least {self.min_args} arguments"
        if self.max_args is not None and supplied > self.max_args:
            return f"{self.name} expects at most {self.max_args} arguments"
        return None


@dataclass
class InstructionTable:
    _specs: Dict[str, InstructionSpec] = field(default_factory=dict)

    def register(self, spec: InstructionSpec, *, override: bool = False) -> None:
        name = spec.name.upper()
        if not name:
            raise MRTExtensionError("Instruction name must be non-empty")
        if name in self._specs and not override:
            raise MRTExtensionError(f"Instruction '{name}' is already defined")
        self._specs[name] = spec

    def get(self, name: str) -> Optional[InstructionSpec]:
        return self._specs.get(name.upper())

    def has(self, name: str) -> bool:
        return name.upper() in self._specs

    def names(self) -> set[str]:
        return set(self._specs.keys())

    def __len__(self) -> int:
        return len(self._specs)


@dataclass
class InstructionSet:
    """A named dispatch table plus the predefined variables it brings along."""

    name: str
    instructions: InstructionTable = field(default_factory=InstructionTable)
    variables: Dict[str, VariableImpl] = field(default_factory=dict)
    metadata: List[ExtensionMetadata] = field(default_factory=list)


# ---- Hooks ----


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, ext_name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        self._events.setdefault(event, []).append((priority, handler, ext_name))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _ext in self._events.get(event, []):
            handler(*args, **kwargs)

    def has_handlers(self, event: str) -> bool:
        return bool(self._events.get(event))


@dataclass
class RuntimeServices:
    extensions: InstructionSet = field(default_factory=lambda: InstructionSet(name="extensions"))
    hook_registry: HookRegistry = field(default_factory=HookRegistry)

    @property
    def metadata(self) -> List[ExtensionMetadata]:
        return self.extensions.metadata


class ExtensionAPI:
    def __init__(self, *, target: InstructionSet, hooks: Optional[HookRegistry] = None, ext_name: str) -> None:
        self._target = target
        self._hooks = hooks
        self._ext_name = ext_name

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        self._target.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    # ---- instructions ----
    def register_instruction(
        self,
        name: str,
        min_args: int,
        max_args: Optional[int],
        impl: InstructionImpl,
        *,
        doc: str = "",
    ) -> None:
        if not name:
            raise MRTExtensionError("Instruction name must be non-empty")
        spec = InstructionSpec(
            name=name.upper(),
            min_args=int(min_args),
            max_args=None if max_args is None else int(max_args),
            impl=impl,
            doc=doc,
            origin=self._ext_name,
        )
        self._target.instructions.register(spec)

    def instruction(self, name: str, min_args: int, max_args: Optional[int] = None, *, doc: str = ""):
        def deco(fn: InstructionImpl) -> InstructionImpl:
            self.register_instruction(name, min_args, max_args, fn, doc=doc)
            return fn

        return deco

    # ---- predefined variables ----
    def register_variable(self, name: str, impl: VariableImpl) -> None:
        if not name or name.startswith(("$", "_")):
            raise MRTExtensionError("Predefined variable names are given without the '$_' prefix")
        if name in self._target.variables:
            raise MRTExtensionError(f"Predefined variable '{name}' is already defined")
        self._target.variables[name] = impl

    def variable(self, name: str):
        def deco(fn: VariableImpl) -> VariableImpl:
            self.register_variable(name, fn)
            return fn

        return deco

    # ---- hooks ----
    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        if self._hooks is None:
            raise MRTExtensionError(f"Extension '{self._ext_name}' cannot register hooks")
        hooks = self._hooks
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                hooks.on_event(event, fn, priority=priority, ext_name=self._ext_name)
                return fn
            return deco
        hooks.on_event(event, handler, priority=priority, ext_name=self._ext_name)
        return handler


def build_instruction_set(name: str, register: Callable[[ExtensionAPI], None]) -> InstructionSet:
    instruction_set = InstructionSet(name=name)
    register(ExtensionAPI(target=instruction_set, ext_name=name))
    return instruction_set


# ---- Loading ----

POINTER_SUFFIX = ".mrtx"
POINTER_COMMENT = ";"


@contextmanager
def _extension_dir_on_path(path: str) -> Iterator[None]:
    # Extensions may import helper modules that sit next to them.
    ext_dir = os.path.dirname(path)
    sys.path.insert(0, ext_dir)
    try:
        yield
    finally:
        if sys.path and sys.path[0] == ext_dir:
            del sys.path[0]


def _module_name_for(path: str) -> str:
    stem = "".join(ch if ch.isalnum() else "_" for ch in os.path.basename(path))
    digest = hashlib.sha256(path.encode("utf-8")).hexdigest()[:12]
    return f"mrt_ext_{stem}_{digest}"


def load_extension_module(path: str) -> Any:
    path = os.path.abspath(path)
    if not os.path.isfile(path):
        raise MRTExtensionError(f"Extension not found: {path}")
    spec = importlib.util.spec_from_file_location(_module_name_for(path), path)
    if spec is None or spec.loader is None:
        raise MRTExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)
    with _extension_dir_on_path(path):
        spec.loader.exec_module(module)
    return module


def read_mrtx(pointer_file: str) -> List[str]:
    """Extension paths listed in a pointer file, one per line.

    ``;`` starts a comment (whole-line or trailing) and relative paths are
    taken relative to the pointer file itself.
    """
    if not os.path.isfile(pointer_file):
        raise MRTExtensionError(f"{POINTER_SUFFIX} file not found: {pointer_file}")
    base_dir = os.path.dirname(os.path.abspath(pointer_file))
    with open(pointer_file, "r", encoding="utf-8") as handle:
        entries = [raw.split(POINTER_COMMENT, 1)[0].strip() for raw in handle]
    return [os.path.abspath(os.path.join(base_dir, entry)) for entry in entries if entry]


def gather_extension_paths(paths: Sequence[str]) -> List[str]:
    expanded: List[str] = []
    for path in paths:
        if path.lower().endswith(POINTER_SUFFIX):
            expanded.extend(read_mrtx(path))
        else:
            expanded.append(os.path.abspath(path))
    return expanded


def _register_module(services: RuntimeServices, module: Any, path: str) -> None:
    api_version = getattr(module, "MRT_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
    if api_version != EXTENSION_API_VERSION:
        raise MRTExtensionError(f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}")
    register = getattr(module, "mrt_register", None)
    if not callable(register):
        raise MRTExtensionError(f"Extension {path} must define callable mrt_register(ext)")
    default_name = os.path.splitext(os.path.basename(path))[0]
    ext_name = str(getattr(module, "MRT_EXTENSION_NAME", default_name))
    register(ExtensionAPI(target=services.extensions, hooks=services.hook_registry, ext_name=ext_name))


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = RuntimeServices()
    for path in gather_extension_paths(paths):
        _register_module(services, load_extension_module(path), path)
    return services
