"""Host extensions for the Lox runtime.

An extension is a Python file that defines ``lox_register(ext)``. Through the
``ext`` handle it may add native functions to the global frame, subscribe to
the events the interpreter emits, and run a callback every N logged steps.
A ``.loxx`` file lists extension paths, one per line, relative to itself.
"""

from __future__ import annotations

import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from lexer import KEYWORDS
from parser import MAX_ARGUMENTS


EXTENSION_API_VERSION = 1

# Event name -> arguments passed to handlers after the interpreter itself.
EVENTS: Dict[str, tuple] = {
    "program_start": ("statements", "env"),
    "program_end": ("status",),
    "before_statement": ("statement", "env"),
    "after_statement": ("statement", "env"),
    "before_call": ("name", "arguments", "env", "location"),
    "after_call": ("name", "result", "env", "location"),
    "on_print": ("text",),
    "on_error": ("fault",),
}


class LoxExtensionError(Exception):
    pass


@dataclass(frozen=True)
class StepContext:
    step_index: int
    rule: str
    location: Any  # SourceLocation | None
    extra: Optional[Dict[str, Any]]


@dataclass(frozen=True)
class NativeSpec:
    name: str
    arity: int
    # impl(interpreter, arguments) -> Value or a plain Python value
    impl: Callable[..., Any]
    doc: str
    extension: str


@dataclass(frozen=True)
class StepRule:
    every_n: int
    handler: Callable[[Any, StepContext], None]
    extension: str


@dataclass
class RuntimeServices:
    """Everything the loaded extensions contributed to one interpreter."""

    # extension name -> version
    loaded: Dict[str, str] = field(default_factory=dict)
    natives: Dict[str, NativeSpec] = field(default_factory=dict)
    handlers: Dict[str, List[Callable[..., None]]] = field(default_factory=dict)
    step_rules: List[StepRule] = field(default_factory=list)

    def add_native(self, spec: NativeSpec) -> None:
        existing = self.natives.get(spec.name)
        if existing is not None:
            raise LoxExtensionError(
                f"Native function '{spec.name}' is already registered by extension '{existing.extension}'"
            )
        self.natives[spec.name] = spec

    def subscribe(self, event: str, handler: Callable[..., None]) -> None:
        if event not in EVENTS:
            raise LoxExtensionError(f"Unknown event '{event}'; expected one of {', '.join(sorted(EVENTS))}")
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in self.handlers.get(event, ()):
            handler(*args)

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for rule in self.step_rules:
            if ctx.step_index % rule.every_n == 0:
                rule.handler(interpreter, ctx)


def _is_lox_identifier(name: str) -> bool:
    return name.isascii() and name.isidentifier() and name not in KEYWORDS


class ExtensionAPI:
    """Registration handle passed to ``lox_register``."""

    def __init__(self, services: RuntimeServices, name: str) -> None:
        self.services = services
        self.name = name

    def register_native(self, name: str, arity: int, impl: Callable[..., Any], *, doc: str = "") -> None:
        if not _is_lox_identifier(name):
            raise LoxExtensionError(f"Native function name {name!r} is not a Lox identifier")
        if not 0 <= arity <= MAX_ARGUMENTS:
            raise LoxExtensionError(f"Native function '{name}' arity must be between 0 and {MAX_ARGUMENTS}")
        self.services.add_native(NativeSpec(name, arity, impl, doc, self.name))

    def native(self, name: str, arity: int, *, doc: str = ""):
        def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register_native(name, arity, fn, doc=doc)
            return fn

        return deco

    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None):
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self.services.subscribe(event, fn)
                return fn
            return deco
        self.services.subscribe(event, handler)
        return handler

    def every_n_steps(self, every_n: int, handler: Callable[[Any, StepContext], None]) -> None:
        if every_n < 1:
            raise LoxExtensionError("every_n_steps needs an interval of at least 1")
        self.services.step_rules.append(StepRule(every_n, handler, self.name))


def _read_pointer_file(path: Path) -> List[Path]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise LoxExtensionError(f"Cannot read extension list {path}: {exc}") from exc
    entries: List[Path] = []
    for line in text.splitlines():
        entry = line.split("#", 1)[0].strip()
        if entry:
            entries.append((path.parent / entry).resolve())
    return entries


def extension_paths(paths: Iterable[str]) -> List[Path]:
    """Expand ``.loxx`` lists; any other path names an extension module."""
    expanded: List[Path] = []
    for raw in paths:
        path = Path(raw).resolve()
        if path.suffix.lower() == ".loxx":
            expanded.extend(_read_pointer_file(path))
        else:
            expanded.append(path)
    return expanded


def load_extension(path: Path, services: RuntimeServices) -> str:
    if not path.is_file():
        raise LoxExtensionError(f"Extension not found: {path}")
    try:
        namespace = runpy.run_path(str(path), run_name=f"lox_ext_{path.stem}")
    except Exception as exc:
        raise LoxExtensionError(f"Failed to load extension {path}: {exc}") from exc

    api_version = namespace.get("LOX_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
    if api_version != EXTENSION_API_VERSION:
        raise LoxExtensionError(f"Extension {path} targets API {api_version}, host supports {EXTENSION_API_VERSION}")
    register = namespace.get("lox_register")
    if not callable(register):
        raise LoxExtensionError(f"Extension {path} must define callable lox_register(ext)")
    name = str(namespace.get("LOX_EXTENSION_NAME", path.stem))
    if name in services.loaded:
        raise LoxExtensionError(f"Extension '{name}' is loaded twice")

    register(ExtensionAPI(services, name))
    services.loaded[name] = str(namespace.get("LOX_EXTENSION_VERSION", "0.0.0"))
    return name


def load_runtime_services(paths: Iterable[str]) -> RuntimeServices:
    services = RuntimeServices()
    for path in extension_paths(paths):
        load_extension(path, services)
    return services
