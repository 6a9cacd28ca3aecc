"""
lazyscope: Lazy, group-scoped fixture values with RSpec ``let``-like semantics.

## Core Design Principle: Nearest Declaration Wins

Lazy values are declared on test groups. A test sees every lazy value
declared by its own group and by every enclosing group. When several groups
declare the same key, the innermost declaration is the one evaluated.

Values are computed on first access and memoized for the rest of the test.
Each test receives a fresh ``LazyContext``.

## Example

```python
from lazyscope import LazyContext, define, install

with define("person") as person:
    person.lazy("first_name", "Ray")
    person.lazy("last_name", "Cohen")
    person.lazy("full_name", lambda first_name, last_name: f"{first_name} {last_name}")

    with person.describe("with middle name") as nested:
        nested.lazy("middle_name", "Hank")
        nested.lazy(
            "full_name",
            lambda first_name, middle_name, last_name: (
                f"{first_name} {middle_name} {last_name}"
            ),
        )

context = LazyContext()
install(context, nested.group)
context.full_name  # "Ray Hank Cohen"
```

Producer parameters are resolved by name against the reading context, so a
producer declared on an outer group sees the overrides of the group the test
belongs to. A parameter named after the producer's own key refers to the
declaration it overrides, the same way a pytest fixture can extend a fixture
of the same name.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from inspect import Parameter, signature
from typing import (
    Any,
    Callable,
    Final,
    Iterator,
    Mapping,
    MutableMapping,
    Protocol,
    Sequence,
    final,
)

from typing_extensions import override

_logger: Final[logging.Logger] = logging.getLogger(__name__)


class LazyError(Exception):
    """Base class for lazy value declaration and resolution errors."""


class DeclarationOutsideGroupError(LazyError):
    """A lazy value was declared when no group was being defined."""


class SetupNotCalledError(LazyError):
    """A lazy value was read from a context that was never installed."""


class UnresolvedKeyError(LazyError, KeyError):
    """No group visible to the test declares the requested key."""


class UnresolvedDependencyError(LazyError):
    """A producer parameter names neither a lazy value nor a fallback value."""

    def __init__(self, key: str, parameter: str) -> None:
        super().__init__(
            f"Cannot evaluate lazy value {key!r}: "
            f"parameter {parameter!r} is not a declared lazy value"
        )
        self.key = key
        self.parameter = parameter


class CyclicLazyValueError(LazyError):
    """A producer depends on itself, directly or transitively."""

    def __init__(self, chain: Sequence[str]) -> None:
        super().__init__(f"Cyclic lazy value: {' -> '.join(chain)}")
        self.chain = tuple(chain)


@final
@dataclass(frozen=True, kw_only=True, slots=True)
class Declaration:
    """A lazy key together with the producer computing its value."""

    key: str
    producer: Callable[..., object]

    @classmethod
    def of(cls, key: str, value_or_producer: object) -> "Declaration":
        """
        Create a declaration from either a producer or a plain value.

        Callables are treated as producers. Any other value becomes a producer
        returning that value unchanged. Use ``constant`` to declare a callable
        as a plain value.
        """
        if not key:
            raise ValueError("Lazy key must be a non-empty string")
        if isinstance(value_or_producer, LazyDefinition):
            return cls(key=key, producer=value_or_producer.producer)
        if callable(value_or_producer):
            return cls(key=key, producer=value_or_producer)
        return cls(key=key, producer=_constant_producer(value_or_producer))


def _constant_producer(value: object) -> Callable[[], object]:
    def produce() -> object:
        return value

    return produce


@dataclass(kw_only=True, slots=True, weakref_slot=True, eq=False)
class Group:
    """
    Metadata of a test group.

    A Group is mutable while its body is being defined. Once ``closed`` is set,
    its declarations never change.
    """

    name: str
    parent: "Group | None" = None
    declarations: list[Declaration] = field(default_factory=list)
    closed: bool = False

    def lineage(self) -> Sequence["Group"]:
        """Return the groups from the root down to ``self``, inclusive."""
        if self.parent is None:
            return (self,)
        return (*self.parent.lineage(), self)

    def child(self, name: str) -> "Group":
        return Group(name=name, parent=self)

    @property
    def qualified_name(self) -> str:
        return " > ".join(group.name for group in self.lineage())


@final
@dataclass(frozen=True, kw_only=True, slots=True)
class GroupBuilder:
    """
    Handle passed into a group body for declaring lazy values and nested groups.

    The handle only accepts declarations while its group is being defined.
    """

    group: Group

    def declare(self, key: str, value_or_producer: object) -> None:
        if self.group.closed:
            raise DeclarationOutsideGroupError(
                f"Cannot declare {key!r}: group {self.group.qualified_name!r} "
                "is no longer being defined"
            )
        self.group.declarations.append(Declaration.of(key, value_or_producer))

    lazy = declare

    @contextmanager
    def describe(self, name: str) -> Iterator["GroupBuilder"]:
        """Define a group nested in this builder's group."""
        if self.group.closed:
            raise DeclarationOutsideGroupError(
                f"Cannot nest {name!r}: group {self.group.qualified_name!r} "
                "is no longer being defined"
            )
        with _defining(self.group.child(name)) as builder:
            yield builder


@contextmanager
def _defining(group: Group) -> Iterator[GroupBuilder]:
    try:
        yield GroupBuilder(group=group)
    finally:
        group.closed = True


@contextmanager
def define(name: str) -> Iterator[GroupBuilder]:
    """Define a root group. The group is closed when the block exits."""
    with _defining(Group(name=name)) as builder:
        yield builder


@final
@dataclass(frozen=True, kw_only=True, slots=True)
class LazyDefinition:
    """
    A lazy value declared as a module or class attribute.

    The key is the attribute name, discovered by ``parse_object``.
    """

    producer: Callable[..., object]


def lazy(value_or_producer: object) -> LazyDefinition:
    """
    Declare a lazy value as an attribute of a test module or class.

    Can be used as a decorator on a producer function, or called with a plain
    value:

        class TestPerson:
            first_name = lazy("Ray")
            last_name = lazy("Cohen")

            @lazy
            def full_name(first_name: str, last_name: str) -> str:
                return f"{first_name} {last_name}"
    """
    if callable(value_or_producer):
        return LazyDefinition(producer=value_or_producer)
    return LazyDefinition(producer=_constant_producer(value_or_producer))


def constant(value: object) -> LazyDefinition:
    """Declare a plain value, even when the value itself is callable."""
    return LazyDefinition(producer=_constant_producer(value))


def parse_object(namespace: object) -> Sequence[Declaration]:
    """
    Collect the lazy declarations of a module or class.

    Only attributes created by ``lazy`` or ``constant`` are included. Inherited
    class attributes are included as well, since lookup goes through ``getattr``.
    """
    declarations: list[Declaration] = []
    for name in dir(namespace):
        try:
            value = getattr(namespace, name)
        except AttributeError:
            continue
        if isinstance(value, LazyDefinition):
            declarations.append(Declaration(key=name, producer=value.producer))
    return tuple(declarations)


Fallback = Callable[[str], object]
"""Resolves a producer parameter that no group declares."""


@dataclass(kw_only=True, slots=True, weakref_slot=True, eq=False)
class LazyContext(Mapping[str, object]):
    """
    The execution context a test reads lazy values from.

    Values are available both as items and as attributes. Each binding is
    evaluated at most once per context.

    Attribute access cannot reach keys that collide with the context's own
    attributes (``items``, ``get``, ``fallback`` and so on); use item access
    for those.
    """

    fallback: Fallback | None = None
    installed: bool = field(default=False, init=False)
    _bindings: MutableMapping[str, list[Declaration]] = field(
        default_factory=dict, init=False, repr=False
    )
    _cache: MutableMapping[tuple[str, int], object] = field(
        default_factory=dict, init=False, repr=False
    )
    _evaluating: list[tuple[str, int]] = field(
        default_factory=list, init=False, repr=False
    )

    def bind(self, declaration: Declaration) -> None:
        """Make ``declaration`` the effective binding of its key."""
        self._bindings.setdefault(declaration.key, []).append(declaration)

    @override
    def __getitem__(self, key: str) -> object:
        self._ensure_installed(key)
        try:
            overrides = self._bindings[key]
        except KeyError:
            raise UnresolvedKeyError(key) from None
        return self._evaluate(key, len(overrides) - 1)

    def __getattr__(self, key: str) -> object:
        if key.startswith("_"):
            raise AttributeError(key, name=key, obj=self)
        if self.installed and key not in self._bindings:
            raise AttributeError(
                f"No lazy value named {key!r}", name=key, obj=self
            ) from UnresolvedKeyError(key)
        return self[key]

    @override
    def __iter__(self) -> Iterator[str]:
        return iter(self._bindings)

    @override
    def __len__(self) -> int:
        return len(self._bindings)

    @override
    def __contains__(self, key: object) -> bool:
        return key in self._bindings

    @override
    def get(self, key: str, default: object = None) -> object:
        self._ensure_installed(key)
        if key not in self._bindings:
            return default
        return self[key]

    # Contexts compare by identity, so comparing never evaluates producers.
    @override
    def __eq__(self, other: object) -> bool:
        return self is other

    @override
    def __hash__(self) -> int:
        return hash(id(self))

    def _ensure_installed(self, key: str) -> None:
        if not self.installed:
            raise SetupNotCalledError(
                f"Cannot read lazy value {key!r}: no lazy values were installed "
                "for this test, call setup() on the root group's hooks"
            )

    def _evaluate(self, key: str, level: int) -> object:
        slot = (key, level)
        if slot in self._cache:
            return self._cache[slot]
        if slot in self._evaluating:
            start = self._evaluating.index(slot)
            chain = [evaluating_key for evaluating_key, _ in self._evaluating[start:]]
            raise CyclicLazyValueError((*chain, key))

        declaration = self._bindings[key][level]
        self._evaluating.append(slot)
        try:
            _logger.debug("Evaluating lazy value %r (override level %d)", key, level)
            args, kwargs = self._resolve_arguments(declaration, level)
            value = declaration.producer(*args, **kwargs)
        finally:
            self._evaluating.pop()
        self._cache[slot] = value
        return value

    def _resolve_arguments(
        self, declaration: Declaration, level: int
    ) -> tuple[Sequence[Any], Mapping[str, Any]]:
        """
        Resolve producer parameters by name.

        1. A parameter named after the producer's own key resolves to the
           binding this producer overrides.
        2. Other parameters resolve to the effective binding of that key.
        3. Unresolved parameters with a default are left to the callee, then
           the fallback is asked.

        Positional-only parameters are passed positionally. Callables without
        an inspectable signature, such as ``dict``, take no dependencies.
        """

        def resolve_param(param: Parameter) -> Any:
            if param.name == declaration.key:
                if level > 0:
                    return self._evaluate(param.name, level - 1)
            elif param.name in self._bindings:
                return self._evaluate(
                    param.name, len(self._bindings[param.name]) - 1
                )
            if param.default is not Parameter.empty:
                return param.default
            if self.fallback is not None:
                return self.fallback(param.name)
            raise UnresolvedDependencyError(declaration.key, param.name) from (
                UnresolvedKeyError(param.name)
            )

        def is_resolvable(param: Parameter) -> bool:
            if param.name == declaration.key:
                return level > 0 or param.default is Parameter.empty
            return param.name in self._bindings or param.default is Parameter.empty

        try:
            sig = signature(declaration.producer)
        except ValueError:
            return (), {}

        positional_only = [
            param
            for param in sig.parameters.values()
            if param.kind is Parameter.POSITIONAL_ONLY
        ]
        # Trailing defaults are omitted; earlier ones must be passed to keep positions
        while positional_only and not is_resolvable(positional_only[-1]):
            positional_only.pop()
        args = [resolve_param(param) for param in positional_only]
        kwargs = {
            param.name: resolve_param(param)
            for param in sig.parameters.values()
            if param.kind in (Parameter.POSITIONAL_OR_KEYWORD, Parameter.KEYWORD_ONLY)
            and is_resolvable(param)
        }
        return args, kwargs


def install(context: LazyContext, group: Group) -> None:
    """
    Install the lazy values visible from ``group`` onto ``context``.

    Groups are processed from the root down, so declarations of nested groups
    become the effective bindings over those of their ancestors.
    """
    for lineage_group in group.lineage():
        for declaration in lineage_group.declarations:
            context.bind(declaration)
    context.installed = True
    _logger.debug(
        "Installed lazy values %s for group %r",
        sorted(context),
        group.qualified_name,
    )


BeforeEachCallback = Callable[[LazyContext, Group], None]


class Hooks(Protocol):
    """The per-test hook registration a host test framework provides."""

    def before_each(self, callback: BeforeEachCallback, /) -> None: ...


def setup(hooks: Hooks) -> None:
    """
    Wire lazy value installation into a host's hooks.

    Call once on the root group's hooks; the host then installs the lazy values
    of every test's group before the test body runs.
    """
    hooks.before_each(install)
