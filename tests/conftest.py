"""Test utilities and fixtures for lazyscope tests."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar, final

from typing_extensions import override

from lazyscope import BeforeEachCallback, Group, Hooks, LazyContext

pytest_plugins = ["pytester", "lazyscope.pytest_plugin"]

T = TypeVar("T")


@final
@dataclass(kw_only=True)
class RecordingHooks(Hooks):
    """Test utility: a minimal host runner that records before-each callbacks."""

    callbacks: list[BeforeEachCallback] = field(default_factory=list)

    @override
    def before_each(self, callback: BeforeEachCallback, /) -> None:
        self.callbacks.append(callback)

    def run_test(self, group: Group, body: Callable[[LazyContext], T]) -> T:
        context = LazyContext()
        for callback in self.callbacks:
            callback(context, group)
        return body(context)
