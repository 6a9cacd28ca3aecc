"""
pytest integration for lazyscope.

Test modules and test classes are groups. Nested test classes are nested
groups, so a lazy value declared on an outer class is visible to the tests of
its inner classes, and an inner class may override it.

Enable the plugin in the top-level ``conftest.py``:

    pytest_plugins = ["lazyscope.pytest_plugin"]

and request the ``lazy_values`` fixture:

    class TestPerson:
        first_name = lazy("Ray")

        def test_first_name(self, lazy_values):
            assert lazy_values.first_name == "Ray"

Producer parameters that no group declares are resolved as pytest fixtures.
"""

import logging
from dataclasses import dataclass, field
from typing import Final, final

from typing_extensions import override

import pytest

from lazyscope import (
    BeforeEachCallback,
    Group,
    Hooks,
    LazyContext,
    parse_object,
    setup,
)

_logger: Final[logging.Logger] = logging.getLogger(__name__)

_group_key: Final = pytest.StashKey[Group]()
_hooks_key: Final = pytest.StashKey["ItemHooks"]()


@final
@dataclass(kw_only=True)
class ItemHooks(Hooks):
    """Callbacks run by the ``lazy_values`` fixture before each test body."""

    callbacks: list[BeforeEachCallback] = field(default_factory=list)

    @override
    def before_each(self, callback: BeforeEachCallback, /) -> None:
        self.callbacks.append(callback)

    def run(self, context: LazyContext, group: Group) -> None:
        for callback in self.callbacks:
            callback(context, group)


def pytest_configure(config: pytest.Config) -> None:
    hooks = ItemHooks()
    setup(hooks)
    config.stash[_hooks_key] = hooks


def _node_group(node: pytest.Module | pytest.Class, parent: Group | None) -> Group:
    try:
        return node.stash[_group_key]
    except KeyError:
        pass
    group = Group(
        name=node.name,
        parent=parent,
        declarations=list(parse_object(node.obj)),
        closed=True,
    )
    node.stash[_group_key] = group
    return group


def group_for(item: pytest.Item) -> Group:
    """
    Return the innermost group of ``item``.

    The group chain is built root-first from the item's module and enclosing
    classes. Groups are cached on their collection nodes, so every test of a
    class shares the same Group.
    """
    group: Group | None = None
    for node in item.listchain():
        if isinstance(node, (pytest.Module, pytest.Class)):
            group = _node_group(node, parent=group)
    if group is None:
        # Items not collected from a Python module, e.g. doctests
        group = Group(name=item.name, closed=True)
    return group


@pytest.fixture
def lazy_values(request: pytest.FixtureRequest) -> LazyContext:
    """The lazy values visible to the requesting test."""
    context = LazyContext(fallback=request.getfixturevalue)
    group = group_for(request.node)
    _logger.debug("Setting up lazy values for %s", request.node.nodeid)
    request.config.stash[_hooks_key].run(context, group)
    return context
