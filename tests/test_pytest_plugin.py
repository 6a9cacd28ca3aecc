"""Tests for the pytest plugin, written as the nested test classes it supports."""

from pathlib import Path

import pytest

from lazyscope import LazyContext, constant, lazy
from lazyscope.pytest_plugin import group_for

greeting = lazy("Hello")


class TestLazy:
    """Lazy values declared on the outermost class."""

    first_name = lazy(lambda: "Ray")
    last_name = lazy(lambda: "Cohen")

    @lazy
    def full_name(first_name: str, last_name: str) -> str:
        return f"{first_name} {last_name}"

    def test_top_level_lazy_values(self, lazy_values: LazyContext) -> None:
        assert lazy_values.full_name == "Ray Cohen"

    def test_module_values_are_visible(self, lazy_values: LazyContext) -> None:
        assert lazy_values.greeting == "Hello"

    class TestNested:
        middle_name = lazy(lambda: "Hank")

        @lazy
        def full_name(first_name: str, middle_name: str, last_name: str) -> str:
            return f"{first_name} {middle_name} {last_name}"

        def test_lazy_values(self, lazy_values: LazyContext) -> None:
            assert lazy_values.full_name == "Ray Hank Cohen"

        class TestDeeplyNested:
            first_name = lazy(lambda: "Victoria")
            middle_name = lazy("Peggy")

            def test_lazy_values(self, lazy_values: LazyContext) -> None:
                assert lazy_values.full_name == "Victoria Peggy Cohen"

        class TestAnotherDeeplyNested:
            def test_lazy_values(self, lazy_values: LazyContext) -> None:
                assert lazy_values.full_name == "Ray Hank Cohen"


class TestSibling:
    """A sibling class never sees another class's declarations."""

    def test_sibling_declarations_are_hidden(self, lazy_values: LazyContext) -> None:
        assert "first_name" not in lazy_values
        assert "greeting" in lazy_values


class TestFixtureFallback:
    """Producer parameters that are not lazy values resolve as fixtures."""

    @lazy
    def workdir(tmp_path: Path) -> Path:
        path = tmp_path / "work"
        path.mkdir()
        return path

    @lazy
    def monkeypatch(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
        monkeypatch.setenv("LAZYSCOPE_TEST", "1")
        return monkeypatch

    def test_fixture_dependency(self, lazy_values: LazyContext) -> None:
        assert lazy_values.workdir.is_dir()
        assert lazy_values.workdir.name == "work"

    def test_same_name_fixture_is_extended(
        self, lazy_values: LazyContext, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        assert lazy_values.monkeypatch is monkeypatch


class TestMemoizedPerTest:
    """Each test gets its own memoized values."""

    numbers = lazy(list)
    factory = constant(list)

    @pytest.mark.parametrize("value", [1, 2])
    def test_value_is_fresh_for_each_test(
        self, lazy_values: LazyContext, value: int
    ) -> None:
        lazy_values.numbers.append(value)
        assert lazy_values.numbers == [value]

    def test_constant_keeps_callable(self, lazy_values: LazyContext) -> None:
        assert lazy_values.factory is list


class TestGroupFor:
    """Test building groups from collection nodes."""

    def test_groups_follow_class_nesting(self, request: pytest.FixtureRequest) -> None:
        group = group_for(request.node)
        assert [g.name for g in group.lineage()] == [
            "test_pytest_plugin.py",
            "TestGroupFor",
        ]
        assert all(g.closed for g in group.lineage())

    def test_groups_are_shared_between_tests(
        self, request: pytest.FixtureRequest
    ) -> None:
        group = group_for(request.node)
        assert group is group_for(request.node)


class TestPluginOutcomes:
    """Run generated test files through the plugin and check their outcomes."""

    def test_cycle_fails_the_test(self, pytester: pytest.Pytester) -> None:
        pytester.makepyfile(
            """
            from lazyscope import lazy

            class TestCycle:
                @lazy
                def a(b):
                    return b

                @lazy
                def b(a):
                    return a

                def test_cycle(self, lazy_values):
                    lazy_values.a

                def test_unaffected(self, lazy_values):
                    assert "a" in lazy_values
            """
        )
        result = pytester.runpytest("-p", "lazyscope.pytest_plugin")
        result.assert_outcomes(passed=1, failed=1)
        result.stdout.fnmatch_lines(["*CyclicLazyValueError: Cyclic lazy value: a -> b -> a*"])

    def test_unknown_key_fails_the_test(self, pytester: pytest.Pytester) -> None:
        pytester.makepyfile(
            """
            class TestMissing:
                def test_missing(self, lazy_values):
                    lazy_values.missing
            """
        )
        result = pytester.runpytest("-p", "lazyscope.pytest_plugin")
        result.assert_outcomes(failed=1)
        result.stdout.fnmatch_lines(["*AttributeError: No lazy value named 'missing'*"])

    def test_module_level_tests(self, pytester: pytest.Pytester) -> None:
        pytester.makepyfile(
            """
            from lazyscope import lazy

            name = lazy("World")

            @lazy
            def greeting(name):
                return f"Hello, {name}!"

            def test_greeting(lazy_values):
                assert lazy_values.greeting == "Hello, World!"
            """
        )
        result = pytester.runpytest("-p", "lazyscope.pytest_plugin")
        result.assert_outcomes(passed=1)
