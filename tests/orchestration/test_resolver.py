"""Tests for ``lockstep.orchestration.resolver``."""

import pytest

from lockstep.core.errors import (
    CyclicDependencyError,
    DependencyOrderError,
    DependencyResolutionError,
    UnresolvableDependencyError,
)
from lockstep.orchestration.resolver import DependencyResolver, ResolvedModule, validate_order


def _names(order):
    return [r.name for r in order]


class TestResolve:
    def test_declared_order_kept(self, module_factory):
        a, b, c = (module_factory(n)() for n in "ABC")
        order = DependencyResolver().resolve([a, b, c])
        assert _names(order) == ["A", "B", "C"]
        assert [r.ordinal for r in order] == [0, 1, 2]
        assert [r.predecessor for r in order] == [None, "A", "B"]
        assert order[1].dir_name == "01_B"

    def test_provider_inserted_before_dependent(self, module_factory):
        module_factory("D", provides=["normalized"])
        a = module_factory("A")()
        b = module_factory("B", requires=["normalized"])()
        c = module_factory("C")()

        order = DependencyResolver(providers={"normalized": "D"}).resolve([a, b, c])

        assert _names(order) == ["A", "D", "B", "C"]
        assert order[2].predecessor == "D"

    def test_upstream_provider_not_duplicated(self, module_factory):
        module_factory("D", provides=["normalized"])
        d = module_factory("D2", provides=["normalized"])()
        b = module_factory("B", requires=["normalized"])()
        c = module_factory("C", requires=["normalized"])()

        order = DependencyResolver(providers={"normalized": "D"}).resolve([d, b, c])

        assert _names(order) == ["D2", "B", "C"]

    def test_inserted_provider_satisfies_later_modules(self, module_factory):
        module_factory("D", provides=["normalized"])
        b = module_factory("B", requires=["normalized"])()
        c = module_factory("C", requires=["normalized"])()

        order = DependencyResolver(providers={"normalized": "D"}).resolve([b, c])

        assert _names(order) == ["D", "B", "C"]

    def test_recursive_requirements(self, module_factory):
        module_factory("Merge", provides=["merged"], requires=["counts"])
        module_factory("Count", provides=["counts"])
        report = module_factory("Report", requires=["merged"])()

        order = DependencyResolver(providers={"merged": "Merge", "counts": "Count"}).resolve([report])

        assert _names(order) == ["Count", "Merge", "Report"]

    def test_module_name_is_a_capability(self, module_factory):
        module_factory("Demux")
        b = module_factory("B", requires=["Demux"])()
        assert _names(DependencyResolver().resolve([b])) == ["Demux", "B"]

    def test_no_provider(self, module_factory):
        b = module_factory("B", requires=["normalized"])()
        with pytest.raises(UnresolvableDependencyError) as exc_info:
            DependencyResolver().resolve([b])
        assert exc_info.value.module == "B"
        assert exc_info.value.capability == "normalized"

    def test_provider_not_registered(self, module_factory):
        b = module_factory("B", requires=["normalized"])()
        with pytest.raises(UnresolvableDependencyError, match="not a registered module"):
            DependencyResolver(providers={"normalized": "Ghost"}).resolve([b])

    def test_provider_does_not_provide(self, module_factory):
        module_factory("D")
        b = module_factory("B", requires=["normalized"])()
        with pytest.raises(UnresolvableDependencyError, match="does not provide"):
            DependencyResolver(providers={"normalized": "D"}).resolve([b])

    def test_cycle(self, module_factory):
        module_factory("X", provides=["x"], requires=["y"])
        module_factory("Y", provides=["y"], requires=["x"])
        b = module_factory("B", requires=["x"])()

        with pytest.raises(CyclicDependencyError) as exc_info:
            DependencyResolver(providers={"x": "X", "y": "Y"}).resolve([b])

        assert exc_info.value.cycle == ["X", "Y", "X"]

    def test_provider_declared_later(self, module_factory):
        b = module_factory("B", requires=["normalized"])()
        d = module_factory("D", provides=["normalized"])()

        with pytest.raises(DependencyOrderError) as exc_info:
            DependencyResolver(providers={"normalized": "D"}).resolve([b, d])

        assert exc_info.value.provider == "D"


class TestValidateOrder:
    def test_valid(self, module_factory):
        module_factory("D", provides=["normalized"])
        b = module_factory("B", requires=["normalized"])()
        validate_order(DependencyResolver(providers={"normalized": "D"}).resolve([b]))

    def test_out_of_order(self, module_factory):
        d = module_factory("D", provides=["normalized"])()
        b = module_factory("B", requires=["normalized"])()
        order = [ResolvedModule(b, 0), ResolvedModule(d, 1, "B")]
        with pytest.raises(DependencyOrderError):
            validate_order(order)

    def test_unmet(self, module_factory):
        b = module_factory("B", requires=["normalized"])()
        with pytest.raises(UnresolvableDependencyError):
            validate_order([ResolvedModule(b, 0)])

    def test_bad_ordinals(self, module_factory):
        a = module_factory("A")()
        with pytest.raises(DependencyResolutionError, match="ordinal"):
            validate_order([ResolvedModule(a, 1)])
