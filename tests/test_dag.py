import pytest

from relayci.dag import build_dag, topo_levels, validate_graph
from relayci.errors import DependencyCycleError, SchemaError
from relayci.model import Command, Job


def j(name, *needs):
    return Job(name=name, steps=(Command("true"),), needs=tuple(needs))


def test_levels_group_independent_jobs():
    jobs = [j("fmt"), j("lint"), j("test", "fmt", "lint"), j("deploy", "test")]
    assert validate_graph(jobs) == [["fmt", "lint"], ["test"], ["deploy"]]


def test_build_dag_edges_point_from_dependency_to_dependent():
    adj, indeg = build_dag([j("a"), j("b", "a"), j("c", "a")])
    assert adj["a"] == {"b", "c"}
    assert indeg == {"a": 0, "b": 1, "c": 1}


def test_duplicate_names_and_unknown_deps_reported_together():
    with pytest.raises(SchemaError) as ei:
        build_dag([j("a"), j("a"), j("b", "nope")])
    assert len(ei.value.violations) == 2


def test_self_dependency_is_a_cycle():
    adj, indeg = build_dag([j("a", "a")])
    with pytest.raises(DependencyCycleError) as ei:
        topo_levels(adj, indeg)
    assert ei.value.nodes == ["a"]
