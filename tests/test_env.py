import pytest

from relayci.env import EnvironmentContext


def test_step_shadows_job_shadows_pipeline():
    ctx = EnvironmentContext({"K": "pipeline", "P": "p"}, {"K": "job", "J": "j"}, base={"K": "host"})
    assert ctx.resolve("K", {"K": "step"}) == "step"
    assert ctx.resolve("K") == "job"
    assert ctx.resolve("P") == "p"
    assert ctx.resolve("J") == "j"
    assert ctx.resolve("MISSING") is None


def test_pipeline_value_used_when_job_does_not_set_it():
    ctx = EnvironmentContext({"K": "pipeline"}, {}, base={"K": "host"})
    assert ctx.resolve("K") == "pipeline"


def test_exports_are_visible_afterwards_but_step_env_still_wins():
    ctx = EnvironmentContext({}, {"K": "job"})
    ctx.export("K", "exported")
    ctx.export("NEW", 42)
    assert ctx.resolve("K") == "exported"
    assert ctx.resolve("NEW") == "42"
    assert ctx.resolve("K", {"K": "step"}) == "step"


def test_materialize_flattens_in_precedence_order():
    ctx = EnvironmentContext({"A": "p", "B": "p"}, {"B": "j", "C": "j"}, base={"PATH": "/bin", "A": "host"})
    ctx.export("C", "x")
    assert ctx.materialize({"D": "s"}) == {"PATH": "/bin", "A": "p", "B": "j", "C": "x", "D": "s"}


def test_pipeline_and_job_layers_are_read_only():
    ctx = EnvironmentContext({"A": "1"}, {"B": "2"})
    with pytest.raises(TypeError):
        ctx.pipeline["A"] = "x"
    with pytest.raises(TypeError):
        ctx.job["B"] = "x"


def test_contexts_do_not_share_exports():
    pipeline_env = {"A": "1"}
    one = EnvironmentContext(pipeline_env, {})
    two = EnvironmentContext(pipeline_env, {})
    one.export("X", "y")
    assert two.resolve("X") is None
    assert "X" not in pipeline_env


def test_absorb_env_file_parses_key_value_lines():
    ctx = EnvironmentContext()
    added = ctx.absorb_env_file("A=1\n\n# comment\nB=x=y\nnot a pair\n=nokey\n")
    assert added == {"A": "1", "B": "x=y"}
    assert ctx.exported == {"A": "1", "B": "x=y"}
