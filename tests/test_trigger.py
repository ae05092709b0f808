import pytest

from relayci.model import Event, Pipeline, TriggerSpec
from relayci.trigger import TriggerMismatch, matches, select_trigger


def trig(events, branches=("*",)):
    return TriggerSpec(events=frozenset(events), branches=tuple(branches))


@pytest.mark.parametrize(
    "event, trigger, expected",
    [
        (Event("push", "main"), trig(["push"], ["main"]), True),
        (Event("pull_request", "main"), trig(["pull_request"], ["main"]), True),
        (Event("merge_group", "main"), trig(["push"], ["main"]), False),
        (Event("push", "dev"), trig(["push"], ["main"]), False),
        (Event("push", "release/1.2"), trig(["push"], ["release/*"]), True),
        (Event("push", "Main"), trig(["push"], ["main"]), False),
        (Event("push", "feature-x"), trig(["push"], ["main", "feature-*"]), True),
        (Event("push", "anything"), trig(["push"]), True),
        (Event("push", "main"), trig(["push"], []), False),
    ],
)
def test_matches_is_event_in_set_and_any_branch_pattern(event, trigger, expected):
    assert matches(event, trigger) is expected


def test_select_trigger_returns_first_matching_trigger():
    t1 = trig(["push"], ["main"])
    t2 = trig(["pull_request"], ["main"])
    p = Pipeline(name="ci", triggers=(t1, t2), jobs={})
    assert select_trigger(Event("pull_request", "main"), p) is t2


def test_select_trigger_mismatch_is_a_record_not_an_exception():
    p = Pipeline(name="ci", triggers=(trig(["push"], ["main"]),), jobs={})
    out = select_trigger(Event("merge_group", "main"), p)
    assert isinstance(out, TriggerMismatch)
    assert "merge_group" in str(out)
    assert not isinstance(out, Exception)
