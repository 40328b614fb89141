import pytest

from matrixci.dsl import job, sh
from matrixci.errors import InvalidTransition
from matrixci.matrix import expand
from matrixci.model import Event, PipelineRun, Status, Step


def instance():
    [inst] = expand(job("a", sh("s", "true")))
    return inst


def test_step_needs_exactly_one_of_run_or_uses():
    with pytest.raises(ValueError):
        Step(name="both", run="true", uses="actions/checkout@v4")
    with pytest.raises(ValueError):
        Step(name="neither")
    s = Step(name="co", uses="actions/checkout@v4")
    assert (s.action, s.version) == ("actions/checkout", "v4")


def test_event_ref_name():
    assert Event.create("push", "refs/tags/v1.0.0").ref_name == "v1.0.0"
    assert Event.create("push", "refs/heads/main").ref_name == "main"
    assert Event.create("push", "refs/tags/v1.0.0").is_tag


def test_lifecycle():
    inst = instance()
    assert inst.status is Status.PENDING
    assert inst.start()
    assert inst.settle(Status.SUCCEEDED)
    assert inst.terminal
    assert not inst.cancel()
    with pytest.raises(InvalidTransition):
        inst.transition(Status.RUNNING)


def test_pending_cannot_succeed_directly():
    inst = instance()
    with pytest.raises(InvalidTransition):
        inst.transition(Status.SUCCEEDED)


def test_cancel_wins_over_settle():
    inst = instance()
    inst.start()
    assert inst.cancel()
    assert inst.cancel_token.is_set()
    assert not inst.settle(Status.SUCCEEDED)
    assert inst.status is Status.CANCELLED


def test_cancelled_instance_does_not_start():
    inst = instance()
    inst.cancel()
    assert not inst.start()
    assert not inst.skip()


def test_run_env_is_read_only():
    run = PipelineRun("CI", Event.create("push", "refs/heads/main"), env={"A": "1"})
    with pytest.raises(TypeError):
        run.env["A"] = "2"
