from matrixci.concurrency import ConcurrencyGovernor, group_key
from matrixci.model import Event, Status
from matrixci.presets.rust import build_job

from .support import make_run


def push(ref="refs/heads/main"):
    return Event.create("push", ref)


def test_second_run_on_same_ref_cancels_the_first(exchange):
    seen = []
    gov = ConcurrencyGovernor(exchange, on_cancel=seen.append)
    first = make_run(build_job(), push())
    second = make_run(build_job(), push())
    exchange.publish(first.id, "binary-macos", b"x", "p")

    assert gov.admit(first).cancelled_run_id is None
    result = gov.admit(second)

    assert result.group == group_key("refs/heads/main", "CI") == "refs/heads/main-CI"
    assert result.cancelled_run_id == first.id
    assert all(i.status is Status.CANCELLED for i in first.instances)
    assert first.cancelled.is_set()
    assert exchange.fetch(first.id) == []
    assert seen == [first]
    assert gov.active(result.group) is second
    assert all(i.status is Status.PENDING for i in second.instances)


def test_different_refs_run_side_by_side(exchange):
    gov = ConcurrencyGovernor(exchange)
    a = make_run(build_job(), push("refs/heads/main"))
    b = make_run(build_job(), push("refs/heads/dev"))
    gov.admit(a)
    assert gov.admit(b).cancelled_run_id is None
    assert gov.groups() == ["refs/heads/dev-CI", "refs/heads/main-CI"]


def test_finished_predecessor_is_replaced_not_cancelled(exchange):
    gov = ConcurrencyGovernor(exchange)
    first = make_run(build_job(), push())
    gov.admit(first)
    for inst in first.instances:
        inst.start()
        inst.settle(Status.SUCCEEDED)
    assert gov.admit(make_run(build_job(), push())).cancelled_run_id is None
    assert all(i.status is Status.SUCCEEDED for i in first.instances)


def test_release_only_detaches_the_active_run(exchange):
    gov = ConcurrencyGovernor(exchange)
    first = make_run(build_job(), push())
    second = make_run(build_job(), push())
    gov.admit(first)
    gov.admit(second)

    assert not gov.release(first)
    assert gov.active("refs/heads/main-CI") is second
    assert gov.release(second)
    assert gov.groups() == []


def test_cancel_by_id(exchange):
    gov = ConcurrencyGovernor(exchange)
    run = make_run(build_job(), push())
    gov.admit(run)
    assert gov.cancel(run.id) is run
    assert all(i.status is Status.CANCELLED for i in run.instances)
    assert gov.cancel("unknown") is None
