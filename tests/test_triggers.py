from matrixci.dsl import job, on, pull_request, push, sh, wf
from matrixci.model import Event, EventKind
from matrixci.presets import rust_workflow
from matrixci.triggers import PushTrigger, evaluate, normalise


def test_pr_touching_only_readme_starts_nothing():
    decision = evaluate(rust_workflow(), Event.create("pull_request", "refs/pull/7/merge", ["README.md"]))
    assert not decision.accepted
    assert decision.templates == []


def test_pr_touching_filtered_paths_is_accepted():
    for path in ["Cargo.lock", "lapce-core/src/lib.rs"]:
        decision = evaluate(rust_workflow(), Event.create("pull_request", "refs/pull/7/merge", [path]))
        assert decision.accepted, path
        assert [t.name for t in decision.templates] == ["build", "clippy", "release"]


def test_any_push_is_accepted_without_filters():
    for ref in ["refs/heads/main", "refs/heads/feature/x", "refs/tags/v1.0.0"]:
        assert evaluate(rust_workflow(), Event.create("push", ref)).accepted


def test_tag_event_is_normalised_to_push():
    ev = normalise(Event.create("tag", "v1.0.0", sha="abc"))
    assert ev.kind is EventKind.PUSH
    assert ev.ref == "refs/tags/v1.0.0"
    assert ev.sha == "abc"

    decision = evaluate(rust_workflow(), Event.create("tag", "refs/tags/v1.0.0"))
    assert decision.accepted
    assert decision.event.kind is EventKind.PUSH


def test_push_filters():
    branches = PushTrigger(branches=["main", "release/*"])
    assert branches.accepts(Event.create("push", "refs/heads/main"))
    assert branches.accepts(Event.create("push", "refs/heads/release/1.2"))
    assert not branches.accepts(Event.create("push", "refs/heads/dev"))
    assert not branches.accepts(Event.create("push", "refs/tags/v1"))

    tags = PushTrigger(tags=["v*"])
    assert tags.accepts(Event.create("push", "refs/tags/v1.0.0"))
    assert not tags.accepts(Event.create("push", "refs/heads/main"))


def test_workflow_without_pr_trigger_rejects_prs():
    w = wf("push-only", job("a", sh("s", "true")), on=on(push=push()))
    decision = evaluate(w, Event.create("pull_request", "refs/pull/1/merge", ["x"]))
    assert not decision.accepted
    assert "pull_request" in decision.reason


def test_pr_trigger_without_paths_accepts_everything():
    w = wf("any-pr", job("a", sh("s", "true")), on=on(pull_request=pull_request()))
    assert evaluate(w, Event.create("pull_request", "refs/pull/1/merge", ["README.md"])).accepted
