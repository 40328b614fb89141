from matrixci.actions import builtin
from matrixci.cache import CacheStore
from matrixci.dsl import job, sh, uses
from matrixci.errors import CancellationError
from matrixci.executor import JobExecutor, step_env
from matrixci.model import Status
from matrixci.presets.rust import build_job
from matrixci.shell import CommandResult

from .support import FakeShell, make_run


def executor(workspace, exchange, console, shell=None, **kw):
    return JobExecutor(workspace, exchange, shell=shell or FakeShell(), console=console, **kw)


def test_step_guard_skips_other_os_upload(workspace, exchange, console):
    run = make_run(build_job())
    mac = run.instances[0]
    assert executor(workspace, exchange, console).run(mac, run) is Status.SUCCEEDED

    statuses = {r.name: r.status for r in mac.results}
    assert statuses["Upload release artifact for Windows"] is Status.SKIPPED
    assert statuses["Upload release artifact for macOS"] is Status.SUCCEEDED
    assert exchange.names(run.id) == ["binary-macos"]


def test_failing_step_aborts_the_rest(workspace, exchange, console):
    shell = FakeShell(fail={("windows-latest", "cargo fetch"): 101})
    run = make_run(build_job())
    win = run.instances[1]

    assert executor(workspace, exchange, console, shell).run(win, run) is Status.FAILED
    assert [r.status for r in win.results] == [Status.SUCCEEDED] * 3 + [Status.FAILED]
    assert win.results[-1].exit_code == 101
    assert "Fetch dependencies" in win.error
    assert not any(c.startswith("cargo build") for c in shell.commands("windows-latest"))
    assert exchange.names(run.id) == []


def test_cancellation_stops_at_next_step(workspace, exchange, console):
    class CancelOnSecond(FakeShell):
        def run(self, cmd, *, cwd, env, cancel=None):
            result = super().run(cmd, cwd=cwd, env=env, cancel=cancel)
            if cmd == "two":
                cancel.set()
            return result

    shell = CancelOnSecond()
    run = make_run(job("j", sh("one", "one"), sh("two", "two"), sh("three", "three")))
    [inst] = run.instances

    assert executor(workspace, exchange, console, shell).run(inst, run) is Status.CANCELLED
    assert [c for _, _, c in shell.calls] == ["one", "two"]
    assert inst.error is None


def test_interrupted_command_is_cancelled_not_failed(workspace, exchange, console):
    class Interrupted:
        def run(self, cmd, *, cwd, env, cancel=None):
            raise CancellationError(f"interrupted: {cmd}")

    run = make_run(job("j", sh("long", "sleep 600")))
    [inst] = run.instances
    assert executor(workspace, exchange, console, Interrupted()).run(inst, run) is Status.CANCELLED
    assert inst.results[0].status is Status.CANCELLED


def test_cancelled_before_start_never_runs(workspace, exchange, console):
    shell = FakeShell()
    run = make_run(job("j", sh("one", "one")))
    run.cancel()
    assert executor(workspace, exchange, console, shell).run(run.instances[0], run) is Status.CANCELLED
    assert shell.calls == []


def test_unknown_action_fails_the_instance(workspace, exchange, console):
    run = make_run(job("j", uses("someone/unknown@v1")))
    [inst] = run.instances
    assert executor(workspace, exchange, console).run(inst, run) is Status.FAILED
    assert "unknown action" in inst.error


def test_missing_cwd_fails_the_instance(workspace, exchange, console):
    run = make_run(job("j", sh("in sub", "true", cwd="does-not-exist")))
    [inst] = run.instances
    assert executor(workspace, exchange, console).run(inst, run) is Status.FAILED


def test_upload_with_no_files_can_be_an_error(workspace, exchange, console):
    run = make_run(
        job("j", uses("actions/upload-artifact@v4", with_={"name": "x", "path": "nope", "if-no-files-found": "error"}))
    )
    [inst] = run.instances
    assert executor(workspace, exchange, console).run(inst, run) is Status.FAILED


def test_step_env_carries_run_facts(workspace, exchange):
    run = make_run(build_job(), env={"CARGO_TERM_COLOR": "always"})
    inst = run.instances[1]
    env = step_env(run, inst, inst.steps[0])
    assert env["CARGO_TERM_COLOR"] == "always"
    assert env["MATRIX_OS"] == "windows-latest"
    assert env["RUNNER_LABEL"] == "windows-latest"
    assert env["GITHUB_REF"] == "refs/heads/main"
    assert env["GITHUB_SHA"] == "abc123"
    assert env["CI"] == "true"


def test_cache_is_saved_only_after_success(workspace, exchange, console, tmp_path):
    store = CacheStore(tmp_path / "cache")
    (workspace / "target").mkdir()
    cached = job("j", uses("Swatinem/rust-cache@v2"), sh("build", "cargo build"), matrix={"os": ["linux"]})

    failing = FakeShell(fail={("ubuntu-latest", "cargo build"): 1})
    run = make_run(cached)
    executor(workspace, exchange, console, failing, cache=store).run(run.instances[0], run)
    assert list((tmp_path / "cache").glob("*.tar.gz")) == []

    run = make_run(cached)
    assert executor(workspace, exchange, console, cache=store).run(run.instances[0], run) is Status.SUCCEEDED
    assert len(list((tmp_path / "cache").glob("*.tar.gz"))) == 1


def test_cancellation_between_post_hooks_stops_the_rest(workspace, exchange, console):
    registry = builtin.copy()
    ran = []

    @registry.register("acme/post")
    def post(ctx):
        def first():
            ran.append("first")
            ctx.instance.cancel()

        ctx.post.extend([first, lambda: ran.append("second")])

    run = make_run(job("j", uses("acme/post@v1")))
    [inst] = run.instances
    assert executor(workspace, exchange, console, registry=registry).run(inst, run) is Status.CANCELLED
    assert ran == ["first"]


def test_cache_is_not_saved_when_cancelled_after_the_last_step(workspace, exchange, console, tmp_path):
    store = CacheStore(tmp_path / "cache")
    (workspace / "target").mkdir()
    run = make_run(job("j", uses("Swatinem/rust-cache@v2"), sh("build", "cargo build"), matrix={"os": ["linux"]}))
    [inst] = run.instances

    class CancelOnBuild(FakeShell):
        def run(self, cmd, *, cwd, env, cancel=None):
            cancel.set()
            return super().run(cmd, cwd=cwd, env=env)

    assert executor(workspace, exchange, console, CancelOnBuild(), cache=store).run(inst, run) is Status.CANCELLED
    assert list((tmp_path / "cache").glob("*.tar.gz")) == []


def test_shell_result_output_is_recorded(workspace, exchange, console):
    class Echo:
        def run(self, cmd, *, cwd, env, cancel=None):
            return CommandResult(0, stdout="hello\n")

    run = make_run(job("j", sh("greet", "echo hello")))
    [inst] = run.instances
    executor(workspace, exchange, console, Echo()).run(inst, run)
    assert inst.results[0].output == "hello\n"
    assert inst.results[0].exit_code == 0


def test_custom_actions_extend_a_copy_of_the_builtins(workspace, exchange, console):
    registry = builtin.copy()

    @registry.register("acme/stamp")
    def stamp(ctx):
        ctx.instance.outputs["stamp"] = ctx.require("value")

    registry.add("acme/noop", lambda ctx: None)
    assert "acme/stamp" in registry and "actions/checkout" in registry
    assert "acme/stamp" not in builtin

    run = make_run(job("j", uses("acme/stamp@v1", with_={"value": "${{ github.sha }}"}), uses("acme/noop@v1")))
    [inst] = run.instances
    assert executor(workspace, exchange, console, registry=registry).run(inst, run) is Status.SUCCEEDED
    assert inst.outputs["stamp"] == "abc123"


def test_missing_required_input_fails(workspace, exchange, console):
    run = make_run(job("j", uses("actions/upload-artifact@v4", with_={"name": "x"})))
    [inst] = run.instances
    assert executor(workspace, exchange, console).run(inst, run) is Status.FAILED
    assert "InvalidInput" in inst.error
