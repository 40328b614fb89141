# cli.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from . import settings
from .artifacts import ArtifactExchange, DirectorySink
from .cache import CacheStore
from .git_facts import git
from .model import Event
from .release import DirectoryReleaseSink, release_outcome
from .runner import Pipeline
from .ui.console import Console, get_console, set_console
from .workflow import Workflow, load_workflow


def workflow_candidates(directory: Path = Path(".")) -> list[Path]:
    """The default workflow file plus any *_workflow.py next to it."""
    found = {p.resolve(): p for p in directory.glob("*_workflow.py")}
    default = directory / settings.WORKFLOW
    if default.exists():
        found[default.resolve()] = default
    return sorted(found.values())


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Resolve --workflow, or pick the only workflow file in the current directory.
    Exits with status 1 when there is none or more than one.
    """
    console = get_console()

    if workflow_arg:
        path = Path(workflow_arg)
        if not path.exists() and path.suffix != ".py":
            path = path.with_name(path.name + ".py")
        if path.exists():
            return path
        console.print_error(
            "Workflow file not found",
            f"No such file: {workflow_arg}",
            suggestion="Pass an existing file:\n  matrixci run --workflow ci_workflow.py",
        )
        sys.exit(1)

    candidates = workflow_candidates()
    if len(candidates) == 1:
        return candidates[0]

    if not candidates:
        console.print_error(
            "No workflow file found",
            f"Neither {settings.WORKFLOW} nor any *_workflow.py exists here.",
            suggestion=f"Create {settings.WORKFLOW}, for example:\n"
            "  from matrixci import rust_workflow\n"
            "  def workflow():\n"
            "      return rust_workflow()",
        )
    else:
        console.print_error(
            "Multiple workflow files found",
            "Choose one with --workflow:",
            details=[str(p) for p in candidates],
        )
    sys.exit(1)


def build_event(kind: str, ref: Optional[str], changed: tuple, compare_ref: str, sha: Optional[str]) -> Event:
    """Fill in whatever the user didn't pass from the local git checkout."""
    console = get_console()
    if not ref:
        try:
            ref = git.current_ref()
            console.print_debug(f"Using git ref: {ref}")
        except (git.GitError, FileNotFoundError):
            console.print_error(
                "Could not determine git ref",
                "No --ref given and the current directory is not a git checkout.",
                suggestion="Pass the ref explicitly:\n  matrixci run --ref refs/heads/main",
            )
            sys.exit(1)

    paths = list(changed)
    if kind == "pull_request" and not paths:
        try:
            paths = git.changed_files(git.merge_base(compare_ref))
            console.print_debug(f"{len(paths)} changed path(s) against {compare_ref}")
        except (git.GitError, FileNotFoundError) as e:
            console.print_debug(f"could not diff against {compare_ref}: {e}")

    if not sha:
        try:
            sha = git.head_sha()
        except (git.GitError, FileNotFoundError):
            sha = ""

    return Event.create(kind, ref, paths, sha=sha)


def build_pipeline(
    wf: Workflow,
    *,
    workspace: str,
    workers: Optional[int],
    cache_dir: Optional[str],
    artifact_dir: str,
    release_dir: str,
    github_release: bool,
    repo_url: Optional[str] = None,
) -> Pipeline:
    if github_release:
        from .github import GitHubReleaseClient

        if not settings.GITHUB_TOKEN or not settings.GITHUB_REPOSITORY:
            get_console().print_error(
                "GitHub release not configured",
                "GITHUB_TOKEN and GITHUB_REPOSITORY must be set for --github-release.",
            )
            sys.exit(1)
        sink = GitHubReleaseClient(settings.GITHUB_REPOSITORY, settings.GITHUB_TOKEN, settings.GITHUB_API_URL)
    else:
        sink = DirectoryReleaseSink(release_dir)

    return Pipeline(
        wf,
        workspace=workspace,
        exchange=ArtifactExchange(DirectorySink(artifact_dir)),
        cache=CacheStore(cache_dir) if cache_dir else None,
        release_sink=sink,
        max_workers=workers,
        repo_url=repo_url,
        keep_runs=settings.KEEP_RUNS,
    )


def event_options(fn):
    fn = click.option("--sha", default=None, help="Commit SHA (defaults to HEAD)")(fn)
    fn = click.option("--compare-ref", default="origin/main", show_default=True, help="Base for pull request diffs")(fn)
    fn = click.option("--changed", multiple=True, help="Changed path (repeatable; defaults to git diff for pull requests)")(fn)
    fn = click.option("--ref", default=None, help="Git ref, e.g. refs/heads/main or refs/tags/v1.0.0")(fn)
    fn = click.option(
        "--event",
        "kind",
        type=click.Choice(["push", "pull_request", "tag"]),
        default="push",
        show_default=True,
        help="Event kind to simulate",
    )(fn)
    fn = click.option("--workflow", default=None, help=f"Workflow file path (defaults to {settings.WORKFLOW})")(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: matrix CI runs with cancellation groups and a tag-gated release."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@event_options
@click.option("--workspace", default=".", show_default=True, help="Directory the steps run in")
@click.option("--workers", default=settings.WORKERS, type=int, help="Number of parallel job workers")
@click.option("--cache-dir", default=settings.CACHE_DIR, show_default=True, help="Dependency cache directory")
@click.option("--no-cache", is_flag=True, default=False, help="Disable the dependency cache")
@click.option("--artifact-dir", default=settings.ARTIFACT_DIR, show_default=True, help="Artifact storage directory")
@click.option("--release-dir", default=settings.RELEASE_DIR, show_default=True, help="Where local releases are written")
@click.option("--github-release", is_flag=True, default=False, help="Publish releases to GitHub instead of --release-dir")
@click.option("--repo-url", default=None, help="Clone from here when the workspace is not a checkout")
@click.pass_context
def run(ctx, workflow, kind, ref, changed, compare_ref, sha, workspace, workers, cache_dir, no_cache,
        artifact_dir, release_dir, github_release, repo_url):
    """Run the workflow for one event."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        wf = load_workflow(workflow_path)
        event = build_event(kind, ref, changed, compare_ref, sha)
        pipeline = build_pipeline(
            wf,
            workspace=workspace,
            workers=workers,
            cache_dir=None if no_cache else cache_dir,
            artifact_dir=artifact_dir,
            release_dir=release_dir,
            github_release=github_release,
            repo_url=repo_url,
        )

        result = pipeline.trigger(event, commit=event.sha or None)
        if result is None:
            return

        outcome = release_outcome(result)
        console.print_results(result.summary(), release=outcome.state.value if outcome else None)

        if any(v == "failed" for v in result.summary().values()):
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@event_options
def plan(workflow, kind, ref, changed, compare_ref, sha):
    """Show whether an event starts a run and the job instances it would create."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        wf = load_workflow(workflow_path)
        event = build_event(kind, ref, changed, compare_ref, sha)
        decision, run_ = Pipeline(wf, console=console).plan(event)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if run_ is None:
        console.print_trigger_rejected(event.kind.value, event.ref, decision.reason)
        return

    console.print_info(f"Accepted: {decision.reason}")
    console.print_info(f"Stages: {wf.stages()}")
    console.print_plan([(i.template.name, i.name, i.runs_on, len(i.steps)) for i in run_.instances])


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {settings.WORKFLOW})")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, type=int, show_default=True)
@click.option("--workspace", default=".", show_default=True, help="Directory the steps run in")
@click.option("--workers", default=settings.WORKERS, type=int, help="Number of parallel job workers")
@click.option("--no-cache", is_flag=True, default=False, help="Disable the dependency cache")
@click.option("--github-release", is_flag=True, default=False, help="Publish releases to GitHub")
@click.option("--repo-url", default=None, help="Clone from here (defaults to the origin remote)")
def serve(workflow, host, port, workspace, workers, no_cache, github_release, repo_url):
    """Serve the webhook API (POST /events, GET /runs/{id})."""
    import uvicorn

    from .server import create_app

    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        wf = load_workflow(workflow_path)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if repo_url is None:
        try:
            repo_url = git.get_remote_url()
        except (git.GitError, FileNotFoundError):
            console.print_debug("no origin remote; checkout will use the workspace as-is")

    pipeline = build_pipeline(
        wf,
        workspace=workspace,
        workers=workers,
        cache_dir=None if no_cache else settings.CACHE_DIR,
        artifact_dir=settings.ARTIFACT_DIR,
        release_dir=settings.RELEASE_DIR,
        github_release=github_release,
        repo_url=repo_url,
    )
    uvicorn.run(create_app(pipeline), host=host, port=port)


if __name__ == "__main__":
    cli()
