# conftest.py
from __future__ import annotations

import io

import pytest

from matrixci.artifacts import ArtifactExchange
from matrixci.presets import rust_workflow
from matrixci.release import DirectoryReleaseSink
from matrixci.runner import Pipeline
from matrixci.ui.console import Console, set_console

from .support import FakeShell


@pytest.fixture(autouse=True)
def console():
    c = Console(stream=io.StringIO())
    set_console(c)
    return c


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    (ws / "Cargo.toml").write_text('[package]\nname = "copycat"\n')
    (ws / "Cargo.lock").write_text("# lock\n")
    return ws


@pytest.fixture
def release_root(tmp_path):
    return tmp_path / "releases"


@pytest.fixture
def make_pipeline(workspace, release_root, console):
    def make(workflow=None, shell=None, **kw):
        kw.setdefault("release_sink", DirectoryReleaseSink(release_root))
        kw.setdefault("max_workers", 4)
        return Pipeline(
            workflow or rust_workflow(),
            workspace=workspace,
            shell=shell or FakeShell(),
            console=console,
            **kw,
        )

    return make


@pytest.fixture
def exchange():
    return ArtifactExchange()
