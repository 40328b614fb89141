import threading

import pytest

from matrixci.artifacts import ArtifactExchange, DirectorySink
from matrixci.errors import CancellationError, DuplicateNameError, NotFoundError


def test_publish_then_fetch(exchange):
    exchange.publish("r1", "binary-macos", b"mach-o", "r1/build[os=macos-latest]", filename="copycat")
    [entry] = exchange.fetch("r1", "binary-macos")
    assert entry.payload == b"mach-o"
    assert entry.filename == "copycat"
    assert entry.producer == "r1/build[os=macos-latest]"


def test_names_are_write_once(exchange):
    exchange.publish("r1", "binary-windows", b"first", "a")
    with pytest.raises(DuplicateNameError):
        exchange.publish("r1", "binary-windows", b"second", "b")
    [entry] = exchange.fetch("r1", "binary-windows")
    assert entry.payload == b"first"


def test_runs_are_isolated(exchange):
    exchange.publish("r1", "bin", b"1", "a")
    exchange.publish("r2", "bin", b"2", "a")
    assert [e.payload for e in exchange.fetch("r2")] == [b"2"]


def test_fetch_by_pattern(exchange):
    for name in ["binary-macos", "binary-windows", "coverage"]:
        exchange.publish("r1", name, name.encode(), "p")
    assert [e.name for e in exchange.fetch("r1", "binary-*")] == ["binary-macos", "binary-windows"]
    assert exchange.fetch("r1", "nothing-*") == []


def test_required_fetch_raises_when_missing(exchange):
    with pytest.raises(NotFoundError):
        exchange.fetch("r1", "binary-macos", require=True)


def test_discard_seals_the_run(exchange):
    exchange.publish("r1", "bin", b"x", "p")
    exchange.discard("r1")
    assert exchange.fetch("r1") == []
    assert exchange.names("r1") == []
    with pytest.raises(CancellationError):
        exchange.publish("r1", "late", b"y", "p")


def test_concurrent_publishes_of_distinct_names(exchange):
    def publish(i):
        exchange.publish("r1", f"part-{i:02d}", bytes([i]), f"worker-{i}")

    threads = [threading.Thread(target=publish, args=(i,)) for i in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert exchange.names("r1") == [f"part-{i:02d}" for i in range(16)]


def test_directory_sink_persists(tmp_path):
    root = tmp_path / "artifacts"
    ArtifactExchange(DirectorySink(root)).publish("r1", "binary-windows", b"MZ", "p", filename="copycat.exe")
    assert (root / "r1" / "binary-windows" / "copycat.exe").read_bytes() == b"MZ"

    # a new exchange over the same directory sees the stored entry
    [entry] = ArtifactExchange(DirectorySink(root)).fetch("r1", "binary-*")
    assert (entry.name, entry.filename, entry.payload) == ("binary-windows", "copycat.exe", b"MZ")


def test_directory_sink_drop(tmp_path):
    root = tmp_path / "artifacts"
    ex = ArtifactExchange(DirectorySink(root))
    ex.publish("r1", "bin", b"x", "p")
    ex.discard("r1")
    assert not (root / "r1").exists()


def test_forget_drops_a_finished_run(tmp_path):
    root = tmp_path / "artifacts"
    ex = ArtifactExchange(DirectorySink(root))
    ex.publish("r1", "bin", b"x", "p")
    ex.discard("r2")
    ex.forget("r1")
    ex.forget("r2")
    assert ex.names("r1") == []
    assert not (root / "r1").exists()
    assert ex._sealed == set()
