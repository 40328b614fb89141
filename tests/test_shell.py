import os
import sys
import threading

import pytest

from matrixci.errors import CancellationError
from matrixci.shell import ShellRunner

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell")


def test_exit_code_and_output(tmp_path):
    result = ShellRunner().run("echo out; echo err >&2; exit 4", cwd=tmp_path, env=os.environ)
    assert result.exit_code == 4
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"


def test_env_and_cwd(tmp_path):
    env = dict(os.environ, GREETING="hi")
    result = ShellRunner().run("echo $GREETING; pwd", cwd=tmp_path, env=env)
    assert result.stdout.splitlines() == ["hi", str(tmp_path.resolve())]


def test_cancel_terminates_the_command(tmp_path):
    cancel = threading.Event()
    threading.Timer(0.3, cancel.set).start()
    with pytest.raises(CancellationError):
        ShellRunner().run("sleep 30", cwd=tmp_path, env=os.environ, cancel=cancel)
