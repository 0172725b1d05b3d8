import sys

import pytest

from serverdeployer.errors import DeployerError, PreconditionError
from serverdeployer.services.command_runner import CommandRunner


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


def test_command_runner_raises_with_stderr():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(DeployerError, match="boom"):
        runner.run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(1)"],
            check=True,
            capture_output=True,
        )


def test_command_runner_returns_when_check_disabled():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run(
        [sys.executable, "-c", "import sys; sys.exit(1)"],
        check=False,
        capture_output=True,
    )

    assert result.returncode == 1


def test_command_runner_pipes_input_text():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run(
        [sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"],
        capture_output=True,
        input_text="kind: Pod",
    )

    assert result.stdout.strip() == "KIND: POD"


def test_command_runner_missing_binary_is_a_precondition_error():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(PreconditionError, match="not-a-real-kubectl"):
        runner.run(["not-a-real-kubectl", "version"], capture_output=True)


def test_command_runner_timeout_raises_error():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(DeployerError, match="timed out"):
        runner.run(
            [sys.executable, "-c", "import time; time.sleep(2)"],
            check=True,
            capture_output=True,
            timeout=0.1,
        )
