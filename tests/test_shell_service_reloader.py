"""Tests for restarting the sidebar services."""

from __future__ import annotations

import subprocess

from shell_service_reloader import (
    FINDER_SERVICE,
    SHARED_FILE_LIST_SERVICE,
    ShellServiceReloader,
)


class FakeRunner:
    """Records killall invocations and returns canned exit codes."""

    def __init__(self, returncodes=None, missing=False):
        self.returncodes = returncodes or {}
        self.missing = missing
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append(args[-1])
        if self.missing:
            raise FileNotFoundError(args[0])
        code = self.returncodes.get(args[-1], 0)
        return subprocess.CompletedProcess(args, code, stdout="", stderr="No matching processes")


class TestRestart:
    def test_success(self):
        runner = FakeRunner()
        assert ShellServiceReloader(runner=runner).restart("Dock") is True
        assert runner.calls == ["Dock"]

    def test_non_zero_exit(self):
        runner = FakeRunner({"Dock": 1})
        assert ShellServiceReloader(runner=runner).restart("Dock") is False

    def test_killall_missing(self):
        runner = FakeRunner(missing=True)
        assert ShellServiceReloader(runner=runner).restart("Dock") is False


class TestReload:
    def test_only_shared_file_list(self):
        runner = FakeRunner()
        assert ShellServiceReloader(runner=runner).reload() is True
        assert runner.calls == [SHARED_FILE_LIST_SERVICE]

    def test_forced_restarts_finder(self):
        runner = FakeRunner()
        assert ShellServiceReloader(runner=runner).reload(force=True) is True
        assert runner.calls == [SHARED_FILE_LIST_SERVICE, FINDER_SERVICE]

    def test_failure_falls_back_to_finder(self):
        runner = FakeRunner({SHARED_FILE_LIST_SERVICE: 1})
        assert ShellServiceReloader(runner=runner).reload() is False
        assert runner.calls == [SHARED_FILE_LIST_SERVICE, FINDER_SERVICE]

    def test_nothing_can_be_launched(self):
        runner = FakeRunner(missing=True)
        assert ShellServiceReloader(runner=runner).reload(force=True) is False
        assert runner.calls == [SHARED_FILE_LIST_SERVICE, FINDER_SERVICE]
