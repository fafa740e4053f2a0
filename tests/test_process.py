"""Tests for process module."""

import subprocess
from unittest import mock

from testnode.process import CommandResult, ProcessRunner, format_command


class TestProcessRunner:
    def test_run_success(self):
        with mock.patch("subprocess.run") as mock_run:
            mock_run.return_value = mock.MagicMock(returncode=0, stdout="ok\n", stderr="")

            result = ProcessRunner().run(["knife", "node", "list"], timeout=30)

        assert result.ok
        assert result.stdout == "ok\n"
        mock_run.assert_called_once_with(
            ["knife", "node", "list"],
            input=None,
            capture_output=True,
            text=True,
            timeout=30,
            check=False,
        )

    def test_run_never_uses_shell(self):
        with mock.patch("subprocess.run") as mock_run:
            mock_run.return_value = mock.MagicMock(returncode=0, stdout="", stderr="")

            ProcessRunner().run(["knife", "bootstrap", "10.0.0.1"])

        assert "shell" not in mock_run.call_args.kwargs

    def test_run_failure(self):
        with mock.patch("subprocess.run") as mock_run:
            mock_run.return_value = mock.MagicMock(returncode=100, stdout="", stderr="ERROR: node not found")

            result = ProcessRunner().run(["knife", "node", "delete", "x", "-y"])

        assert not result.ok
        assert result.returncode == 100
        assert "node not found" in result.stderr

    def test_missing_program(self):
        with mock.patch("subprocess.run", side_effect=FileNotFoundError("knife")):
            result = ProcessRunner().run(["knife", "node", "list"])

        assert result.returncode == 127
        assert not result.ok

    def test_timeout(self):
        with mock.patch("subprocess.run", side_effect=subprocess.TimeoutExpired("nmap", 5)):
            result = ProcessRunner().run(["nmap", "-sn", "10.0.0.0/24"], timeout=5)

        assert result.returncode == 124

    def test_uncaptured_output(self):
        with mock.patch("subprocess.run") as mock_run:
            mock_run.return_value = mock.MagicMock(returncode=0, stdout=None, stderr=None)

            result = ProcessRunner().run(["knife", "bootstrap"], capture=False)

        assert result.stdout == ""
        assert mock_run.call_args.kwargs["capture_output"] is False

    def test_arguments_are_stringified(self):
        with mock.patch("subprocess.run") as mock_run:
            mock_run.return_value = mock.MagicMock(returncode=0, stdout="", stderr="")

            ProcessRunner().run(["nmap", "-p", 22])

        assert mock_run.call_args.args[0] == ["nmap", "-p", "22"]


class TestFormatCommand:
    def test_quotes_arguments(self):
        assert format_command(["knife", "bootstrap", "-r", "recipe[x]"]) == "knife bootstrap -r 'recipe[x]'"

    def test_masks_password(self):
        rendered = format_command(["knife", "bootstrap", "10.0.0.1", "-P", "s3cret", "-N", "web_1"])

        assert "s3cret" not in rendered
        assert rendered.endswith("-N web_1")

    def test_command_result_ok(self):
        assert CommandResult(["true"], 0).ok
        assert not CommandResult(["false"], 1).ok
