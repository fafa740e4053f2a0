"""External command execution."""

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

# Flags whose following argument must not show up in logs
SECRET_FLAGS = {"-P", "--ssh-password"}


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def format_command(args: Sequence[str]) -> str:
    """Shell-quoted rendering of an argument vector with secrets masked."""
    shown = []
    hide_next = False
    for arg in args:
        shown.append("****" if hide_next else arg)
        hide_next = arg in SECRET_FLAGS
    return shlex.join(shown)


class ProcessRunner:
    """Runs argument vectors (never through a shell) and captures their output."""

    def run(
        self,
        args: Sequence[str],
        input: Optional[str] = None,
        timeout: Optional[float] = None,
        capture: bool = True,
    ) -> CommandResult:
        """Run a command to completion.

        Args:
            args: Program and arguments
            input: Text fed to the program's stdin
            timeout: Seconds before the program is killed
            capture: Capture stdout/stderr instead of inheriting them

        Returns:
            CommandResult; 127 when the program is missing, 124 on timeout
        """
        argv = [str(a) for a in args]
        logger.debug(f"Running: {format_command(argv)}")
        try:
            completed = subprocess.run(
                argv,
                input=input,
                capture_output=capture,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as e:
            logger.error(f"Command not found: {argv[0]}")
            return CommandResult(argv, 127, stderr=str(e))
        except subprocess.TimeoutExpired:
            logger.error(f"Timeout after {timeout}s running {argv[0]}")
            return CommandResult(argv, 124, stderr="timeout")

        result = CommandResult(argv, completed.returncode, completed.stdout or "", completed.stderr or "")
        if not result.ok:
            logger.debug(f"{argv[0]} exited with {result.returncode}: {result.stderr.strip()}")
        return result
