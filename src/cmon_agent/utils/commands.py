"""Thin wrapper around the host commands the agent depends on."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """A host command could not be run or exited non-zero."""

    def __init__(self, argv: Sequence[str], message: str, returncode: int | None = None) -> None:
        super().__init__(f"{' '.join(argv)}: {message}")
        self.argv = list(argv)
        self.returncode = returncode


class CommandNotFoundError(CommandError):
    """The command binary does not exist on this host."""


def run_command(argv: Sequence[str | Path], timeout: float) -> str:
    """Run a command and return its stdout.

    Args:
        argv: Command and arguments
        timeout: Seconds before the command is killed

    Returns:
        Decoded standard output

    Raises:
        CommandNotFoundError: If the executable is missing
        CommandError: On timeout or non-zero exit
    """
    args = [str(a) for a in argv]
    logger.debug(f"Running {' '.join(args)}")
    try:
        proc = subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise CommandNotFoundError(args, "command not found") from e
    except subprocess.TimeoutExpired as e:
        raise CommandError(args, f"timed out after {timeout}s") from e
    except OSError as e:
        raise CommandError(args, str(e)) from e

    if proc.returncode != 0:
        stderr = proc.stderr.strip() or "no output"
        raise CommandError(args, f"exited {proc.returncode}: {stderr}", proc.returncode)
    return proc.stdout
