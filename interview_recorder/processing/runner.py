"""Bounded-timeout execution of external tools."""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from ..errors import ExternalProcessError


LOGGER = logging.getLogger(__name__)

_DETAIL_LIMIT = 500


@dataclass(frozen=True)
class CommandResult:
    args: Sequence[str]
    returncode: int
    stdout: bytes
    stderr: bytes
    duration: float


class CommandRunner(Protocol):
    def run(
        self,
        args: Sequence[str],
        *,
        stage: str,
        timeout: float,
        input_bytes: Optional[bytes] = None,
        deadline: Optional[float] = None,
    ) -> CommandResult:
        """Run *args* and return its output, raising :class:`ExternalProcessError` on failure."""


def remaining_timeout(timeout: float, deadline: Optional[float], *, stage: str) -> float:
    """Return the time budget for a stage given its own timeout and an overall deadline.

    *deadline* is a :func:`time.monotonic` timestamp.
    """

    if deadline is None:
        return timeout
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise ExternalProcessError(f"{stage} skipped: analysis deadline exceeded", stage=stage)
    return min(timeout, remaining)


def _first_line(payload: bytes) -> str:
    text = payload.decode("utf-8", errors="replace").strip()
    lines = text.splitlines()
    return lines[0][:_DETAIL_LIMIT] if lines else ""


class SubprocessRunner:
    """Run commands as argument vectors; never through a shell."""

    def run(
        self,
        args: Sequence[str],
        *,
        stage: str,
        timeout: float,
        input_bytes: Optional[bytes] = None,
        deadline: Optional[float] = None,
    ) -> CommandResult:
        command = [str(part) for part in args]
        if not command:
            raise ExternalProcessError("empty command", stage=stage)
        budget = remaining_timeout(timeout, deadline, stage=stage)
        LOGGER.debug("Executing %s command: %s (timeout=%.1fs)", stage, command, budget)
        start = time.monotonic()
        try:
            completed = subprocess.run(
                command,
                input=input_bytes,
                stdin=None if input_bytes is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=budget,
                check=False,
            )
        except subprocess.TimeoutExpired as error:
            raise ExternalProcessError(
                f"{stage} timed out after {budget:.1f}s", stage=stage
            ) from error
        except OSError as error:
            raise ExternalProcessError(
                f"{stage} could not start '{command[0]}': {error}", stage=stage
            ) from error

        duration = time.monotonic() - start
        if completed.returncode != 0:
            detail = _first_line(completed.stderr) or _first_line(completed.stdout)
            LOGGER.debug(
                "%s failed (code=%s). stderr=%s",
                stage,
                completed.returncode,
                completed.stderr.decode("utf-8", errors="replace")[:_DETAIL_LIMIT],
            )
            raise ExternalProcessError(
                f"{stage} exited with status {completed.returncode}"
                + (f": {detail}" if detail else ""),
                stage=stage,
                returncode=completed.returncode,
            )

        LOGGER.debug("%s finished in %.2fs", stage, duration)
        return CommandResult(
            args=tuple(command),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration=duration,
        )


__all__ = ["CommandResult", "CommandRunner", "SubprocessRunner", "remaining_timeout"]
