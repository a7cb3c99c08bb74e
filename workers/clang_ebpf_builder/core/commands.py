"""
Command execution - thin wrappers around subprocess.run.

Two flavours:
  - run_discovery: host introspection (uname, clang, gcc); returns
    stripped stdout, raises DiscoveryCommandUnavailable if the command
    cannot be executed.
  - run_tool: toolchain stages (clang, llc); returns both streams and
    the exit code untouched, raises ToolInvocationError if the binary
    cannot be executed.

Output is decoded lossily (invalid UTF-8 → U+FFFD).
"""
import logging
import subprocess
import time
from dataclasses import dataclass
from typing import List, Optional

from clang_ebpf_builder.errors import DiscoveryCommandUnavailable, ToolInvocationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120


@dataclass(frozen=True)
class ToolRun:
    """Captured result of one toolchain invocation."""

    command: List[str]
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int


def _run(cmd: List[str], timeout: Optional[int], cwd: Optional[str] = None) -> subprocess.CompletedProcess:
    return subprocess.run(
        cmd,
        cwd=cwd,
        capture_output=True,
        text=True,
        errors="replace",
        timeout=timeout,
    )


def run_discovery(cmd: List[str], timeout: Optional[int] = DEFAULT_TIMEOUT) -> str:
    """Run a discovery command and return its trimmed stdout."""
    logger.debug("discovery: %s", " ".join(cmd))
    try:
        result = _run(cmd, timeout)
    except subprocess.TimeoutExpired:
        raise DiscoveryCommandUnavailable(cmd, f"timed out after {timeout}s")
    except OSError as e:
        raise DiscoveryCommandUnavailable(cmd, str(e)) from e
    return result.stdout.strip()


def run_tool(
    cmd: List[str],
    timeout: Optional[int] = DEFAULT_TIMEOUT,
    cwd: Optional[str] = None,
) -> ToolRun:
    """Run a toolchain stage and capture stdout, stderr and exit code."""
    logger.debug("tool: %s", " ".join(cmd))
    t0 = time.monotonic()
    try:
        result = _run(cmd, timeout, cwd)
    except subprocess.TimeoutExpired:
        raise ToolInvocationError(cmd, f"timed out after {timeout}s")
    except OSError as e:
        raise ToolInvocationError(cmd, str(e)) from e
    duration = int((time.monotonic() - t0) * 1000)

    return ToolRun(
        command=list(cmd),
        stdout=result.stdout,
        stderr=result.stderr,
        exit_code=result.returncode,
        duration_ms=duration,
    )
