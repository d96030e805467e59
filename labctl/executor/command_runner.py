"""
Command Runner
==============
Runs one external build tool as a subprocess and returns a StepResult.

BOUNDARY RULES:
    - The runner ONLY observes execution.
    - It never interprets output; diagnosis is the pattern matcher's job.
    - It never raises for a failing tool: non-zero exits and spawn errors
      are both returned as failed StepResults.
    - Cancellation is the one exception: the child is killed and
      asyncio.CancelledError propagates to the pipeline.

Exit codes:
    0   success
    >0  the tool's own exit status
    -1  the tool never ran (missing binary, bad working directory)
"""
import asyncio
import logging
import os
import shlex
from typing import Mapping, Optional, Sequence

from labctl.models.step_result import ErrorKind, Phase, StepResult, utc_now

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Output Excerpt Helper
# ---------------------------------------------------------------------------
_EXCERPT_HEAD_LINES = 20
_EXCERPT_TAIL_LINES = 30


def create_output_excerpt(output: str,
                          head: int = _EXCERPT_HEAD_LINES,
                          tail: int = _EXCERPT_TAIL_LINES) -> str:
    """
    Abbreviate long tool output to its first and last lines.

    Parameters
    ----------
    output : str
        Captured stdout or stderr.
    head : int
        Lines kept from the start.
    tail : int
        Lines kept from the end; compiler errors usually end up here.

    Returns
    -------
    str
        ``output`` unchanged when it is short enough.
    """
    lines = output.splitlines()
    total = len(lines)

    if total <= head + tail:
        return output

    omitted = total - head - tail
    return "\n".join(lines[:head] + [f"... ({omitted} lines omitted) ..."] + lines[-tail:])


# ---------------------------------------------------------------------------
# Subprocess execution
# ---------------------------------------------------------------------------
def _decode(data: Optional[bytes]) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


async def run_command_with_result(
    args: Sequence[str],
    *,
    phase: Phase,
    service: str,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    verbose: bool = False,
) -> StepResult:
    """
    Execute ``args`` and capture its outcome.

    Parameters
    ----------
    args : Sequence[str]
        Program and arguments; no shell is involved.
    phase, service : Phase, str
        Copied into the returned StepResult.
    cwd : str | None
        Working directory for the child process.
    env : Mapping[str, str] | None
        Extra variables layered over the current environment.
    verbose : bool
        Log captured output at INFO instead of DEBUG.

    Returns
    -------
    StepResult
        Always returned for completed or unstartable commands.
    """
    command = shlex.join(args)
    start_time = utc_now()
    child_env = {**os.environ, **env} if env else None

    logger.debug("Running %s (cwd=%s)", command, cwd or os.getcwd())

    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            env=child_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.error("Could not start %s: %s", command, e)
        return StepResult(
            phase=phase,
            service=service,
            success=False,
            error_message=f"failed to start {args[0]}: {e}",
            error_kind=ErrorKind.TOOL_FAILURE,
            underlying_error=e,
            command=command,
            work_dir=cwd or "",
            exit_code=-1,
            start_time=start_time,
            end_time=utc_now(),
            stderr=str(e),
        )

    try:
        stdout_bytes, stderr_bytes = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        logger.warning("Cancelled %s (pid=%s)", command, process.pid)
        raise

    stdout = _decode(stdout_bytes)
    stderr = _decode(stderr_bytes)
    exit_code = process.returncode
    log = logger.info if verbose else logger.debug
    if stdout:
        log("[%s] stdout:\n%s", service, create_output_excerpt(stdout))
    if stderr:
        log("[%s] stderr:\n%s", service, create_output_excerpt(stderr))

    success = exit_code == 0
    return StepResult(
        phase=phase,
        service=service,
        success=success,
        error_message="" if success else f"{command} exited with code {exit_code}",
        error_kind=ErrorKind.NONE if success else ErrorKind.TOOL_FAILURE,
        command=command,
        work_dir=cwd or "",
        exit_code=exit_code,
        start_time=start_time,
        end_time=utc_now(),
        stdout=stdout,
        stderr=stderr,
    )
