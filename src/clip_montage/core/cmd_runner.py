"""Subprocess runner for ffmpeg, ffprobe, yt-dlp and curl."""

import shlex
import subprocess
import time
from typing import Optional, Sequence

from ..exceptions import CommandError
from ..logger import logger

# ffmpeg prints the useful part of a failure at the end of stderr
STDERR_TAIL = 2000


def run_command(
    cmd: Sequence[object],
    timeout: Optional[int] = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """
    Run ``cmd`` with text output captured.

    Args:
        cmd: Program and arguments; non-string items are converted with str().
        timeout: Seconds before the process is killed. ``subprocess.TimeoutExpired``
            propagates so callers can map it to their own error type.
        check: Raise CommandError on a non-zero exit code.

    Raises:
        CommandError: non-zero exit with ``check`` set (stderr tail attached)
        OSError: the program could not be started
    """
    args = [str(part) for part in cmd]
    logger.debug(f"$ {shlex.join(args)}")

    started = time.monotonic()
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=timeout, check=False)
    except subprocess.TimeoutExpired:
        logger.error(f"{args[0]} timed out after {timeout}s")
        raise
    except OSError as exc:
        logger.error(f"Cannot run {args[0]}: {exc}")
        raise

    logger.debug(f"{args[0]} exited {result.returncode} in {time.monotonic() - started:.1f}s")
    if check and result.returncode != 0:
        raise CommandError(args, result.returncode, result.stdout, (result.stderr or "")[-STDERR_TAIL:])
    return result
