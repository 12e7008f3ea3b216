"""
External media collaborators: ffprobe duration, ffmpeg clip cut, concat and
filter-graph renders.

Each call runs one external process with a timeout from TimeoutConfig and
translates process failures into the domain error for that operation:

    probe_duration      -> DurationUnavailableError
    cut_clip            -> ExtractionError   (per-candidate, never job-fatal)
    concatenate         -> AssemblyError
    render_filter_graph -> AssemblyError

MediaToolkit bundles them with the configured encoding parameters so the
pipeline can take one injectable object.
"""

import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .config import EncodingConfig
from .config_timeouts import TimeoutConfig
from .core.cmd_runner import run_command
from .core.ffmpeg_atomics import atomic_output, concat_list
from .exceptions import (
    AssemblyError,
    CommandError,
    DurationUnavailableError,
    ExtractionError,
)
from .ffmpeg_utils import (
    VideoEncodingParams,
    build_ffmpeg_cmd,
    build_ffprobe_cmd,
    build_filter_chain,
)
from .logger import logger

PathLike = Union[str, Path]


def _short_error(exc: Exception) -> str:
    if isinstance(exc, CommandError):
        lines = (exc.stderr or "").strip().splitlines()
        return lines[-1] if lines else f"exit code {exc.returncode}"
    if isinstance(exc, subprocess.TimeoutExpired):
        return f"timed out after {exc.timeout}s"
    return str(exc)


# =============================================================================
# Probe
# =============================================================================

def probe_duration(path_or_url: PathLike, timeout: Optional[int] = None) -> float:
    """
    Duration of a local file or remote URL in seconds.

    Raises:
        DurationUnavailableError: ffprobe failed or reported no positive duration
    """
    cmd = build_ffprobe_cmd([
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(path_or_url),
    ])
    try:
        result = run_command(cmd, timeout=timeout or TimeoutConfig.probe())
    except (CommandError, subprocess.TimeoutExpired, OSError) as exc:
        raise DurationUnavailableError(
            f"ffprobe failed for {path_or_url}: {_short_error(exc)}"
        ) from exc

    raw = (result.stdout or "").strip().splitlines()
    try:
        duration = float(raw[0]) if raw else 0.0
    except ValueError as exc:
        raise DurationUnavailableError(f"Unparseable duration {raw[0]!r} for {path_or_url}") from exc

    if duration <= 0:
        raise DurationUnavailableError(f"Non-positive duration {duration} for {path_or_url}")
    return duration


# =============================================================================
# Clip Cut
# =============================================================================

def cut_clip(
    source_path: PathLike,
    start_seconds: float,
    duration_seconds: float,
    dest_path: PathLike,
    *,
    keep_audio: bool = True,
    encoding: Optional[VideoEncodingParams] = None,
    timeout: Optional[int] = None,
) -> None:
    """
    Re-encode [start, start + duration) of ``source_path`` into ``dest_path``.

    Raises:
        ExtractionError: ffmpeg failed, timed out or produced no file
    """
    params = encoding or VideoEncodingParams()
    try:
        with atomic_output(dest_path) as temp_path:
            cmd = build_ffmpeg_cmd([
                "-ss", f"{start_seconds:.3f}",
                "-i", str(source_path),
                "-t", f"{duration_seconds:.3f}",
                *params.to_args(keep_audio=keep_audio),
                "-movflags", "+faststart",
                temp_path,
            ])
            run_command(cmd, timeout=timeout or TimeoutConfig.cut())
    except (CommandError, subprocess.TimeoutExpired, OSError) as exc:
        raise ExtractionError(
            f"Clip at {start_seconds:.2f}s from {Path(source_path).name} failed: {_short_error(exc)}"
        ) from exc


# =============================================================================
# Assembly
# =============================================================================

def concatenate(
    clip_paths: Sequence[PathLike],
    dest_path: PathLike,
    *,
    video_filters: Optional[List[str]] = None,
    keep_audio: bool = True,
    encoding: Optional[VideoEncodingParams] = None,
    work_dir: Optional[PathLike] = None,
    timeout: Optional[int] = None,
) -> None:
    """
    Concatenate clips in order with the concat demuxer, re-encoding through
    an optional -vf chain.

    Raises:
        AssemblyError: no clips, or ffmpeg failed / timed out
    """
    if not clip_paths:
        raise AssemblyError("No valid clips found for concatenation")

    params = encoding or VideoEncodingParams()
    dest = Path(dest_path)
    list_dir = Path(work_dir) if work_dir else dest.parent
    chain = build_filter_chain(video_filters or [])

    try:
        with concat_list(list_dir, dest.stem, clip_paths) as list_path:
            with atomic_output(dest) as temp_path:
                args = ["-f", "concat", "-safe", "0", "-i", list_path]
                if chain:
                    args.extend(["-vf", chain])
                args.extend(params.to_args(keep_audio=keep_audio))
                args.append(temp_path)
                run_command(build_ffmpeg_cmd(args), timeout=timeout or TimeoutConfig.concat())
    except (CommandError, subprocess.TimeoutExpired, OSError) as exc:
        raise AssemblyError(f"Failed to concatenate {len(clip_paths)} clips: {_short_error(exc)}") from exc


def render_filter_graph(
    input_paths: Sequence[PathLike],
    filter_graph: str,
    output_label: str,
    dest_path: PathLike,
    *,
    duration_seconds: Optional[float] = None,
    encoding: Optional[VideoEncodingParams] = None,
    timeout: Optional[int] = None,
) -> None:
    """
    Render a -filter_complex graph over several inputs to one video-only file.

    Raises:
        AssemblyError: no inputs, or ffmpeg failed / timed out
    """
    if not input_paths:
        raise AssemblyError("No clips found for filter graph render")

    params = encoding or VideoEncodingParams()
    args: List[str] = []
    for path in input_paths:
        args.extend(["-i", str(path)])
    args.extend(["-filter_complex", filter_graph, "-map", f"[{output_label}]"])
    args.extend(params.to_args(keep_audio=False))
    if duration_seconds:
        args.extend(["-t", f"{duration_seconds:.3f}"])

    try:
        with atomic_output(dest_path) as temp_path:
            run_command(build_ffmpeg_cmd(args + [temp_path]), timeout=timeout or TimeoutConfig.concat())
    except (CommandError, subprocess.TimeoutExpired, OSError) as exc:
        raise AssemblyError(f"Failed to render filter graph: {_short_error(exc)}") from exc


# =============================================================================
# Toolkit
# =============================================================================

class MediaToolkit:
    """
    The media collaborators bound to one encoding configuration.

    Tests substitute a fake object with the same four methods.
    """

    def __init__(self, encoding: Optional[EncodingConfig] = None):
        self.encoding = VideoEncodingParams.from_config(encoding) if encoding else VideoEncodingParams()

    def probe_duration(self, path_or_url: PathLike) -> float:
        return probe_duration(path_or_url)

    def cut_clip(
        self,
        source_path: PathLike,
        start_seconds: float,
        duration_seconds: float,
        dest_path: PathLike,
        keep_audio: bool = True,
    ) -> None:
        cut_clip(
            source_path, start_seconds, duration_seconds, dest_path,
            keep_audio=keep_audio, encoding=self.encoding,
        )

    def concatenate(
        self,
        clip_paths: Sequence[PathLike],
        dest_path: PathLike,
        video_filters: Optional[List[str]] = None,
        keep_audio: bool = True,
        work_dir: Optional[PathLike] = None,
    ) -> None:
        logger.debug(f"Concatenating {len(clip_paths)} clips into {dest_path}")
        concatenate(
            clip_paths, dest_path,
            video_filters=video_filters, keep_audio=keep_audio,
            encoding=self.encoding, work_dir=work_dir,
        )

    def render_filter_graph(
        self,
        input_paths: Sequence[PathLike],
        filter_graph: str,
        output_label: str,
        dest_path: PathLike,
        duration_seconds: Optional[float] = None,
    ) -> None:
        render_filter_graph(
            input_paths, filter_graph, output_label, dest_path,
            duration_seconds=duration_seconds, encoding=self.encoding,
        )
