"""
FFmpeg/FFprobe command helpers.

Centralizes command and filter building so the cut, concat and stacked
renders share codec parameters and escaping rules.
"""

from dataclasses import dataclass
from typing import List, Optional

from .config import EncodingConfig


def _has_flag(args: List[str], flags: List[str]) -> bool:
    return any(flag in args for flag in flags)


def build_ffmpeg_cmd(
    args: List[str],
    *,
    overwrite: bool = True,
    hide_banner: bool = True,
    loglevel: Optional[str] = "error",
) -> List[str]:
    """
    Build a ffmpeg command list with optional standard flags.
    """
    cmd = ["ffmpeg"]
    if overwrite and not _has_flag(args, ["-y", "-n"]):
        cmd.append("-y")
    if hide_banner and "-hide_banner" not in args:
        cmd.append("-hide_banner")
    if loglevel and "-loglevel" not in args:
        cmd.extend(["-loglevel", loglevel])
    return cmd + args


def build_ffprobe_cmd(args: List[str], *, verbosity: Optional[str] = "error") -> List[str]:
    """
    Build a ffprobe command list with optional verbosity.
    """
    cmd = ["ffprobe"]
    if verbosity and "-v" not in args:
        cmd.extend(["-v", verbosity])
    return cmd + args


# =============================================================================
# Encoding Parameters
# =============================================================================

@dataclass
class VideoEncodingParams:
    """
    Encapsulates video/audio encoding parameters.

    Usage:
        params = VideoEncodingParams.from_config(settings.encoding)
        cmd.extend(params.to_args(keep_audio=True))
    """
    codec: str = "libx264"
    preset: str = "fast"
    crf: int = 22
    pix_fmt: str = "yuv420p"
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"

    @classmethod
    def from_config(cls, config: EncodingConfig) -> "VideoEncodingParams":
        return cls(
            codec=config.codec,
            preset=config.preset,
            crf=config.crf,
            pix_fmt=config.pix_fmt,
            audio_codec=config.audio_codec,
            audio_bitrate=config.audio_bitrate,
        )

    def to_args(self, *, keep_audio: bool = True) -> List[str]:
        """
        Convert parameters to FFmpeg command-line arguments.

        Args:
            keep_audio: Encode audio when True, drop it (-an) otherwise.
        """
        args = [
            "-c:v", self.codec,
            "-preset", self.preset,
            "-crf", str(self.crf),
            "-pix_fmt", self.pix_fmt,
        ]
        if keep_audio:
            args.extend(["-c:a", self.audio_codec, "-b:a", self.audio_bitrate])
        else:
            args.append("-an")
        return args


# =============================================================================
# Filter Helpers
# =============================================================================

def build_filter_chain(filters: List[str], separator: str = ",") -> str:
    """
    Join filter expressions into a single -vf chain, skipping empty entries.

    Usage:
        chain = build_filter_chain(["scale=1280:720", "", "drawtext=text='hi'"])
        # Returns: "scale=1280:720,drawtext=text='hi'"
    """
    valid_filters = [f for f in filters if f and f.strip()]
    return separator.join(valid_filters)


def scale_pad_filter(width: int, height: int) -> str:
    """Letterbox/pillarbox into an exact frame size."""
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
    )


def escape_drawtext(text: str) -> str:
    """Escape text for use inside a single-quoted drawtext value."""
    return (
        text.replace("\\", "\\\\")
        .replace("'", "’")
        .replace(":", "\\:")
        .replace("%", "\\%")
    )


def drawtext_filter(
    text: str,
    font_size: int = 24,
    color: str = "white",
    outline: bool = True,
    font: Optional[str] = None,
) -> str:
    """Centered caption; outline adds a 2px black border."""
    parts = [f"drawtext=text='{escape_drawtext(text)}'"]
    if font:
        parts.append(f"font='{escape_drawtext(font)}'")
    parts.append(f"fontsize={font_size}")
    parts.append(f"fontcolor={color}")
    if outline:
        parts.append("bordercolor=black:borderw=2")
    parts.append("x=(w-tw)/2:y=(h-th)/2")
    return ":".join(parts)
