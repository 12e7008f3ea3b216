"""
Montage Assembler

Builds one output file per variation from the accepted clips.

cut:      concatenate in the given order, letterboxed to the target
          resolution, optional centered caption.
stacked:  every clip is overlaid on a black canvas; clip k appears k
          intervals in, scaled by shrink_factor**k and placed at a random
          (rng-reproducible) position, later clips on top.
"""

import random
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .exceptions import AssemblyError
from .ffmpeg_utils import drawtext_filter, scale_pad_filter
from .file_ops import file_size
from .logger import logger, log_success
from .models import Layout, MaterializedClip, Resolution, TextOverlay


def overlay_filter(text_overlay: Optional[TextOverlay]) -> Optional[str]:
    if text_overlay is None or not text_overlay.enabled:
        return None
    return drawtext_filter(
        text_overlay.text,
        font_size=text_overlay.font_size,
        color=text_overlay.color,
        outline=text_overlay.outline,
        font=text_overlay.font,
    )


def cut_filters(resolution: Resolution, text_overlay: Optional[TextOverlay] = None) -> List[str]:
    filters: List[str] = []
    dimensions = resolution.dimensions
    if dimensions:
        filters.append(scale_pad_filter(*dimensions))
    caption = overlay_filter(text_overlay)
    if caption:
        filters.append(caption)
    return filters


def _even(value: float) -> int:
    return max(2, int(value) // 2 * 2)


def stacked_filter_graph(
    clip_count: int,
    canvas: Tuple[int, int],
    total_duration: float,
    stagger_seconds: float,
    shrink_factor: float,
    rng: random.Random,
    text_overlay: Optional[TextOverlay] = None,
) -> Tuple[str, str]:
    """
    Build the -filter_complex graph for the stacked layout.

    Layer ``n`` appears at ``n * stagger_seconds``. Callers pass the clip
    interval, so each clip shows up once the previous one has played in full;
    with a 1s interval this is the one-second-per-layer stagger. Layer ``n`` is
    scaled by ``shrink_factor ** n`` and placed at a seeded position.

    Returns:
        (filter_graph, output_label)
    """
    width, height = canvas
    parts = [f"color=s={width}x{height}:d={total_duration:g}:c=black[bg]"]
    last = "bg"

    for layer in range(clip_count):
        scale = shrink_factor ** layer
        scaled_w, scaled_h = _even(width * scale), _even(height * scale)
        if layer == 0:
            x = y = 0
        else:
            x = rng.randint(0, max(0, width - scaled_w))
            y = rng.randint(0, max(0, height - scaled_h))
        appear = layer * stagger_seconds
        parts.append(
            f"[{layer}:v]setpts=PTS-STARTPTS+{appear:g}/TB,scale={scaled_w}:{scaled_h}[v{layer}]"
        )
        parts.append(f"[{last}][v{layer}]overlay={x}:{y}[out{layer}]")
        last = f"out{layer}"

    caption = overlay_filter(text_overlay)
    if caption:
        parts.append(f"[{last}]{caption}[final]")
        last = "final"

    return ";".join(parts), last


class Assembler:
    """Renders accepted clips into a finished montage via a MediaToolkit."""

    def __init__(self, toolkit, shrink_factor: float = 0.75):
        self.toolkit = toolkit
        self.shrink_factor = shrink_factor

    def assemble(
        self,
        clips: Sequence[MaterializedClip],
        dest_path: Path,
        *,
        layout: Layout = Layout.CUT,
        resolution: Resolution = Resolution.P720,
        text_overlay: Optional[TextOverlay] = None,
        keep_audio: bool = True,
        clip_interval: float = 1.0,
        montage_length: Optional[float] = None,
        rng: Optional[random.Random] = None,
        work_dir: Optional[Path] = None,
    ) -> Path:
        """
        Render ``clips`` to ``dest_path``.

        Raises:
            AssemblyError: render failed or produced an empty file
        """
        if not clips:
            raise AssemblyError("No clips to assemble")

        paths = [clip.path for clip in clips]
        dest_path = Path(dest_path)

        if layout is Layout.STACKED:
            duration = montage_length or len(clips) * clip_interval
            graph, label = stacked_filter_graph(
                len(paths), resolution.canvas, duration, clip_interval,
                self.shrink_factor, rng or random.Random(0), text_overlay,
            )
            logger.info(f"   Stacking {len(paths)} clips on a {resolution.canvas[0]}x{resolution.canvas[1]} canvas")
            self.toolkit.render_filter_graph(paths, graph, label, dest_path, duration_seconds=duration)
        else:
            logger.info(f"   Concatenating {len(paths)} clips ({resolution.value})")
            self.toolkit.concatenate(
                paths, dest_path,
                video_filters=cut_filters(resolution, text_overlay),
                keep_audio=keep_audio,
                work_dir=work_dir,
            )

        size = file_size(dest_path)
        if size <= 0:
            raise AssemblyError(f"Output file not found or empty: {dest_path.name}")
        log_success(f"Created {dest_path.name} ({size} bytes, {len(clips)} clips)")
        return dest_path
