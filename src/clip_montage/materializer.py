"""
Clip Materializer

Consumes a planned candidate pool, cutting clips until the target count is
reached. Failed or undersized cuts are skipped. When the pool runs dry the
materializer draws fresh random candidates (spaced at least one interval from
every accepted start) for up to ``backfill_attempt_factor * target`` more
attempts.

Outcomes:
    target reached         -> list of ``target`` clips
    short but non-empty    -> shorter list + PartialResultWarning
    nothing accepted       -> NoClipsExtractedError

The plan itself is never modified; accepted clips live only in the returned
list.
"""

import random
import threading
import warnings
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .exceptions import ExtractionError, JobCancelledError, NoClipsExtractedError, PartialResultWarning
from .file_ops import file_size
from .logger import logger, log_warning
from .models import ClipPlan, MaterializedClip, SourceWindow, VariationPlan
from .planner import too_close

CutFn = Callable[..., None]
ProgressFn = Callable[[int, int], None]
PartialFn = Callable[[PartialResultWarning], None]


class CancellationToken:
    """Cooperative cancellation flag checked between clip extractions."""

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self.parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or (self.parent is not None and self.parent.cancelled)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise JobCancelledError("Job was cancelled")


class Materializer:
    """
    Turns ClipPlans into clip files inside one scratch directory.

    Args:
        cut_clip: cut_clip(source, start, duration, dest, keep_audio=...)
        work_dir: Directory the clip files are written to
        keep_audio: Passed through to every cut
        min_clip_bytes: Clips at or below this size are rejected
        backfill_attempt_factor: Backfill attempts allowed per missing target clip
        rng: Randomness for backfill candidates
        cancel_token: Checked before every extraction
        on_progress: Called with (accepted, target) after each accepted clip
        on_partial: Receives the PartialResultWarning instead of warnings.warn
    """

    def __init__(
        self,
        cut_clip: CutFn,
        work_dir: Path,
        *,
        keep_audio: bool = True,
        min_clip_bytes: int = 500,
        backfill_attempt_factor: int = 3,
        rng: Optional[random.Random] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressFn] = None,
        on_partial: Optional[PartialFn] = None,
    ):
        self.cut_clip = cut_clip
        self.work_dir = Path(work_dir)
        self.keep_audio = keep_audio
        self.min_clip_bytes = min_clip_bytes
        self.backfill_attempt_factor = backfill_attempt_factor
        self.rng = rng or random.Random()
        self.cancel_token = cancel_token or CancellationToken()
        self.on_progress = on_progress
        self.on_partial = on_partial
        self._counter = 0

    def _next_path(self, label: str) -> Path:
        self._counter += 1
        return self.work_dir / f"{label}_{self._counter:03d}.mp4"

    def _try_extract(self, source_path: str, plan: ClipPlan, label: str) -> Optional[MaterializedClip]:
        self.cancel_token.raise_if_cancelled()
        dest = self._next_path(label)
        try:
            self.cut_clip(
                source_path, plan.start_seconds, plan.duration_seconds, str(dest),
                keep_audio=self.keep_audio,
            )
        except ExtractionError as exc:
            logger.debug(f"Extraction failed at {plan.start_seconds:.2f}s: {exc}")
            dest.unlink(missing_ok=True)
            return None

        size = file_size(dest)
        if size <= self.min_clip_bytes:
            logger.debug(f"Clip at {plan.start_seconds:.2f}s too small ({size} bytes), skipping")
            dest.unlink(missing_ok=True)
            return None

        return MaterializedClip(
            path=str(dest),
            size_bytes=size,
            start_seconds=plan.start_seconds,
            source_index=plan.source_index,
        )

    def _accept(self, clip: MaterializedClip, accepted: List[MaterializedClip], target: int) -> None:
        accepted.append(clip)
        if self.on_progress:
            self.on_progress(len(accepted), target)

    def materialize(
        self,
        source_path: str,
        pool: Sequence[ClipPlan],
        target: int,
        window: SourceWindow,
        interval: float,
        *,
        label: str = "clip",
        chronological: bool = False,
    ) -> List[MaterializedClip]:
        """
        Extract up to ``target`` clips from ``source_path``.

        Args:
            source_path: Local media file
            pool: Candidates in consumption order
            target: Clips wanted
            window: Usable range, bounds for backfill candidates
            interval: Clip length and minimum backfill spacing
            label: Filename prefix for the clip files
            chronological: Sort accepted clips by start time

        Raises:
            NoClipsExtractedError: nothing could be extracted
            JobCancelledError: the cancel token fired
        """
        accepted: List[MaterializedClip] = []
        source_index = pool[0].source_index if pool else 0

        for plan in pool:
            if len(accepted) >= target:
                break
            clip = self._try_extract(source_path, plan, label)
            if clip:
                self._accept(clip, accepted, target)

        if len(accepted) < target:
            self._backfill(source_path, accepted, target, window, interval, label, source_index)

        if not accepted:
            raise NoClipsExtractedError(
                f"No valid clips could be extracted from {Path(source_path).name} "
                f"after {self._counter} attempts. Please try with different settings."
            )

        if len(accepted) < target:
            message = (
                f"Only {len(accepted)} of {target} clips extracted from "
                f"{Path(source_path).name}; montage will be shorter"
            )
            log_warning(message)
            warning = PartialResultWarning(message, len(accepted), target)
            if self.on_partial:
                self.on_partial(warning)
            else:
                warnings.warn(warning, stacklevel=2)

        if chronological:
            accepted.sort(key=lambda c: c.start_seconds)
        return accepted

    def _backfill(
        self,
        source_path: str,
        accepted: List[MaterializedClip],
        target: int,
        window: SourceWindow,
        interval: float,
        label: str,
        source_index: int,
    ) -> None:
        logger.info(f"   Need {target} clips but have {len(accepted)}; generating more candidates...")
        duration = min(interval, window.usable_duration)
        spread = window.usable_duration - interval
        max_attempts = self.backfill_attempt_factor * target

        attempts = 0
        while len(accepted) < target and attempts < max_attempts:
            attempts += 1
            start = window.clamp(window.start_cut + self.rng.random() * spread, interval)
            if too_close(start, [c.start_seconds for c in accepted], interval):
                continue
            clip = self._try_extract(
                source_path,
                ClipPlan(source_index=source_index, start_seconds=start, duration_seconds=duration),
                label,
            )
            if clip:
                self._accept(clip, accepted, target)

    def materialize_variation(self, source_path: str, variation: VariationPlan) -> List[MaterializedClip]:
        """Materialize one planned variation using its own pool and bounds."""
        return self.materialize(
            source_path,
            variation.clips,
            variation.target_count,
            variation.window,
            variation.interval,
            label=_label(variation),
            chronological=variation.chronological,
        )

    def top_up(self, source_path: str, accepted: Sequence[MaterializedClip], extra: int,
               variation: VariationPlan) -> List[MaterializedClip]:
        """
        Draw up to ``extra`` more clips from ``source_path`` on top of ``accepted``,
        spaced away from them. Used to take over the share of a source that
        yielded nothing; a shortfall is returned, not raised.
        """
        clips = list(accepted)
        self._backfill(
            source_path, clips, len(clips) + extra, variation.window, variation.interval,
            f"{_label(variation)}_extra", variation.source_index,
        )
        if variation.chronological:
            clips.sort(key=lambda c: c.start_seconds)
        return clips


def _label(variation: VariationPlan) -> str:
    return f"clip_v{variation.variation_index + 1:02d}_s{variation.source_index:02d}"
