"""
Montage pipeline: download -> probe -> plan -> materialize -> assemble -> persist.

MontagePipeline.run executes one job synchronously and reports every stage to
the JobTracker. JobRunner wraps it in a thread pool so the web app can return
immediately and poll for status.

Progress bands:
    5       processing started
    10-35   downloads
    40      durations resolved, plans built
    40-80   clip extraction across all variations
    80-99   assembly and persistence
    100     completed
"""

import random
import secrets
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .assembler import Assembler
from .config import Settings, get_settings
from .core.workspace import job_workspace
from .downloader import Downloader, normalize_source_url
from .exceptions import (
    DownloadError,
    JobCancelledError,
    MontageError,
    NoClipsExtractedError,
    PartialResultWarning,
)
from .job_tracker import JobTracker
from .logger import job_file_logging, log_phase, log_success, log_warning, logger
from .materializer import CancellationToken, Materializer
from .media_tools import MediaToolkit
from .models import Job, MaterializedClip, MontageRequest, VariationPlan
from .planner import plan_sources, target_clip_count
from .storage import ArtifactStore, LocalArtifactStore


@dataclass
class SourceMedia:
    """A downloaded source with its resolved duration."""
    index: int
    url: str
    path: Path
    duration: float = 0.0
    used_fallback: bool = False


def with_seed(request: MontageRequest) -> MontageRequest:
    """Return ``request`` with a concrete seed so its plans can be reproduced."""
    if request.seed is not None:
        return request
    return request.model_copy(update={"seed": secrets.randbits(32)})


def fail_unless_finished(tracker: JobTracker, job_id: str, error: str) -> Job:
    """Fail ``job_id`` unless it already reached a terminal state."""
    job = tracker.get(job_id)
    if job.status.is_terminal:
        return job
    return tracker.fail(job_id, error)


class _ProgressMeter:
    """Maps extracted-clip counts from parallel variations onto one progress band."""

    def __init__(self, tracker: JobTracker, job_id: str, total: int, low: int, high: int):
        self.tracker = tracker
        self.job_id = job_id
        self.total = max(1, total)
        self.low = low
        self.high = high
        self.done = 0
        self._lock = threading.Lock()

    def tick(self, *_args) -> None:
        with self._lock:
            self.done += 1
            value = self.low + (self.high - self.low) * min(self.done, self.total) // self.total
        self.tracker.update_progress(self.job_id, value)


class MontagePipeline:
    """Runs montage jobs end to end against pluggable media, download and storage backends."""

    def __init__(
        self,
        tracker: JobTracker,
        *,
        toolkit: Optional[MediaToolkit] = None,
        downloader: Optional[Downloader] = None,
        artifact_store: Optional[ArtifactStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.tracker = tracker
        self.toolkit = toolkit or MediaToolkit(self.settings.encoding)
        self.downloader = downloader or Downloader(fallbacks=self.settings.fallbacks)
        self.artifact_store = artifact_store or LocalArtifactStore(
            self.settings.paths.output_dir, self.settings.storage.public_base_url
        )
        self.assembler = Assembler(self.toolkit, shrink_factor=self.settings.clips.stack_shrink_factor)

    def run(self, job_id: str, request: MontageRequest,
            cancel_token: Optional[CancellationToken] = None) -> Job:
        """
        Execute one job. Never raises for job-level failures: they are
        recorded on the job, which is returned in its terminal state.
        """
        token = cancel_token or CancellationToken()
        paths = self.settings.paths

        try:
            with job_file_logging(paths.log_dir, job_id), \
                    job_workspace(paths.temp_dir, job_id, keep=self.settings.storage.keep_scratch) as work_dir:
                try:
                    self.tracker.start(job_id, progress=5)
                    urls = self._execute(job_id, request, work_dir, token)
                    return self.tracker.complete(job_id, urls)
                except MontageError as exc:
                    return self.tracker.fail(job_id, str(exc))
        except Exception as exc:
            # Also reached when the log file or scratch directory cannot be set up.
            logger.exception(f"Unexpected error in job {job_id}")
            return fail_unless_finished(self.tracker, job_id, f"Unexpected error: {exc}")

    def plan_remote(self, request: MontageRequest) -> Tuple[Dict[int, List[VariationPlan]], Dict[int, str]]:
        """
        Plan a seeded request without downloading: each source URL is probed
        directly, falling back to the duration policy when that fails.

        Returns:
            (plans keyed by source index, normalized URL per source index)
        """
        urls = {i: normalize_source_url(url) for i, url in enumerate(request.sources)}
        durations = {
            i: self.downloader.resolve_duration(url, url, self.toolkit.probe_duration)[0]
            for i, url in urls.items()
        }
        plans, _ = plan_sources(request, durations, request.seed, pool_factor=self.settings.clips.pool_factor)
        return plans, urls

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _execute(self, job_id: str, request: MontageRequest, work_dir: Path,
                 token: CancellationToken) -> List[str]:
        seed = request.seed if request.seed is not None else secrets.randbits(32)

        log_phase("DOWNLOAD")
        sources = self._download_sources(job_id, request.sources, work_dir, token)
        self.tracker.update_progress(job_id, 40)

        log_phase("PLAN")
        self._resolve_durations(job_id, sources)
        plans = self._plan_sources(job_id, request, sources, seed)
        token.raise_if_cancelled()

        log_phase("RENDER")
        outputs = self._render_variations(job_id, request, sources, plans, work_dir, token, seed)

        log_phase("PERSIST")
        return self._persist(job_id, request, outputs)

    def _download_sources(self, job_id: str, urls: List[str], work_dir: Path,
                          token: CancellationToken) -> List[SourceMedia]:
        downloaded: List[SourceMedia] = []
        failures: List[str] = []

        for index, raw_url in enumerate(urls):
            token.raise_if_cancelled()
            url = normalize_source_url(raw_url)
            dest = work_dir / f"source_{index:02d}.mp4"
            try:
                self.downloader.download(url, dest)
            except DownloadError as exc:
                log_warning(f"Skipping source {index + 1}: {exc}")
                failures.append(url)
                continue
            downloaded.append(SourceMedia(index=index, url=url, path=dest))
            self.tracker.update_progress(job_id, 10 + (index + 1) * 25 // len(urls))

        if not downloaded:
            raise DownloadError(
                "Failed to download videos. This might be due to region restrictions, "
                "private videos, or unsupported links.",
                url=failures[0] if failures else None,
            )
        if failures:
            self.tracker.add_warning(job_id, f"{len(failures)} source(s) could not be downloaded")
        return downloaded

    def _resolve_durations(self, job_id: str, sources: List[SourceMedia]) -> None:
        for source in sources:
            source.duration, source.used_fallback = self.downloader.resolve_duration(
                str(source.path), source.url, self.toolkit.probe_duration
            )
            if source.used_fallback:
                self.tracker.add_warning(
                    job_id,
                    f"Duration of source {source.index + 1} unavailable; assumed {source.duration:.0f}s",
                )
            logger.info(f"   Source {source.index + 1}: {source.duration:.1f}s")

    def _plan_sources(self, job_id: str, request: MontageRequest, sources: List[SourceMedia],
                      seed: int) -> Dict[int, List[VariationPlan]]:
        """Split the clip target across sources and plan each one independently."""
        plans, range_errors = plan_sources(
            request,
            {source.index: source.duration for source in sources},
            seed,
            pool_factor=self.settings.clips.pool_factor,
        )
        if not plans:
            raise NoClipsExtractedError("No source produced a clip plan")
        for exc in range_errors:
            self.tracker.add_warning(job_id, str(exc))
        return plans

    def _render_variations(self, job_id: str, request: MontageRequest, sources: List[SourceMedia],
                           plans: Dict[int, List[VariationPlan]], work_dir: Path,
                           token: CancellationToken, seed: int) -> List[Path]:
        total = sum(v.target_count for variations in plans.values() for v in variations)
        meter = _ProgressMeter(self.tracker, job_id, total, 40, 80)
        stop = CancellationToken(parent=token)
        by_index = {source.index: source for source in sources}

        workers = max(1, min(self.settings.jobs.max_parallel_variations, request.variation_count))
        futures: Dict[Future, int] = {}
        outputs: Dict[int, Path] = {}
        first_error: Optional[Exception] = None

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"variation-{job_id[:8]}") as pool:
            for v in range(request.variation_count):
                variation_plans = [(by_index[idx], plans[idx][v]) for idx in sorted(plans)]
                future = pool.submit(
                    self._render_one, job_id, request, v, variation_plans, work_dir, stop, meter, seed
                )
                futures[future] = v

            for future in as_completed(futures):
                try:
                    outputs[futures[future]] = future.result()
                except Exception as exc:
                    # Stop sibling variations; report the first real failure.
                    stop.cancel()
                    if first_error is None or isinstance(first_error, JobCancelledError):
                        first_error = exc

        if token.cancelled:
            raise JobCancelledError("Job was cancelled")
        if first_error is not None:
            raise first_error
        return [outputs[v] for v in sorted(outputs)]

    def _render_one(self, job_id: str, request: MontageRequest, variation_index: int,
                    variation_plans, work_dir: Path, token: CancellationToken,
                    meter: _ProgressMeter, seed: int) -> Path:
        label = f"v{variation_index + 1:02d}"
        clip_dir = work_dir / label
        clip_dir.mkdir(parents=True, exist_ok=True)

        def record_partial(warning: PartialResultWarning) -> None:
            self.tracker.add_warning(job_id, f"Variation {variation_index + 1}: {warning}")

        by_source: Dict[int, List[MaterializedClip]] = {}
        materializers: Dict[int, Materializer] = {}
        failures: List[str] = []
        for source, variation in variation_plans:
            materializer = materializers[source.index] = Materializer(
                self.toolkit.cut_clip,
                clip_dir,
                keep_audio=request.keep_audio,
                min_clip_bytes=self.settings.clips.min_clip_bytes,
                backfill_attempt_factor=self.settings.clips.backfill_attempt_factor,
                rng=random.Random(f"{seed}:{variation_index}:{source.index}:backfill"),
                cancel_token=token,
                on_progress=meter.tick,
                on_partial=record_partial,
            )
            try:
                by_source[source.index] = materializer.materialize_variation(str(source.path), variation)
            except NoClipsExtractedError as exc:
                log_warning(str(exc))
                failures.append(str(exc))

        if not by_source:
            raise NoClipsExtractedError(
                failures[0] if len(failures) == 1 else
                f"No valid clips could be extracted for variation {variation_index + 1}. "
                "Please try with different settings."
            )
        if failures:
            self._cover_failed_sources(job_id, variation_index, variation_plans, by_source,
                                       materializers, len(failures))
        clips = [clip for index in sorted(by_source) for clip in by_source[index]]

        token.raise_if_cancelled()
        dest = work_dir / f"{request.custom_filename}_{label}.mp4"
        self.assembler.assemble(
            clips, dest,
            layout=request.layout,
            resolution=request.output_resolution,
            text_overlay=request.text_overlay,
            keep_audio=request.keep_audio,
            clip_interval=request.clip_interval_seconds,
            montage_length=request.montage_length_seconds,
            rng=random.Random(f"{seed}:{variation_index}:layout"),
            work_dir=clip_dir,
        )
        log_success(f"Variation {variation_index + 1}: {len(clips)} clips -> {dest.name}")
        return dest

    def _cover_failed_sources(self, job_id: str, variation_index: int, variation_plans,
                              by_source: Dict[int, List[MaterializedClip]],
                              materializers: Dict[int, Materializer], failed: int) -> None:
        """Hand the share of sources that yielded no clips to the sources that did."""
        planned = sum(variation.target_count for _, variation in variation_plans)
        for source, variation in variation_plans:
            missing = planned - sum(len(clips) for clips in by_source.values())
            if missing <= 0:
                break
            if source.index in by_source:
                by_source[source.index] = materializers[source.index].top_up(
                    str(source.path), by_source[source.index], missing, variation
                )

        total = sum(len(clips) for clips in by_source.values())
        if total < planned:
            outcome = f"montage has {total} of {planned} planned clips"
        else:
            outcome = "their clips were taken from the other sources"
        self.tracker.add_warning(
            job_id, f"Variation {variation_index + 1}: {failed} source(s) yielded no clips; {outcome}"
        )

    def _persist(self, job_id: str, request: MontageRequest, outputs: List[Path]) -> List[str]:
        urls: List[str] = []
        stamp = int(time.time() * 1000)
        for i, path in enumerate(outputs):
            name = f"{request.custom_filename}_v{i + 1:02d}_{stamp}.mp4"
            urls.append(self.artifact_store.persist(path, name))
            self.tracker.update_progress(job_id, min(99, 80 + 20 * (i + 1) // len(outputs)))
        return urls


class JobRunner:
    """
    Background executor for montage jobs.

    Jobs stay pending until a worker slot frees up; at most
    ``max_workers`` run at once.
    """

    def __init__(self, pipeline: MontagePipeline, max_workers: int = 2):
        self.pipeline = pipeline
        self.tracker = pipeline.tracker
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="montage-job")
        self._tokens: Dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def _prepare(self, request: MontageRequest) -> MontageRequest:
        # Reject unusable interval/length combinations before a job exists.
        target_clip_count(request)
        return with_seed(request)

    def _create(self, request: MontageRequest) -> Job:
        return self.tracker.create(request.model_dump(mode="json", by_alias=True))

    def submit(self, request: MontageRequest) -> Job:
        """Create a pending job and schedule it. Raises InvalidConfigError synchronously."""
        request = self._prepare(request)
        job = self._create(request)
        token = CancellationToken()
        with self._lock:
            self._tokens[job.id] = token
        self.executor.submit(self._run, job.id, request, token)
        logger.info(f"Queued job {job.id} ({len(request.sources)} source(s), "
                    f"{request.variation_count} variation(s))")
        return job

    def run_sync(self, request: MontageRequest) -> Job:
        """Create and run a job in the calling thread."""
        request = self._prepare(request)
        job = self._create(request)
        return self.pipeline.run(job.id, request)

    def _run(self, job_id: str, request: MontageRequest, token: CancellationToken) -> None:
        try:
            if token.cancelled:
                self.tracker.fail(job_id, "Job was cancelled")
                return
            self.pipeline.run(job_id, request, token)
        except Exception as exc:
            logger.exception(f"Job {job_id} crashed")
            fail_unless_finished(self.tracker, job_id, f"Unexpected error: {exc}")
        finally:
            with self._lock:
                self._tokens.pop(job_id, None)

    def cancel(self, job_id: str) -> bool:
        """
        Request cancellation. Returns False when the job is already finished.

        Raises:
            NotFoundError: unknown job id
        """
        job = self.tracker.get(job_id)
        if job.status.is_terminal:
            return False
        with self._lock:
            token = self._tokens.get(job_id)
        if token is None:
            return False
        token.cancel()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
