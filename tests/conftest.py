"""Shared fixtures: fake media collaborators and isolated settings."""

from pathlib import Path

import pytest

from clip_montage.config import ClipConfig, JobConfig, PathConfig, Settings, StorageConfig
from clip_montage.core.job_store import InMemoryJobStore
from clip_montage.downloader import Downloader, DownloadStrategy
from clip_montage.exceptions import DurationUnavailableError, ExtractionError
from clip_montage.job_tracker import JobTracker
from clip_montage.models import MontageRequest
from clip_montage.pipeline import JobRunner, MontagePipeline


class FakeToolkit:
    """Stands in for MediaToolkit; writes placeholder files instead of running ffmpeg."""

    def __init__(self, duration=300.0, clip_bytes=2048, fail_first=0, output_bytes=4096):
        self.duration = duration
        self.clip_bytes = clip_bytes
        self.fail_first = fail_first
        self.output_bytes = output_bytes
        self.cuts = []
        self.concats = []
        self.renders = []
        self.probed = []

    def probe_duration(self, path_or_url):
        self.probed.append(str(path_or_url))
        if self.duration is None:
            raise DurationUnavailableError(f"no duration for {path_or_url}")
        return self.duration

    def cut_clip(self, source_path, start_seconds, duration_seconds, dest_path, keep_audio=True):
        self.cuts.append(start_seconds)
        if len(self.cuts) <= self.fail_first:
            raise ExtractionError(f"cut failed at {start_seconds}")
        Path(dest_path).write_bytes(b"\0" * self.clip_bytes)

    def concatenate(self, clip_paths, dest_path, video_filters=None, keep_audio=True, work_dir=None):
        self.concats.append({"clips": list(clip_paths), "filters": video_filters, "keep_audio": keep_audio})
        Path(dest_path).write_bytes(b"\0" * self.output_bytes)

    def render_filter_graph(self, input_paths, filter_graph, output_label, dest_path, duration_seconds=None):
        self.renders.append({"inputs": list(input_paths), "graph": filter_graph, "label": output_label})
        Path(dest_path).write_bytes(b"\0" * self.output_bytes)


def writing_strategy(name="fake", payload=b"video-bytes", fail_for=()):
    """DownloadStrategy that writes ``payload`` unless the URL is listed in ``fail_for``."""

    def fetch(url, dest, timeout):
        if url in fail_for:
            raise OSError(f"unreachable: {url}")
        Path(dest).write_bytes(payload)

    return DownloadStrategy(name, fetch)


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in tmp_path with sequential variations."""
    return Settings(
        paths=PathConfig(
            output_dir=tmp_path / "output",
            temp_dir=tmp_path / "scratch",
            log_dir=tmp_path / "logs",
        ),
        jobs=JobConfig(max_parallel_variations=1, max_concurrent_jobs=1, store_backend="memory"),
        clips=ClipConfig(min_clip_bytes=500, pool_factor=2.5, backfill_attempt_factor=3, stack_shrink_factor=0.75),
        storage=StorageConfig(public_base_url="/downloads", keep_scratch=False),
    )


@pytest.fixture
def toolkit():
    return FakeToolkit()


@pytest.fixture
def tracker():
    return JobTracker(InMemoryJobStore(), retention_seconds=3600)


@pytest.fixture
def make_pipeline(settings, tracker):
    """Factory for a pipeline wired to fakes."""

    def factory(toolkit=None, strategies=None):
        return MontagePipeline(
            tracker,
            toolkit=toolkit or FakeToolkit(),
            downloader=Downloader(strategies=strategies or [writing_strategy()], fallbacks=settings.fallbacks),
            settings=settings,
        )

    return factory


@pytest.fixture
def runner(make_pipeline, toolkit):
    job_runner = JobRunner(make_pipeline(toolkit=toolkit), max_workers=1)
    yield job_runner
    job_runner.shutdown(wait=True)


@pytest.fixture
def make_request():
    """MontageRequest factory with the worked example as defaults."""

    def factory(**overrides):
        fields = dict(
            sources=["https://example.com/video.mp4"],
            clip_interval_seconds=2,
            montage_length_seconds=20,
            start_cut_seconds=10,
            end_cut_seconds=50,
            seed=1234,
        )
        fields.update(overrides)
        return MontageRequest(**fields)

    return factory
