"""
End-to-end pipeline tests with fake media, download and storage collaborators.
"""

import re
import threading
import time
from pathlib import Path

import pytest

from clip_montage.exceptions import (
    AssemblyError,
    ExtractionError,
    InvalidConfigError,
    NotFoundError,
    UploadError,
)
from clip_montage.materializer import CancellationToken
from clip_montage.models import JobStatus
from clip_montage.pipeline import JobRunner, with_seed

from conftest import FakeToolkit, writing_strategy


class LimitedToolkit(FakeToolkit):
    """Every cut after the first ``limit`` fails."""

    def __init__(self, limit, **kwargs):
        super().__init__(**kwargs)
        self.limit = limit

    def cut_clip(self, source_path, start_seconds, duration_seconds, dest_path, keep_audio=True):
        if len(self.cuts) >= self.limit:
            self.cuts.append(start_seconds)
            raise ExtractionError("decoder error")
        super().cut_clip(source_path, start_seconds, duration_seconds, dest_path, keep_audio)


class SourceFailingToolkit(FakeToolkit):
    """Every cut from ``bad_source`` fails; other sources allow ``limit`` cuts in total."""

    def __init__(self, bad_source="source_01.mp4", limit=None, **kwargs):
        super().__init__(**kwargs)
        self.bad_source = bad_source
        self.limit = limit
        self.good_cuts = 0

    def cut_clip(self, source_path, start_seconds, duration_seconds, dest_path, keep_audio=True):
        if Path(source_path).name == self.bad_source:
            self.cuts.append(start_seconds)
            raise ExtractionError("moov atom not found")
        if self.limit is not None and self.good_cuts >= self.limit:
            self.cuts.append(start_seconds)
            raise ExtractionError("decoder error")
        self.good_cuts += 1
        super().cut_clip(source_path, start_seconds, duration_seconds, dest_path, keep_audio)


class FirstVariationConcatFails(FakeToolkit):
    """Concatenating variation 1 fails; variation 2 holds its first cut until that happens."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.concat_failed = threading.Event()
        self.second_variation_cuts = 0

    def cut_clip(self, source_path, start_seconds, duration_seconds, dest_path, keep_audio=True):
        if Path(dest_path).parent.name == "v02":
            if self.second_variation_cuts == 0:
                self.concat_failed.wait(5)
                time.sleep(0.2)
            self.second_variation_cuts += 1
        super().cut_clip(source_path, start_seconds, duration_seconds, dest_path, keep_audio)

    def concatenate(self, clip_paths, dest_path, video_filters=None, keep_audio=True, work_dir=None):
        if Path(dest_path).name.endswith("_v01.mp4"):
            self.concat_failed.set()
            raise AssemblyError("Failed to concatenate 10 clips: Conversion failed!")
        super().concatenate(clip_paths, dest_path, video_filters, keep_audio, work_dir)


class BrokenArtifactStore:
    def persist(self, path, suggested_name):
        raise UploadError("Failed to persist montage_v01.mp4: No space left on device")


def _run(make_pipeline, tracker, request, **kwargs):
    pipeline = make_pipeline(**kwargs)
    job = tracker.create({})
    return pipeline.run(job.id, request)


class TestPipeline:
    def test_successful_job(self, make_pipeline, tracker, settings, make_request):
        toolkit = FakeToolkit()
        job = _run(make_pipeline, tracker, make_request(variation_count=2), toolkit=toolkit)

        assert job.status is JobStatus.COMPLETED, job.error
        assert job.progress == 100
        assert len(job.download_urls) == 2
        assert re.fullmatch(r"/downloads/montage_v01_\d+\.mp4", job.download_urls[0])
        assert re.fullmatch(r"/downloads/montage_v02_\d+\.mp4", job.download_urls[1])
        for url in job.download_urls:
            assert (settings.paths.output_dir / url.rsplit("/", 1)[1]).exists()

        assert len(toolkit.concats) == 2
        assert all(len(c["clips"]) == 10 for c in toolkit.concats)

    def test_scratch_removed_and_log_written(self, make_pipeline, tracker, settings, make_request):
        job = _run(make_pipeline, tracker, make_request())
        assert not (settings.paths.temp_dir / f"montage-{job.id}").exists()
        assert settings.paths.get_log_path(job.id).exists()

    def test_no_clips_fails_job(self, make_pipeline, tracker, settings, make_request):
        job = _run(make_pipeline, tracker, make_request(), toolkit=FakeToolkit(fail_first=10_000))

        assert job.status is JobStatus.FAILED
        assert "No valid clips" in job.error
        assert job.download_urls == []
        assert not (settings.paths.temp_dir / f"montage-{job.id}").exists()

    def test_partial_result_completes_with_warning(self, make_pipeline, tracker, make_request):
        toolkit = LimitedToolkit(limit=4)
        job = _run(make_pipeline, tracker, make_request(), toolkit=toolkit)

        assert job.status is JobStatus.COMPLETED
        assert len(toolkit.concats[0]["clips"]) == 4
        assert any("Only 4 of 10 clips" in w for w in job.warnings)

    def test_download_failure_fails_job(self, make_pipeline, tracker, make_request):
        url = "https://example.com/video.mp4"
        job = _run(make_pipeline, tracker, make_request(),
                   strategies=[writing_strategy(fail_for=(url,))])
        assert job.status is JobStatus.FAILED
        assert "Failed to download" in job.error

    def test_one_failed_source_is_skipped(self, make_pipeline, tracker, make_request):
        good, bad = "https://example.com/a.mp4", "https://example.com/b.mp4"
        toolkit = FakeToolkit()
        job = _run(make_pipeline, tracker, make_request(sources=[good, bad]),
                   toolkit=toolkit, strategies=[writing_strategy(fail_for=(bad,))])

        assert job.status is JobStatus.COMPLETED
        assert any("could not be downloaded" in w for w in job.warnings)
        # the surviving source takes the whole target
        assert len(toolkit.concats[0]["clips"]) == 10

    def test_clip_target_is_split_across_sources(self, make_pipeline, tracker, make_request):
        toolkit = FakeToolkit()
        request = make_request(sources=["https://example.com/a.mp4", "https://example.com/b.mp4",
                                        "https://example.com/c.mp4"])
        job = _run(make_pipeline, tracker, request, toolkit=toolkit)

        assert job.status is JobStatus.COMPLETED
        names = [Path(p).name for p in toolkit.concats[0]["clips"]]
        assert len(names) == 10
        assert [n.split("_")[2] for n in names] == ["s00"] * 4 + ["s01"] * 3 + ["s02"] * 3

    def test_probe_failure_uses_fallback_duration(self, make_pipeline, tracker, make_request):
        toolkit = FakeToolkit(duration=None)
        job = _run(make_pipeline, tracker, make_request(start_cut_seconds=0, end_cut_seconds=0), toolkit=toolkit)

        assert job.status is JobStatus.COMPLETED
        assert any("assumed 60s" in w for w in job.warnings)

    def test_invalid_range_fails_job(self, make_pipeline, tracker, make_request):
        toolkit = FakeToolkit(duration=50)
        job = _run(make_pipeline, tracker, make_request(start_cut_seconds=40, end_cut_seconds=20), toolkit=toolkit)

        assert job.status is JobStatus.FAILED
        assert "Invalid video range" in job.error
        assert toolkit.cuts == []

    def test_stacked_layout(self, make_pipeline, tracker, make_request):
        toolkit = FakeToolkit()
        job = _run(make_pipeline, tracker, make_request(layout="stacked"), toolkit=toolkit)
        assert job.status is JobStatus.COMPLETED
        assert len(toolkit.renders) == 1
        assert toolkit.concats == []

    def test_cancelled_job_fails(self, make_pipeline, tracker, make_request):
        pipeline = make_pipeline()
        job = tracker.create({})
        token = CancellationToken()
        token.cancel()

        result = pipeline.run(job.id, make_request(), token)
        assert result.status is JobStatus.FAILED
        assert result.error == "Job was cancelled"

    def test_parallel_variations_keep_order(self, make_pipeline, tracker, settings, make_request):
        settings.jobs.max_parallel_variations = 3
        job = _run(make_pipeline, tracker, make_request(variation_count=3))
        assert job.status is JobStatus.COMPLETED
        assert [re.search(r"_v(\d+)_", url).group(1) for url in job.download_urls] == ["01", "02", "03"]

    def test_source_without_clips_hands_share_to_others(self, make_pipeline, tracker, make_request):
        toolkit = SourceFailingToolkit()
        request = make_request(sources=["https://example.com/a.mp4", "https://example.com/b.mp4"])
        job = _run(make_pipeline, tracker, request, toolkit=toolkit)

        assert job.status is JobStatus.COMPLETED, job.error
        clips = toolkit.concats[0]["clips"]
        assert len(clips) == 10
        assert all("_s00_" in Path(p).name for p in clips)
        assert any("1 source(s) yielded no clips" in w for w in job.warnings)

    def test_unrecovered_share_is_reported(self, make_pipeline, tracker, make_request):
        toolkit = SourceFailingToolkit(limit=7)
        request = make_request(sources=["https://example.com/a.mp4", "https://example.com/b.mp4"])
        job = _run(make_pipeline, tracker, request, toolkit=toolkit)

        assert job.status is JobStatus.COMPLETED, job.error
        assert len(toolkit.concats[0]["clips"]) == 7
        assert any("montage has 7 of 10 planned clips" in w for w in job.warnings)

    def test_upload_failure_fails_job(self, make_pipeline, tracker, settings, make_request):
        pipeline = make_pipeline()
        pipeline.artifact_store = BrokenArtifactStore()
        job = pipeline.run(tracker.create({}).id, make_request())

        assert job.status is JobStatus.FAILED
        assert job.error == "Failed to persist montage_v01.mp4: No space left on device"
        assert job.download_urls == []
        assert not (settings.paths.temp_dir / f"montage-{job.id}").exists()

    def test_assembly_failure_stops_sibling_variations(self, make_pipeline, tracker, settings, make_request):
        settings.jobs.max_parallel_variations = 2
        toolkit = FirstVariationConcatFails()
        job = _run(make_pipeline, tracker, make_request(variation_count=2), toolkit=toolkit)

        assert job.status is JobStatus.FAILED
        assert job.error == "Failed to concatenate 10 clips: Conversion failed!"
        assert toolkit.concats == []
        assert toolkit.second_variation_cuts < 10

    def test_same_seed_same_clips(self, make_pipeline, tracker, make_request):
        first, second = FakeToolkit(), FakeToolkit()
        _run(make_pipeline, tracker, make_request(seed=5), toolkit=first)
        _run(make_pipeline, tracker, make_request(seed=5), toolkit=second)
        assert first.cuts == second.cuts


class TestJobRunner:
    def test_submit_runs_in_background(self, runner, make_request):
        job = runner.submit(make_request())
        assert job.status is JobStatus.PENDING

        runner.shutdown(wait=True)
        finished = runner.tracker.get(job.id)
        assert finished.status is JobStatus.COMPLETED
        assert finished.params["seed"] == 1234

    def test_submit_assigns_seed(self, runner, make_request):
        job = runner.submit(make_request(seed=None))
        assert job.params["seed"] is not None

    def test_invalid_config_rejected_before_job_exists(self, runner, make_request):
        with pytest.raises(InvalidConfigError):
            runner.submit(make_request(clip_interval_seconds=30, montage_length_seconds=20))
        assert list(runner.tracker.store.ids()) == []

    def test_cancel_finished_job(self, runner, make_request):
        job = runner.run_sync(make_request())
        assert job.status is JobStatus.COMPLETED
        assert runner.cancel(job.id) is False

    def test_cancel_unknown_job(self, runner):
        with pytest.raises(NotFoundError):
            runner.cancel("missing")

    def test_cancel_queued_job(self, make_pipeline, make_request):
        runner = JobRunner(make_pipeline(), max_workers=1)
        gate = threading.Event()
        try:
            runner.executor.submit(gate.wait)
            job = runner.submit(make_request())
            assert runner.cancel(job.id) is True
        finally:
            gate.set()
            runner.shutdown(wait=True)

        finished = runner.tracker.get(job.id)
        assert finished.status is JobStatus.FAILED
        assert finished.error == "Job was cancelled"

    def test_unusable_scratch_dir_fails_job(self, make_pipeline, settings, make_request):
        settings.paths.temp_dir.parent.mkdir(parents=True, exist_ok=True)
        settings.paths.temp_dir.write_text("not a directory")
        runner = JobRunner(make_pipeline(), max_workers=1)

        job = runner.submit(make_request())
        runner.shutdown(wait=True)

        finished = runner.tracker.get(job.id)
        assert finished.status is JobStatus.FAILED
        assert finished.error.startswith("Unexpected error")

    def test_crashing_pipeline_fails_job(self, make_pipeline, make_request, monkeypatch):
        pipeline = make_pipeline()

        def crash(job_id, request, cancel_token=None):
            raise RuntimeError("worker died")

        monkeypatch.setattr(pipeline, "run", crash)
        runner = JobRunner(pipeline, max_workers=1)
        job = runner.submit(make_request())
        runner.shutdown(wait=True)

        finished = runner.tracker.get(job.id)
        assert finished.status is JobStatus.FAILED
        assert finished.error == "Unexpected error: worker died"

    def test_with_seed_keeps_explicit_seed(self, make_request):
        assert with_seed(make_request(seed=9)).seed == 9
        assert with_seed(make_request(seed=None)).seed is not None
