"""
Clip Montage - fixed-length clip montages from long videos

Planning (pure, no I/O):
    import random
    from clip_montage import MontageRequest, plan

    request = MontageRequest(sources=["https://youtu.be/abc"], clip_interval_seconds=2,
                             montage_length_seconds=20, start_cut_seconds=10, end_cut_seconds=50)
    variations = plan(300.0, request, rng=random.Random(7))

Rendering jobs:
    from clip_montage import JobRunner, JobTracker, MontagePipeline
    from clip_montage.core.job_store import InMemoryJobStore

    tracker = JobTracker(InMemoryJobStore())
    runner = JobRunner(MontagePipeline(tracker))
    job = runner.submit(request)
    tracker.get(job.id).to_status_payload()

HTTP API:
    from clip_montage.web_ui import create_app
"""

from ._version import __version__
from .exceptions import MontageError, PartialResultWarning
from .job_tracker import JobTracker
from .models import Job, JobStatus, Layout, MontageRequest, Resolution, TextOverlay
from .pipeline import JobRunner, MontagePipeline
from .planner import plan

__all__ = [
    "__version__",
    "Job",
    "JobRunner",
    "JobStatus",
    "JobTracker",
    "Layout",
    "MontageError",
    "MontagePipeline",
    "MontageRequest",
    "PartialResultWarning",
    "Resolution",
    "TextOverlay",
    "plan",
]
