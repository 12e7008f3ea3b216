"""
Data models for montage requests, clip plans and jobs.

MontageRequest / TextOverlay are pydantic models because they validate user
input. Planner and job types are plain dataclasses: they are built by our own
code and only need cheap (de)serialization.
"""

import copy
import re
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# =============================================================================
# Request Enums
# =============================================================================

class Resolution(str, Enum):
    P480 = "480p"
    P720 = "720p"
    P1080 = "1080p"
    ORIGINAL = "original"

    @property
    def dimensions(self) -> Optional[Tuple[int, int]]:
        """Target (width, height), or None to keep the source size."""
        return RESOLUTION_PRESETS.get(self)

    @property
    def canvas(self) -> Tuple[int, int]:
        """Dimensions for layouts that always need a fixed canvas."""
        return self.dimensions or RESOLUTION_PRESETS[Resolution.P1080]


RESOLUTION_PRESETS = {
    Resolution.P480: (854, 480),
    Resolution.P720: (1280, 720),
    Resolution.P1080: (1920, 1080),
}


class Layout(str, Enum):
    CUT = "cut"
    STACKED = "stacked"


# =============================================================================
# Request Models
# =============================================================================

class TextOverlay(BaseModel):
    """Centered caption burned into the montage."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    text: str = ""
    font_size: int = Field(default=24, gt=0, le=400)
    color: str = "white"
    outline: bool = True
    font: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.text and self.text.strip())


class MontageRequest(BaseModel):
    """
    One user submission.

    Field names are snake_case; camelCase aliases (clipIntervalSeconds, ...)
    are accepted so JSON clients can post either form.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sources: List[str] = Field(min_length=1)
    clip_interval_seconds: float = Field(default=1.0, gt=0)
    montage_length_seconds: float = Field(default=30.0, gt=0)
    start_cut_seconds: float = Field(default=0.0, ge=0)
    end_cut_seconds: float = Field(default=60.0, ge=0)
    linear_mode: bool = True
    variation_count: int = Field(default=1, ge=1, le=20)
    keep_audio: bool = True
    output_resolution: Resolution = Resolution.P720
    layout: Layout = Layout.CUT
    text_overlay: Optional[TextOverlay] = None
    custom_filename: str = "montage"
    seed: Optional[int] = None

    @field_validator("sources")
    @classmethod
    def _strip_sources(cls, value: List[str]) -> List[str]:
        cleaned = [str(v).strip() for v in value if v and str(v).strip()]
        if not cleaned:
            raise ValueError("No video URL provided")
        return cleaned

    @field_validator("custom_filename")
    @classmethod
    def _safe_filename(cls, value: str) -> str:
        safe = re.sub(r"[^A-Za-z0-9_.-]+", "_", value or "").strip("._")
        return safe or "montage"

    @property
    def target_clip_count(self) -> int:
        return int(self.montage_length_seconds // self.clip_interval_seconds)


# =============================================================================
# Planner Types
# =============================================================================

@dataclass(frozen=True)
class SourceWindow:
    """Usable part of one source after start/end cuts."""

    source_duration: float
    start_cut: float
    effective_end: float

    @property
    def usable_duration(self) -> float:
        return max(0.0, self.effective_end - self.start_cut)

    def latest_start(self, interval: float) -> float:
        """Last start time that still fits one interval; never before start_cut."""
        return max(self.start_cut, self.effective_end - interval)

    def clamp(self, start: float, interval: float) -> float:
        return max(self.start_cut, min(start, self.effective_end - interval))


@dataclass(frozen=True)
class ClipPlan:
    """One planned extraction [start, start + duration) from a source."""

    source_index: int
    start_seconds: float
    duration_seconds: float

    @property
    def end_seconds(self) -> float:
        return self.start_seconds + self.duration_seconds


@dataclass(frozen=True)
class VariationPlan:
    """
    Candidate pool for one variation of one source.

    The first ``target_count`` clips are the primary picks; the rest are
    backfill candidates consumed only when extractions fail.
    """

    variation_index: int
    source_index: int
    clips: Tuple[ClipPlan, ...]
    target_count: int
    chronological: bool
    window: SourceWindow
    interval: float

    @property
    def base_clips(self) -> Tuple[ClipPlan, ...]:
        return self.clips[:self.target_count]

    @property
    def start_times(self) -> List[float]:
        return [clip.start_seconds for clip in self.clips]


@dataclass
class MaterializedClip:
    """A clip file accepted by the materializer."""

    path: str
    size_bytes: int
    start_seconds: float
    source_index: int = 0


# =============================================================================
# Job Types
# =============================================================================

class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class Job:
    """
    Tracked montage job.

    Attributes:
        id: Job identifier
        status: pending -> processing -> completed|failed
        progress: 0..100, never decreases
        error: Human-readable failure message (failed only)
        download_urls: One URL per persisted variation (completed only)
        warnings: Non-fatal notes, e.g. short clip counts
        params: Request payload as submitted
    """

    id: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    error: Optional[str] = None
    download_urls: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        payload = copy.deepcopy(dict(data))
        payload["status"] = JobStatus(payload.get("status", JobStatus.PENDING.value))
        return cls(**payload)

    def to_status_payload(self) -> Dict[str, Any]:
        """Shape returned to polling clients."""
        payload: Dict[str, Any] = {
            "jobId": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "warnings": list(self.warnings),
        }
        if self.error:
            payload["error"] = self.error
        if self.download_urls:
            payload["downloadUrl"] = self.download_urls[0]
            payload["allDownloadUrls"] = list(self.download_urls)
        return payload
