"""
Centralized Configuration for Clip Montage

Single Source of Truth for paths, job limits, clip policy and encoding.
Every value can be overridden through an environment variable.

Usage:
    from clip_montage.config import get_settings

    settings = get_settings()
    scratch_root = settings.paths.temp_dir
    if settings.jobs.store_backend == "redis":
        ...
"""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


# =============================================================================
# Path Configuration
# =============================================================================
@dataclass
class PathConfig:
    """Filesystem locations used by the pipeline."""

    output_dir: Path = field(default_factory=lambda: Path(os.environ.get("OUTPUT_DIR", "/data/output")))
    temp_dir: Path = field(default_factory=lambda: Path(os.environ.get("TEMP_DIR", tempfile.gettempdir())))
    log_dir: Path = field(default_factory=lambda: Path(os.environ.get("LOG_DIR", os.path.join(tempfile.gettempdir(), "clip_montage_logs"))))

    def ensure_directories(self) -> None:
        """Create all directories if they don't exist."""
        for path in [self.output_dir, self.temp_dir, self.log_dir]:
            path.mkdir(parents=True, exist_ok=True)

    def get_log_path(self, job_id: str) -> Path:
        """Get log file path for a job."""
        return self.log_dir / f"montage_{job_id}.log"


# =============================================================================
# Job Configuration
# =============================================================================
@dataclass
class JobConfig:
    """Job lifecycle, concurrency and job-store backend."""

    retention_seconds: int = field(default_factory=lambda: int(os.environ.get("JOB_RETENTION_SECONDS", "3600")))
    purge_interval: int = field(default_factory=lambda: int(os.environ.get("JOB_PURGE_INTERVAL", "300")))
    max_concurrent_jobs: int = field(default_factory=lambda: int(os.environ.get("MAX_CONCURRENT_JOBS", "2")))
    max_parallel_variations: int = field(default_factory=lambda: int(os.environ.get("MAX_PARALLEL_VARIATIONS", "2")))
    store_backend: str = field(default_factory=lambda: os.environ.get("JOB_STORE", "memory").lower())
    redis_host: str = field(default_factory=lambda: os.environ.get("REDIS_HOST", "localhost"))
    redis_port: int = field(default_factory=lambda: int(os.environ.get("REDIS_PORT", "6379")))


# =============================================================================
# Clip Policy
# =============================================================================
@dataclass
class ClipConfig:
    """Extraction acceptance and over-provisioning policy."""

    # Anything at or below this is treated as an empty/corrupt container
    min_clip_bytes: int = field(default_factory=lambda: int(os.environ.get("MIN_CLIP_BYTES", "500")))
    pool_factor: float = field(default_factory=lambda: float(os.environ.get("POOL_FACTOR", "2.5")))
    backfill_attempt_factor: int = field(default_factory=lambda: int(os.environ.get("BACKFILL_ATTEMPT_FACTOR", "3")))
    stack_shrink_factor: float = field(default_factory=lambda: float(os.environ.get("STACK_SHRINK_FACTOR", "0.75")))


# =============================================================================
# Duration Fallbacks
# =============================================================================
@dataclass
class FallbackConfig:
    """Durations assumed when ffprobe cannot report one."""

    platform_duration: float = field(default_factory=lambda: float(os.environ.get("FALLBACK_DURATION_PLATFORM", "240")))
    cloud_duration: float = field(default_factory=lambda: float(os.environ.get("FALLBACK_DURATION_CLOUD", "120")))
    generic_duration: float = field(default_factory=lambda: float(os.environ.get("FALLBACK_DURATION_GENERIC", "60")))


# =============================================================================
# Encoding Configuration
# =============================================================================
@dataclass
class EncodingConfig:
    """FFmpeg encoding settings for clips and final renders."""

    codec: str = field(default_factory=lambda: os.environ.get("OUTPUT_CODEC", "libx264"))
    preset: str = field(default_factory=lambda: os.environ.get("FFMPEG_PRESET", "fast"))
    crf: int = field(default_factory=lambda: int(os.environ.get("FINAL_CRF", "22")))
    pix_fmt: str = field(default_factory=lambda: os.environ.get("OUTPUT_PIX_FMT", "yuv420p"))
    audio_codec: str = field(default_factory=lambda: os.environ.get("AUDIO_CODEC", "aac"))
    audio_bitrate: str = field(default_factory=lambda: os.environ.get("AUDIO_BITRATE", "128k"))


# =============================================================================
# Storage Configuration
# =============================================================================
@dataclass
class StorageConfig:
    """Where finished montages are published."""

    public_base_url: str = field(default_factory=lambda: os.environ.get("PUBLIC_BASE_URL", "/downloads").rstrip("/"))
    keep_scratch: bool = field(default_factory=lambda: _env_bool("KEEP_SCRATCH", "false"))


# =============================================================================
# Main Settings Class
# =============================================================================
@dataclass
class Settings:
    """
    Main configuration container.

    Usage:
        from clip_montage.config import get_settings

        settings = get_settings()
        settings.paths.ensure_directories()
        threshold = settings.clips.min_clip_bytes
    """

    paths: PathConfig = field(default_factory=PathConfig)
    jobs: JobConfig = field(default_factory=JobConfig)
    clips: ClipConfig = field(default_factory=ClipConfig)
    fallbacks: FallbackConfig = field(default_factory=FallbackConfig)
    encoding: EncodingConfig = field(default_factory=EncodingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    def __post_init__(self):
        if isinstance(self.paths.output_dir, str):
            self.paths.output_dir = Path(self.paths.output_dir)
        if isinstance(self.paths.temp_dir, str):
            self.paths.temp_dir = Path(self.paths.temp_dir)

    def reload(self) -> "Settings":
        """Reload settings from environment (useful after env changes)."""
        return Settings()


# =============================================================================
# Global Settings Instance (Singleton)
# =============================================================================
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance (lazy initialization)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Force reload of settings from environment."""
    global _settings
    _settings = Settings()
    return _settings
