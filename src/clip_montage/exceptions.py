"""
Clip Montage Exception Hierarchy

Structured exception types for the planning, extraction and job pipeline.
All exceptions inherit from MontageError for easy catching.

Usage:
    from clip_montage.exceptions import ExtractionError, NoClipsExtractedError

    try:
        cut_clip(source, start, duration, dest)
    except ExtractionError as e:
        logger.warning(f"Skipping candidate: {e}")
"""

from typing import List, Optional


class MontageError(Exception):
    """Base exception for all Clip Montage errors."""
    pass


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(MontageError):
    """Invalid configuration or request parameters."""
    pass


class InvalidConfigError(ConfigurationError):
    """Request parameters that can never yield a montage (e.g. interval > length)."""
    pass


class InvalidRangeError(ConfigurationError):
    """Start/end cuts leave no usable duration in the source."""

    def __init__(self, message: str, usable_duration: float = 0.0):
        super().__init__(message)
        self.usable_duration = usable_duration


# =============================================================================
# Media Errors
# =============================================================================

class MediaError(MontageError):
    """Error while fetching, probing, cutting or assembling media."""
    pass


class DownloadError(MediaError):
    """Source could not be fetched by any download strategy."""

    def __init__(self, message: str, url: Optional[str] = None, attempts: Optional[List[str]] = None):
        super().__init__(message)
        self.url = url
        self.attempts = attempts or []


class DurationUnavailableError(MediaError):
    """ffprobe could not report a usable duration."""
    pass


class ExtractionError(MediaError):
    """A single clip cut failed (non-zero exit, timeout or empty output)."""
    pass


class NoClipsExtractedError(MediaError):
    """Every extraction attempt for a source failed."""
    pass


class AssemblyError(MediaError):
    """Concatenation or stacking of accepted clips failed."""
    pass


class CommandError(MediaError):
    """External command exited with a non-zero status."""

    def __init__(self, cmd: List[str], returncode: int, stdout: str, stderr: str):
        self.cmd = cmd
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"Command failed with return code {returncode}: {' '.join(str(x) for x in cmd)}\nStderr: {stderr}"
        )


# =============================================================================
# Storage Errors
# =============================================================================

class StorageError(MontageError):
    """Error persisting or serving artifacts."""
    pass


class UploadError(StorageError):
    """Finished montage could not be persisted."""
    pass


# =============================================================================
# Job Errors
# =============================================================================

class JobError(MontageError):
    """Error in job state management."""
    pass


class NotFoundError(JobError):
    """Unknown job id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class InvalidTransitionError(JobError):
    """Job status may only move forward."""
    pass


class JobCancelledError(JobError):
    """Job was cancelled while running."""
    pass


# =============================================================================
# Warnings
# =============================================================================

class PartialResultWarning(UserWarning):
    """A source produced fewer clips than requested; the montage will be shorter."""

    def __init__(self, message: str, accepted: int = 0, target: int = 0):
        super().__init__(message)
        self.accepted = accepted
        self.target = target
