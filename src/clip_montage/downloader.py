"""
Source download and duration resolution.

Downloads go through an ordered list of DownloadStrategy entries; the first
one that leaves a non-empty file behind wins. Duration probing falls back to a
per-source-kind default instead of failing the job.

Usage:
    from clip_montage.downloader import Downloader

    downloader = Downloader()
    downloader.download("https://youtu.be/abc123", work_dir / "source_0.mp4")
"""

import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import requests

from .config import FallbackConfig
from .config_timeouts import TimeoutConfig
from .core.cmd_runner import run_command
from .exceptions import CommandError, DownloadError, DurationUnavailableError
from .file_ops import file_size
from .logger import logger, log_warning


# =============================================================================
# Source Classification
# =============================================================================

class SourceKind(str, Enum):
    PLATFORM = "platform"
    CLOUD = "cloud"
    GENERIC = "generic"


PLATFORM_HOSTS = ("youtube.com", "youtu.be")
CLOUD_HOSTS = (
    "dropbox.com",
    "dropboxusercontent.com",
    "drive.google.com",
    "storage.googleapis.com",
    "blob.core.windows.net",
    "blob.vercel-storage.com",
    "amazonaws.com",
)


def _host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def classify_source(url: str) -> SourceKind:
    host = _host(url)
    if any(host == h or host.endswith("." + h) for h in PLATFORM_HOSTS):
        return SourceKind.PLATFORM
    if any(host == h or host.endswith("." + h) for h in CLOUD_HOSTS):
        return SourceKind.CLOUD
    return SourceKind.GENERIC


def is_platform_url(url: str) -> bool:
    return classify_source(url) is SourceKind.PLATFORM


def convert_dropbox_link(url: str) -> str:
    """Rewrite a Dropbox share link to its direct-download form."""
    if "dropbox.com" not in url or "raw=1" in url:
        return url
    if "dl=0" in url:
        return url.replace("dl=0", "raw=1")
    if "?" not in url:
        return url + "?raw=1"
    return url


def normalize_source_url(url: str) -> str:
    """
    Clean up a user-supplied source.

    A bare token longer than 10 characters is taken to be a YouTube video id.
    """
    url = (url or "").strip()
    if url and "://" not in url and len(url) > 10 and "/" not in url:
        url = f"https://www.youtube.com/watch?v={url}"
        logger.debug(f"Converted video ID to full URL: {url}")
    return convert_dropbox_link(url)


def fallback_duration(url: str, config: Optional[FallbackConfig] = None) -> float:
    """Duration assumed for a source whose real duration is unknown."""
    config = config or FallbackConfig()
    kind = classify_source(url)
    if kind is SourceKind.PLATFORM:
        return config.platform_duration
    if kind is SourceKind.CLOUD:
        return config.cloud_duration
    return config.generic_duration


# =============================================================================
# Strategies
# =============================================================================

FetchFn = Callable[[str, Path, int], None]


@dataclass(frozen=True)
class DownloadStrategy:
    """
    One way of fetching a source.

    Attributes:
        name: Label used in logs and error messages
        fetch: fetch(url, dest, timeout); raises on failure
        applies_to: Predicate on the URL; non-applicable strategies are skipped
    """
    name: str
    fetch: FetchFn
    applies_to: Callable[[str], bool] = lambda url: True


def _yt_dlp(fmt: str) -> FetchFn:
    def fetch(url: str, dest: Path, timeout: int) -> None:
        run_command(
            ["yt-dlp", "--no-playlist", "--force-overwrites", "-f", fmt,
             "--merge-output-format", "mp4", "-o", str(dest), url],
            timeout=timeout,
        )
    return fetch


def _curl(url: str, dest: Path, timeout: int) -> None:
    run_command(["curl", "-L", "-f", "-sS", "-o", str(dest), url], timeout=timeout)


def _http_get(url: str, dest: Path, timeout: int) -> None:
    with requests.get(url, stream=True, timeout=TimeoutConfig.http(), allow_redirects=True) as response:
        response.raise_for_status()
        with open(dest, "wb") as f:
            for chunk in response.iter_content(chunk_size=1024 * 1024):
                if chunk:
                    f.write(chunk)


def default_strategies() -> List[DownloadStrategy]:
    return [
        DownloadStrategy("yt-dlp-720p", _yt_dlp("best[height<=720]"), is_platform_url),
        DownloadStrategy(
            "yt-dlp-merged",
            _yt_dlp("bestvideo[ext=mp4]+bestaudio[ext=m4a]/mp4"),
            is_platform_url,
        ),
        DownloadStrategy("http", _http_get, lambda url: not is_platform_url(url)),
        DownloadStrategy("curl", _curl, lambda url: not is_platform_url(url)),
    ]


def first_success(
    url: str,
    dest: Path,
    strategies: Sequence[DownloadStrategy],
    timeout: Optional[int] = None,
) -> str:
    """
    Try applicable strategies in order; return the name of the one that worked.

    Raises:
        DownloadError: every applicable strategy failed
    """
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    timeout = timeout or TimeoutConfig.download()

    attempts: List[str] = []
    for strategy in strategies:
        if not strategy.applies_to(url):
            continue
        try:
            strategy.fetch(url, dest, timeout)
        except (CommandError, subprocess.TimeoutExpired, OSError, requests.RequestException) as exc:
            attempts.append(f"{strategy.name}: {exc.__class__.__name__}")
            log_warning(f"Download via {strategy.name} failed for {url}: {exc}")
            dest.unlink(missing_ok=True)
            continue

        if file_size(dest) > 0:
            return strategy.name
        attempts.append(f"{strategy.name}: empty file")
        dest.unlink(missing_ok=True)

    raise DownloadError(
        f"Failed to download {url} ({'; '.join(attempts) or 'no applicable strategy'})",
        url=url,
        attempts=attempts,
    )


# =============================================================================
# Downloader
# =============================================================================

ProbeFn = Callable[[str], float]


class Downloader:
    """Fetches sources and resolves their durations with fallbacks."""

    def __init__(
        self,
        strategies: Optional[Sequence[DownloadStrategy]] = None,
        fallbacks: Optional[FallbackConfig] = None,
    ):
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.fallbacks = fallbacks or FallbackConfig()

    def download(self, url: str, dest: Path) -> Path:
        url = normalize_source_url(url)
        name = first_success(url, dest, self.strategies)
        logger.info(f"   ⬇️  Downloaded {url} via {name} ({file_size(dest)} bytes)")
        return Path(dest)

    def resolve_duration(self, target: str, source_url: str, probe: ProbeFn) -> Tuple[float, bool]:
        """
        Probe ``target`` (local path or URL) for its duration.

        Returns:
            (duration, used_fallback)
        """
        try:
            return probe(target), False
        except DurationUnavailableError as exc:
            duration = fallback_duration(source_url, self.fallbacks)
            log_warning(f"{exc}; using fallback duration {duration:.0f}s")
            return duration, True


def missing_tools() -> List[str]:
    """Names of required external tools missing from PATH."""
    return [tool for tool in ("ffmpeg", "ffprobe", "yt-dlp", "curl") if shutil.which(tool) is None]
