"""
Centralized Timeout Configuration

Every external-process invocation (download, probe, cut, concatenate) runs
with one of these timeouts. Values are read on each call so env changes apply
without a restart.

Environment Variables:
    TIMEOUT_DOWNLOAD=600     # yt-dlp / curl / HTTP source download
    TIMEOUT_PROBE=30         # ffprobe duration query
    TIMEOUT_CUT=120          # single clip extraction
    TIMEOUT_CONCAT=900       # final concat / stacked render
    TIMEOUT_HTTP=30          # HTTP connect/read for the requests strategy
"""

import os


class TimeoutConfig:
    """Timeouts in seconds with TIMEOUT_<NAME> env overrides."""

    @staticmethod
    def download() -> int:
        return int(os.getenv("TIMEOUT_DOWNLOAD", "600"))

    @staticmethod
    def probe() -> int:
        return int(os.getenv("TIMEOUT_PROBE", "30"))

    @staticmethod
    def cut() -> int:
        """Single clip extraction. A timeout here only skips the candidate."""
        return int(os.getenv("TIMEOUT_CUT", "120"))

    @staticmethod
    def concat() -> int:
        return int(os.getenv("TIMEOUT_CONCAT", "900"))

    @staticmethod
    def http() -> int:
        return int(os.getenv("TIMEOUT_HTTP", "30"))

    @staticmethod
    def get(name: str, default: int = 30) -> int:
        """Look up a timeout by name, e.g. get("cut") reads TIMEOUT_CUT."""
        return int(os.getenv(f"TIMEOUT_{name.upper()}", str(default)))
