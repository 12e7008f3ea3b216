"""
Artifact persistence.

The pipeline hands each finished montage to an ArtifactStore and records the
returned URL on the job. LocalArtifactStore copies into the output directory,
which the web app serves under PUBLIC_BASE_URL.
"""

import shutil
from pathlib import Path
from typing import Protocol

from .exceptions import UploadError
from .file_ops import safe_filename
from .logger import logger


class ArtifactStore(Protocol):
    def persist(self, path: Path, suggested_name: str) -> str:
        """Store ``path`` and return a retrievable URL. Raises UploadError."""
        ...


class LocalArtifactStore:
    """Copies artifacts into ``output_dir`` and returns ``<base_url>/<name>``."""

    def __init__(self, output_dir: Path, base_url: str = "/downloads"):
        self.output_dir = Path(output_dir)
        self.base_url = base_url.rstrip("/")

    def persist(self, path: Path, suggested_name: str) -> str:
        name = safe_filename(suggested_name)
        if not name:
            raise UploadError(f"Invalid artifact name: {suggested_name!r}")

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            target = self.output_dir / name
            shutil.copyfile(path, target)
        except OSError as exc:
            raise UploadError(f"Failed to persist {Path(path).name}: {exc}") from exc

        logger.debug(f"Persisted {path} -> {target}")
        return f"{self.base_url}/{name}"

    def resolve(self, name: str) -> Path:
        return self.output_dir / name
