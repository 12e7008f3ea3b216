from __future__ import annotations

from pathlib import Path
from typing import Optional

from werkzeug.utils import secure_filename


def safe_filename(filename: str) -> str:
    """Return a sanitized filename that is safe for local filesystem writes."""
    raw = (filename or "").strip()
    if not raw:
        return ""
    return secure_filename(raw)


def build_safe_path(base_dir: Path, filename: str) -> Optional[Path]:
    """Return a safe, resolved path inside base_dir or None if invalid."""
    safe_name = safe_filename(filename)
    if not safe_name:
        return None
    base_dir = base_dir.resolve()
    candidate = (base_dir / safe_name).resolve()
    if not str(candidate).startswith(str(base_dir)):
        return None
    return candidate


def file_size(path: str | Path) -> int:
    """Size in bytes, 0 when the file is missing."""
    try:
        return Path(path).stat().st_size
    except OSError:
        return 0
