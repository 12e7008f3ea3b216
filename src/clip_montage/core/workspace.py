"""Per-job scratch directories with guaranteed removal."""

import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..logger import logger


@contextmanager
def job_workspace(root: Path, job_id: str, keep: bool = False) -> Iterator[Path]:
    """
    Create ``<root>/montage-<job_id>`` for one job and remove it on exit.

    Removal runs on success, failure and cancellation alike. ``keep`` leaves
    the directory in place for debugging.
    """
    work_dir = Path(root) / f"montage-{job_id}"
    work_dir.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Created workspace: {work_dir}")
    try:
        yield work_dir
    finally:
        if keep:
            logger.info(f"   Keeping workspace {work_dir}")
        else:
            shutil.rmtree(work_dir, ignore_errors=True)
            logger.debug(f"Removed workspace: {work_dir}")
