"""
Atomic ffmpeg outputs and concat demuxer lists.

Usage:
    from clip_montage.core.ffmpeg_atomics import atomic_output, concat_list

    with concat_list(work_dir, "v01", clip_paths) as list_path:
        with atomic_output(dest) as temp_path:
            run_command(build_ffmpeg_cmd(["-f", "concat", "-safe", "0", "-i", list_path, temp_path]))
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence, Union

from ..logger import logger

PathLike = Union[str, Path]


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.debug(f"Could not remove {path}: {exc}")


@contextmanager
def atomic_output(dest: PathLike) -> Iterator[str]:
    """
    Yield a sibling temp path for ffmpeg to write; rename it onto ``dest`` on success.

    The temp name keeps the container extension so ffmpeg picks the right muxer.
    A missing temp file after the block raises FileNotFoundError. On any error
    the partial file is removed and ``dest`` is left untouched.
    """
    dest = Path(dest)
    temp = dest.with_name(f"{dest.stem}.tmp{dest.suffix}")
    try:
        yield str(temp)
        if not temp.exists():
            raise FileNotFoundError(f"ffmpeg produced no output at {temp}")
        os.replace(temp, dest)
        logger.debug(f"Wrote {dest.name}")
    except BaseException:
        _discard(temp)
        raise


def _quote(path: PathLike) -> str:
    # concat demuxer syntax: single quotes, embedded quotes as '\''
    return "'" + str(Path(path).resolve()).replace("'", "'\\''") + "'"


@contextmanager
def concat_list(work_dir: PathLike, label: str, clip_paths: Sequence[PathLike]) -> Iterator[str]:
    """Write ``<label>_concat.txt`` listing ``clip_paths`` in order; removed on exit."""
    work_dir = Path(work_dir)
    work_dir.mkdir(parents=True, exist_ok=True)
    list_path = work_dir / f"{label}_concat.txt"
    list_path.write_text("".join(f"file {_quote(p)}\n" for p in clip_paths), encoding="utf-8")
    logger.debug(f"Concat list {list_path.name}: {len(clip_paths)} clips")
    try:
        yield str(list_path)
    finally:
        _discard(list_path)
