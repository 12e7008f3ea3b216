"""Tests for persisting finished montages."""

import pytest

from clip_montage.exceptions import UploadError
from clip_montage.storage import LocalArtifactStore


@pytest.fixture
def montage(tmp_path):
    path = tmp_path / "work" / "montage_v01.mp4"
    path.parent.mkdir()
    path.write_bytes(b"\0" * 4096)
    return path


def test_persist_copies_and_returns_url(tmp_path, montage):
    store = LocalArtifactStore(tmp_path / "output", "/downloads/")
    url = store.persist(montage, "party_v01_1700000000000.mp4")

    assert url == "/downloads/party_v01_1700000000000.mp4"
    assert store.resolve("party_v01_1700000000000.mp4").read_bytes() == montage.read_bytes()


def test_persist_sanitizes_name(tmp_path, montage):
    store = LocalArtifactStore(tmp_path / "output")
    url = store.persist(montage, "../../etc/montage.mp4")

    assert url == "/downloads/etc_montage.mp4"
    assert (tmp_path / "output" / "etc_montage.mp4").exists()


def test_unusable_output_dir_raises_upload_error(tmp_path, montage):
    blocked = tmp_path / "output"
    blocked.write_text("a file, not a directory")
    store = LocalArtifactStore(blocked)

    with pytest.raises(UploadError, match="Failed to persist montage_v01.mp4"):
        store.persist(montage, "montage_v01.mp4")


def test_missing_artifact_raises_upload_error(tmp_path):
    store = LocalArtifactStore(tmp_path / "output")
    with pytest.raises(UploadError):
        store.persist(tmp_path / "gone.mp4", "gone.mp4")


def test_empty_name_raises_upload_error(tmp_path, montage):
    store = LocalArtifactStore(tmp_path / "output")
    with pytest.raises(UploadError, match="Invalid artifact name"):
        store.persist(montage, "   ")
