"""Shared test fixtures for the upload service tests."""
import os

import pytest

from app.core.config import Settings
from app.models.upload import CompletionEvent


@pytest.fixture
def test_settings(tmp_path):
    """Settings rooted in a throwaway storage directory."""
    return Settings(storage_root=str(tmp_path / "storage"), _env_file=None)


@pytest.fixture
def user_root(test_settings):
    root = test_settings.user_root("alice")
    os.makedirs(root)
    return root


@pytest.fixture
def upload_dir(test_settings, user_root):
    path = test_settings.upload_dir("alice")
    os.makedirs(path)
    return path


def write_upload(upload_dir, upload_id, content=b"uploaded bytes"):
    """Lay out the files the upload store keeps for one session."""
    with open(os.path.join(upload_dir, upload_id), "wb") as f:
        f.write(content)
    with open(os.path.join(upload_dir, upload_id + ".info"), "w") as f:
        f.write("{}")


def make_event(upload_id="abc123", destination="docs/report.pdf", overwrite="false",
               is_final=True, partial_uploads=None, **metadata):
    meta = {"filename": os.path.basename(destination), "destination": destination, "overwrite": overwrite}
    meta.update(metadata)
    return CompletionEvent(
        id=upload_id,
        size=0,
        is_final=is_final,
        metadata=meta,
        partial_uploads=partial_uploads or [],
    )
