"""Tests for the tus HTTP endpoints."""

import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.services.auth_service import auth_service
from app.services.file_store import encode_metadata_header
from app.services.upload_handler import OFFSET_CONTENT_TYPE, TUS_RESUMABLE
from main import app


@pytest.fixture
def storage_root(tmp_path, monkeypatch):
    root = tmp_path / "storage"
    monkeypatch.setattr(settings, "storage_root", str(root))
    return root


def _auth(user_id="alice"):
    return {"Authorization": f"Bearer {auth_service.create_access_token({'user_id': user_id})}"}


def _create_headers(length, destination, overwrite="false", user_id="alice"):
    headers = _auth(user_id)
    headers.update({
        "Tus-Resumable": TUS_RESUMABLE,
        "Upload-Length": str(length),
        "Upload-Metadata": encode_metadata_header({
            "filename": os.path.basename(destination),
            "destination": destination,
            "overwrite": overwrite,
        }),
    })
    return headers


def _patch_headers(offset, user_id="alice"):
    headers = _auth(user_id)
    headers.update({
        "Tus-Resumable": TUS_RESUMABLE,
        "Upload-Offset": str(offset),
        "Content-Type": OFFSET_CONTENT_TYPE,
    })
    return headers


class TestTusApi:

    def test_requires_authentication(self, storage_root):
        with TestClient(app) as client:
            response = client.post("/api/tus/", headers={"Upload-Length": "1"})
        assert response.status_code in (401, 403)

    def test_invalid_token(self, storage_root):
        with TestClient(app) as client:
            response = client.post("/api/tus/", headers={"Authorization": "Bearer garbage", "Upload-Length": "1"})
        assert response.status_code == 401

    @pytest.mark.parametrize("method,path", [
        ("DELETE", "/api/tus/abc123"),
        ("GET", "/api/tus/abc123"),
        ("PUT", "/api/tus/"),
        ("GET", "/api/tus/"),
        ("POST", "/api/tus/abc123"),
        ("PATCH", "/api/tus/"),
    ])
    def test_other_methods_not_allowed(self, storage_root, method, path):
        with TestClient(app) as client:
            response = client.request(method, path, headers=_auth())
        assert response.status_code == 405
        assert response.json()["detail"] == "Method not allowed"

    def test_upload_flow_commits_file(self, storage_root):
        user_root = storage_root / "alice"
        upload_dir = user_root / ".tmp_upload"

        with TestClient(app) as client:
            created = client.post("/api/tus/", headers=_create_headers(11, "docs/report.pdf"))
            assert created.status_code == 201
            assert created.headers["Tus-Resumable"] == TUS_RESUMABLE
            location = created.headers["Location"]
            assert location.startswith("/api/tus/")
            assert upload_dir.is_dir()

            head = client.head(location, headers=_auth())
            assert head.status_code == 200
            assert head.headers["Upload-Offset"] == "0"
            assert head.headers["Upload-Length"] == "11"
            assert head.headers["Cache-Control"] == "no-store"

            first = client.patch(location, headers=_patch_headers(0), content=b"hello ")
            assert first.status_code == 204
            assert first.headers["Upload-Offset"] == "6"

            conflict = client.patch(location, headers=_patch_headers(0), content=b"again")
            assert conflict.status_code == 409

            last = client.patch(location, headers=_patch_headers(6), content=b"world")
            assert last.status_code == 204
            assert last.headers["Upload-Offset"] == "11"

        # leaving the client shuts the registry down after pending uploads are finalized
        assert (user_root / "docs" / "report.pdf").read_bytes() == b"hello world"
        assert not upload_dir.exists()

    def test_rejected_upload_leaves_destination_untouched(self, storage_root):
        user_root = storage_root / "alice"
        (user_root / "docs").mkdir(parents=True)
        (user_root / "docs" / "report.pdf").write_bytes(b"original")

        with TestClient(app) as client:
            location = client.post("/api/tus/", headers=_create_headers(3, "docs/report.pdf")).headers["Location"]
            upload_id = location.rsplit("/", 1)[-1]
            client.patch(location, headers=_patch_headers(0), content=b"new")

        assert (user_root / "docs" / "report.pdf").read_bytes() == b"original"
        assert sorted(os.listdir(user_root / ".tmp_upload")) == [upload_id, upload_id + ".info"]

    def test_users_get_separate_handlers_and_trees(self, storage_root):
        with TestClient(app) as client:
            pending = client.post("/api/tus/", headers=_create_headers(1, "again.txt", user_id="alice"))
            pending_id = pending.headers["Location"].rsplit("/", 1)[-1]
            for user_id in ("alice", "bob"):
                location = client.post(
                    "/api/tus/", headers=_create_headers(2, "hi.txt", user_id=user_id)
                ).headers["Location"]
                client.patch(location, headers=_patch_headers(0, user_id=user_id), content=user_id[:2].encode())

            assert len(app.state.handler_registry) == 2
            health = client.get("/health").json()
            assert health["upload_handlers"] == 2
            assert health["uploads"]["active_handlers"] == 2
            assert sorted(h["user_id"] for h in health["uploads"]["handlers"]) == ["alice", "bob"]
            assert all(h["consumer"]["running"] for h in health["uploads"]["handlers"])

        assert (storage_root / "alice" / "hi.txt").read_bytes() == b"al"
        assert (storage_root / "bob" / "hi.txt").read_bytes() == b"bo"
        assert sorted(os.listdir(storage_root / "alice" / ".tmp_upload")) == [pending_id, pending_id + ".info"]
        assert not (storage_root / "bob" / ".tmp_upload").exists()

    def test_unknown_upload_returns_404(self, storage_root):
        with TestClient(app) as client:
            response = client.head("/api/tus/doesnotexist", headers=_auth())
        assert response.status_code == 404

    def test_upload_too_large(self, storage_root, monkeypatch):
        monkeypatch.setattr(settings, "tus_max_size", 4)
        with TestClient(app) as client:
            response = client.post("/api/tus/", headers=_create_headers(5, "big.bin"))
        assert response.status_code == 413

    def test_disabled(self, storage_root, monkeypatch):
        monkeypatch.setattr(settings, "tus_enabled", False)
        with TestClient(app) as client:
            response = client.post("/api/tus/", headers=_create_headers(1, "a.txt"))
        assert response.status_code == 404

    def test_upload_dir_creation_failure(self, storage_root):
        with TestClient(app) as client:
            with patch("app.api.tus_upload.aiofiles.os.makedirs", side_effect=PermissionError("read-only")):
                response = client.post("/api/tus/", headers=_create_headers(1, "a.txt"))
        assert response.status_code == 500


class TestSettingsApi:

    def test_tus_settings(self, storage_root):
        with TestClient(app) as client:
            response = client.get("/api/settings-tus", headers=_auth())
        assert response.status_code == 200
        assert response.json() == {"enabled": True, "chunkSize": 20 * 1000 * 1000}

    def test_tus_settings_requires_authentication(self, storage_root):
        with TestClient(app) as client:
            response = client.get("/api/settings-tus")
        assert response.status_code in (401, 403)
