"""
HTTP tests for upload_api.main with auth, store and pipeline swapped out.
"""

import re
import uuid

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from ingest.jobs import UploadPipeline
from ingest.storage import Publisher
from upload_api import main
from upload_api.auth import AuthUser, get_current_user
from upload_api.videos import RedisVideoStore

from fakes import FakeRedis

MP4 = b"\x00\x00\x00\x18ftypmp42 sample"


@pytest.fixture
def client(pipeline, store):
    main.app.dependency_overrides[get_current_user] = lambda: AuthUser(sub="user-1", email="owner@example.com")
    main.app.dependency_overrides[main.get_video_store] = lambda: store
    main.app.dependency_overrides[main.get_pipeline] = lambda: pipeline
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def video(store):
    return store.create_video("user-1", "Boots", "A video about boots")


def upload(client, video_id, data=MP4, content_type="video/mp4"):
    return client.post(f"/api/video_upload/{video_id}", files={"video": ("clip.mp4", data, content_type)})


class TestUpload:

    def test_end_to_end_landscape(self, client, video, scratch_dir):
        """Owner uploads a 16:9 mp4; the fetched record carries the new URL and nothing else changes."""
        resp = upload(client, video.id)
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert re.match(r"^https://d111111abcdef8\.cloudfront\.net/landscape/[0-9a-f]{64}\.mp4$", body["videoUrl"])

        fetched = client.get(f"/api/videos/{video.id}").json()
        assert fetched["videoUrl"] == body["videoUrl"]
        assert fetched["title"] == "Boots"
        assert fetched["description"] == "A video about boots"
        assert fetched["userId"] == "user-1"
        assert list(scratch_dir.iterdir()) == []

    def test_invalid_id(self, client):
        assert upload(client, "not-a-uuid").status_code == 400

    def test_unknown_video(self, client):
        assert upload(client, uuid.uuid4()).status_code == 404

    def test_not_owner(self, client, store, fake_media, scratch_dir):
        other = store.create_video("user-2", "Not yours")
        resp = upload(client, other.id)
        assert resp.status_code == 403
        assert fake_media.probed == []
        assert list(scratch_dir.iterdir()) == []

    def test_png_rejected(self, client, video, scratch_dir):
        resp = upload(client, video.id, content_type="image/png")
        assert resp.status_code == 400
        assert list(scratch_dir.iterdir()) == []

    def test_missing_video_part(self, client, video):
        resp = client.post(f"/api/video_upload/{video.id}", data={"title": "x"})
        assert resp.status_code == 400

    def test_processing_failure_is_500(self, client, video, fake_media, store):
        fake_media.fail_remux = True
        resp = upload(client, video.id)
        assert resp.status_code == 500
        assert "detail" in resp.json()
        assert store.get_video(video.id).video_url is None

    def test_publish_failure_is_500(self, client, video, fake_s3, store):
        fake_s3.fail_upload = True
        resp = upload(client, video.id)
        assert resp.status_code == 500
        assert store.get_video(video.id).video_url is None

    def test_declared_oversize_rejected(self, client, video):
        too_big = str(main.CONFIG.max_upload_bytes + main.FORM_OVERHEAD + 1)
        resp = client.post(f"/api/video_upload/{video.id}", content=b"", headers={"content-length": too_big})
        assert resp.status_code == 400


class TestAuthRequired:

    def test_no_token(self, store, video):
        main.app.dependency_overrides[main.get_video_store] = lambda: store
        try:
            resp = TestClient(main.app).post(f"/api/video_upload/{video.id}", files={"video": ("clip.mp4", MP4, "video/mp4")})
        finally:
            main.app.dependency_overrides.clear()
        assert resp.status_code == 401


class TestVideos:

    def test_create_list_delete(self, client):
        created = client.post("/api/videos", json={"title": "New", "description": "d"})
        assert created.status_code == 201
        vid = created.json()["id"]
        assert created.json()["videoUrl"] is None

        items = client.get("/api/videos").json()["items"]
        assert [v["id"] for v in items] == [vid]

        assert client.delete(f"/api/videos/{vid}").status_code == 204
        assert client.get(f"/api/videos/{vid}").status_code == 404

    def test_create_requires_title(self, client):
        assert client.post("/api/videos", json={"description": "d"}).status_code == 400

    def test_other_users_video_forbidden(self, client, store):
        other = store.create_video("user-2", "Not yours")
        assert client.get(f"/api/videos/{other.id}").status_code == 403
        assert client.delete(f"/api/videos/{other.id}").status_code == 403

    def test_health(self, client):
        assert client.get("/healthz").json() == {"ok": True}

    def test_me(self, client):
        assert client.get("/me").json()["sub"] == "user-1"


class TestStoreOutage:

    def test_lookup_error_is_reported_as_storage_error(self, config, fake_media, fake_s3):
        class DownRedis(FakeRedis):
            def get(self, key):
                raise RedisConnectionError("connection refused")

        down = RedisVideoStore(DownRedis())
        down_pipeline = UploadPipeline(config, fake_media, Publisher(fake_s3, config.bucket, log=lambda m: None), down)
        main.app.dependency_overrides[get_current_user] = lambda: AuthUser(sub="user-1")
        main.app.dependency_overrides[main.get_video_store] = lambda: down
        main.app.dependency_overrides[main.get_pipeline] = lambda: down_pipeline
        try:
            client = TestClient(main.app)
            vid = uuid.uuid4()
            upload_resp = upload(client, vid)
            get_resp = client.get(f"/api/videos/{vid}")
        finally:
            main.app.dependency_overrides.clear()

        assert upload_resp.status_code == 500
        assert upload_resp.json()["detail"].startswith("get video failed")
        assert get_resp.status_code == 500
        assert get_resp.json()["detail"].startswith("get video failed")
        assert fake_media.probed == []
