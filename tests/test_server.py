"""Tests for the s3drive HTTP routes."""

from conftest import MULTIPART_CONTENT_TYPE, build_multipart
from s3drive.config import ObservabilityConfig
from s3drive.drive import Drive
from s3drive.errors import StoreError
from s3drive.server import create_app
from s3drive.storage.memory import MemoryBucketStore


class TestUserRoutes:
    """GET/POST /api and DELETE /api/{userId}."""

    async def test_create_user_then_list(self, client):
        """POST /api creates the user; GET /api lists it."""
        resp = await client.post("/api", json={"userId": "alice"})
        assert resp.status_code == 200
        assert resp.json() == {"message": "User created successfully"}

        resp = await client.get("/api")
        assert resp.status_code == 200
        assert resp.json() == ["alice"]

    async def test_create_user_twice_is_idempotent(self, client, store):
        await client.post("/api", json={"userId": "alice"})
        resp = await client.post("/api", json={"userId": "alice"})
        assert resp.status_code == 200
        assert [e.key for e in await store.list_objects("alice/")] == ["alice/"]

    async def test_create_user_writes_zero_byte_marker(self, client, store):
        await client.post("/api", json={"userId": "bob"})
        entries = await store.list_objects("bob/")
        assert [(e.key, e.size) for e in entries] == [("bob/", 0)]

    async def test_create_user_missing_user_id_is_400(self, client):
        resp = await client.post("/api", json={"name": "alice"})
        assert resp.status_code == 400
        assert "userId" in resp.json()["message"]

    async def test_create_user_invalid_json_is_400(self, client):
        resp = await client.post(
            "/api", content=b"not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert set(resp.json()) == {"message"}

    async def test_create_user_form_content_type_is_parsed_as_json(self, client, store):
        """A JSON body sent with a form Content-Type still creates the user."""
        resp = await client.post(
            "/api",
            content=b'{"userId":"alice"}',
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        assert resp.status_code == 200
        assert [e.key for e in await store.list_objects("alice/")] == ["alice/"]

    async def test_create_user_without_content_type(self, client):
        resp = await client.post("/api", content=b'{"userId":"bob"}')
        assert resp.status_code == 200

    async def test_create_user_empty_body_is_400(self, client):
        resp = await client.post("/api")
        assert resp.status_code == 400
        assert "userId" in resp.json()["message"]

    async def test_create_user_rejects_dot_dot(self, client):
        resp = await client.post("/api", json={"userId": ".."})
        assert resp.status_code == 400

    async def test_list_users_empty_bucket(self, client):
        resp = await client.get("/api")
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_delete_user_removes_everything(self, client, store):
        await client.post("/api", json={"userId": "alice"})
        await store.put_object("alice/a.txt", b"aaa")
        await store.put_object("alice/b.txt", b"bbbb")

        resp = await client.delete("/api/alice")
        assert resp.status_code == 200
        assert resp.json() == {"message": "User deleted successfully"}
        assert await store.list_objects("alice/") == []

    async def test_delete_unknown_user_is_404(self, client):
        resp = await client.delete("/api/nobody")
        assert resp.status_code == 404
        assert resp.json() == {"message": "User not found"}


class TestFileRoutes:
    """GET/POST /api/{userId} and GET/DELETE /api/{userId}/{fileName}."""

    async def test_upload_then_download(self, client):
        """Multipart upload of notes.txt then GET returns the same bytes."""
        await client.post("/api", json={"userId": "alice"})
        resp = await client.post(
            "/api/alice", files={"file": ("notes.txt", b"hello", "text/plain")}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Upload successful"
        assert body["files"] == [
            {"field": "file", "name": "notes.txt", "key": "alice/notes.txt", "size": 5}
        ]

        resp = await client.get("/api/alice/notes.txt")
        assert resp.status_code == 200
        assert resp.content == b"hello"
        assert resp.headers["content-type"] == "application/octet-stream"
        assert resp.headers["content-disposition"] == "attachment"
        assert resp.headers["filename"] == "notes.txt"
        assert resp.headers["content-length"] == "5"

    async def test_upload_echoes_fields(self, client):
        resp = await client.post(
            "/api/alice",
            data={"comment": "first upload"},
            files={"file": ("a.bin", b"\x00\x01\x02")},
        )
        assert resp.status_code == 200
        assert resp.json()["fields"] == {"comment": "first upload"}

    async def test_upload_multiple_files(self, client):
        body = build_multipart(
            ("one", "1.txt", b"first"),
            ("two", "2.txt", b"second file"),
        )
        resp = await client.post(
            "/api/carol", content=body, headers={"Content-Type": MULTIPART_CONTENT_TYPE}
        )
        assert resp.status_code == 200

        resp = await client.get("/api/carol")
        assert sorted(resp.json(), key=lambda f: f["name"]) == [
            {"name": "1.txt", "size": 5},
            {"name": "2.txt", "size": 11},
        ]

    async def test_upload_overwrites_existing_file(self, client):
        await client.post("/api/alice", files={"file": ("n.txt", b"old contents")})
        await client.post("/api/alice", files={"file": ("n.txt", b"new")})
        resp = await client.get("/api/alice/n.txt")
        assert resp.content == b"new"

    async def test_upload_without_multipart_is_400(self, client):
        resp = await client.post("/api/alice", json={"file": "nope"})
        assert resp.status_code == 400
        assert set(resp.json()) == {"message"}

    async def test_upload_truncated_body_is_aborted(self, client):
        body = build_multipart(("file", "cut.txt", b"x" * 100))
        resp = await client.post(
            "/api/alice",
            content=body[:60],
            headers={"Content-Type": MULTIPART_CONTENT_TYPE},
        )
        assert resp.status_code == 400
        assert "closing boundary" in resp.json()["message"]

    async def test_list_files_excludes_marker(self, client):
        await client.post("/api", json={"userId": "alice"})
        await client.post("/api/alice", files={"file": ("notes.txt", b"hello")})

        resp = await client.get("/api/alice")
        assert resp.status_code == 200
        assert resp.json() == [{"name": "notes.txt", "size": 5}]

    async def test_list_files_for_user_without_files(self, client):
        await client.post("/api", json={"userId": "alice"})
        resp = await client.get("/api/alice")
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_list_files_unknown_user_is_404(self, client):
        resp = await client.get("/api/doesnotexist")
        assert resp.status_code == 404
        assert list(resp.json()) == ["message"]

    async def test_download_missing_file_is_404(self, client):
        await client.post("/api", json={"userId": "alice"})
        resp = await client.get("/api/alice/missing.txt")
        assert resp.status_code == 404
        assert "NoSuchKey" in resp.json()["message"]

    async def test_control_character_in_name_is_400(self, client, store):
        resp = await client.get("/api/alice/a%0Db")
        assert resp.status_code == 400
        assert "control characters" in resp.json()["message"]

    async def test_download_name_with_dot(self, client):
        """A file name with several dots still routes to the file handler."""
        await client.post("/api/alice", files={"file": ("archive.tar.gz", b"gz")})
        resp = await client.get("/api/alice/archive.tar.gz")
        assert resp.status_code == 200
        assert resp.content == b"gz"

    async def test_delete_file(self, client, store):
        await client.post("/api/alice", files={"file": ("notes.txt", b"hello")})
        resp = await client.delete("/api/alice/notes.txt")
        assert resp.status_code == 200
        assert resp.json() == {"message": "File deleted successfully"}
        assert await store.list_objects("alice/notes.txt") == []

    async def test_delete_missing_file_still_200(self, client):
        """No existence check: deleting a missing file reports success."""
        resp = await client.delete("/api/alice/notes.txt")
        assert resp.status_code == 200
        assert resp.json() == {"message": "File deleted successfully"}


class TestUnknownRoutes:
    """Anything outside the route table answers 404 with a message body."""

    async def test_unknown_path(self, client):
        resp = await client.get("/nope")
        assert resp.status_code == 404
        assert resp.json() == {"message": "404 Not Found"}

    async def test_too_many_segments(self, client):
        resp = await client.get("/api/alice/dir/file.txt")
        assert resp.status_code == 404
        assert resp.json() == {"message": "404 Not Found"}

    async def test_trailing_slash_not_redirected(self, client):
        resp = await client.get("/api/")
        assert resp.status_code == 404
        assert resp.json() == {"message": "404 Not Found"}

    async def test_unsupported_method(self, client):
        resp = await client.put("/api/alice")
        assert resp.status_code == 404
        assert resp.json() == {"message": "404 Not Found"}

    async def test_post_to_file_path(self, client):
        resp = await client.post("/api/alice/notes.txt")
        assert resp.status_code == 404
        assert resp.json() == {"message": "404 Not Found"}


class TestRequestIdAndHealth:

    async def test_request_id_header(self, client):
        resp = await client.get("/api")
        assert len(resp.headers["x-request-id"]) == 16

    async def test_request_id_is_propagated(self, client):
        resp = await client.get("/api", headers={"X-Request-Id": "abc123"})
        assert resp.headers["x-request-id"] == "abc123"

    async def test_health_ok(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestOperationLog:

    async def test_operations_are_logged_to_file(self, client, tmp_path):
        await client.post("/api", json={"userId": "alice"})
        await client.delete("/api/alice/x.txt")

        lines = (tmp_path / "logs").read_text().splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("New user created: alice")
        assert lines[1].endswith("File deleted: file:x.txt, user:alice")


class TestHealthDegraded:

    async def test_health_reports_store_failure(self, app, client, oplog):
        class _Unreachable(MemoryBucketStore):
            async def check(self):
                raise StoreError("Could not connect to the endpoint URL")

        app.state.drive = Drive(_Unreachable(), oplog)
        resp = await client.get("/health")
        assert resp.status_code == 503
        assert resp.json() == {
            "status": "degraded",
            "error": "Could not connect to the endpoint URL",
        }


class TestLifespan:

    async def test_lifespan_builds_and_closes_drive(self, config, tmp_path):
        log_path = tmp_path / "ops" / "s3drive.log"
        local = config.model_copy(
            update={
                "server": config.server.model_copy(update={"operation_log": str(log_path)}),
                "observability": ObservabilityConfig(metrics=False, health_check=True),
            }
        )
        app = create_app(local)

        async with app.router.lifespan_context(app):
            assert isinstance(app.state.drive, Drive)
            assert isinstance(app.state.store, MemoryBucketStore)
            await app.state.drive.create_user("alice")

        assert log_path.read_text().rstrip().endswith("New user created: alice")
