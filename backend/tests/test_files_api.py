import io
import uuid
import zipfile

from fastapi import status
from httpx import ASGITransport, AsyncClient

from nimbus.config import settings
from nimbus.exceptions import StorageError
from nimbus.main import app


async def upload(client, files, **data):
    return await client.post(
        "/api/files/upload",
        files=[("file", f) for f in files],
        data=data,
    )


class TestUploadEndpoint:
    """POST /api/files/upload"""

    async def test_upload_single_file(self, client):
        response = await upload(client, [("report.pdf", b"%PDF-1.4 body", "application/pdf")], tags="work")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is True
        assert data["filesProcessed"] == 1
        assert data["filesSuccessful"] == 1
        assert data["file"]["name"] == "report.pdf"
        assert data["file"]["tags"] == ["work"]
        assert data["file"]["category"] == "document"
        assert data["file"]["isFolder"] is False
        assert data["file"]["url"] == f"/api/files/{data['file']['id']}/content"

    async def test_tags_as_json_array(self, client):
        response = await upload(client, [("a.txt", b"a", "text/plain")], withTags='["x", "y"]')

        assert response.json()["file"]["tags"] == ["x", "y"]

    async def test_upload_into_folder(self, client):
        folder = (await client.post("/api/folders", json={"name": "Docs"})).json()

        response = await upload(client, [("a.txt", b"a", "text/plain")], folderId=folder["id"])

        assert response.json()["file"]["parentId"] == folder["id"]

    async def test_no_files(self, client):
        response = await client.post("/api/files/upload", data={"tags": "work"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"success": False, "error": "No files uploaded"}

    async def test_unknown_folder(self, client):
        response = await upload(client, [("a.txt", b"a", "text/plain")], folderId=str(uuid.uuid4()))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["success"] is False

    async def test_malformed_folder_id(self, client):
        response = await upload(client, [("a.txt", b"a", "text/plain")], folderId="not-a-uuid")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_all_failed(self, client, storage, monkeypatch):
        async def broken_write(content, name):
            raise StorageError("disk full")

        monkeypatch.setattr(storage, "write", broken_write)

        response = await upload(client, [("a.txt", b"a", "text/plain"), ("b.txt", b"b", "text/plain")])

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        data = response.json()
        assert data["success"] is False
        assert data["filesProcessed"] == 2
        assert data["filesSuccessful"] == 0
        assert data["error"]
        assert all(f["error"] is True for f in data["files"])
        assert data["files"][0]["errorMessage"] == "disk full"

    async def test_partial_failure_is_ok(self, client, storage, monkeypatch):
        real_write = storage.write
        calls = {"n": 0}

        async def flaky_write(content, name):
            calls["n"] += 1
            if calls["n"] == 2:
                raise StorageError("disk full")
            return await real_write(content, name)

        monkeypatch.setattr(storage, "write", flaky_write)

        response = await upload(
            client,
            [("1.txt", b"1", "text/plain"), ("2.txt", b"2", "text/plain"), ("3.txt", b"3", "text/plain")],
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["filesProcessed"] == 3
        assert data["filesSuccessful"] == 2
        assert data["files"][1] == {"error": True, "name": "2.txt", "errorMessage": "disk full"}

    async def test_missing_user_header(self):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as anonymous:
            response = await anonymous.post(
                "/api/files/upload",
                files=[("file", ("a.txt", b"a", "text/plain"))],
            )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_directory_upload_over_a_thousand_files(self, client):
        """Each file brings its own path field; the form limits allow both."""
        count = 1001
        files = [("file", (f"f{i}.txt", b"x", "text/plain")) for i in range(count)]
        data = {f"path_{i}": f"bulk/f{i}.txt" for i in range(count)}
        data["isFolderUpload"] = "true"

        response = await client.post("/api/files/upload", files=files, data=data)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["filesSuccessful"] == count

    async def test_too_many_files(self, client, monkeypatch):
        monkeypatch.setattr(settings, "MAX_UPLOAD_FILES", 2)

        response = await upload(
            client,
            [("1.txt", b"1", "text/plain"), ("2.txt", b"2", "text/plain"), ("3.txt", b"3", "text/plain")],
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["success"] is False
        assert "Too many files" in body["error"]


class TestDownloadEndpoint:
    """GET/POST /api/files/download"""

    async def test_round_trip_single_file(self, client):
        body = b"%PDF-1.4 quarterly numbers"
        uploaded = (await upload(client, [("report.pdf", body, "application/pdf")], tags="work")).json()

        response = await client.get("/api/files/download", params={"fileIds": uploaded["file"]["id"]})

        assert response.status_code == status.HTTP_200_OK
        assert response.content == body
        assert response.headers["content-type"] == "application/pdf"
        assert "attachment" in response.headers["content-disposition"]
        assert "report.pdf" in response.headers["content-disposition"]
        assert response.headers["content-length"] == str(len(body))
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
        assert response.headers["pragma"] == "no-cache"
        assert response.headers["expires"] == "0"

    async def test_directory_upload_then_zip(self, client, storage):
        """a.txt at root and sub/b.txt; zipping both yields a.txt and sub/b.txt."""
        data = (await upload(
            client,
            [("a.txt", b"A", "text/plain"), ("b.txt", b"B", "text/plain")],
            isFolderUpload="true",
            path_0="a.txt",
            path_1="sub/b.txt",
        )).json()
        assert data["filesSuccessful"] == 2

        listing = (await client.get("/api/files")).json()
        assert [item["name"] for item in listing["items"]] == ["sub", "a.txt"]
        sub = listing["items"][0]
        a_file = listing["items"][1]

        sub_contents = (await client.get(f"/api/folders/{sub['id']}/contents")).json()
        assert [item["name"] for item in sub_contents["items"]] == ["b.txt"]

        response = await client.post(
            "/api/files/download",
            json={"fileIds": [a_file["id"], sub["id"]]},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "application/zip"
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert set(zf.namelist()) == {"a.txt", "sub/", "sub/b.txt"}
            assert zf.read("sub/b.txt") == b"B"

    async def test_temp_archive_removed_after_response(self, client, storage):
        folder = (await client.post("/api/folders", json={"name": "Docs"})).json()
        await upload(client, [("a.txt", b"a", "text/plain")], folderId=folder["id"])

        response = await client.get("/api/files/download", params={"folderId": folder["id"]})

        assert response.status_code == status.HTTP_200_OK
        assert "Docs.zip" in response.headers["content-disposition"]
        assert list(storage.temp_path.iterdir()) == []

    async def test_post_is_folder_flag(self, client):
        folder = (await client.post("/api/folders", json={"name": "Docs"})).json()
        await upload(client, [("a.txt", b"a", "text/plain")], folderId=folder["id"])

        response = await client.post(
            "/api/files/download",
            json={"fileIds": [folder["id"]], "isFolder": True},
        )

        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert zf.namelist() == ["a.txt"]

    async def test_no_ids(self, client):
        response = await client.get("/api/files/download")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_empty_folder_is_not_found(self, client):
        folder = (await client.post("/api/folders", json={"name": "Empty"})).json()

        response = await client.get("/api/files/download", params={"folderId": folder["id"]})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error"] == "No downloadable files"


class TestFileMetadataEndpoints:
    async def test_get_and_content(self, client):
        uploaded = (await upload(client, [("note.txt", b"hello", "text/plain")])).json()["file"]

        meta = await client.get(f"/api/files/{uploaded['id']}")
        content = await client.get(f"/api/files/{uploaded['id']}/content")

        assert meta.json()["name"] == "note.txt"
        assert content.content == b"hello"
        assert content.headers["content-disposition"].startswith("inline")

    async def test_unknown_file(self, client):
        response = await client.get(f"/api/files/{uuid.uuid4()}")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    async def test_rename_and_tags(self, client):
        uploaded = (await upload(client, [("a.txt", b"a", "text/plain")])).json()["file"]

        renamed = await client.patch(f"/api/files/{uploaded['id']}/rename", json={"name": "b.txt"})
        tagged = await client.put(f"/api/files/{uploaded['id']}/tags", json={"tags": ["x"]})

        assert renamed.json()["name"] == "b.txt"
        assert tagged.json()["tags"] == ["x"]

    async def test_move_cycle_conflict(self, client):
        a = (await client.post("/api/folders", json={"name": "A"})).json()
        b = (await client.post("/api/folders", json={"name": "B", "parentId": a["id"]})).json()

        response = await client.post(
            "/api/files/move",
            json={"fileIds": [a["id"]], "targetFolderId": b["id"]},
        )

        assert response.status_code == status.HTTP_409_CONFLICT

    async def test_move(self, client):
        folder = (await client.post("/api/folders", json={"name": "Docs"})).json()
        uploaded = (await upload(client, [("a.txt", b"a", "text/plain")])).json()["file"]

        response = await client.post(
            "/api/files/move",
            json={"fileIds": [uploaded["id"]], "targetFolderId": folder["id"]},
        )

        assert response.json()["moved"] == 1
        assert response.json()["files"][0]["parentId"] == folder["id"]

    async def test_delete_cascades(self, client):
        folder = (await client.post("/api/folders", json={"name": "Docs"})).json()
        await upload(client, [("a.txt", b"a", "text/plain")], folderId=folder["id"])

        response = await client.post("/api/files/delete", json={"fileIds": [folder["id"]]})

        assert response.json() == {"success": True, "deleted": 2}
        assert (await client.get("/api/files")).json() == {"items": [], "total": 0}

    async def test_delete_requires_ids(self, client):
        response = await client.post("/api/files/delete", json={"fileIds": []})

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_search(self, client):
        await upload(client, [("Budget.xlsx", b"x", "application/vnd.ms-excel")], tags="finance")
        await upload(client, [("photo.png", b"p", "image/png")])

        by_name = (await client.get("/api/files/search", params={"q": "budget"})).json()
        by_tag = (await client.get("/api/files/search", params={"q": "finance", "mode": "tag"})).json()
        by_type = (await client.get("/api/files/search", params={"type": "image"})).json()

        assert [i["name"] for i in by_name["items"]] == ["Budget.xlsx"]
        assert [i["name"] for i in by_tag["items"]] == ["Budget.xlsx"]
        assert [i["name"] for i in by_type["items"]] == ["photo.png"]
