from nimbus.exceptions import StorageError
from nimbus.services.folder_materializer import FolderMaterializer, directory_prefixes, parent_prefix


class TestPrefixes:
    def test_parents_before_children(self):
        prefixes = directory_prefixes(["a/b/c/f.txt", "a/x.txt", "z/y.txt", "top.txt"])

        assert prefixes == ["a", "z", "a/b", "a/b/c"]

    def test_backslashes_and_dots(self):
        assert directory_prefixes(["dir\\.\\sub\\f.txt"]) == ["dir", "dir/sub"]

    def test_parent_prefix(self):
        assert parent_prefix("a/b/f.txt") == "a/b"
        assert parent_prefix("f.txt") is None


class TestMaterialize:
    async def test_creates_tree(self, repo, storage):
        materializer = FolderMaterializer(repo, storage)

        mapping = await materializer.materialize(["photos/2024/a.jpg", "photos/b.jpg"], None)

        assert set(mapping) == {"photos", "photos/2024"}
        photos = await repo.require(mapping["photos"])
        year = await repo.require(mapping["photos/2024"])
        assert photos.parent_id is None
        assert year.parent_id == photos.id
        assert year.path == "/photos/2024"
        assert (storage.base_path / "folders" / "user-1" / "photos" / "2024").is_dir()

    async def test_idempotent(self, repo, storage):
        """Running twice reuses the same folders and creates nothing new."""
        materializer = FolderMaterializer(repo, storage)
        paths = ["docs/a.txt", "docs/sub/b.txt"]

        first = await materializer.materialize(paths, None)
        second = await materializer.materialize(paths, None)

        assert first == second
        assert await repo.count_children(None) == 1
        assert await repo.count_children(first["docs"]) == 1

    async def test_reuses_existing_folder(self, repo, storage):
        existing = await repo.create_folder("docs", None)

        mapping = await FolderMaterializer(repo, storage).materialize(["docs/a.txt"], None)

        assert mapping["docs"] == existing.id

    async def test_under_target_folder(self, repo, storage):
        root = await repo.create_folder("Uploads", None)

        mapping = await FolderMaterializer(repo, storage).materialize(["sub/a.txt"], root.id)

        sub = await repo.require(mapping["sub"])
        assert sub.parent_id == root.id
        assert sub.path == "/Uploads/sub"

    async def test_flat_paths_create_nothing(self, repo, storage):
        mapping = await FolderMaterializer(repo, storage).materialize(["a.txt", "b.txt"], None)

        assert mapping == {}
        assert await repo.count_children(None) == 0

    async def test_reuses_folder_with_sanitized_name(self, repo, storage):
        """A name that gets sanitized on create is still found on the next upload."""
        materializer = FolderMaterializer(repo, storage)

        first = await materializer.materialize(["Q&A: notes/a.txt"], None)
        second = await materializer.materialize(["Q&A: notes/b.txt"], None)

        assert second["Q&A: notes"] == first["Q&A: notes"]
        assert (await repo.require(first["Q&A: notes"])).name == "Q&A- notes"
        assert await repo.count_children(None) == 1

    async def test_new_folders_get_upload_tags(self, repo, storage):
        existing = await repo.create_folder("old", None, tags=["keep"])

        mapping = await FolderMaterializer(repo, storage).materialize(
            ["old/a.txt", "new/b.txt"], None, tags=["Work", "2024"]
        )

        assert (await repo.require(mapping["new"])).tags == ["Work", "2024"]
        assert (await repo.require(existing.id)).tags == ["keep"]

    async def test_failed_folder_children_attach_to_target(self, repo, storage, monkeypatch):
        """When one folder cannot be created, its subfolders go under the target."""
        root = await repo.create_folder("Uploads", None)
        real_create = repo.create_folder

        async def failing_create(name, parent_id, tags=None):
            if name == "broken":
                raise StorageError("disk full")
            return await real_create(name, parent_id, tags=tags)

        monkeypatch.setattr(repo, "create_folder", failing_create)

        mapping = await FolderMaterializer(repo, storage).materialize(
            ["broken/inner/a.txt", "fine/b.txt"], root.id
        )

        assert "broken" not in mapping
        inner = await repo.require(mapping["broken/inner"])
        assert inner.parent_id == root.id
        assert (await repo.require(mapping["fine"])).parent_id == root.id
