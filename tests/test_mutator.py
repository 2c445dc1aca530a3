import pytest
from bucketfs.errors import NotFoundError, PartialBatchFailure, StoreUnavailableError, ValidationError
from bucketfs.services.mutator import ObjectMutator


@pytest.fixture
def mutator(fake_s3):
    return ObjectMutator(fake_s3, page_size=1000, max_upload_size=1024)


class TestUpload:
    """Test suite for ObjectMutator.upload."""

    @pytest.mark.asyncio
    async def test_upload(self, mutator, fake_s3):
        size = await mutator.upload("docs/a.txt", b"hello")
        assert size == 5
        assert fake_s3.objects["docs/a.txt"] == b"hello"
        assert fake_s3.content_types["docs/a.txt"] == "text/plain"

    @pytest.mark.asyncio
    async def test_upload_overwrites(self, mutator, fake_s3):
        await mutator.upload("a.txt", b"one")
        await mutator.upload("a.txt", b"second", "application/octet-stream")
        assert fake_s3.objects["a.txt"] == b"second"
        assert fake_s3.content_types["a.txt"] == "application/octet-stream"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key,data,message", [
        ("", b"x", "Missing key"),
        ("docs/", b"x", "Cannot upload content to folder"),
        ("a.txt", b"", "Missing content"),
        ("a.txt", None, "Missing content"),
    ])
    async def test_upload_validation(self, mutator, fake_s3, key, data, message):
        with pytest.raises(ValidationError) as exc_info:
            await mutator.upload(key, data)
        assert message in str(exc_info.value)
        assert fake_s3.objects == {}

    @pytest.mark.asyncio
    async def test_upload_too_large(self, mutator, fake_s3):
        with pytest.raises(ValidationError):
            await mutator.upload("big.bin", b"x" * 1025)
        assert fake_s3.objects == {}


class TestCreateFolder:
    """Test suite for ObjectMutator.create_folder."""

    @pytest.mark.asyncio
    async def test_create_folder_adds_slash(self, mutator, fake_s3):
        assert await mutator.create_folder("reports") == "reports/"
        assert fake_s3.objects["reports/"] == b""

    @pytest.mark.asyncio
    async def test_create_folder_twice(self, mutator, fake_s3):
        await mutator.create_folder("reports/")
        await mutator.create_folder("reports/")
        assert list(fake_s3.objects) == ["reports/"]

    @pytest.mark.asyncio
    async def test_create_folder_missing_key(self, mutator):
        with pytest.raises(ValidationError):
            await mutator.create_folder("")


class TestDelete:
    """Test suite for the deletions."""

    @pytest.mark.asyncio
    async def test_delete_file(self, mutator, fake_s3):
        fake_s3.objects["a.txt"] = b"x"
        assert await mutator.delete("a.txt") == ["a.txt"]
        assert fake_s3.objects == {}

    @pytest.mark.asyncio
    async def test_delete_missing_file_succeeds(self, mutator):
        assert await mutator.delete("missing.txt") == ["missing.txt"]

    @pytest.mark.asyncio
    async def test_delete_prefix_over_several_pages(self, mutator, fake_s3):
        """Test that every object of a 1200 key folder is deleted, one batch per page."""
        for i in range(1200):
            fake_s3.objects[f"big/{i:04d}.bin"] = b"x"
        fake_s3.objects["big-sibling.txt"] = b"x"
        deleted = await mutator.delete("big/")
        assert len(deleted) == 1200
        assert [len(batch) for batch in fake_s3.delete_batches] == [1000, 200]
        assert list(fake_s3.objects) == ["big-sibling.txt"]

    @pytest.mark.asyncio
    async def test_delete_empty_prefix_succeeds(self, mutator, fake_s3):
        assert await mutator.delete_prefix("nothing/") == []
        assert fake_s3.delete_batches == []

    @pytest.mark.asyncio
    async def test_delete_prefix_partial_failure(self, mutator, fake_s3):
        """Test that failed keys are reported and the following pages left alone."""
        mutator.page_size = 2
        for key in ["d/1", "d/2", "d/3", "d/4"]:
            fake_s3.objects[key] = b"x"
        fake_s3.fail_delete_keys = {"d/2"}
        with pytest.raises(PartialBatchFailure) as exc_info:
            await mutator.delete_prefix("d/")
        assert exc_info.value.done == ["d/1"]
        assert exc_info.value.failed == ["d/2"]
        assert sorted(fake_s3.objects) == ["d/2", "d/3", "d/4"]

    @pytest.mark.asyncio
    async def test_delete_prefix_listing_failure(self, mutator, fake_s3):
        mutator.page_size = 2
        for key in ["d/1", "d/2", "d/3"]:
            fake_s3.objects[key] = b"x"
        fake_s3.fail_list_after = 1
        with pytest.raises(PartialBatchFailure) as exc_info:
            await mutator.delete_prefix("d/")
        assert exc_info.value.done == ["d/1", "d/2"]
        assert isinstance(exc_info.value.__cause__, StoreUnavailableError)
        assert sorted(fake_s3.objects) == ["d/3"]

    @pytest.mark.asyncio
    async def test_delete_prefix_first_listing_failure(self, mutator, fake_s3):
        """Test that a failure before anything was deleted keeps its own kind."""
        fake_s3.objects["d/1"] = b"x"
        fake_s3.fail_list_after = 0
        with pytest.raises(StoreUnavailableError):
            await mutator.delete_prefix("d/")
        assert list(fake_s3.objects) == ["d/1"]

    @pytest.mark.asyncio
    async def test_delete_prefix_batch_request_failure(self, mutator, fake_s3):
        mutator.page_size = 2
        for key in ["d/1", "d/2", "d/3"]:
            fake_s3.objects[key] = b"x"
        delete_batch = fake_s3.delete_batch
        calls = []

        async def failing_second_batch(keys):
            calls.append(keys)
            if len(calls) > 1:
                raise StoreUnavailableError("Object store error on d/3: SlowDown")
            return await delete_batch(keys)

        fake_s3.delete_batch = failing_second_batch
        with pytest.raises(PartialBatchFailure) as exc_info:
            await mutator.delete_prefix("d/")
        assert exc_info.value.done == ["d/1", "d/2"]
        assert exc_info.value.failed == []


class TestCopy:
    """Test suite for the copies."""

    @pytest.mark.asyncio
    async def test_copy_file(self, mutator, fake_s3):
        fake_s3.objects["a.txt"] = b"hello"
        result = await mutator.copy("a.txt", "b.txt")
        assert result.keys == ["b.txt"]
        assert result.copied[0].size == 5
        assert fake_s3.objects["b.txt"] == b"hello"
        assert fake_s3.objects["a.txt"] == b"hello"

    @pytest.mark.asyncio
    async def test_copy_missing_file(self, mutator, fake_s3):
        with pytest.raises(NotFoundError):
            await mutator.copy("missing.txt", "b.txt")
        assert fake_s3.copy_calls == []

    @pytest.mark.asyncio
    async def test_copy_file_onto_itself(self, mutator, fake_s3):
        fake_s3.objects["a.txt"] = b"hello"
        with pytest.raises(ValidationError):
            await mutator.copy("a.txt", "a.txt")

    @pytest.mark.asyncio
    async def test_copy_file_onto_folder(self, mutator, fake_s3):
        fake_s3.objects["a.txt"] = b"hello"
        with pytest.raises(ValidationError):
            await mutator.copy("a.txt", "docs/")

    @pytest.mark.asyncio
    async def test_copy_prefix(self, mutator, fake_s3):
        """Test that every object under the source is copied to the substituted key."""
        fake_s3.objects.update({
            "reports/": b"",
            "reports/q1.pdf": b"q1",
            "reports/2024/": b"",
            "reports/2024/jan.pdf": b"jan",
        })
        result = await mutator.copy("reports/", "archive/old")
        assert result.keys == ["archive/old/", "archive/old/2024/", "archive/old/2024/jan.pdf", "archive/old/q1.pdf"]
        assert fake_s3.objects["archive/old/2024/jan.pdf"] == b"jan"
        assert fake_s3.objects["archive/old/"] == b""
        assert ("reports/", "archive/old/") not in fake_s3.copy_calls
        assert fake_s3.objects["reports/q1.pdf"] == b"q1"

    @pytest.mark.asyncio
    async def test_copy_prefix_without_marker(self, mutator, fake_s3):
        fake_s3.objects["loose/a.txt"] = b"a"
        result = await mutator.copy("loose/", "kept/")
        assert result.keys == ["kept/", "kept/a.txt"]

    @pytest.mark.asyncio
    async def test_copy_missing_prefix(self, mutator, fake_s3):
        """Test that nothing is written when the source folder does not exist."""
        with pytest.raises(NotFoundError):
            await mutator.copy("missing/", "dest/")
        assert fake_s3.objects == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("destination", ["reports/", "reports/sub/", "reports/sub"])
    async def test_copy_prefix_into_itself(self, mutator, fake_s3, destination):
        fake_s3.objects["reports/a.txt"] = b"a"
        with pytest.raises(ValidationError):
            await mutator.copy("reports/", destination)
        assert list(fake_s3.objects) == ["reports/a.txt"]

    @pytest.mark.asyncio
    async def test_copy_prefix_to_sibling_with_same_start(self, mutator, fake_s3):
        fake_s3.objects["reports/a.txt"] = b"a"
        result = await mutator.copy("reports/", "reports-2024/")
        assert result.keys == ["reports-2024/", "reports-2024/a.txt"]

    @pytest.mark.asyncio
    async def test_copy_prefix_partial_failure(self, mutator, fake_s3):
        """Test that a failed copy reports what was already written."""
        fake_s3.objects.update({"src/a.txt": b"a", "src/b.txt": b"b", "src/c.txt": b"c"})
        fake_s3.fail_copy_keys = {"src/b.txt"}
        with pytest.raises(PartialBatchFailure) as exc_info:
            await mutator.copy("src/", "dst/")
        error = exc_info.value
        assert error.done == ["dst/", "dst/a.txt"]
        assert error.failed == ["src/b.txt"]
        assert [obj.key for obj in error.objects] == ["dst/", "dst/a.txt"]
        assert "dst/c.txt" not in fake_s3.objects

    @pytest.mark.asyncio
    async def test_copy_prefix_listing_failure(self, mutator, fake_s3):
        """Test that a failing page listing reports the objects copied before it."""
        mutator.page_size = 2
        fake_s3.objects.update({"s/1": b"1", "s/2": b"2", "s/3": b"3"})
        fake_s3.fail_list_after = 1
        with pytest.raises(PartialBatchFailure) as exc_info:
            await mutator.copy("s/", "t/")
        error = exc_info.value
        assert error.done == ["t/", "t/1", "t/2"]
        assert error.failed == []
        assert isinstance(error.__cause__, StoreUnavailableError)
