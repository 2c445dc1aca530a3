import pytest
import pytest_asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set
from bucketfs.errors import NotFoundError, StoreUnavailableError
from bucketfs.models.files import ObjectPage, ObjectSummary
from bucketfs.services import CatalogStore, Database, FilesStore
from bucketfs.utils.files import to_folder_key


class FakeS3Service:
    """In memory object store with the same interface as S3Service.

    Pages are cut in key order, the continuation token is the last key of the
    previous page, like S3 does with StartAfter.
    """

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.list_calls: List[tuple] = []
        self.delete_batches: List[List[str]] = []
        self.copy_calls: List[tuple] = []
        self.fail_delete_keys: Set[str] = set()
        self.fail_copy_keys: Set[str] = set()
        self.fail_list_after: Optional[int] = None

    async def put_object(self, key: str, data: bytes, content_type: Optional[str] = None) -> int:
        self.objects[key] = bytes(data)
        self.content_types[key] = content_type
        return len(data)

    async def create_folder(self, key: str) -> str:
        folder_key = to_folder_key(key)
        await self.put_object(folder_key, b"", "application/x-directory")
        return folder_key

    async def head_object(self, key: str) -> Optional[dict]:
        if key not in self.objects:
            return None
        return {"ContentLength": len(self.objects[key]), "ContentType": self.content_types.get(key)}

    async def object_exists(self, key: str) -> bool:
        return key in self.objects

    async def prefix_exists(self, prefix: str) -> bool:
        return any(key.startswith(prefix) for key in self.objects)

    async def presigned_url(self, key: str) -> str:
        if key not in self.objects:
            raise NotFoundError(f"File {key} does not exist")
        return f"https://bucket.example.org/{key}?signature=abc"

    async def delete_object(self, key: str) -> str:
        self.objects.pop(key, None)
        return key

    async def list_page(self, prefix: str, continuation_token: Optional[str] = None, max_keys: int = 1000) -> ObjectPage:
        self.list_calls.append((prefix, continuation_token))
        if self.fail_list_after is not None and len(self.list_calls) > self.fail_list_after:
            raise StoreUnavailableError("Object store unavailable: connection reset")
        keys = sorted(key for key in self.objects if key.startswith(prefix))
        if continuation_token:
            keys = [key for key in keys if key > continuation_token]
        page_keys = keys[:max_keys]
        truncated = len(keys) > max_keys
        now = datetime.now(timezone.utc)
        return ObjectPage(
            objects=[ObjectSummary(key=key, size=len(self.objects[key]), last_modified=now) for key in page_keys],
            truncated=truncated,
            next_token=page_keys[-1] if truncated else None)

    async def delete_batch(self, keys: List[str]) -> List[str]:
        self.delete_batches.append(list(keys))
        failed = [key for key in keys if key in self.fail_delete_keys]
        for key in keys:
            if key not in self.fail_delete_keys:
                self.objects.pop(key, None)
        return failed

    async def copy_object(self, source_key: str, destination_key: str) -> str:
        self.copy_calls.append((source_key, destination_key))
        if source_key in self.fail_copy_keys:
            raise StoreUnavailableError(f"Object store error on {source_key}: InternalError")
        if source_key not in self.objects:
            raise NotFoundError(f"File {source_key} does not exist")
        self.objects[destination_key] = self.objects[source_key]
        self.content_types[destination_key] = self.content_types.get(source_key)
        return destination_key

    async def close(self):
        pass


@pytest.fixture
def fake_s3():
    return FakeS3Service()


@pytest_asyncio.fixture
async def database():
    """An in memory catalog database."""
    db = Database("sqlite+aiosqlite://")
    yield db
    await db.close()


@pytest.fixture
def catalog(database):
    return CatalogStore(database)


@pytest.fixture
def files_store(fake_s3, catalog):
    return FilesStore(fake_s3, catalog, page_size=1000)
