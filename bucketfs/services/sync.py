from typing import Awaitable, Iterable, List, Optional
from ..models.files import FileRecord, ObjectSummary, ReconcileReport
from ..utils.files import is_folder_key, key_name
from .catalog import CatalogStore
from ..errors import CatalogDesyncError
from .walker import PrefixWalker
import logging


def make_record(key: str, size: int = 0, owner_id: Optional[str] = None) -> FileRecord:
  """Build the catalog record of a key, folder-ness comes from the key itself."""
  folder = is_folder_key(key)
  return FileRecord(
    file_path=key,
    file_name=key_name(key),
    size=0 if folder else size,
    is_folder=folder,
    owner_id=owner_id)


class MetadataSynchronizer:
  """
  Mirror the object store mutations into the metadata catalog.

  Catalog writes only follow a successful store mutation. A failing catalog write
  leaves the catalog behind the store: it is logged as a desync and the operation
  still succeeds, reconcile() repairs the catalog.
  """

  def __init__(self, catalog: CatalogStore):
    self.catalog = catalog

  async def file_written(self, key: str, size: int, owner_id: Optional[str] = None) -> bool:
    return await self._apply(f"upload of {key}", self.catalog.upsert(make_record(key, size, owner_id)))

  async def folder_created(self, key: str, owner_id: Optional[str] = None) -> bool:
    return await self._apply(f"creation of {key}", self.catalog.upsert(make_record(key, 0, owner_id)))

  async def objects_copied(self, objects: Iterable[ObjectSummary], owner_id: Optional[str] = None) -> bool:
    """Upsert one record per copied object, named after its destination key.

    Args:
        objects (Iterable[ObjectSummary]): The copied objects, with their destination keys.
        owner_id (str, optional): The user who made the copy.
    """
    records = [make_record(obj.key, obj.size, owner_id) for obj in objects]
    if not records:
      return True
    return await self._apply(f"copy to {records[0].file_path}", self.catalog.upsert_many(records))

  async def file_deleted(self, key: str) -> bool:
    return await self._apply(f"deletion of {key}", self.catalog.delete_one(key))

  async def keys_deleted(self, keys: List[str]) -> bool:
    if not keys:
      return True
    return await self._apply(f"deletion of {len(keys)} objects", self.catalog.delete_many(keys))

  async def prefix_deleted(self, prefix: str) -> bool:
    return await self._apply(f"deletion of {prefix}", self.catalog.delete_by_prefix(prefix))

  async def reconcile(self, s3_service, prefix: str = "", page_size: int = 1000) -> ReconcileReport:
    """Rebuild the catalog records under a prefix from a full store listing.

    Missing or stale records are upserted, keeping their owner, and records with
    no object in the store are removed. Errors are raised, not swallowed.

    Args:
        s3_service (S3Service): The object store.
        prefix (str, optional): The prefix to reconcile. Defaults to the whole store.
        page_size (int, optional): The store listing page size.

    Returns:
        ReconcileReport: The number of store keys scanned, records upserted and removed.
    """
    existing = {record.file_path: record for record in await self.catalog.find_by_prefix(prefix)}
    report = ReconcileReport()
    store_keys = set()
    async for page in PrefixWalker(s3_service, prefix, page_size).pages():
      stale = []
      for obj in page.objects:
        store_keys.add(obj.key)
        record = existing.get(obj.key)
        expected = make_record(obj.key, obj.size, record.owner_id if record else None)
        if record is None or record.size != expected.size or record.is_folder != expected.is_folder \
            or record.file_name != expected.file_name:
          stale.append(expected)
      report.scanned += len(page.objects)
      report.upserted += await self.catalog.upsert_many(stale)
    orphans = [file_path for file_path in existing if file_path not in store_keys]
    report.removed = await self.catalog.delete_many(orphans)
    logging.info(f"Catalog reconciled under '{prefix}': {report.scanned} scanned, "
                 f"{report.upserted} upserted, {report.removed} removed")
    return report

  async def _apply(self, description: str, write: Awaitable) -> bool:
    try:
      await write
      return True
    except Exception as e:
      error = CatalogDesyncError(f"Catalog out of sync after {description}: {e}")
      logging.error(f"{error}. Run a reconciliation to repair it.")
      return False
