from typing import List
from datetime import datetime, timezone
from ..models.files import FileEntry, FileRecord
from .catalog import CatalogStore


def is_direct_child(prefix: str, file_path: str) -> bool:
  """Whether a key is exactly one path segment below prefix.

  A direct child is either a file (no slash after the prefix) or a folder
  marker (a single slash, at the very end).
  """
  if not file_path.startswith(prefix):
    return False
  relative = file_path[len(prefix):]
  if not relative:
    return False
  slash_count = relative.count("/")
  return slash_count == 0 or (slash_count == 1 and relative.endswith("/"))


class PrefixLister:
  """
  Present one level of the flat key space as a directory listing, from the catalog.
  """

  def __init__(self, catalog: CatalogStore):
    self.catalog = catalog

  async def list(self, prefix: str) -> List[FileEntry]:
    """List the files and folders directly under a prefix.

    Args:
        prefix (str): The normalized prefix, empty for the root.

    Returns:
        List[FileEntry]: The entries, sorted by key.
    """
    records = await self.catalog.find_by_prefix(prefix)
    now = datetime.now(timezone.utc)
    entries = [self._to_entry(record, now) for record in records if is_direct_child(prefix, record.file_path)]
    return sorted(entries, key=lambda entry: entry.key)

  def _to_entry(self, record: FileRecord, now: datetime) -> FileEntry:
    return FileEntry(
      key=record.file_path,
      size=record.size or 0,
      last_modified=record.updated_at or now)
