from typing import List, Optional
from ..models.files import ObjectSummary
from ..utils.files import (
  DEFAULT_MAX_FILE_SIZE,
  FileChecker,
  get_mime_type,
  is_folder_key,
  key_name,
  replace_prefix,
  to_folder_key,
)
from ..errors import FilesError, NotFoundError, PartialBatchFailure, ValidationError
from .walker import PrefixWalker
import logging


class CopyResult:
  """The objects written by a copy, with their destination keys."""

  def __init__(self):
    self.copied: List[ObjectSummary] = []

  def add(self, destination_key: str, source: ObjectSummary):
    self.copied.append(ObjectSummary(key=destination_key, size=source.size, last_modified=source.last_modified))

  @property
  def keys(self) -> List[str]:
    return [obj.key for obj in self.copied]


class ObjectMutator:
  """
  Apply uploads, folder creations, copies and deletions to the object store.

  Keys are expected to be normalized already, a trailing slash is what makes a
  key a folder. Every operation can be re-applied with the same end state.
  """

  def __init__(self, s3_service, page_size: int = 1000, max_upload_size: int = DEFAULT_MAX_FILE_SIZE):
    self.s3_service = s3_service
    self.page_size = page_size
    self.file_checker = FileChecker(max_upload_size)

  def walker(self, prefix: str) -> PrefixWalker:
    return PrefixWalker(self.s3_service, prefix, self.page_size)

  async def upload(self, key: str, data: Optional[bytes], content_type: Optional[str] = None) -> int:
    """Write a file object, overwriting any existing one.

    Args:
        key (str): The file key.
        data (bytes): The file content.
        content_type (str, optional): The mimetype, guessed from the key when missing.

    Returns:
        int: The size of the stored object.
    """
    if not key:
      raise ValidationError("Missing key")
    if is_folder_key(key):
      raise ValidationError(f"Cannot upload content to folder {key}")
    if not data:
      raise ValidationError("Missing content")
    self.file_checker.check_size(data)
    return await self.s3_service.put_object(key, data, content_type or get_mime_type(key_name(key)))

  async def create_folder(self, key: str) -> str:
    """Write the zero-byte marker of a folder, a no-op when it exists.

    Returns:
        str: The folder marker key, always ending with a slash.
    """
    if not key:
      raise ValidationError("Missing folder key")
    return await self.s3_service.create_folder(to_folder_key(key))

  async def delete(self, key: str) -> List[str]:
    if is_folder_key(key):
      return await self.delete_prefix(key)
    await self.delete_object(key)
    return [key]

  async def delete_object(self, key: str) -> str:
    if not key:
      raise ValidationError("Missing key")
    return await self.s3_service.delete_object(key)

  async def delete_prefix(self, prefix: str) -> List[str]:
    """Delete every object under a prefix, page by page.

    Args:
        prefix (str): The folder key.

    Raises:
        PartialBatchFailure: When the walk stops after some objects were deleted,
        because keys of a page could not be deleted or a store request failed. The
        following pages are left untouched.

    Returns:
        List[str]: The deleted keys.
    """
    if not prefix:
      raise ValidationError("Missing key")
    deleted = []
    try:
      async for page in self.walker(prefix).pages():
        keys = page.keys
        failed = await self.s3_service.delete_batch(keys)
        if failed:
          failed_set = set(failed)
          deleted.extend(key for key in keys if key not in failed_set)
          raise PartialBatchFailure(
            f"Failed to delete {len(failed)} object(s) under {prefix}",
            done=deleted, failed=failed)
        deleted.extend(keys)
    except PartialBatchFailure:
      raise
    except FilesError as e:
      if not deleted:
        raise
      raise PartialBatchFailure(
        f"Failed to delete {prefix} after {len(deleted)} object(s): {e}",
        done=deleted) from e
    logging.info(f"Folder deleted : {prefix} ({len(deleted)} objects)")
    return deleted

  async def copy(self, source: str, destination: str) -> CopyResult:
    if is_folder_key(source):
      return await self.copy_prefix(source, destination)
    return await self.copy_object(source, destination)

  async def copy_object(self, source: str, destination: str) -> CopyResult:
    """Copy a file server side.

    Raises:
        NotFoundError: When the source does not exist.
    """
    if not source or not destination:
      raise ValidationError("Missing source or destination")
    if is_folder_key(destination):
      raise ValidationError(f"Cannot copy file {source} onto folder {destination}")
    if source == destination:
      raise ValidationError(f"Cannot copy {source} onto itself")
    head = await self.s3_service.head_object(source)
    if head is None:
      raise NotFoundError(f"File {source} does not exist")
    await self.s3_service.copy_object(source, destination)
    result = CopyResult()
    result.add(destination, ObjectSummary(key=source, size=head.get("ContentLength", 0)))
    return result

  async def copy_prefix(self, source_prefix: str, destination: str) -> CopyResult:
    """Copy every object under a prefix to another prefix.

    The destination folder marker is written first, then the source prefix is
    walked and each object copied to its substituted key.

    Raises:
        NotFoundError: When nothing is stored under the source prefix.
        PartialBatchFailure: When an object could not be copied or listed, the walk
        stops there. What was written so far is carried by the error.

    Returns:
        CopyResult: The destination folder marker and every copied object.
    """
    if not source_prefix or not destination:
      raise ValidationError("Missing source or destination")
    destination_prefix = to_folder_key(destination)
    if destination_prefix.startswith(source_prefix):
      raise ValidationError(f"Cannot copy folder {source_prefix} into itself")
    if not await self.s3_service.prefix_exists(source_prefix):
      raise NotFoundError(f"Folder {source_prefix} does not exist")

    result = CopyResult()
    await self.s3_service.create_folder(destination_prefix)
    result.add(destination_prefix, ObjectSummary(key=source_prefix))
    current = None
    try:
      async for obj in self.walker(source_prefix).objects():
        destination_key = replace_prefix(obj.key, source_prefix, destination_prefix)
        if destination_key == destination_prefix:
          # already written above
          continue
        current = obj.key
        await self.s3_service.copy_object(obj.key, destination_key)
        current = None
        result.add(destination_key, obj)
    except FilesError as e:
      raise PartialBatchFailure(
        f"Failed to copy {source_prefix} to {destination_prefix} after {len(result.copied)} object(s): {e}",
        done=result.keys, failed=[current] if current else [], objects=result.copied) from e
    logging.info(f"Folder copied : {source_prefix} -> {destination_prefix} ({len(result.copied)} objects)")
    return result
