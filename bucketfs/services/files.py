from typing import Any, List, Optional, Type, TypeVar, Union
from pydantic import BaseModel
from pydantic import ValidationError as RequestValidationError
from ..models.files import (
  ActivityAction,
  ActivityEntry,
  CopyRequest,
  ErrorKind,
  FileEntry,
  FolderRequest,
  KeyRequest,
  Outcome,
  ReconcileReport,
  UploadRequest,
  User,
)
from ..utils.files import DEFAULT_MAX_FILE_SIZE, is_folder_key, key_name, normalize_key, require_key
from .activity import ActivityRecorder
from .catalog import CatalogStore
from ..errors import FilesError, PartialBatchFailure, ValidationError
from .lister import PrefixLister
from .mutator import ObjectMutator
from .sync import MetadataSynchronizer
import functools
import logging

RequestT = TypeVar("RequestT", bound=BaseModel)


def outcome(failure_message: str):
  """Turn the result of a files operation into an Outcome.

  Classified errors are reported with their own message, anything else with
  the generic failure message only.
  """
  def decorator(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Outcome:
      try:
        data = await func(*args, **kwargs)
        return Outcome(ok=True, data=data)
      except FilesError as e:
        logging.warning(f"{failure_message}: {e}")
        return Outcome(ok=False, message=str(e), kind=e.kind)
      except Exception as e:
        logging.error(f"{failure_message}: {e}", exc_info=True)
        return Outcome(ok=False, message=failure_message, kind=ErrorKind.internal)
    return wrapper
  return decorator


def parse_request(request_type: Type[RequestT], request: Union[RequestT, dict, None]) -> RequestT:
  """Validate a request, rejecting missing and unknown fields before any side effect."""
  if isinstance(request, request_type):
    return request
  try:
    return request_type.model_validate(request or {})
  except RequestValidationError as e:
    fields = ", ".join(".".join(str(loc) for loc in error["loc"]) or "request" for error in e.errors())
    raise ValidationError(f"Invalid request fields: {fields}") from e


def _user_id(user: Optional[User]) -> Optional[str]:
  return user.id if user else None


class FilesStore:
  """
  This service provides the filesystem view of an object storage bucket. Every
  mutation is applied to the object store first, then mirrored in the metadata
  catalog and recorded in the activity log.
  """

  def __init__(self, s3_service, catalog: CatalogStore, page_size: int = 1000,
               max_upload_size: int = DEFAULT_MAX_FILE_SIZE):
    """Initialize the files service.

    Args:
        s3_service (S3Service): The object store.
        catalog (CatalogStore): The metadata catalog.
        page_size (int, optional): Number of keys per store listing page. Defaults to 1000.
        max_upload_size (int, optional): Maximum size in bytes of an uploaded file.
    """
    self.s3_service = s3_service
    self.catalog = catalog
    self.page_size = page_size
    self.mutator = ObjectMutator(s3_service, page_size=page_size, max_upload_size=max_upload_size)
    self.lister = PrefixLister(catalog)
    self.sync = MetadataSynchronizer(catalog)
    self.activity = ActivityRecorder(catalog)

  @outcome("Failed to list files")
  async def list_files(self, prefix: Optional[str] = "") -> List[FileEntry]:
    """List the files and folders directly under a prefix.

    Args:
        prefix (str, optional): The folder to list, the root when empty.

    Returns:
        Outcome: With the list of FileEntry as data.
    """
    return await self.lister.list(normalize_key(prefix))

  @outcome("File not found")
  async def download(self, key: Optional[str]) -> str:
    """Make a temporary download URL.

    Args:
        key (str): The file key.

    Returns:
        Outcome: With the signed URL as data.
    """
    key = require_key(key)
    if is_folder_key(key):
      raise ValidationError(f"Cannot download folder {key}")
    return await self.s3_service.presigned_url(key)

  @outcome("Upload failed")
  async def upload(self, request: Union[UploadRequest, dict], user: Optional[User] = None) -> dict:
    """Upload a file, overwriting any existing file with the same key.

    Args:
        request (UploadRequest): The key, base64 content and content type.
        user (User, optional): The uploading user.

    Returns:
        Outcome: With the stored key and size as data.
    """
    request = parse_request(UploadRequest, request)
    key = require_key(request.key)
    try:
      data = request.decoded_content()
    except ValueError as e:
      raise ValidationError(str(e))
    size = await self.mutator.upload(key, data, request.content_type)
    await self.sync.file_written(key, size, _user_id(user))
    await self.activity.record(ActivityAction.upload, key, key_name(key), _user_id(user),
                               {"contentType": request.content_type})
    return {"key": key, "size": size}

  @outcome("Create folder failed")
  async def create_folder(self, request: Union[FolderRequest, dict], user: Optional[User] = None) -> dict:
    request = parse_request(FolderRequest, request)
    folder_key = await self.mutator.create_folder(require_key(request.key, "folder key"))
    await self.sync.folder_created(folder_key, _user_id(user))
    await self.activity.record(ActivityAction.folder_create, folder_key, key_name(folder_key), _user_id(user))
    return {"key": folder_key}

  @outcome("Copy failed")
  async def copy(self, request: Union[CopyRequest, dict], user: Optional[User] = None) -> dict:
    """Copy a file, or a folder with everything under it.

    Args:
        request (CopyRequest): The source and destination keys. A source ending
        with a slash is a folder.
        user (User, optional): The user making the copy, owner of the copies.

    Returns:
        Outcome: With the destination and the number of copied objects as data.
    """
    request = parse_request(CopyRequest, request)
    source = require_key(request.source_key, "source")
    destination = require_key(request.destination_key, "destination")
    try:
      result = await self.mutator.copy(source, destination)
    except PartialBatchFailure as e:
      await self.sync.objects_copied(e.objects, _user_id(user))
      raise
    await self.sync.objects_copied(result.copied, _user_id(user))
    await self.activity.record(ActivityAction.copy, source, key_name(source), _user_id(user),
                               {"destination": result.copied[0].key})
    return {"source": source, "destination": result.copied[0].key, "copied": len(result.copied)}

  @outcome("Delete failed")
  async def delete(self, key: Union[KeyRequest, dict, str, None], user: Optional[User] = None) -> dict:
    """Delete a file, or a folder with everything under it. Deleting what does
    not exist succeeds.

    Args:
        key (str): The key, a folder when ending with a slash.
        user (User, optional): The user deleting.

    Returns:
        Outcome: With the key and the number of deleted objects as data.
    """
    if not isinstance(key, str) and key is not None:
      key = parse_request(KeyRequest, key).key
    key = require_key(key)
    if is_folder_key(key):
      try:
        deleted = await self.mutator.delete_prefix(key)
      except PartialBatchFailure as e:
        await self.sync.keys_deleted(e.done)
        raise
      await self.sync.prefix_deleted(key)
      await self.activity.record(ActivityAction.folder_delete, key, key_name(key), _user_id(user))
      return {"key": key, "deleted": len(deleted)}
    await self.mutator.delete_object(key)
    await self.sync.file_deleted(key)
    await self.activity.record(ActivityAction.delete, key, key_name(key), _user_id(user))
    return {"key": key, "deleted": 1}

  @outcome("Reconciliation failed")
  async def reconcile(self, prefix: Optional[str] = "") -> ReconcileReport:
    """Rebuild the catalog from the object store, under a prefix."""
    return await self.sync.reconcile(self.s3_service, normalize_key(prefix), self.page_size)

  @outcome("Failed to load logs")
  async def recent_activity(self, limit: int = 50) -> List[ActivityEntry]:
    return await self.activity.recent(limit)

  @outcome("Database error")
  async def db_info(self) -> dict:
    """Describe the catalog database.

    Returns:
        Outcome: With the database name and the number of file records as data.
    """
    return {"database": self.catalog.database.name, "filesCount": await self.catalog.count_files()}

  async def health(self) -> Any:
    return await self.catalog.database.ping()
