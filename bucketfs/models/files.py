import base64
import binascii
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

class ErrorKind(str, Enum):
  validation = "validation"
  not_found = "not_found"
  store_unavailable = "store_unavailable"
  partial_failure = "partial_failure"
  catalog_desync = "catalog_desync"
  unauthorized = "unauthorized"
  internal = "internal"

class ActivityAction(str, Enum):
  upload = "upload"
  folder_create = "folder_create"
  copy = "copy"
  delete = "delete"
  folder_delete = "folder_delete"

class FileEntry(BaseModel):
  key: str
  size: int = 0
  last_modified: datetime

class ObjectSummary(BaseModel):
  key: str
  size: int = 0
  last_modified: Optional[datetime] = None

class ObjectPage(BaseModel):
  objects: List[ObjectSummary] = Field(default_factory=list)
  truncated: bool = False
  next_token: Optional[str] = None

  @property
  def keys(self) -> List[str]:
    return [obj.key for obj in self.objects]

class FileRecord(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  file_path: str
  file_name: str
  size: int = 0
  is_folder: bool = False
  owner_id: Optional[str] = None
  updated_at: Optional[datetime] = None

class ActivityEntry(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: Optional[int] = None
  action: ActivityAction
  file_path: str
  file_name: Optional[str] = None
  details: Optional[Dict[str, Any]] = None
  user_id: Optional[str] = None
  user_email: Optional[str] = None
  created_at: Optional[datetime] = None

class User(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  email: str
  role: str = "user"
  full_name: Optional[str] = None
  created_at: Optional[datetime] = None

class ReconcileReport(BaseModel):
  scanned: int = 0
  upserted: int = 0
  removed: int = 0

class Outcome(BaseModel):
  ok: bool
  message: Optional[str] = None
  kind: Optional[ErrorKind] = None
  data: Any = None

#
# Requests: unknown fields are rejected, field names also accepted in camelCase
#

class StrictRequest(BaseModel):
  model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

class KeyRequest(StrictRequest):
  key: str = Field(min_length=1)

class FolderRequest(KeyRequest):
  pass

class UploadRequest(KeyRequest):
  content: str = Field(min_length=1)
  content_type: Optional[str] = None

  def decoded_content(self) -> bytes:
    """Decode the base64 content of the upload.

    Raises:
        ValueError: When the content is not valid base64.
    """
    try:
      return base64.b64decode(self.content, validate=True)
    except binascii.Error as e:
      raise ValueError(f"Invalid base64 content: {e}")

class CopyRequest(StrictRequest):
  source_key: str = Field(min_length=1)
  destination_key: str = Field(min_length=1)

class LoginRequest(StrictRequest):
  email: str = Field(min_length=1)
  password: str = Field(min_length=1)

class CreateUserRequest(LoginRequest):
  full_name: Optional[str] = None
  role: Literal["user", "admin"] = "user"
