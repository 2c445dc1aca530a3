from ..errors import (
  FilesError,
  ValidationError,
  NotFoundError,
  StoreUnavailableError,
  PartialBatchFailure,
  CatalogDesyncError,
  AuthenticationError,
)
from .s3 import S3Service
from .catalog import Database, CatalogStore
from .identity import IdentityService
from .files import FilesStore
