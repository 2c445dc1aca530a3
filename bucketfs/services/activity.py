from typing import Any, Dict, List, Optional
from ..models.files import ActivityAction, ActivityEntry
from .catalog import CatalogStore
import logging


class ActivityRecorder:
  """
  Append-only audit trail of the file mutations.
  """

  def __init__(self, catalog: CatalogStore):
    self.catalog = catalog

  async def record(self, action: ActivityAction, file_path: str, file_name: Optional[str] = None,
                   user_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> Optional[ActivityEntry]:
    """Append an activity entry. The mutation is already committed at this point,
    so a failure to record is logged and never raised.

    Returns:
        ActivityEntry: The recorded entry, None if it could not be written.
    """
    entry = ActivityEntry(
      action=action,
      file_path=file_path,
      file_name=file_name,
      user_id=user_id,
      details=details)
    try:
      return await self.catalog.add_activity(entry)
    except Exception as e:
      logging.warning(f"Could not record {action.value} activity for {file_path}: {e}")
      return None

  async def recent(self, limit: int = 50) -> List[ActivityEntry]:
    return await self.catalog.recent_activity(limit)
