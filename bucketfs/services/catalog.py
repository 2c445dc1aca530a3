from typing import Iterable, List, Optional
from sqlalchemy import delete, func, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from ..models.catalog import ActivityRow, Base, FileRow, UserRow, utcnow
from ..models.files import ActivityEntry, FileRecord
from ..utils.files import prefix_upper_bound
import asyncio
import logging

# rows per INSERT statement, keeps below the SQLite bound parameters limit
UPSERT_CHUNK = 500


def _is_memory_sqlite(url: str) -> bool:
  if not url.startswith("sqlite"):
    return False
  database = url.split("://", 1)[-1]
  return ":memory:" in database or database in ("", "/")


class Database:
  """
  The catalog database connection. The engine is created, and the tables
  with it, on first use then reused for the lifetime of the process.
  """

  def __init__(self, url: str, echo: bool = False):
    self.url = url
    self.echo = echo
    self._engine: Optional[AsyncEngine] = None
    self._sessionmaker = None
    self._lock = asyncio.Lock()

  async def engine(self) -> AsyncEngine:
    if self._engine is not None:
      return self._engine
    async with self._lock:
      if self._engine is None:
        kwargs = {"echo": self.echo}
        if _is_memory_sqlite(self.url):
          # in memory databases live as long as their single connection
          kwargs["poolclass"] = StaticPool
          kwargs["connect_args"] = {"check_same_thread": False}
        engine = create_async_engine(self.url, **kwargs)
        async with engine.begin() as conn:
          await conn.run_sync(Base.metadata.create_all)
        self._sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
        self._engine = engine
        logging.info(f"Catalog database ready: {engine.url.render_as_string(hide_password=True)}")
    return self._engine

  @property
  def name(self) -> Optional[str]:
    return make_url(self.url).database

  async def session(self):
    await self.engine()
    return self._sessionmaker()

  async def ping(self) -> bool:
    engine = await self.engine()
    async with engine.connect() as conn:
      await conn.execute(text("SELECT 1"))
    return True

  async def close(self):
    async with self._lock:
      if self._engine is not None:
        await self._engine.dispose()
      self._engine = None
      self._sessionmaker = None


def _prefix_filter(column, prefix: str):
  """Range condition selecting the keys that start with prefix."""
  conditions = [column >= prefix]
  upper = prefix_upper_bound(prefix)
  if upper is not None:
    conditions.append(column < upper)
  return conditions


class CatalogStore:
  """
  The metadata catalog: one record per object store key, and the activity log.
  """

  def __init__(self, database: Database):
    self.database = database

  def _insert(self, dialect_name: str):
    if dialect_name == "postgresql":
      return postgresql.insert(FileRow)
    if dialect_name == "sqlite":
      return sqlite.insert(FileRow)
    raise NotImplementedError(f"Upsert is not supported on {dialect_name}")

  async def upsert_many(self, records: Iterable[FileRecord]) -> int:
    """Insert the records, replacing any existing record with the same file path.

    Args:
        records (Iterable[FileRecord]): The records to write.

    Returns:
        int: The number of records written.
    """
    values = []
    for record in records:
      row = record.model_dump()
      if row["updated_at"] is None:
        row["updated_at"] = utcnow()
      values.append(row)
    if not values:
      return 0
    engine = await self.database.engine()
    async with await self.database.session() as session:
      async with session.begin():
        for start in range(0, len(values), UPSERT_CHUNK):
          stmt = self._insert(engine.dialect.name).values(values[start:start + UPSERT_CHUNK])
          stmt = stmt.on_conflict_do_update(
            index_elements=[FileRow.file_path],
            set_={
              "file_name": stmt.excluded.file_name,
              "size": stmt.excluded.size,
              "is_folder": stmt.excluded.is_folder,
              "owner_id": stmt.excluded.owner_id,
              "updated_at": stmt.excluded.updated_at,
            })
          await session.execute(stmt)
    return len(values)

  async def upsert(self, record: FileRecord) -> FileRecord:
    await self.upsert_many([record])
    return record

  async def find_one(self, file_path: str) -> Optional[FileRecord]:
    async with await self.database.session() as session:
      row = await session.get(FileRow, file_path)
      return FileRecord.model_validate(row) if row is not None else None

  async def find_by_prefix(self, prefix: str) -> List[FileRecord]:
    """Find the records whose file path starts with prefix, ordered by file path.

    Args:
        prefix (str): The literal key prefix, empty for all records.

    Returns:
        List[FileRecord]: The matching records.
    """
    stmt = select(FileRow).order_by(FileRow.file_path)
    if prefix:
      stmt = stmt.where(*_prefix_filter(FileRow.file_path, prefix))
    async with await self.database.session() as session:
      rows = (await session.execute(stmt)).scalars().all()
      return [FileRecord.model_validate(row) for row in rows if row.file_path.startswith(prefix)]

  async def delete_one(self, file_path: str) -> int:
    return await self._delete(delete(FileRow).where(FileRow.file_path == file_path))

  async def delete_many(self, file_paths: List[str]) -> int:
    if not file_paths:
      return 0
    return await self._delete(delete(FileRow).where(FileRow.file_path.in_(file_paths)))

  async def delete_by_prefix(self, prefix: str) -> int:
    """Delete the records whose file path starts with prefix.

    Args:
        prefix (str): The literal key prefix, must not be empty.

    Returns:
        int: The number of deleted records.
    """
    if not prefix:
      raise ValueError("Refusing to delete the whole catalog")
    return await self._delete(delete(FileRow).where(*_prefix_filter(FileRow.file_path, prefix)))

  async def add_activity(self, entry: ActivityEntry) -> ActivityEntry:
    row = ActivityRow(
      action=entry.action.value,
      file_path=entry.file_path,
      file_name=entry.file_name,
      details=entry.details,
      user_id=entry.user_id,
      created_at=entry.created_at or utcnow())
    async with await self.database.session() as session:
      async with session.begin():
        session.add(row)
    return ActivityEntry.model_validate(row)

  async def recent_activity(self, limit: int = 50) -> List[ActivityEntry]:
    """Get the latest activity entries, newest first, with the email of their user.

    Args:
        limit (int, optional): Maximum number of entries. Defaults to 50.

    Returns:
        List[ActivityEntry]: The entries, user_email is None for unknown or deleted users.
    """
    stmt = (
      select(ActivityRow, UserRow.email)
      .outerjoin(UserRow, UserRow.id == ActivityRow.user_id)
      .order_by(ActivityRow.created_at.desc(), ActivityRow.id.desc())
      .limit(limit))
    async with await self.database.session() as session:
      rows = (await session.execute(stmt)).all()
      return [ActivityEntry.model_validate(row).model_copy(update={"user_email": email}) for row, email in rows]

  async def count_files(self) -> int:
    async with await self.database.session() as session:
      return (await session.execute(select(func.count()).select_from(FileRow))).scalar_one()

  async def _delete(self, stmt) -> int:
    async with await self.database.session() as session:
      async with session.begin():
        result = await session.execute(stmt)
    return result.rowcount or 0
