from typing import List, Optional, Tuple
from datetime import datetime, timedelta, timezone
from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from ..models.catalog import ActivityRow, FileRow, SessionRow, UserRow
from ..models.files import User
from .catalog import Database
from ..errors import AuthenticationError, ValidationError
import logging
import os
import secrets
import uuid

SALT_SIZE = 16
ADMIN_ROLE = "admin"


def _scrypt(salt: bytes) -> Scrypt:
  return Scrypt(salt=salt, length=32, n=2**14, r=8, p=1)


def hash_password(password: str) -> str:
  """Hash a password with a random salt.

  Returns:
      str: The salt and the derived key, hex encoded and separated by '$'.
  """
  salt = os.urandom(SALT_SIZE)
  key = _scrypt(salt).derive(password.encode("utf-8"))
  return f"{salt.hex()}${key.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
  try:
    salt_hex, key_hex = password_hash.split("$", 1)
    _scrypt(bytes.fromhex(salt_hex)).verify(password.encode("utf-8"), bytes.fromhex(key_hex))
    return True
  except (ValueError, InvalidKey):
    return False


def _as_utc(value: datetime) -> datetime:
  # SQLite hands back naive datetimes
  return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class IdentityService:
  """
  Users and their login sessions. A session token is opaque and expires after
  the configured number of days.
  """

  def __init__(self, database: Database, token_ttl_days: int = 7):
    self.database = database
    self.token_ttl = timedelta(days=token_ttl_days)

  async def create_user(self, email: str, password: str, full_name: Optional[str] = None, role: str = "user") -> User:
    if not email or not password:
      raise ValidationError("Email and password are required")
    row = UserRow(
      id=str(uuid.uuid4()),
      email=email,
      password_hash=hash_password(password),
      full_name=full_name,
      role=role)
    try:
      async with await self.database.session() as session:
        async with session.begin():
          session.add(row)
    except IntegrityError:
      raise ValidationError(f"User {email} already exists")
    logging.info(f"User created : {email}")
    return User.model_validate(row)

  async def login(self, email: str, password: str) -> Tuple[str, User]:
    """Check the credentials and open a session.

    Raises:
        AuthenticationError: When the email is unknown or the password wrong.

    Returns:
        Tuple[str, User]: The session token and the logged in user.
    """
    if not email or not password:
      raise ValidationError("Email and password are required")
    async with await self.database.session() as session:
      async with session.begin():
        row = (await session.execute(select(UserRow).where(UserRow.email == email))).scalar_one_or_none()
        if row is None or not verify_password(password, row.password_hash):
          raise AuthenticationError("Invalid credentials")
        token = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        session.add(SessionRow(token=token, user_id=row.id, expires_at=now + self.token_ttl, created_at=now))
    return token, User.model_validate(row)

  async def resolve_user(self, token: Optional[str]) -> Optional[User]:
    """Get the user of a live session, None for unknown or expired tokens."""
    if not token:
      return None
    async with await self.database.session() as session:
      result = await session.execute(
        select(SessionRow, UserRow).join_from(SessionRow, UserRow, UserRow.id == SessionRow.user_id).where(SessionRow.token == token))
      found = result.first()
      if found is None:
        return None
      session_row, user_row = found
      if _as_utc(session_row.expires_at) <= datetime.now(timezone.utc):
        return None
      return User.model_validate(user_row)

  async def logout(self, token: str) -> bool:
    async with await self.database.session() as session:
      async with session.begin():
        result = await session.execute(delete(SessionRow).where(SessionRow.token == token))
    return (result.rowcount or 0) > 0

  async def purge_expired_sessions(self) -> int:
    async with await self.database.session() as session:
      async with session.begin():
        result = await session.execute(delete(SessionRow).where(SessionRow.expires_at <= datetime.now(timezone.utc)))
    return result.rowcount or 0

  async def list_users(self) -> List[User]:
    """List the users, most recently created first."""
    async with await self.database.session() as session:
      rows = (await session.execute(select(UserRow).order_by(UserRow.created_at.desc()))).scalars().all()
      return [User.model_validate(row) for row in rows]

  async def delete_user(self, user_id: str) -> bool:
    """Delete a user with their sessions.

    The files they own stay in the catalog without an owner, the objects are
    still in the store. Their activity entries are kept anonymous.

    Returns:
        bool: False when there is no such user.
    """
    async with await self.database.session() as session:
      async with session.begin():
        if await session.get(UserRow, user_id) is None:
          return False
        await session.execute(delete(SessionRow).where(SessionRow.user_id == user_id))
        await session.execute(update(FileRow).where(FileRow.owner_id == user_id).values(owner_id=None))
        await session.execute(update(ActivityRow).where(ActivityRow.user_id == user_id).values(user_id=None))
        await session.execute(delete(UserRow).where(UserRow.id == user_id))
    logging.info(f"User deleted : {user_id}")
    return True

  async def seed_admin(self, email: str, password: str, full_name: Optional[str] = None) -> Tuple[User, bool]:
    """Create the admin user, or reset the password, name and role of an existing one.

    Returns:
        Tuple[User, bool]: The admin user, and whether it was created.
    """
    if not email or not password:
      raise ValidationError("Email and password are required")
    async with await self.database.session() as session:
      async with session.begin():
        row = (await session.execute(select(UserRow).where(UserRow.email == email))).scalar_one_or_none()
        if row is not None:
          row.password_hash = hash_password(password)
          row.full_name = full_name
          row.role = ADMIN_ROLE
          logging.info(f"Admin user updated : {email}")
          return User.model_validate(row), False
    return await self.create_user(email, password, full_name=full_name, role=ADMIN_ROLE), True
