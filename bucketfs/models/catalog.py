from datetime import datetime, timezone
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import DeclarativeBase


def utcnow():
    return datetime.now(timezone.utc)


# Prefix range scans rely on a binary ordering of the keys
KeyType = String(1024).with_variant(String(1024, collation="C"), "postgresql")


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(32), nullable=False, default="user")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class SessionRow(Base):
    __tablename__ = "sessions"

    token = Column(String(128), primary_key=True)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class FileRow(Base):
    __tablename__ = "files"

    file_path = Column(KeyType, primary_key=True)
    file_name = Column(String(1024), nullable=False)
    size = Column(BigInteger, nullable=False, default=0)
    is_folder = Column(Boolean, nullable=False, default=False)
    owner_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class ActivityRow(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(32), nullable=False)
    file_path = Column(KeyType, nullable=False, index=True)
    file_name = Column(String(1024), nullable=True)
    details = Column(JSON, nullable=True)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
