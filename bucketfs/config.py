"""
bucketfs configuration

Settings are read from environment variables, then from a .env file in the
current working directory.
"""

from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from bucketfs.utils.files import DEFAULT_MAX_FILE_SIZE


class Settings(BaseSettings):
    # object store
    aws_region: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_s3_bucket: Optional[str] = None
    aws_s3_prefix: str = ""
    s3_endpoint_url: Optional[str] = None
    s3_with_checksums: bool = False

    # metadata catalog
    database_url: str = "sqlite+aiosqlite:///./bucketfs.db"

    token_ttl_days: int = 7
    download_url_ttl: int = 300
    max_upload_size: int = DEFAULT_MAX_FILE_SIZE
    list_page_size: int = 1000
    client_origin: str = "http://localhost:8080"

    # first admin user, see `bucketfs seed-admin`
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    admin_name: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
