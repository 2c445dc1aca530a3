import mimetypes
import posixpath
import re
from bucketfs.errors import ValidationError

# 200 MB in binary
DEFAULT_MAX_FILE_SIZE = 200 * 1024 * 1024

# content type of the zero-byte folder marker objects
FOLDER_MIMETYPE = "application/x-directory"
DEFAULT_MIMETYPE = "application/octet-stream"

_LEADING_PARENT_SEGMENTS = re.compile(r"^(\.\.(/|$))+")


def normalize_key(raw_key) -> str:
    """Canonicalize a user supplied path into an object store key.

    Backslashes become slashes, '.' and '..' segments are resolved the POSIX way,
    '..' segments that would escape the root are dropped, as are leading slashes.
    A trailing slash (folder marker) is kept.

    Args:
        raw_key (str): The path as supplied by the caller, may be None.

    Returns:
        str: The normalized key, empty when nothing safe remains.
    """
    raw = "" if raw_key is None else str(raw_key)
    raw = raw.replace("\r", "").replace("\n", "").replace("\\", "/")
    if not raw:
        return ""
    normalized = posixpath.normpath(raw)
    normalized = _LEADING_PARENT_SEGMENTS.sub("", normalized)
    normalized = normalized.lstrip("/")
    if normalized in ("", "."):
        return ""
    if raw.endswith("/") and not normalized.endswith("/"):
        normalized += "/"
    return normalized


def require_key(raw_key, what: str = "key") -> str:
    """Normalize a key and reject it when empty."""
    key = normalize_key(raw_key)
    if not key:
        raise ValidationError(f"Missing {what}")
    return key


def is_folder_key(key: str) -> bool:
    return key.endswith("/")


def to_folder_key(key: str) -> str:
    return key if key.endswith("/") else f"{key}/"


def key_name(key: str) -> str:
    """Last segment of a key, a folder marker is named after its folder."""
    return posixpath.basename(key.rstrip("/"))


def replace_prefix(key: str, source_prefix: str, destination_prefix: str) -> str:
    return f"{destination_prefix}{key[len(source_prefix):]}"


def prefix_upper_bound(prefix: str):
    """Smallest string greater than every string starting with prefix.

    Returns None when there is no such bound (empty prefix, or a prefix made of
    the highest code point only), meaning the range is open ended.
    """
    chars = list(prefix)
    while chars:
        last = ord(chars.pop())
        if last < 0x10FFFF:
            chars.append(chr(last + 1))
            return "".join(chars)
    return None


def get_mime_type(file_name: str) -> str:
    """Guess the mime type from file name.

    Args:
        file_name (str): The file name.

    Returns:
        str: A standard mime type string.
    """
    mime_type, encoding = mimetypes.guess_type(file_name)
    return mime_type or DEFAULT_MIMETYPE


class FileChecker:
    """A class that checks the size of uploaded content
    """

    def __init__(self, max_size: int = DEFAULT_MAX_FILE_SIZE):
        self.max_size = max_size

    def check_size(self, content: bytes):
        file_size = len(content)
        if file_size > self.max_size:
            raise ValidationError(f"File size {file_size} exceeds max size {self.max_size}")
        return content
