"""
Object path conventions for media library files and render outputs.

Media library objects are stored as ``{id}--{encoded stem}.{ext}`` so the
original display name survives the round trip through storage. Objects
uploaded before that scheme existed are named ``{id}.{ext}``.
"""

import base64
import re
from typing import Optional
from urllib.parse import quote

_EXTENSION_PATTERN = re.compile(r"\.[^/.]+$")
_DEFAULT_EXTENSION = "mp4"

# Characters encodeURIComponent leaves untouched
_URI_COMPONENT_SAFE = "-_.!~*'()"

_FOLDER_NAME_RESERVED = re.compile(r'[/\\:*?"<>|]')


def split_file_name(file_name: str) -> tuple[str, str]:
    """
    Split a display name into stem and extension.

    Names without a dot get the default ``mp4`` extension.

    >>> split_file_name("clip.final.mov")
    ('clip.final', 'mov')
    """
    stem = _EXTENSION_PATTERN.sub("", file_name)
    extension = file_name.rsplit(".", 1)[-1] if "." in file_name else ""
    return stem, extension or _DEFAULT_EXTENSION


def encode_display_name(stem: str) -> str:
    """URL-encode then base64-encode a display name for use in an object name."""
    encoded = quote(stem, safe=_URI_COMPONENT_SAFE)
    return base64.b64encode(encoded.encode("ascii")).decode("ascii")


def storage_file_name(object_id: str, file_name: str) -> str:
    stem, extension = split_file_name(file_name)
    return f"{object_id}--{encode_display_name(stem)}.{extension}"


def legacy_file_name(object_id: str, file_name: str) -> str:
    _, extension = split_file_name(file_name)
    return f"{object_id}.{extension}"


def sanitize_folder_name(name: str) -> str:
    """Trim a folder name and replace path and reserved characters with ``_``."""
    return _FOLDER_NAME_RESERVED.sub("_", name.strip())


def join_folder(parent: Optional[str], name: str) -> str:
    parent = (parent or "").strip("/")
    return f"{parent}/{name}" if parent else name


def object_path(account_id: str, name: str, folder: Optional[str] = None) -> str:
    """
    Build the full object path for a file inside an account's tree.

    Args:
        account_id: Owning account, always the root folder
        name: Object name within the folder
        folder: Optional folder path relative to the account root

    Returns:
        ``{account_id}/{folder}/{name}`` or ``{account_id}/{name}``
    """
    folder = (folder or "").strip("/")
    if folder:
        return f"{account_id}/{folder}/{name}"
    return f"{account_id}/{name}"


def render_video_path(account_id: str, job_id: str) -> str:
    return f"{account_id}/{job_id}.mp4"


def render_thumbnail_path(account_id: str, job_id: str) -> str:
    return f"{account_id}/{job_id}_thumb.jpg"
