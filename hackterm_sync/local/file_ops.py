"""
JSON file operations for the local credential cache.

Provides atomic read/write operations with:
- Atomic writes using temp file + rename
- Missing files read as None instead of raising
- Every OS or parse failure wrapped in CredentialStoreError
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import CredentialStoreError


async def ensure_directory(path: Path) -> None:
    """Ensure directory exists, creating if necessary.

    Args:
        path: Directory path to ensure exists
    """
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise CredentialStoreError("create_directory", str(path), e) from e


async def read_json(path: Path) -> dict[str, Any] | None:
    """Read a JSON object file.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON object or None if the file doesn't exist or is empty
    """
    try:
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
    except OSError as e:
        raise CredentialStoreError("read_json", str(path), e) from e

    if not content.strip():
        return None
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise CredentialStoreError("parse_json", str(path), e) from e
    if not isinstance(data, dict):
        raise CredentialStoreError("parse_json", str(path), ValueError("not a JSON object"))
    return data


async def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write JSON file atomically using temp file + rename.

    Args:
        path: Target path for JSON file
        data: Data to serialize as JSON
    """
    await write_text_atomic(path, json.dumps(data, indent=2), suffix=".json")


async def read_text(path: Path) -> str | None:
    """Read a small text file, returning None when it doesn't exist."""
    try:
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, encoding="utf-8") as f:
            return (await f.read()).strip()
    except OSError as e:
        raise CredentialStoreError("read_text", str(path), e) from e


async def write_text_atomic(path: Path, content: str, suffix: str = ".tmp") -> None:
    """Write a text file atomically using temp file + rename.

    Args:
        path: Target path
        content: Text to write
        suffix: Suffix for the temporary file
    """
    await ensure_directory(path.parent)

    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=".tmp_",
        suffix=suffix,
    )
    try:
        os.close(fd)
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(content)
            await f.flush()
            os.fsync(f.fileno())

        # Atomic rename
        await aiofiles.os.replace(temp_path, path)
    except Exception as e:
        # Clean up temp file on error
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise CredentialStoreError("write", str(path), e) from e


async def remove_file(path: Path) -> bool:
    """Remove a file if it exists.

    Args:
        path: Path to remove

    Returns:
        True if file was removed, False if it didn't exist
    """
    try:
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
            return True
        return False
    except OSError as e:
        raise CredentialStoreError("remove", str(path), e) from e
