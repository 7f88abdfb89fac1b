"""
Token file operations.

The device's auth tokens live in a small JSON file readable only by the
current user. Writes are atomic (temp file + rename) so a crash never
leaves a half-written token behind.
"""

import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import StorageError


async def read_token_file(path: Path) -> dict[str, Any] | None:
    """Read the token file.

    Returns:
        Parsed token data or None if the file doesn't exist
    """
    try:
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
            return json.loads(content) if content.strip() else None
    except json.JSONDecodeError as e:
        raise StorageError("parse_token", str(path), e) from e
    except OSError as e:
        raise StorageError("read_token", str(path), e) from e


async def write_token_file(path: Path, data: dict[str, Any]) -> None:
    """Write the token file atomically with 0600 permissions."""
    try:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
    except OSError as e:
        raise StorageError("create_directory", str(path.parent), e) from e

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".json")
    try:
        os.close(fd)
        os.chmod(temp_path, stat.S_IRUSR | stat.S_IWUSR)
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2))
            await f.flush()
            os.fsync(f.fileno())

        await aiofiles.os.rename(temp_path, path)
    except Exception as e:
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise StorageError("write_token", str(path), e) from e


async def remove_token_file(path: Path) -> bool:
    """Delete the token file. Returns False if there was none."""
    try:
        await aiofiles.os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageError("remove_token", str(path), e) from e
