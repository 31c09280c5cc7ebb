"""
Async file helpers for the response cache.

Cache entries are single JSON documents written with temp file + rename,
so a reader never sees a half-written entry and a crash mid-write leaves
the previous entry intact.
"""

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from .exceptions import StorageIOError


async def ensure_directory(path: Path) -> None:
    """Ensure directory exists, creating if necessary."""
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise StorageIOError("create_directory", str(path), e) from e


async def read_json(path: Path) -> dict[str, Any] | None:
    """Read a JSON document.

    Returns:
        Parsed JSON data or None if file doesn't exist
    """
    try:
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
            return json.loads(content) if content.strip() else None
    except json.JSONDecodeError as e:
        raise StorageIOError("parse_json", str(path), e) from e
    except OSError as e:
        raise StorageIOError("read_json", str(path), e) from e


async def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write a JSON document atomically using temp file + rename."""
    await ensure_directory(path.parent)

    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=".tmp_",
        suffix=".json",
    )
    try:
        os.close(fd)
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data))
            await f.flush()
            os.fsync(f.fileno())

        # os.replace semantics: overwrites an existing entry in one step
        await aiofiles.os.replace(temp_path, path)
    except Exception as e:
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise StorageIOError("write_json", str(path), e) from e


async def remove_file(path: Path) -> bool:
    """Remove a file if it exists.

    Returns:
        True if file was removed, False if it didn't exist
    """
    try:
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
            return True
        return False
    except OSError as e:
        raise StorageIOError("remove", str(path), e) from e


async def remove_directory(path: Path) -> bool:
    """Remove a directory and all contents.

    Returns:
        True if removed, False if didn't exist
    """
    try:
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.wrap(shutil.rmtree)(path)
            return True
        return False
    except OSError as e:
        raise StorageIOError("remove_directory", str(path), e) from e


async def list_directories(path: Path) -> list[str]:
    """List subdirectory names of a directory."""
    try:
        if not await aiofiles.os.path.exists(path):
            return []

        entries = await aiofiles.os.listdir(path)
        dirs = []
        for entry in entries:
            if await aiofiles.os.path.isdir(path / entry):
                dirs.append(entry)
        return sorted(dirs)
    except OSError as e:
        raise StorageIOError("list_directories", str(path), e) from e


async def list_json_files(path: Path) -> list[Path]:
    """List committed ``*.json`` documents, ignoring in-flight temp files."""
    try:
        if not await aiofiles.os.path.exists(path):
            return []
        entries = await aiofiles.os.listdir(path)
        return sorted(
            path / entry
            for entry in entries
            if entry.endswith(".json") and not entry.startswith(".tmp_")
        )
    except OSError as e:
        raise StorageIOError("list_files", str(path), e) from e
