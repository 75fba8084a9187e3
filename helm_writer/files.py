"""Helpers for reading and writing chart files with aiofiles."""

import logging
from pathlib import Path

import aiofiles
from aiofiles.os import makedirs

from .command import format_path
from .exceptions import InputException

_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


async def read_text(path: Path) -> str:
    """Return the contents of a utf-8 text file."""
    async with aiofiles.open(str(path), encoding="utf-8") as input_file:
        try:
            return await input_file.read()
        except UnicodeDecodeError as err:
            raise InputException(f"Unable to read {path}: {err}") from err


async def write_text(path: Path, content: str) -> str:
    """Write a text file, replacing any existing content."""
    await makedirs(path.parent, exist_ok=True)
    async with aiofiles.open(str(path), mode="w", encoding="utf-8") as output_file:
        await output_file.write(content)
    _LOGGER.debug("Wrote %s", format_path(path))
    return content


async def write_bytes(path: Path, content: bytes) -> None:
    """Write a binary file, replacing any existing content."""
    await makedirs(path.parent, exist_ok=True)
    async with aiofiles.open(str(path), mode="wb") as output_file:
        await output_file.write(content)


async def copy_file(source: Path, destination: Path) -> None:
    """Copy the contents of a file."""
    async with aiofiles.open(str(source), mode="rb") as input_file:
        content = await input_file.read()
    await write_bytes(destination, content)
    _LOGGER.debug("Copied %s to %s", source.name, format_path(destination))
