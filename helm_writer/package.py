"""Library for packaging a chart directory into an archive."""

from collections.abc import Iterable
import logging
from pathlib import Path
import tarfile

from .command import format_path

__all__ = [
    "archive_name",
    "expand_files",
    "create_tarball",
]

_LOGGER = logging.getLogger(__name__)

_COMPRESSION = {
    "tgz": "gz",
    "tar.gz": "gz",
    "gz": "gz",
    "tbz2": "bz2",
    "tar.bz2": "bz2",
    "bz2": "bz2",
    "txz": "xz",
    "tar.xz": "xz",
    "xz": "xz",
}


def archive_name(
    name: str, version: str, extension: str, classifier: str | None = None
) -> str:
    """Return the file name of the chart archive."""
    suffix = f"-{classifier}" if classifier else ""
    return f"{name}-{version}{suffix}.{extension}"


def expand_files(paths: Iterable[str]) -> list[Path]:
    """Return the files to package, directories are replaced by their files."""
    files: list[Path] = []
    for path in map(Path, paths):
        if path.is_dir():
            files.extend(sorted(child for child in path.iterdir() if child.is_file()))
        elif path.is_file():
            files.append(path)
    return files


def create_tarball(
    archive: Path, chart_dir: Path, files: Iterable[Path], chart_name: str
) -> None:
    """Write an archive of the files with entries nested under the chart name."""
    compression = next(
        (
            value
            for extension, value in _COMPRESSION.items()
            if archive.name.lower().endswith(f".{extension}")
        ),
        "",
    )
    _LOGGER.debug("Creating Helm chart archive '%s'", format_path(archive))
    with tarfile.open(archive, mode=f"w:{compression}") as tar:
        for file in files:
            relative = file.relative_to(chart_dir)
            tar.add(file, arcname=f"{chart_name}/{relative.as_posix()}")
