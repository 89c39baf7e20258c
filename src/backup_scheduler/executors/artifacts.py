"""
Local artifact handling: compression, archiving and cleanup.
"""
import gzip
import logging
import shutil
import tarfile
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


def gzip_file(source: Path, destination: Path) -> Path:
    with source.open("rb") as src, gzip.open(destination, "wb") as dst:
        shutil.copyfileobj(src, dst, _CHUNK_SIZE)
    source.unlink()
    return destination


def tar_directory(directory: Path, archive: Path) -> Path:
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(directory, arcname=directory.name)
    shutil.rmtree(directory, ignore_errors=True)
    return archive


def delete_local(path: Union[str, Path, None]) -> bool:
    """
    Remove a local artifact, file or directory. A missing path is not an error.

    Returns:
        bool: True if something was removed.
    """
    if not path:
        return False
    target = Path(path)
    try:
        if target.is_dir():
            shutil.rmtree(target)
        else:
            target.unlink()
    except FileNotFoundError:
        return False
    logger.debug("Removed local artifact %s", target)
    return True


def format_bytes(size: int) -> str:
    unit = 1024
    if size < unit:
        return f"{size} B"
    value = float(size)
    for prefix in "KMGTPE":
        value /= unit
        if value < unit:
            return f"{value:.1f} {prefix}B"
    return f"{value:.1f} EB"
