"""File gatherer - Local files, directories and tar archives.

Accepted sources: ``file::<path>``, ``file://<path>``, and bare or ``~/`` paths.
"""

import asyncio
import hashlib
import logging
import os
import stat
from datetime import UTC
from datetime import datetime

from .classifier import HomeDirProvider
from .classifier import default_home_dir
from .classifier import expand_tilde
from .config import GatherConfig
from .copier import copy_directory
from .exceptions import FetchError
from .exceptions import GatherError
from .expander import TarExpander
from .metadata import DirectoryMetadata
from .metadata import FileMetadata
from .saver import new_saver

logger = logging.getLogger(__name__)


def file_source_path(source: str, home_dir: HomeDirProvider = default_home_dir) -> str:
    """Strip ``file::``/``file://`` and expand ``~/`` to get a local path."""
    path = source
    if path.startswith("file::"):
        path = path[len("file::") :]
    if path.startswith("file://"):
        path = path[len("file://") :]
    return expand_tilde(path, home_dir)


def file_sha256(path: str) -> str:
    """SHA-256 hex digest of a file's content."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(64 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _modified_at(path: str) -> datetime:
    return datetime.fromtimestamp(os.path.getmtime(path), tz=UTC)


class FileGatherer:
    """Gather local files and directories (tar archives are expanded)."""

    def __init__(self, config: GatherConfig | None = None, home_dir: HomeDirProvider = default_home_dir):
        self.config = config or GatherConfig()
        self.home_dir = home_dir

    async def gather(self, source: str, destination: str) -> FileMetadata | DirectoryMetadata:
        """Copy ``source`` to ``destination``.

        Raises:
            FetchError: If the source is missing or the copy fails
            CopyError: If a directory copy fails
        """
        path = file_source_path(source, self.home_dir)
        destination = file_source_path(destination, self.home_dir)

        try:
            info = os.stat(path)
        except OSError as e:
            raise FetchError(f"failed to determine source kind: {e}", context={"source": source}) from e

        if path.endswith(".tar"):
            return await self._expand_tar(path, destination)

        if stat.S_ISDIR(info.st_mode):
            return await copy_directory(path, destination, concurrency=self.config.copy_concurrency)

        return await self._copy_file(path, destination)

    async def _expand_tar(self, path: str, destination: str) -> FileMetadata:
        logger.info(f"Expanding tar archive {path} -> {destination}")
        expander = TarExpander(
            files_limit=self.config.tar_files_limit,
            file_size_limit=self.config.tar_file_size_limit,
        )
        try:
            await asyncio.to_thread(expander.expand, destination, path, True, 0o755)
        except (GatherError, OSError) as e:
            raise FetchError(f"failed to expand tar file: {e}", context={"source": path}) from e

        try:
            size = os.path.getsize(destination)
            timestamp = _modified_at(destination)
        except OSError as e:
            raise FetchError(f"failed to get file info: {e}", context={"destination": destination}) from e

        return FileMetadata(size=size, path=destination, timestamp=timestamp)

    async def _copy_file(self, path: str, destination: str) -> FileMetadata:
        logger.info(f"Copying file {path} -> {destination}")
        saver = new_saver("file")
        try:
            with open(path, "rb") as f:
                await saver.save(f, destination)
        except OSError as e:
            raise FetchError(f"failed to save file: {e}", context={"source": path, "destination": destination}) from e

        try:
            size = os.path.getsize(destination)
            timestamp = _modified_at(destination)
            sha = await asyncio.to_thread(file_sha256, destination)
        except OSError as e:
            raise FetchError(f"failed to calculate file SHA: {e}", context={"destination": destination}) from e

        return FileMetadata(size=size, path=destination, timestamp=timestamp, sha=sha)
