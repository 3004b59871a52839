"""Tar expansion for file sources.

Guards against archives that escape the destination (``..``, absolute or
drive-letter entries), empty archives, and (optionally) archives with too
many files or too many bytes.
"""

import logging
import os
import re
import shutil
import tarfile
import time

from .exceptions import FetchError

logger = logging.getLogger(__name__)

_DRIVE_LETTER = re.compile(r"^[a-zA-Z]:")


def contains_dot_dot(name: str) -> bool:
    """Check whether any path component of an archive member is ``..``."""
    if ".." not in name:
        return False
    return ".." in name.replace("\\", "/").split("/")


def member_target(dst: str, name: str) -> str:
    """Path of archive member ``name`` under ``dst``.

    Raises:
        FetchError: If the member is absolute, has a drive letter, or would
            resolve (through ``..`` or symlinks) outside ``dst``
    """
    if contains_dot_dot(name) or name.startswith(("/", "\\")) or _DRIVE_LETTER.match(name):
        raise FetchError(f"tar file ({name}) would escape destination directory", context={"member": name})

    root = os.path.realpath(dst)
    target = os.path.realpath(os.path.join(root, name))
    if target != root and not target.startswith(root + os.sep):
        raise FetchError(f"tar file ({name}) would escape destination directory", context={"member": name})
    return target


class TarExpander:
    """Expand tar archives (limits of 0 mean unlimited)."""

    def __init__(self, files_limit: int = 0, file_size_limit: int = 0):
        self.files_limit = files_limit
        self.file_size_limit = file_size_limit

    def expand(self, dst: str, src: str, dir: bool = True, mode: int = 0o755) -> None:
        """Expand the archive at ``src`` into ``dst``.

        Args:
            dst: Destination directory (``dir=True``) or file path (``dir=False``)
            src: Archive path
            dir: Expand a whole tree; False expects exactly one regular file
            mode: Mode for created directories and files

        Raises:
            FetchError: If the archive is empty, escapes dst, or exceeds a limit
        """
        if dir:
            os.makedirs(dst, 0o755, exist_ok=True)
        else:
            os.makedirs(os.path.dirname(dst) or ".", mode, exist_ok=True)

        try:
            with tarfile.open(src, "r:*") as archive:
                self._untar(archive, dst, src, dir, mode)
        except tarfile.TarError as e:
            raise FetchError(f"failed to read tar file {src}: {e}", context={"source": src}) from e

    def _untar(self, archive: tarfile.TarFile, dst: str, src: str, dir: bool, mode: int) -> None:
        now = time.time()
        finished = False
        files_count = 0
        total_size = 0
        dir_members: list[tuple[tarfile.TarInfo, str]] = []

        for member in archive:
            if self.files_limit > 0:
                files_count += 1
                if files_count > self.files_limit:
                    raise FetchError(
                        f"tar file contains more files than the {self.files_limit} allowed: {files_count}",
                        context={"source": src},
                    )

            if member.type in (tarfile.XGLTYPE, tarfile.XHDTYPE):
                continue

            target = dst
            if dir:
                target = member_target(dst, member.name)

            total_size += member.size
            if self.file_size_limit > 0 and total_size > self.file_size_limit:
                raise FetchError(f"tar file size exceeds the {self.file_size_limit} limit: {total_size}")

            if member.isdir():
                if not dir:
                    raise FetchError(f"expected a file ({src}), got a directory: {target}")
                os.makedirs(target, mode, exist_ok=True)
                dir_members.append((member, target))
                continue

            if not member.isfile():
                logger.debug(f"Skipping non-regular tar member: {member.name}")
                continue

            if not dir and finished:
                raise FetchError(f"tar file contains more than one file: {src}")

            os.makedirs(os.path.dirname(target) or ".", mode, exist_ok=True)
            finished = True

            self._copy_member(archive, member, target, mode)
            mtime = member.mtime if member.mtime > 0 else now
            os.utime(target, (now, mtime))

        if not finished:
            raise FetchError(f"tar file is empty: {src}", context={"source": src})

        for member, path in dir_members:
            os.chmod(path, member.mode & 0o7777)
            mtime = member.mtime if member.mtime > 0 else now
            os.utime(path, (now, mtime))

    def _copy_member(self, archive: tarfile.TarFile, member: tarfile.TarInfo, target: str, mode: int) -> None:
        reader = archive.extractfile(member)
        if reader is None:
            raise FetchError(f"failed to read tar member {member.name}")
        with reader, open(target, "wb") as out:
            if self.file_size_limit > 0:
                out.write(reader.read(self.file_size_limit))
            else:
                shutil.copyfileobj(reader, out)
        os.chmod(target, mode)
