"""Concurrent directory copy - Mirror a directory tree with bounded parallelism.

Walk once, create directories inline (so they exist before any file below
them is written), and fan file copies out to tasks admitted through a
semaphore. Every task error is recorded; the copy fails if any was.

Not transactional: after a failure the destination tree may be partial.
"""

import asyncio
import logging
import os
from datetime import UTC
from datetime import datetime
from urllib.parse import urlsplit

from .exceptions import CopyError
from .metadata import DirectoryMetadata
from .protocols import SaverProtocol
from .saver import new_saver

logger = logging.getLogger(__name__)

DEFAULT_COPY_CONCURRENCY = 10


class CopyCancelledError(Exception):
    """Cancel event observed before a walk step or file copy started."""


def _destination_protocol(dest_root: str) -> str:
    return urlsplit(dest_root).scheme or "file"


def _local_root(path: str) -> str:
    if path.startswith("file://"):
        path = path[len("file://") :]
    return os.path.normpath(path)


async def copy_directory(
    source_root: str,
    dest_root: str,
    *,
    concurrency: int = DEFAULT_COPY_CONCURRENCY,
    saver: SaverProtocol | None = None,
    cancel_event: asyncio.Event | None = None,
) -> DirectoryMetadata:
    """
    Copy the tree under source_root into dest_root.

    Process:
    1. Walk source_root top-down
    2. Create each directory at the destination before descending
    3. Schedule one copy task per file (at most ``concurrency`` outstanding)
    4. Wait for every task, then fail if any error was recorded

    Args:
        source_root: Directory to copy (local path or file:// URL)
        dest_root: Destination directory (created if missing)
        concurrency: Maximum concurrent file copies
        saver: Saver to use for every file; resolved from dest_root's scheme if None
        cancel_event: Set to stop the walk and keep pending copies from starting

    Returns:
        DirectoryMetadata with the destination path and bytes copied

    Raises:
        ValueError: If concurrency < 1
        CopyError: If the walk or any file copy failed, or the copy was cancelled

    Example:
        >>> metadata = await copy_directory("/src/policies", "/tmp/policies", concurrency=4)
        >>> print(f"Copied {metadata.size} bytes to {metadata.path}")
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    source = _local_root(source_root)
    destination = _local_root(dest_root)

    if not os.path.isdir(source):
        raise CopyError(
            f"failed to copy directory: {source} is not a directory",
            context={"source": source, "destination": destination},
        )

    semaphore = asyncio.Semaphore(concurrency)
    errors: list[BaseException] = []
    tasks: list[asyncio.Task[int]] = []
    copied_bytes = 0

    def cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    async def copy_one(src_path: str, dst_path: str) -> int:
        try:
            if cancelled():
                raise CopyCancelledError(f"copy of {src_path} cancelled")
            file_saver = saver or new_saver(_destination_protocol(dest_root))
            with open(src_path, "rb") as f:
                await file_saver.save(f, dst_path)
            return os.path.getsize(src_path)
        except Exception as e:
            errors.append(e)
            return 0
        finally:
            semaphore.release()

    def on_walk_error(e: OSError) -> None:
        errors.append(e)

    logger.info(f"Copying directory {source} -> {destination} (concurrency={concurrency})")

    async def walk() -> None:
        for current, dirnames, filenames in os.walk(source, onerror=on_walk_error):
            if cancelled():
                errors.append(CopyCancelledError("directory walk cancelled"))
                return

            rel = os.path.relpath(current, source)
            target_dir = os.path.normpath(os.path.join(destination, rel))
            try:
                os.makedirs(target_dir, 0o755, exist_ok=True)
            except OSError as e:
                errors.append(e)
                return

            for name in sorted(filenames):
                if cancelled():
                    errors.append(CopyCancelledError("directory walk cancelled"))
                    return
                await semaphore.acquire()
                tasks.append(
                    asyncio.create_task(copy_one(os.path.join(current, name), os.path.join(target_dir, name)))
                )

            dirnames.sort()

    try:
        await walk()
    finally:
        # Drain outstanding copies even when the walk stopped early
        results = await asyncio.gather(*tasks)
        copied_bytes = sum(results)

    if errors:
        first = errors[0]
        logger.debug(f"Directory copy recorded {len(errors)} error(s); first: {first}")
        raise CopyError(
            f"failed to copy directory: {first}",
            context={"source": source, "destination": destination, "errors": [str(e) for e in errors]},
        ) from first

    logger.info(f"Copied {len(tasks)} files ({copied_bytes} bytes) to {destination}")
    return DirectoryMetadata(size=copied_bytes, path=destination, timestamp=datetime.now(UTC))
