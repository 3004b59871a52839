"""Gather-and-lock mechanism.

Per KERNEL_PHILOSOPHY: Mechanism not policy - apps inject the dispatcher
(which gatherers exist) and the lock (where pins are recorded).
"""

import logging
from pathlib import Path

from .dispatcher import Dispatcher
from .exceptions import FetchError
from .exceptions import GatherError
from .lock import GatherLock
from .metadata import DirectoryMetadata
from .metadata import FileMetadata
from .metadata import GitMetadata
from .metadata import HTTPMetadata
from .metadata import OCIMetadata
from .protocols import MetadataProtocol

logger = logging.getLogger(__name__)


def metadata_kind(metadata: MetadataProtocol) -> str:
    """Source kind recorded in the lock for a metadata value."""
    if isinstance(metadata, GitMetadata):
        return "git"
    if isinstance(metadata, HTTPMetadata):
        return "http"
    if isinstance(metadata, OCIMetadata):
        return "oci"
    if isinstance(metadata, FileMetadata | DirectoryMetadata):
        return "file"
    return "unknown"


async def gather_and_lock(
    source: str,
    destination: Path | str,
    lock: GatherLock | None = None,
    name: str | None = None,
    dispatcher: Dispatcher | None = None,
) -> MetadataProtocol:
    """
    Gather a source and record its pinned locator.

    Process:
    1. Dispatch the gather to the gatherer for the source's protocol
    2. Pin the source against the returned metadata
    3. Add an entry to the lock file (if provided)

    Args:
        source: Locator to gather
        destination: Local destination
        lock: Optional lock file manager
        name: Lock entry name (defaults to the destination)
        dispatcher: Dispatcher to use (built-in gatherers if None)

    Returns:
        Metadata from the gather

    Raises:
        GatherError: Gather and pinning errors propagate unchanged
        FetchError: If anything else fails (e.g. writing the lock file)

    Example:
        >>> lock = GatherLock(lock_path=Path(".gather.lock"))
        >>> metadata = await gather_and_lock(
        ...     "github.com/org/policies?ref=main",
        ...     Path("policies"),
        ...     lock=lock,
        ...     name="policies",
        ... )
        >>> lock.get_entry("policies").pinned
        'git::github.com/org/policies?ref=3f2a...'
    """
    dispatcher = dispatcher or Dispatcher()
    destination = str(destination)

    try:
        logger.info(f"Gathering {source} -> {destination}")
        metadata = await dispatcher.gather(source, destination)

        pinned = metadata.get_pinned_url(source)
        logger.debug(f"Pinned {source} as {pinned}")

        if lock is not None:
            entry_name = name or destination
            lock.add_entry(
                name=entry_name,
                source=source,
                pinned=pinned,
                kind=metadata_kind(metadata),
                destination=destination,
            )
            logger.debug(f"Added {entry_name} to lock file")

        logger.info(f"Successfully gathered {source}")
        return metadata

    except Exception as e:
        if isinstance(e, GatherError):
            raise
        raise FetchError(f"failed to gather {source}: {e}", context={"source": source}) from e
