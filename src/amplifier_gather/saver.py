"""Savers - Persist gathered bytes to a destination.

Only local files are supported; new_saver() fails closed for anything else.
"""

import asyncio
import logging
import os
import shutil
from collections.abc import AsyncIterator
from typing import BinaryIO

from .classifier import URIKind
from .exceptions import UnsupportedProtocolError
from .protocols import SaverProtocol

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


def _local_path(destination: str) -> str:
    if destination.startswith("file://"):
        return destination[len("file://") :]
    return destination


def _remove_partial(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    logger.debug(f"Removed partial file {path}")


class FileSaver:
    """Write data to a local file, creating parent directories as needed."""

    async def save(self, data: BinaryIO, destination: str) -> None:
        path = _local_path(destination)
        await asyncio.to_thread(self._write, data, path)
        logger.debug(f"Saved {path}")

    async def save_stream(self, chunks: AsyncIterator[bytes], destination: str) -> None:
        path = _local_path(destination)
        await asyncio.to_thread(os.makedirs, os.path.dirname(path) or ".", 0o755, True)
        f = await asyncio.to_thread(open, path, "wb")
        try:
            async for chunk in chunks:
                await asyncio.to_thread(f.write, chunk)
        except BaseException:
            # A partial file must not look like a finished download
            await asyncio.to_thread(f.close)
            await asyncio.to_thread(_remove_partial, path)
            raise
        await asyncio.to_thread(f.close)
        logger.debug(f"Saved {path}")

    @staticmethod
    def _write(data: BinaryIO, path: str) -> None:
        os.makedirs(os.path.dirname(path) or ".", 0o755, exist_ok=True)
        with open(path, "wb") as f:
            shutil.copyfileobj(data, f, _CHUNK_SIZE)


def new_saver(protocol: str) -> SaverProtocol:
    """Return the saver for a destination protocol.

    Args:
        protocol: "file" (or URIKind.FILE); other protocols are unsupported

    Raises:
        UnsupportedProtocolError: If no saver handles the protocol
    """
    if protocol in ("file", URIKind.FILE):
        return FileSaver()
    raise UnsupportedProtocolError(f"unsupported protocol: {protocol}", context={"protocol": str(protocol)})
