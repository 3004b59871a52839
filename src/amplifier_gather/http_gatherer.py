"""HTTP gatherer - Single-file downloads over HTTP(S).

The destination may be a directory (trailing ``/`` or no extension), in which
case the source file name is appended. Existing files are never overwritten.
"""

import logging
import os
import posixpath
from urllib.parse import urlsplit

import httpx

from .classifier import HomeDirProvider
from .classifier import default_home_dir
from .classifier import expand_tilde
from .classifier import validate_file_destination
from .config import GatherConfig
from .exceptions import FetchError
from .exceptions import LocatorParseError
from .metadata import HTTPMetadata
from .saver import new_saver

logger = logging.getLogger(__name__)


def resolve_download_destination(destination: str, file_name: str) -> str:
    """Append ``file_name`` when ``destination`` names a directory."""
    if destination.endswith("/"):
        return os.path.join(destination, file_name)
    if not os.path.splitext(destination)[1]:
        return os.path.join(destination, file_name)
    return destination


class HTTPGatherer:
    """Download a single file over HTTP(S).

    Example:
        >>> gatherer = HTTPGatherer()
        >>> metadata = await gatherer.gather("https://example.com/policy.yaml", "/tmp/policies/")
        >>> metadata.destination
        '/tmp/policies/policy.yaml'
    """

    def __init__(
        self,
        config: GatherConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        home_dir: HomeDirProvider = default_home_dir,
    ):
        self.config = config or GatherConfig()
        self.transport = transport
        self.home_dir = home_dir

    async def gather(self, source: str, destination: str) -> HTTPMetadata:
        """Download ``source`` to ``destination``.

        Raises:
            LocatorParseError: If the source URL cannot be parsed
            FetchError: If the request fails or the response is not 200
            GatherError: If the destination file already exists
        """
        if source.startswith("http::"):
            source = source[len("http::") :]

        try:
            parts = urlsplit(source)
        except ValueError as e:
            raise LocatorParseError(f"failed to parse source URI: {e}", context={"source": source}) from e

        if not parts.scheme:
            raise FetchError("no source scheme provided", context={"source": source})

        file_name = posixpath.basename(parts.path)
        if not file_name:
            raise FetchError("specify a path to a file to download", context={"source": source})

        destination = resolve_download_destination(expand_tilde(destination, self.home_dir), file_name)
        validate_file_destination(destination, self.home_dir)

        saver = new_saver(urlsplit(destination).scheme or "file")

        logger.info(f"Downloading {source} -> {destination}")
        try:
            async with httpx.AsyncClient(
                transport=self.transport,
                timeout=self.config.http_timeout,
                headers={"User-Agent": self.config.user_agent},
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", source) as response:
                    if response.status_code != 200:
                        raise FetchError(
                            f"response code error: {response.status_code}",
                            context={"source": source, "status_code": response.status_code},
                        )
                    await saver.save_stream(response.aiter_bytes(), destination)
        except httpx.HTTPError as e:
            raise FetchError(f"failed to download file: {e}", context={"source": source}) from e
        except OSError as e:
            raise FetchError(f"failed to save file: {e}", context={"destination": destination}) from e

        headers: dict[str, list[str]] = {}
        for name, value in response.headers.multi_items():
            headers.setdefault(name, []).append(value)

        length = response.headers.get("content-length", "")
        content_length = int(length) if length.isdigit() else -1
        logger.debug(f"Downloaded {source} (status={response.status_code}, length={content_length})")

        return HTTPMetadata(
            status_code=response.status_code,
            content_length=content_length,
            destination=destination,
            headers=headers,
        )
