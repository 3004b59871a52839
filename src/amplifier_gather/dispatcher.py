"""Protocol dispatcher - Route a source locator to the gatherer for its protocol.

Lookup order:
1. The locator's URL scheme (``file``, ``http``, ``https``, ``git``, ``oci``)
2. The classified kind, for scheme-less locators (bare paths, ``github.com/...``,
   ``git@host:...``, ``localhost:5000/...``)

The registry is read-only after construction.
"""

import logging
from collections.abc import Mapping
from types import MappingProxyType
from urllib.parse import urlsplit

from .classifier import URIClassifier
from .config import GatherConfig
from .exceptions import ClassificationError
from .exceptions import LocatorParseError
from .exceptions import UnsupportedProtocolError
from .file_gatherer import FileGatherer
from .git_gatherer import GitGatherer
from .http_gatherer import HTTPGatherer
from .oci_gatherer import OCIGatherer
from .protocols import GathererProtocol
from .protocols import MetadataProtocol

logger = logging.getLogger(__name__)


def default_registry(config: GatherConfig | None = None) -> Mapping[str, GathererProtocol]:
    """Read-only registry of the built-in gatherers, keyed by protocol."""
    config = config or GatherConfig()
    http_gatherer = HTTPGatherer(config)
    return MappingProxyType(
        {
            "file": FileGatherer(config),
            "http": http_gatherer,
            "https": http_gatherer,
            "git": GitGatherer(config),
            "oci": OCIGatherer(config),
        }
    )


class Dispatcher:
    """Dispatch gather requests by protocol.

    Example:
        >>> dispatcher = Dispatcher()
        >>> metadata = await dispatcher.gather("git::github.com/org/policies?ref=main", "/tmp/policies")
        >>> metadata.get_pinned_url("git::github.com/org/policies?ref=main")
        'git::github.com/org/policies?ref=<commit>'
    """

    def __init__(
        self,
        registry: Mapping[str, GathererProtocol] | None = None,
        classifier: URIClassifier | None = None,
    ):
        self.registry = MappingProxyType(dict(registry)) if registry is not None else default_registry()
        self.classifier = classifier or URIClassifier()

    def resolve(self, source: str) -> GathererProtocol:
        """Pick the gatherer for ``source``.

        Raises:
            LocatorParseError: If the locator cannot be parsed as a URI
            UnsupportedProtocolError: If classification fails or no gatherer matches
        """
        try:
            scheme = urlsplit(source).scheme
        except ValueError as e:
            raise LocatorParseError(f"failed to parse source URI: {e}", context={"source": source}) from e

        gatherer = self.registry.get(scheme) if scheme else None
        if gatherer is not None:
            logger.debug(f"Dispatching {source} by scheme {scheme!r}")
            return gatherer

        try:
            key = self.classifier.classify(source).value
        except ClassificationError as e:
            raise UnsupportedProtocolError(f"failed to classify source URI: {e}", context={"source": source}) from e

        gatherer = self.registry.get(key)
        if gatherer is None:
            raise UnsupportedProtocolError(f"unsupported source protocol: {key}", context={"source": source})

        logger.debug(f"Dispatching {source} by classified kind {key!r}")
        return gatherer

    async def gather(self, source: str, destination: str) -> MetadataProtocol:
        """Gather ``source`` into ``destination`` with the matching gatherer.

        The gatherer receives ``source`` unchanged.
        """
        gatherer = self.resolve(source)
        return await gatherer.gather(source, destination)


async def gather(source: str, destination: str) -> MetadataProtocol:
    """Gather with the built-in gatherers (see Dispatcher.gather)."""
    return await Dispatcher().gather(source, destination)
