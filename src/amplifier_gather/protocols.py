"""Protocols for gather capabilities.

Per KERNEL_PHILOSOPHY: Protocol-based extensibility over configuration.
Per IMPLEMENTATION_PHILOSOPHY: Composition over inheritance.

The library only requires these interfaces; transports (git, HTTP, registry),
persistence and credentials can all be substituted by the app or by tests.
"""

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any
from typing import BinaryIO
from typing import Protocol
from typing import runtime_checkable


@runtime_checkable
class MetadataProtocol(Protocol):
    """What every gather result exposes."""

    def get(self) -> dict[str, Any]:
        """Return the metadata as a plain key/value mapping."""
        ...

    def get_pinned_url(self, url: str) -> str:
        """Re-render ``url`` around the captured immutable reference.

        Raises:
            PinningError: If a required field is missing or ``url`` is empty
        """
        ...


class GathererProtocol(Protocol):
    """Protocol for protocol-specific gatherers.

    Example implementations:
    - FileGatherer: local files, directories and tar archives
    - HTTPGatherer: single-file HTTP(S) downloads
    - GitGatherer: git clones (optionally a subdirectory)
    - OCIGatherer: OCI artifacts from a registry
    """

    async def gather(self, source: str, destination: str) -> MetadataProtocol:
        """Fetch ``source`` into ``destination``.

        Args:
            source: Locator as typed by the user (prefixes included)
            destination: Local destination path

        Returns:
            Metadata describing what was fetched

        Raises:
            GatherError: If fetching fails
        """
        ...


class SaverProtocol(Protocol):
    """Protocol for persisting bytes to a destination."""

    async def save(self, data: BinaryIO, destination: str) -> None:
        """Write everything readable from ``data`` to ``destination``."""
        ...

    async def save_stream(self, chunks: AsyncIterator[bytes], destination: str) -> None:
        """Write an async stream of chunks to ``destination``."""
        ...


class SSHAuthenticatorProtocol(Protocol):
    """Protocol for obtaining SSH agent credentials for git clones."""

    def new_ssh_agent_auth(self, user: str) -> Any:
        """Return a credential usable by the git cloner.

        Raises:
            AuthenticationError: If no agent credential is available
        """
        ...


class GitClonerProtocol(Protocol):
    """Protocol for the git transport."""

    def clone(
        self, url: str, target: Path, ref: str = "", depth: int | None = None, credential: Any = None
    ) -> list[str]:
        """Clone ``url`` into ``target`` (blocking).

        Returns:
            Commit hashes reachable from the checked-out head, newest first
        """
        ...


class ArtifactPullerProtocol(Protocol):
    """Protocol for the OCI registry transport."""

    async def pull(self, reference: Any, destination: Path, plain_http: bool = False) -> str:
        """Pull the artifact into ``destination``.

        Returns:
            Manifest digest of the pulled artifact
        """
        ...
