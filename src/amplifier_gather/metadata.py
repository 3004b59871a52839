"""Gather metadata - What a completed gather captured, per source kind.

Each gather produces exactly one metadata value. Values are immutable and
carry enough to re-render a pinned locator (see pinning.py).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from .exceptions import PinningError
from .pinning import pin_file_url
from .pinning import pin_git_url
from .pinning import pin_oci_url


class GitMetadata(BaseModel):
    """Metadata from a git clone."""

    model_config = ConfigDict(frozen=True)

    latest_commit: str = ""
    # Commit hashes reachable from the checked-out head, newest first
    commits: list[str] = Field(default_factory=list)

    def get(self) -> dict[str, Any]:
        return {"latest_commit": self.latest_commit, "commits": list(self.commits)}

    def get_latest_commit(self) -> str:
        return self.latest_commit

    def get_hashes(self) -> list[str]:
        return list(self.commits)

    def get_pinned_url(self, url: str) -> str:
        """Render ``url`` as ``git::...?ref=<latest_commit>``."""
        return pin_git_url(url, self.latest_commit)


class HTTPMetadata(BaseModel):
    """Metadata from an HTTP download."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    content_length: int = -1
    destination: str
    headers: dict[str, list[str]] = Field(default_factory=dict)

    def get(self) -> dict[str, Any]:
        return {
            "status_code": self.status_code,
            "content_length": self.content_length,
            "destination": self.destination,
            "headers": {name: list(values) for name, values in self.headers.items()},
        }

    def get_pinned_url(self, url: str) -> str:
        """HTTP content has no immutable reference; the locator is returned as-is."""
        if not url:
            raise PinningError("empty URL")
        return url


class FileMetadata(BaseModel):
    """Metadata from a single file copy or tar expansion."""

    model_config = ConfigDict(frozen=True)

    size: int
    path: str
    timestamp: datetime
    sha: str = ""

    def get(self) -> dict[str, Any]:
        return {"size": self.size, "path": self.path, "timestamp": self.timestamp, "sha": self.sha}

    def get_pinned_url(self, url: str) -> str:
        return pin_file_url(url, empty_message="empty URL")


class DirectoryMetadata(BaseModel):
    """Metadata from a directory copy."""

    model_config = ConfigDict(frozen=True)

    size: int = 0
    path: str
    timestamp: datetime

    def get(self) -> dict[str, Any]:
        return {"size": self.size, "path": self.path, "timestamp": self.timestamp}

    def get_pinned_url(self, url: str) -> str:
        return pin_file_url(url, empty_message="empty file path")


class OCIMetadata(BaseModel):
    """Metadata from an OCI artifact pull."""

    model_config = ConfigDict(frozen=True)

    digest: str = ""

    def get(self) -> dict[str, Any]:
        return {"digest": self.digest}

    def get_digest(self) -> str:
        return self.digest

    def get_pinned_url(self, url: str) -> str:
        """Render ``url`` as ``oci::<ref>@<digest>``."""
        return pin_oci_url(url, self.digest)


Metadata = GitMetadata | HTTPMetadata | FileMetadata | DirectoryMetadata | OCIMetadata
