"""Gather lock file management.

Records what each gather fetched as a pinned locator, so the same content can
be gathered again later.

Per KERNEL_PHILOSOPHY:
- "Could two teams want different behavior?" → YES (lock location is policy)
- This is library mechanism - apps inject lock path (policy)
"""

import json
import logging
from dataclasses import asdict
from dataclasses import dataclass
from datetime import UTC
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class GatherLockEntry:
    """Entry in gather lock file."""

    name: str
    source: str
    pinned: str
    kind: str
    destination: str
    gathered_at: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "GatherLockEntry":
        """Create from dictionary."""
        return cls(**data)


class GatherLock:
    """
    Gather lock file manager (with injected lock path).

    Lock format (JSON):
    {
      "version": "1.0",
      "entries": {
        "policies": {
          "name": "policies",
          "source": "github.com/org/policies?ref=main",
          "pinned": "git::github.com/org/policies?ref=3f2a...",
          "kind": "git",
          "destination": "/work/policies",
          "gathered_at": "2026-10-18T12:00:00+00:00"
        }
      }
    }
    """

    VERSION = "1.0"

    def __init__(self, lock_path: Path):
        """Initialize lock manager with app-provided lock path.

        Args:
            lock_path: Path to lock file (app determines location)

        Example:
            >>> lock = GatherLock(lock_path=Path(".gather.lock"))
        """
        self.lock_path = lock_path
        self._data: dict[str, GatherLockEntry] = {}
        self._load()

    def _load(self) -> None:
        """Load lock file if it exists; an unreadable file counts as empty."""
        if not self.lock_path.exists():
            self._data = {}
            return

        try:
            with open(self.lock_path) as f:
                data = json.load(f)

            if data.get("version") != self.VERSION:
                logger.warning(f"Lock file version mismatch: expected {self.VERSION}, got {data.get('version')}")

            entries = data.get("entries", {})
            self._data = {name: GatherLockEntry.from_dict(entry) for name, entry in entries.items()}

            logger.debug(f"Loaded {len(self._data)} entries from lock file")

        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Failed to load lock file {self.lock_path}: {e}")
            self._data = {}

    def _save(self) -> None:
        """Save lock file."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": self.VERSION,
            "entries": {name: entry.to_dict() for name, entry in self._data.items()},
        }

        with open(self.lock_path, "w") as f:
            json.dump(data, f, indent=2)
        logger.debug(f"Saved lock file with {len(self._data)} entries")

    def add_entry(self, name: str, source: str, pinned: str, kind: str, destination: Path | str) -> GatherLockEntry:
        """
        Add or update an entry in the lock file.

        Args:
            name: Entry name
            source: Locator as gathered
            pinned: Pinned locator (see Metadata.get_pinned_url)
            kind: Source kind (git, http, file, oci)
            destination: Where the content was gathered to

        Returns:
            The stored entry
        """
        entry = GatherLockEntry(
            name=name,
            source=source,
            pinned=pinned,
            kind=kind,
            destination=str(destination),
            gathered_at=datetime.now(UTC).isoformat(),
        )

        self._data[name] = entry
        self._save()

        logger.debug(f"Added {name} to lock file")
        return entry

    def remove_entry(self, name: str) -> None:
        """Remove an entry (no-op if absent)."""
        if name in self._data:
            del self._data[name]
            self._save()
            logger.debug(f"Removed {name} from lock file")

    def get_entry(self, name: str) -> GatherLockEntry | None:
        return self._data.get(name)

    def list_entries(self) -> list[GatherLockEntry]:
        return list(self._data.values())

    def is_locked(self, name: str) -> bool:
        """Check if an entry with this name is in the lock file."""
        return name in self._data
