"""Pinned locators - Re-render a locator around an immutable content reference.

After a successful gather, the captured commit hash or image digest is embedded
into a canonical locator so the same content can be fetched again:

- git::<host>/<path>[//<subdir>]?ref=<commit>
- git::ssh://[<user>@]<host>[:<port>]/<path>[//<subdir>]?ref=<commit>
- oci::<registry>/<repo>[:<tag>]@<digest>
- file::<absolute path>

Deterministic string transforms only: no I/O.
"""

import os
import re
from urllib.parse import parse_qsl
from urllib.parse import urlencode

from .classifier import HomeDirProvider
from .classifier import default_home_dir
from .classifier import expand_tilde
from .exceptions import PinningError
from .git_url import SSH_SCHEMES

_FORCED_PREFIX = re.compile(r"^[a-z][a-z0-9+.\-]*::", re.IGNORECASE)
_SCP_WITH_USER = re.compile(r"^[^@/:]+@(?P<host>[^:/\s]+):(?P<path>.*)$")


def _strip_scheme(locator: str) -> str:
    if "://" in locator:
        return locator.split("://", 1)[1]
    return locator


def pin_git_url(url: str, latest_commit: str) -> str:
    """Pin a git locator to a commit.

    Any existing ``ref`` is discarded; a ``//subdir`` carried inside the old ref
    value moves into the path. Other query parameters are kept, after ``ref``.
    ``ssh://`` locators keep their scheme, user and port; other schemes are
    dropped.

    Raises:
        PinningError: "empty URL" or "latest commit not set"

    Example:
        >>> pin_git_url("git@example.com:org/repo.git?ref=main", "def456")
        'git::example.com/org/repo.git?ref=def456'
    """
    if not url:
        raise PinningError("empty URL")
    if not latest_commit:
        raise PinningError("latest commit not set", context={"url": url})

    locator = url
    while locator.startswith("git::"):
        locator = locator[len("git::") :]

    prefix = ""
    scheme, sep, remainder = locator.partition("://")
    if sep and scheme.lower() in SSH_SCHEMES:
        # Keep ssh:// so the user and port still reach the same remote
        prefix, locator = f"{scheme}://", remainder
    else:
        locator = _strip_scheme(locator)
        match = _SCP_WITH_USER.match(locator)
        if match:
            locator = f"{match['host']}/{match['path'].lstrip('/')}"

    locator, _, query = locator.partition("?")
    params = parse_qsl(query, keep_blank_values=True)

    old_ref = next((value for key, value in params if key == "ref"), "")
    if "//" in old_ref and "//" not in locator:
        locator = f"{locator}//{old_ref.split('//', 1)[1]}"

    rest = sorted(((key, value) for key, value in params if key != "ref"), key=lambda item: item[0])
    return f"git::{prefix}{locator}?{urlencode([('ref', latest_commit), *rest])}"


def pin_oci_url(url: str, digest: str) -> str:
    """Pin an OCI reference to a manifest digest, replacing any existing digest.

    Raises:
        PinningError: "empty URL" or "image digest not set"

    Example:
        >>> pin_oci_url("oci://registry/org/policy:dev", "sha256:c04c")
        'oci::registry/org/policy:dev@sha256:c04c'
    """
    if not url:
        raise PinningError("empty URL")
    if not digest:
        raise PinningError("image digest not set", context={"url": url})

    locator = _FORCED_PREFIX.sub("", url, count=1)
    locator = _strip_scheme(locator)
    locator = locator.split("@", 1)[0]
    return f"oci::{locator}@{digest}"


def pin_file_url(url: str, home_dir: HomeDirProvider = default_home_dir, empty_message: str = "empty URL") -> str:
    """Normalize a file locator to ``file::<absolute path>``.

    Accepts ``file::``, ``file://`` and bare (optionally ``~/``) paths.

    Raises:
        PinningError: With ``empty_message`` if the locator is empty
    """
    if not url:
        raise PinningError(empty_message)

    path = url
    if path.startswith("file::"):
        path = path[len("file::") :]
    elif path.startswith("file://"):
        path = path[len("file://") :]

    path = os.path.abspath(expand_tilde(path, home_dir))
    return f"file::{path}"
