"""Locator classification - Decide which protocol a user-typed string denotes.

The rules overlap (a bare ``org/repo`` is both git-shaped and dotted, a
``/path/repo.git`` is both a file path and a git repository), so they are
evaluated as an ordered sequence of guard clauses. The order below is the
contract; do not merge the patterns.

Per KERNEL_PHILOSOPHY: The home-directory lookup is injected, not global.
"""

import logging
import os
import re
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from urllib.parse import urlsplit

from .exceptions import ClassificationError
from .exceptions import GatherError

logger = logging.getLogger(__name__)

HomeDirProvider = Callable[[], str]


class URIKind(str, Enum):
    """Protocol family of a locator.

    The value doubles as the dispatcher key for classified sources.
    """

    GIT = "git"
    HTTP = "http"
    FILE = "file"
    OCI = "oci"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


EXPLICIT_PREFIXES: tuple[tuple[str, URIKind], ...] = (
    ("git::", URIKind.GIT),
    ("file::", URIKind.FILE),
    ("http::", URIKind.HTTP),
    ("oci::", URIKind.OCI),
)

GIT_HOSTING_PREFIXES = ("github.com", "gitlab.com")

_SEGMENT = r"[\w.\-]+"

GIT_URI_PATTERN = re.compile(
    r"^("
    rf"git@{_SEGMENT}:{_SEGMENT}/{_SEGMENT}(\.git)?"
    rf"|https?://{_SEGMENT}/{_SEGMENT}/{_SEGMENT}(\.git)?"
    rf"|git://{_SEGMENT}/{_SEGMENT}/{_SEGMENT}(\.git)?"
    rf"|(git|ssh|https?)://{_SEGMENT}/{_SEGMENT}/{_SEGMENT}(\.git)?//.*"
    rf"|ssh://({_SEGMENT}@)?{_SEGMENT}(:\d+)?/.+"
    rf"|{_SEGMENT}/{_SEGMENT}/{_SEGMENT}//.*"
    r"|file://.*\.git"
    rf"|{_SEGMENT}/{_SEGMENT}(\.git)?"
    r")$",
    re.ASCII,
)

HTTP_URI_PATTERN = re.compile(r"^((http://|https://)[\w\-]+(\.[\w\-]+)+.*)$", re.ASCII)

FILE_PATH_PATTERN = re.compile(r"^(\./|\.\./|/|[a-zA-Z]:\\|~/|file://).*")

OCI_URI_PATTERN = re.compile(r"^((oci://)[\w\-]+(\.[\w\-]+)+.*)$", re.ASCII)

KNOWN_OCI_REGISTRIES: tuple[re.Pattern[str], ...] = (
    re.compile(r"azurecr\.io"),
    re.compile(r"gcr\.io"),
    re.compile(r"registry\.gitlab\.com"),
    re.compile(r"pkg\.dev"),
    re.compile(r"[0-9]{12}\.dkr\.ecr\.[a-z0-9-]*\.amazonaws\.com"),
    re.compile(r"^quay\.io"),
    # Loopback registry (docker run registry:2)
    re.compile(r"(?:::1|127\.0\.0\.1|(?i:localhost)):\d{1,5}"),
)


def default_home_dir() -> str:
    """Return the current user's home directory.

    Raises:
        RuntimeError: If the home directory cannot be determined
    """
    return str(Path.home())


def expand_tilde(path: str, home_dir: HomeDirProvider = default_home_dir) -> str:
    """Expand a leading ``~/`` using the injected home-directory provider.

    A failing lookup is not an error: the path is returned unexpanded.

    Example:
        >>> expand_tilde("~/policy", home_dir=lambda: "/home/user")
        '/home/user/policy'
    """
    if not path.startswith("~/"):
        return path

    try:
        home = home_dir()
    except (RuntimeError, KeyError, OSError) as e:
        logger.debug(f"Home directory lookup failed, leaving {path} unexpanded: {e}")
        return path

    return os.path.join(home, path[2:])


def contains_oci_registry(value: str) -> bool:
    """Check whether the string references a well-known OCI registry host."""
    return any(pattern.search(value) for pattern in KNOWN_OCI_REGISTRIES)


def is_file_path_shaped(value: str) -> bool:
    """Check whether the string looks like a filesystem path or ``file://`` URL."""
    return FILE_PATH_PATTERN.match(value) is not None


def _split_scheme(value: str) -> str:
    try:
        return urlsplit(value).scheme
    except ValueError:
        return ""


class URIClassifier:
    """Classify locators into a URIKind (with injected home-directory lookup).

    Example:
        >>> classifier = URIClassifier(home_dir=lambda: "/home/user")
        >>> classifier.classify("github.com/org/repo.git")
        <URIKind.GIT: 'git'>
    """

    def __init__(self, home_dir: HomeDirProvider = default_home_dir):
        self.home_dir = home_dir

    def classify(self, value: str) -> URIKind:
        """Classify a locator.

        Args:
            value: User-supplied locator (URL, SCP-style git reference, or path)

        Returns:
            The URIKind; UNKNOWN for genuinely ambiguous input such as a bare word

        Raises:
            ClassificationError: If the locator has an unsupported scheme, or is
                dotted like a host name but carries no scheme
        """
        for prefix, kind in EXPLICIT_PREFIXES:
            if value.startswith(prefix):
                return kind

        if value.startswith(GIT_HOSTING_PREFIXES):
            return URIKind.GIT

        if is_file_path_shaped(value):
            if expand_tilde(value, self.home_dir).endswith(".git"):
                return URIKind.GIT
            return URIKind.FILE

        if GIT_URI_PATTERN.match(value):
            return URIKind.GIT

        if HTTP_URI_PATTERN.match(value) and _split_scheme(value) in ("http", "https"):
            return URIKind.HTTP

        if OCI_URI_PATTERN.match(value):
            return URIKind.OCI

        if contains_oci_registry(value):
            return URIKind.OCI

        scheme = _split_scheme(value)
        if scheme and scheme not in ("http", "https"):
            raise ClassificationError(
                f"unsupported source protocol: {scheme}", context={"source": value}, kind=URIKind.UNKNOWN
            )

        if "." in value:
            raise ClassificationError(
                f"got {value}. HTTP(S) URIs require a scheme (http:// or https://)",
                context={"source": value},
                kind=URIKind.UNKNOWN,
            )

        return URIKind.UNKNOWN


def classify_uri(value: str, home_dir: HomeDirProvider = default_home_dir) -> URIKind:
    """Classify a locator with a one-off classifier (see URIClassifier.classify)."""
    return URIClassifier(home_dir=home_dir).classify(value)


def validate_file_destination(destination: str, home_dir: HomeDirProvider = default_home_dir) -> None:
    """Reject a destination that already exists.

    Raises:
        GatherError: If the (tilde-expanded) destination exists
    """
    destination = expand_tilde(destination, home_dir)
    if os.path.exists(destination):
        raise GatherError(f"destination file already exists: {destination}", context={"destination": destination})
