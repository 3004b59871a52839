"""Git locator processing - Decompose a git locator into clone URL, ref, subdirectory, depth.

Accepted forms:
- git::<anything git-shaped>
- git@host:org/repo[.git]
- scheme://host/org/repo[.git][//subdir][?ref=R][&depth=D]
- github.com/org/repo, gitlab.com/org/repo, git::host/org/repo (shorthand for https://)
- ?ref=R//subdir (subdirectory smuggled through the ref value)

Subdirectory precedence: a ``//`` in the URL path wins over a ``//`` found in
a query value. Both forms are accepted, so ``github.com/org/repo//sub?ref=x`` and
``github.com/org/repo?ref=x//sub`` decompose identically.

Pure string/URL transformation: no network or filesystem access.
"""

import logging
import os
import re
from urllib.parse import parse_qsl
from urllib.parse import urlencode
from urllib.parse import urlsplit
from urllib.parse import urlunsplit

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import field_validator

from .classifier import HomeDirProvider
from .classifier import URIClassifier
from .classifier import URIKind
from .classifier import default_home_dir
from .classifier import expand_tilde
from .classifier import is_file_path_shaped
from .exceptions import ClassificationError
from .exceptions import LocatorParseError

logger = logging.getLogger(__name__)

GIT_TRANSPORTS = frozenset({"ssh", "git", "git+ssh", "http", "https", "ftp", "ftps", "rsync", "file"})

SSH_SCHEMES = frozenset({"ssh", "git+ssh"})

# user@host:path, as understood by git itself (path must not start with a backslash,
# which keeps C:\ drive paths out)
_SCP_PATTERN = re.compile(r"^(?:(?P<user>[^@]+)@)?(?P<host>[^:\s]+):(?:(?P<port>[0-9]{1,5})/)?(?P<path>[^\\].*)$")


class ParsedGitLocator(BaseModel):
    """Git locator decomposed for cloning (immutable).

    Empty strings mean "not specified": default branch, repository root, full history.
    """

    model_config = ConfigDict(frozen=True)

    clone_url: str
    ref: str = ""
    subdirectory: str = ""
    depth: str = ""

    @field_validator("clone_url")
    @classmethod
    def _require_scheme_and_suffix(cls, value: str) -> str:
        parts = urlsplit(value)
        if not parts.scheme:
            raise ValueError(f"clone URL must carry a scheme: {value}")
        if not parts.path.endswith(".git"):
            raise ValueError(f"clone URL must end in .git: {value}")
        return value


def local_git_url(locator: str, home_dir: HomeDirProvider = default_home_dir) -> str:
    """Anchor a path-shaped locator as an absolute ``file://`` URL.

    Only the repository part is normalized; a ``//subdir`` suffix and the
    query string are carried over untouched.

    Example:
        >>> local_git_url("/srv/repo.git//policy?ref=main")
        'file:///srv/repo.git//policy?ref=main'
    """
    path, query_sep, query = locator.partition("?")
    path = expand_tilde(path, home_dir)

    subdir_at = path.find("//", 1)
    repository, subdir = (path[:subdir_at], path[subdir_at:]) if subdir_at > 0 else (path, "")

    return f"file://{os.path.abspath(repository)}{subdir}{query_sep}{query}"


def parse_git_url(raw: str) -> str:
    """Normalize a git locator to a single URL representation.

    Tries, in order: a transport URL with a known git scheme, the SCP form
    (rewritten to ``ssh://``), and finally a local path (rewritten to ``file://``).

    Args:
        raw: Git locator without any ``git::`` prefix

    Returns:
        Normalized URL string

    Raises:
        LocatorParseError: If the locator has a scheme that is not a git transport
        ValueError: If the URL is structurally invalid

    Example:
        >>> parse_git_url("git@github.com:org/repo.git")
        'ssh://git@github.com/org/repo.git'
    """
    if "://" in raw:
        parts = urlsplit(raw)
        if parts.scheme not in GIT_TRANSPORTS:
            raise LocatorParseError(f"scheme {parts.scheme!r} is not a valid git transport", context={"url": raw})
        return urlunsplit(parts)

    match = _SCP_PATTERN.match(raw)
    if match:
        netloc = match["host"]
        if match["user"]:
            netloc = f"{match['user']}@{netloc}"
        if match["port"]:
            netloc = f"{netloc}:{match['port']}"
        path = match["path"]
        if not path.startswith("/"):
            path = "/" + path
        return f"ssh://{netloc}{path}"

    return local_git_url(raw)


def _extract_query_value(
    query: list[tuple[str, str]], key: str, subdirectory: str
) -> tuple[str, str, list[tuple[str, str]]]:
    """Pop ``key`` from the query, splitting off a ``//subdir`` suffix from its value.

    Returns:
        (value, subdirectory, remaining query)
    """
    value = next((v for k, v in query if k == key), "")
    remaining = [(k, v) for k, v in query if k != key]
    if "//" in value:
        value, subdirectory = value.split("//", 1)
    return value, subdirectory, remaining


def process_git_url(raw: str, classifier: URIClassifier | None = None) -> ParsedGitLocator:
    """Decompose a raw git locator.

    Args:
        raw: User-supplied git locator
        classifier: Classifier to use (injected home-directory lookup); default one if None

    Returns:
        ParsedGitLocator whose clone_url is scheme-qualified and ends in .git

    Raises:
        LocatorParseError: If classification, git URL parsing, or the URL reparse fails

    Example:
        >>> locator = process_git_url("git::https://example.com/org/repo.git?ref=main//sub")
        >>> locator.clone_url, locator.ref, locator.subdirectory
        ('https://example.com/org/repo.git', 'main', 'sub')
    """
    classifier = classifier or URIClassifier()

    try:
        kind = classifier.classify(raw)
    except ClassificationError as e:
        raise LocatorParseError(f"failed to classify URI: {e}", context={"source": raw}) from e

    locator = raw
    if "::" in locator:
        locator = locator.split("::", 1)[1]

    if kind is URIKind.GIT and "git@" not in locator and "://" not in locator:
        if is_file_path_shaped(locator):
            locator = local_git_url(locator, classifier.home_dir)
        else:
            locator = "https://" + locator

    try:
        normalized = parse_git_url(locator)
    except (LocatorParseError, ValueError) as e:
        raise LocatorParseError(f"failed to parse URL: {e}", context={"source": raw}) from e

    try:
        parts = urlsplit(normalized)
    except ValueError as e:
        raise LocatorParseError(f"failed to reparse URL: {e}", context={"source": raw}) from e

    query = parse_qsl(parts.query, keep_blank_values=True)
    ref, subdirectory, query = _extract_query_value(query, "ref", "")
    depth, subdirectory, query = _extract_query_value(query, "depth", subdirectory)

    path = parts.path
    if "//" in path:
        path, subdirectory = path.split("//", 1)

    if not path.endswith(".git"):
        path += ".git"
    if parts.netloc and not path.startswith("/"):
        path = "/" + path

    clone_url = urlunsplit(
        (parts.scheme, parts.netloc, path, urlencode(sorted(query, key=lambda item: item[0])), parts.fragment)
    )
    logger.debug(f"Processed git locator {raw} -> {clone_url} (ref={ref!r}, subdir={subdirectory!r}, depth={depth!r})")

    return ParsedGitLocator(clone_url=clone_url, ref=ref, subdirectory=subdirectory, depth=depth)


def is_ssh_url(clone_url: str) -> bool:
    """Check whether cloning this URL needs SSH credentials."""
    return urlsplit(clone_url).scheme in SSH_SCHEMES
