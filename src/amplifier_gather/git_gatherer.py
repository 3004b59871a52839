"""Git gatherer - Clone repositories (or one subdirectory of them).

Transport and credentials are capabilities:
- GitClonerProtocol: DulwichCloner by default
- SSHAuthenticatorProtocol: SSHAgentAuthenticator by default, only consulted
  for ssh clone URLs
"""

import asyncio
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from urllib.parse import urlsplit
from urllib.parse import urlunsplit

from dulwich import porcelain
from pydantic import BaseModel
from pydantic import ConfigDict

from .classifier import URIClassifier
from .config import GatherConfig
from .copier import copy_directory
from .exceptions import AuthenticationError
from .exceptions import FetchError
from .exceptions import GatherError
from .git_url import ParsedGitLocator
from .git_url import is_ssh_url
from .git_url import process_git_url
from .metadata import GitMetadata
from .protocols import GitClonerProtocol
from .protocols import SSHAuthenticatorProtocol

logger = logging.getLogger(__name__)

COMMIT_HASH_PATTERN = re.compile(r"^[0-9a-f]{40}$")

DEFAULT_SSH_USER = "git"


class SSHCredential(BaseModel):
    """SSH agent credential handed to the cloner."""

    model_config = ConfigDict(frozen=True)

    username: str
    agent_socket: str


class SSHAgentAuthenticator:
    """Authenticate ssh clones through the running SSH agent (SSH_AUTH_SOCK)."""

    def new_ssh_agent_auth(self, user: str) -> SSHCredential:
        socket = os.environ.get("SSH_AUTH_SOCK", "")
        if not socket:
            raise AuthenticationError("SSH agent not available: SSH_AUTH_SOCK is not set", context={"user": user})
        return SSHCredential(username=user, agent_socket=socket)


def _with_username(url: str, username: str) -> str:
    parts = urlsplit(url)
    if "@" in parts.netloc or not username:
        return url
    return urlunsplit((parts.scheme, f"{username}@{parts.netloc}", parts.path, parts.query, parts.fragment))


class DulwichCloner:
    """Clone with dulwich.

    A ref that is a full commit hash is checked out by resetting the default
    branch clone to it; any other ref is cloned as a branch (or tag).
    """

    def clone(
        self,
        url: str,
        target: Path,
        ref: str = "",
        depth: int | None = None,
        credential: SSHCredential | None = None,
    ) -> list[str]:
        is_commit = bool(COMMIT_HASH_PATTERN.match(ref))
        kwargs = {}
        if credential is not None:
            url = _with_username(url, credential.username)
            kwargs["ssh_command"] = f"ssh -o IdentityAgent={credential.agent_socket}"

        # A shallow clone cannot reach an arbitrary commit
        clone_depth = None if is_commit else depth

        repo = porcelain.clone(
            url,
            str(target),
            depth=clone_depth,
            branch=ref if ref and not is_commit else None,
            **kwargs,
        )
        try:
            if is_commit:
                commit = repo[ref.encode("ascii")]
                repo.refs[b"HEAD"] = commit.id
                porcelain.reset(repo, "hard")
            head = repo.head()
            return [entry.commit.id.decode("ascii") for entry in repo.get_walker(include=[head])]
        finally:
            repo.close()


class GitGatherer:
    """Clone git repositories.

    Example:
        >>> gatherer = GitGatherer()
        >>> metadata = await gatherer.gather("github.com/org/policies//release?ref=main", "/tmp/release")
        >>> metadata.latest_commit
        '3f2a...'
    """

    def __init__(
        self,
        config: GatherConfig | None = None,
        cloner: GitClonerProtocol | None = None,
        authenticator: SSHAuthenticatorProtocol | None = None,
        classifier: URIClassifier | None = None,
    ):
        self.config = config or GatherConfig()
        self.cloner = cloner or DulwichCloner()
        self.authenticator = authenticator or SSHAgentAuthenticator()
        self.classifier = classifier or URIClassifier()

    async def gather(self, source: str, destination: str) -> GitMetadata:
        """Clone ``source`` into ``destination``.

        Raises:
            FetchError: If the locator is invalid or the clone/copy fails
            AuthenticationError: If an ssh clone has no agent credential
        """
        try:
            locator = process_git_url(source, self.classifier)
        except GatherError as e:
            raise FetchError(f"failed to process URL: {e}", context={"source": source}) from e

        depth: int | None = None
        if locator.depth:
            try:
                depth = int(locator.depth)
            except ValueError as e:
                raise FetchError(f"failed to parse depth: {e}", context={"source": source}) from e

        credential = None
        if is_ssh_url(locator.clone_url):
            try:
                credential = self.authenticator.new_ssh_agent_auth(DEFAULT_SSH_USER)
            except GatherError as e:
                raise AuthenticationError(f"failed to create SSH auth method: {e}", context={"source": source}) from e

        if not locator.subdirectory:
            commits = await self._clone(locator, Path(destination), depth, credential)
        else:
            commits = await self._clone_subdirectory(locator, destination, depth, credential)

        latest = commits[0] if commits else ""
        logger.info(f"Gathered {locator.clone_url} at {latest or 'unknown commit'} -> {destination}")
        return GitMetadata(latest_commit=latest, commits=commits)

    async def _clone(
        self, locator: ParsedGitLocator, target: Path, depth: int | None, credential: SSHCredential | None
    ) -> list[str]:
        logger.info(f"Cloning {locator.clone_url} (ref={locator.ref or 'default'}) -> {target}")
        try:
            return await asyncio.to_thread(
                self.cloner.clone, locator.clone_url, target, locator.ref, depth, credential
            )
        except Exception as e:
            if isinstance(e, GatherError):
                raise
            raise FetchError(f"error cloning repository: {e}", context={"url": locator.clone_url}) from e

    async def _clone_subdirectory(
        self, locator: ParsedGitLocator, destination: str, depth: int | None, credential: SSHCredential | None
    ) -> list[str]:
        """Clone into a temporary directory and copy only the subdirectory out."""
        tmp_dir = Path(tempfile.mkdtemp(prefix="git-repo-"))
        try:
            commits = await self._clone(locator, tmp_dir / "repo", depth, credential)

            source_path = tmp_dir / "repo" / locator.subdirectory
            if not source_path.exists():
                raise FetchError(
                    f"path {locator.subdirectory} does not exist in the repository",
                    context={"url": locator.clone_url, "path": locator.subdirectory},
                )

            await copy_directory(str(source_path), destination, concurrency=self.config.copy_concurrency)
            return commits
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)
