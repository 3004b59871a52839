"""OCI gatherer - Pull artifacts (policy bundles) from an OCI registry.

Only layers that carry an ``org.opencontainers.image.title`` annotation are
written; each lands under the destination at its title. Layers annotated
``io.deis.oras.content.unpack=true`` are gzipped tarballs of a directory and
are expanded in place.

The registry transport is a capability (ArtifactPullerProtocol); the default
RegistryPuller speaks the OCI distribution API over httpx.
"""

import asyncio
import base64
import hashlib
import ipaddress
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel
from pydantic import ConfigDict

from .classifier import HomeDirProvider
from .classifier import default_home_dir
from .config import GatherConfig
from .exceptions import AuthenticationError
from .exceptions import FetchError
from .exceptions import GatherError
from .exceptions import LocatorParseError
from .expander import TarExpander
from .expander import contains_dot_dot
from .metadata import OCIMetadata
from .protocols import ArtifactPullerProtocol

logger = logging.getLogger(__name__)

DEFAULT_TAG = "latest"

OCI_MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.list.v2+json"

MANIFEST_ACCEPT = ", ".join(
    [OCI_MANIFEST_MEDIA_TYPE, OCI_INDEX_MEDIA_TYPE, DOCKER_MANIFEST_MEDIA_TYPE, DOCKER_MANIFEST_LIST_MEDIA_TYPE]
)
INDEX_MEDIA_TYPES = frozenset({OCI_INDEX_MEDIA_TYPE, DOCKER_MANIFEST_LIST_MEDIA_TYPE})

TITLE_ANNOTATION = "org.opencontainers.image.title"
UNPACK_ANNOTATION = "io.deis.oras.content.unpack"

_PATH_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|[-]*)[a-z0-9]+)*"
_REPOSITORY_PATTERN = re.compile(rf"^{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*$")
_TAG_PATTERN = re.compile(r"^\w[\w.-]{0,127}$")
_DIGEST_PATTERN = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")
_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')

_LOOPBACK_NAMES = frozenset({"localhost", "127.0.0.1", "::1", "0:0:0:0:0:0:0:1"})


class OCIReference(BaseModel):
    """Registry reference: ``registry/repository[:tag|@digest]`` (immutable)."""

    model_config = ConfigDict(frozen=True)

    registry: str
    repository: str
    reference: str = ""

    @property
    def is_digest(self) -> bool:
        return ":" in self.reference

    def __str__(self) -> str:
        if not self.reference:
            return f"{self.registry}/{self.repository}"
        separator = "@" if self.is_digest else ":"
        return f"{self.registry}/{self.repository}{separator}{self.reference}"


def oci_url_parse(source: str) -> str:
    """Strip a ``xxx::`` prefix and any ``scheme://`` from an OCI locator.

    Example:
        >>> oci_url_parse("oci::oci://registry.example.com/org/policy:v1")
        'registry.example.com/org/policy:v1'
    """
    if "::" in source:
        source = source.split("::", 1)[1]
    _, sep, rest = source.partition("://")
    return rest if sep else source


def parse_reference(value: str) -> OCIReference:
    """Parse ``registry/repository[:tag][@digest]``; a digest wins over a tag.

    Raises:
        LocatorParseError: If the registry or repository is missing, or a part is malformed
    """
    registry, _, path = value.partition("/")
    if not registry or not path:
        raise LocatorParseError(
            "failed to parse reference: invalid reference: missing registry or repository",
            context={"reference": value},
        )

    reference = ""
    if "@" in path:
        path, _, reference = path.partition("@")
        if not _DIGEST_PATTERN.match(reference):
            raise LocatorParseError(
                f"failed to parse reference: invalid reference: invalid digest {reference!r}",
                context={"reference": value},
            )
        # Drop a tag alongside the digest
        last_slash = path.rfind("/")
        if ":" in path[last_slash + 1 :]:
            path = path[: path.rfind(":")]
    else:
        last_slash = path.rfind("/")
        colon = path.rfind(":")
        if colon > last_slash:
            path, reference = path[:colon], path[colon + 1 :]
            if not _TAG_PATTERN.match(reference):
                raise LocatorParseError(
                    f"failed to parse reference: invalid reference: invalid tag {reference!r}",
                    context={"reference": value},
                )

    if not path:
        raise LocatorParseError(
            "failed to parse reference: invalid reference: missing registry or repository",
            context={"reference": value},
        )
    if not _REPOSITORY_PATTERN.match(path):
        raise LocatorParseError(
            f"failed to parse reference: invalid reference: invalid repository {path!r}",
            context={"reference": value},
        )

    return OCIReference(registry=registry, repository=path, reference=reference)


def hostname(registry: str) -> str:
    """Host part of a registry (``host:port`` or bracketed IPv6)."""
    if registry.startswith("["):
        return registry[1 : registry.find("]")] if "]" in registry else registry
    if registry.count(":") > 1:
        return registry
    return registry.split(":", 1)[0]


def is_loopback(host: str) -> bool:
    """Loopback names and literal loopback addresses (no DNS lookups)."""
    if host.lower() in _LOOPBACK_NAMES:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def docker_credentials(registry: str, home_dir: HomeDirProvider = default_home_dir) -> tuple[str, str] | None:
    """Look up ``registry`` in the ``auths`` section of ``~/.docker/config.json``.

    Credential helpers are not consulted.

    Returns:
        (username, password) or None if no usable entry exists
    """
    config_path = Path(home_dir()) / ".docker" / "config.json"
    if not config_path.exists():
        return None

    try:
        auths = json.loads(config_path.read_text(encoding="utf-8")).get("auths", {})
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read docker config {config_path}: {e}")
        return None

    for key in (registry, f"https://{registry}", f"http://{registry}"):
        entry = auths.get(key)
        if not entry:
            continue
        if entry.get("auth"):
            try:
                username, _, password = base64.b64decode(entry["auth"]).decode("utf-8").partition(":")
            except ValueError as e:
                logger.warning(f"Ignoring malformed docker auth entry for {key}: {e}")
                continue
            return username, password
        if entry.get("username"):
            return entry["username"], entry.get("password", "")
    return None


def _parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    scheme, _, params = header.partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM.findall(params))


class RegistryPuller:
    """Pull OCI artifacts over the distribution API with httpx.

    Authentication: anonymous first; on a 401 the challenge is answered with a
    Bearer token (fetched from the realm, with docker credentials if present)
    or with Basic credentials.
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

    async def pull(self, reference: OCIReference, destination: Path, plain_http: bool = False) -> str:
        """Pull ``reference`` into ``destination``.

        Returns:
            Digest of the (top-level) manifest

        Raises:
            FetchError: If a request fails or content does not verify
            AuthenticationError: If the token exchange fails
        """
        scheme = "http" if plain_http else "https"
        base_url = f"{scheme}://{reference.registry}/v2/{reference.repository}"
        credentials = docker_credentials(reference.registry, self.home_dir)

        async with httpx.AsyncClient(
            transport=self.transport,
            timeout=self.config.http_timeout,
            headers={"User-Agent": self.config.user_agent},
            follow_redirects=True,
        ) as client:
            session = _RegistrySession(client, reference, credentials)
            manifest, digest = await session.fetch_manifest(f"{base_url}/manifests/{reference.reference}")
            if reference.is_digest and digest != reference.reference:
                raise FetchError(
                    f"manifest digest mismatch: expected {reference.reference}, got {digest}",
                    context={"reference": str(reference)},
                )

            manifests = [manifest]
            if manifest.get("mediaType") in INDEX_MEDIA_TYPES:
                manifests = []
                for descriptor in manifest.get("manifests", []):
                    child, _ = await session.fetch_manifest(f"{base_url}/manifests/{descriptor['digest']}")
                    manifests.append(child)

            destination.mkdir(parents=True, exist_ok=True)
            written = 0
            for item in manifests:
                for layer in item.get("layers", []):
                    title = (layer.get("annotations") or {}).get(TITLE_ANNOTATION)
                    if not title:
                        logger.debug(f"Skipping untitled layer {layer.get('digest')}")
                        continue
                    await self._pull_layer(session, base_url, layer, title, destination)
                    written += 1

        logger.info(f"Pulled {reference} ({digest}, {written} layer(s)) -> {destination}")
        return digest

    async def _pull_layer(
        self, session: "_RegistrySession", base_url: str, layer: dict[str, Any], title: str, destination: Path
    ) -> None:
        if os.path.isabs(title) or contains_dot_dot(title):
            raise FetchError(f"layer title {title!r} would escape destination directory", context={"title": title})

        digest = layer["digest"]
        unpack = (layer.get("annotations") or {}).get(UNPACK_ANNOTATION) == "true"
        target = destination / title

        if unpack:
            fd, tmp_name = tempfile.mkstemp(prefix="oci-layer-", suffix=".tar.gz")
            os.close(fd)
            try:
                await session.fetch_blob(f"{base_url}/blobs/{digest}", digest, layer.get("size"), Path(tmp_name))
                await asyncio.to_thread(TarExpander().expand, str(destination), tmp_name, True)
            finally:
                os.unlink(tmp_name)
            return

        target.parent.mkdir(parents=True, exist_ok=True)
        await session.fetch_blob(f"{base_url}/blobs/{digest}", digest, layer.get("size"), target)


class _RegistrySession:
    """Requests against one repository, carrying the negotiated Authorization."""

    def __init__(self, client: httpx.AsyncClient, reference: OCIReference, credentials: tuple[str, str] | None):
        self.client = client
        self.reference = reference
        self.credentials = credentials
        self.authorization: str | None = None

    async def _send(self, url: str, headers: dict[str, str], stream: bool = False) -> httpx.Response:
        request_headers = dict(headers)
        if self.authorization:
            request_headers["Authorization"] = self.authorization

        request = self.client.build_request("GET", url, headers=request_headers)
        response = await self.client.send(request, stream=stream)
        if response.status_code != 401 or self.authorization is not None:
            return response

        challenge = response.headers.get("www-authenticate", "")
        await response.aclose()
        self.authorization = await self._authorize(challenge)
        request_headers["Authorization"] = self.authorization
        request = self.client.build_request("GET", url, headers=request_headers)
        return await self.client.send(request, stream=stream)

    async def _authorize(self, challenge: str) -> str:
        scheme, params = _parse_challenge(challenge)

        if scheme == "basic":
            if not self.credentials:
                raise AuthenticationError(
                    f"registry {self.reference.registry} requires credentials",
                    context={"registry": self.reference.registry},
                )
            token = base64.b64encode(":".join(self.credentials).encode("utf-8")).decode("ascii")
            return f"Basic {token}"

        if scheme != "bearer" or "realm" not in params:
            raise AuthenticationError(
                f"unsupported registry auth challenge: {challenge or 'none'}",
                context={"registry": self.reference.registry},
            )

        query = {"scope": params.get("scope") or f"repository:{self.reference.repository}:pull"}
        if params.get("service"):
            query["service"] = params["service"]
        auth = httpx.BasicAuth(*self.credentials) if self.credentials else None

        logger.debug(f"Requesting registry token from {params['realm']} (scope={query['scope']})")
        response = await self.client.get(params["realm"], params=query, auth=auth)
        if response.status_code != 200:
            raise AuthenticationError(
                f"token request failed: {response.status_code}", context={"realm": params["realm"]}
            )
        body = response.json()
        token = body.get("token") or body.get("access_token")
        if not token:
            raise AuthenticationError("token response carried no token", context={"realm": params["realm"]})
        return f"Bearer {token}"

    async def fetch_manifest(self, url: str) -> tuple[dict[str, Any], str]:
        response = await self._send(url, {"Accept": MANIFEST_ACCEPT})
        if response.status_code != 200:
            raise FetchError(f"manifest request failed: {response.status_code}", context={"url": url})

        body = response.content
        digest = response.headers.get("docker-content-digest") or f"sha256:{hashlib.sha256(body).hexdigest()}"
        try:
            return json.loads(body), digest
        except json.JSONDecodeError as e:
            raise FetchError(f"invalid manifest: {e}", context={"url": url}) from e

    async def fetch_blob(self, url: str, digest: str, size: int | None, target: Path) -> None:
        algorithm, _, expected = digest.partition(":")
        if algorithm != "sha256":
            raise FetchError(f"unsupported digest algorithm: {algorithm}", context={"digest": digest})

        hasher = hashlib.sha256()
        received = 0
        response = await self._send(url, {}, stream=True)
        try:
            if response.status_code != 200:
                raise FetchError(f"blob request failed: {response.status_code}", context={"url": url})
            with open(target, "wb") as f:
                async for chunk in response.aiter_bytes():
                    hasher.update(chunk)
                    received += len(chunk)
                    f.write(chunk)
        finally:
            await response.aclose()

        if size is not None and received != size:
            raise FetchError(f"blob {digest} size mismatch: expected {size}, got {received}", context={"url": url})
        if hasher.hexdigest() != expected:
            raise FetchError(f"blob {digest} failed verification", context={"url": url})


class OCIGatherer:
    """Gather OCI artifacts.

    Example:
        >>> gatherer = OCIGatherer()
        >>> metadata = await gatherer.gather("oci::quay.io/org/policy:v1", "/tmp/policy")
        >>> metadata.digest
        'sha256:...'
    """

    def __init__(
        self,
        config: GatherConfig | None = None,
        puller: ArtifactPullerProtocol | None = None,
    ):
        self.config = config or GatherConfig()
        self.puller = puller or RegistryPuller(self.config)

    async def gather(self, source: str, destination: str) -> OCIMetadata:
        """Pull ``source`` into the ``destination`` directory.

        Raises:
            LocatorParseError: If the reference cannot be parsed
            FetchError: If pulling fails
        """
        if "localhost" in source:
            source = source.replace("localhost", "127.0.0.1")

        reference = parse_reference(oci_url_parse(source))
        if not reference.reference:
            reference = reference.model_copy(update={"reference": DEFAULT_TAG})

        plain_http = self.config.oci_plain_http
        if plain_http is None:
            plain_http = is_loopback(hostname(reference.registry))

        logger.info(f"Pulling {reference} (plain_http={plain_http}) -> {destination}")
        try:
            digest = await self.puller.pull(reference, Path(destination), plain_http=plain_http)
        except (GatherError, httpx.HTTPError, OSError) as e:
            raise FetchError(f"pulling policy: {e}", context={"reference": str(reference)}) from e

        return OCIMetadata(digest=digest)
