"""Tests for the OCI gatherer (fake puller and a mock registry)."""

import base64
import hashlib
import io
import json
import tarfile
import tempfile
from pathlib import Path

import httpx
import pytest
from amplifier_gather import FetchError
from amplifier_gather import GatherConfig
from amplifier_gather import LocatorParseError
from amplifier_gather import OCIGatherer
from amplifier_gather import OCIMetadata
from amplifier_gather import OCIReference
from amplifier_gather import RegistryPuller
from amplifier_gather import parse_reference
from amplifier_gather.oci_gatherer import docker_credentials
from amplifier_gather.oci_gatherer import hostname
from amplifier_gather.oci_gatherer import is_loopback
from amplifier_gather.oci_gatherer import oci_url_parse

POLICY = b"package main\n\ndeny contains msg if { false }\n"


def sha256_digest(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def gzipped_dir_tar(name: str, files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for rel, data in files.items():
            info = tarfile.TarInfo(f"{name}/{rel}")
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class FakePuller:
    """Puller recording its arguments."""

    def __init__(self, digest: str = "sha256:abc", error: Exception | None = None):
        self.digest = digest
        self.error = error
        self.calls: list[tuple[OCIReference, Path, bool]] = []

    async def pull(self, reference: OCIReference, destination: Path, plain_http: bool = False) -> str:
        self.calls.append((reference, destination, plain_http))
        if self.error is not None:
            raise self.error
        return self.digest


class MockRegistry:
    """Minimal OCI distribution API with Bearer or Basic auth."""

    def __init__(self, layers: list[dict], blobs: dict[str, bytes], auth: str = "bearer", send_digest: bool = True):
        self.blobs = blobs
        self.auth = auth
        self.send_digest = send_digest
        self.manifest = json.dumps(
            {
                "schemaVersion": 2,
                "mediaType": "application/vnd.oci.image.manifest.v1+json",
                "config": {"mediaType": "application/vnd.oci.empty.v1+json", "digest": sha256_digest(b"{}"), "size": 2},
                "layers": layers,
            }
        ).encode()
        self.token_requests: list[httpx.Request] = []
        self.requests: list[httpx.Request] = []

    @property
    def manifest_digest(self) -> str:
        return sha256_digest(self.manifest)

    def authorized(self, request: httpx.Request) -> bool:
        if self.auth == "bearer":
            return request.headers.get("authorization") == "Bearer registry-token"
        expected = base64.b64encode(b"robot:secret").decode()
        return request.headers.get("authorization") == f"Basic {expected}"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "auth.example.com":
            self.token_requests.append(request)
            return httpx.Response(200, json={"token": "registry-token"})

        if not self.authorized(request):
            if self.auth == "bearer":
                challenge = 'Bearer realm="https://auth.example.com/token",service="registry.example.com"'
            else:
                challenge = 'Basic realm="registry"'
            return httpx.Response(401, headers={"WWW-Authenticate": challenge})

        path = request.url.path
        if "/manifests/" in path:
            headers = {"Content-Type": "application/vnd.oci.image.manifest.v1+json"}
            if self.send_digest:
                headers["Docker-Content-Digest"] = self.manifest_digest
            return httpx.Response(200, content=self.manifest, headers=headers)
        if "/blobs/" in path:
            digest = path.rsplit("/", 1)[1]
            if digest in self.blobs:
                return httpx.Response(200, content=self.blobs[digest])
        return httpx.Response(404)


def titled_layer(title: str, data: bytes, **annotations: str) -> dict:
    return {
        "mediaType": "application/vnd.oci.image.layer.v1.tar",
        "digest": sha256_digest(data),
        "size": len(data),
        "annotations": {"org.opencontainers.image.title": title, **annotations},
    }


def test_oci_url_parse():
    """Test prefixes and schemes are stripped."""
    assert oci_url_parse("oci::quay.io/org/policy:v1") == "quay.io/org/policy:v1"
    assert oci_url_parse("oci://quay.io/org/policy:v1") == "quay.io/org/policy:v1"
    assert oci_url_parse("oci::oci://quay.io/org/policy") == "quay.io/org/policy"
    assert oci_url_parse("quay.io/org/policy") == "quay.io/org/policy"


def test_parse_reference():
    """Test registry, repository and tag/digest are separated."""
    assert parse_reference("quay.io/org/policy:v1") == OCIReference(
        registry="quay.io", repository="org/policy", reference="v1"
    )
    assert parse_reference("127.0.0.1:5000/policy") == OCIReference(
        registry="127.0.0.1:5000", repository="policy", reference=""
    )

    digest = sha256_digest(b"x")
    pinned = parse_reference(f"quay.io/org/policy:v1@{digest}")
    assert pinned.reference == digest
    assert pinned.is_digest
    assert str(pinned) == f"quay.io/org/policy@{digest}"


@pytest.mark.parametrize("value", ["quay.io", "quay.io/", "quay.io/:v1"])
def test_parse_reference_missing_parts(value: str):
    """Test a missing registry or repository is rejected."""
    with pytest.raises(LocatorParseError, match="invalid reference: missing registry or repository"):
        parse_reference(value)


def test_parse_reference_invalid_parts():
    """Test malformed repositories, tags and digests are rejected."""
    with pytest.raises(LocatorParseError, match="invalid repository"):
        parse_reference("quay.io/Org/Policy:v1")

    with pytest.raises(LocatorParseError, match="invalid tag"):
        parse_reference("quay.io/org/policy:-bad")

    with pytest.raises(LocatorParseError, match="invalid digest"):
        parse_reference("quay.io/org/policy@nodigest")


def test_hostname_and_loopback():
    """Test registry host extraction and loopback detection."""
    assert hostname("localhost:5000") == "localhost"
    assert hostname("quay.io") == "quay.io"
    assert hostname("[::1]:5000") == "::1"

    assert is_loopback("localhost")
    assert is_loopback("127.0.0.1")
    assert is_loopback("127.0.0.2")
    assert is_loopback("::1")
    assert not is_loopback("quay.io")


def test_docker_credentials():
    """Test auths entries are read from the docker config."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_dir = Path(tmpdir) / ".docker"
        config_dir.mkdir()
        auth = base64.b64encode(b"robot:secret").decode()
        (config_dir / "config.json").write_text(
            json.dumps(
                {
                    "auths": {
                        "registry.example.com": {"auth": auth},
                        "https://other.example.com": {"username": "u", "password": "p"},
                    }
                }
            )
        )

        assert docker_credentials("registry.example.com", lambda: tmpdir) == ("robot", "secret")
        assert docker_credentials("other.example.com", lambda: tmpdir) == ("u", "p")
        assert docker_credentials("quay.io", lambda: tmpdir) is None


def test_docker_credentials_missing_config():
    """Test a missing docker config means anonymous access."""
    with tempfile.TemporaryDirectory() as tmpdir:
        assert docker_credentials("quay.io", lambda: tmpdir) is None


@pytest.mark.asyncio
async def test_gather_defaults_tag_and_uses_plain_http_for_loopback():
    """Test localhost becomes 127.0.0.1, the tag defaults to latest, and plain HTTP is used."""
    with tempfile.TemporaryDirectory() as tmpdir:
        puller = FakePuller(digest="sha256:feed")

        metadata = await OCIGatherer(puller=puller).gather("oci::localhost:5000/policy", tmpdir)

        assert isinstance(metadata, OCIMetadata)
        assert metadata.digest == "sha256:feed"
        reference, destination, plain_http = puller.calls[0]
        assert reference == OCIReference(registry="127.0.0.1:5000", repository="policy", reference="latest")
        assert destination == Path(tmpdir)
        assert plain_http is True


@pytest.mark.asyncio
async def test_gather_remote_registry_uses_tls():
    """Test non-loopback registries use HTTPS unless configured otherwise."""
    puller = FakePuller()
    await OCIGatherer(puller=puller).gather("quay.io/org/policy:v1", "/tmp/unused")
    assert puller.calls[0][2] is False

    puller = FakePuller()
    await OCIGatherer(GatherConfig(oci_plain_http=True), puller=puller).gather("quay.io/org/policy:v1", "/tmp/unused")
    assert puller.calls[0][2] is True


@pytest.mark.asyncio
async def test_gather_pull_failure_is_wrapped():
    """Test puller errors surface as 'pulling policy' failures."""
    puller = FakePuller(error=FetchError("manifest request failed: 404"))

    with pytest.raises(FetchError, match="pulling policy: manifest request failed: 404"):
        await OCIGatherer(puller=puller).gather("quay.io/org/policy:v1", "/tmp/unused")


@pytest.mark.asyncio
async def test_gather_invalid_reference():
    """Test reference parse errors are raised before pulling."""
    puller = FakePuller()

    with pytest.raises(LocatorParseError, match="failed to parse reference"):
        await OCIGatherer(puller=puller).gather("oci::quay.io", "/tmp/unused")

    assert puller.calls == []


@pytest.mark.asyncio
async def test_registry_puller_bearer_flow():
    """Test a full pull: token challenge, manifest, titled layers only."""
    untitled = b"not written"
    registry = MockRegistry(
        layers=[
            titled_layer("policy/main.rego", POLICY),
            {"mediaType": "application/octet-stream", "digest": sha256_digest(untitled), "size": len(untitled)},
        ],
        blobs={sha256_digest(POLICY): POLICY, sha256_digest(untitled): untitled},
    )

    with tempfile.TemporaryDirectory() as tmpdir:
        puller = RegistryPuller(transport=httpx.MockTransport(registry), home_dir=lambda: tmpdir)
        gatherer = OCIGatherer(puller=puller)
        destination = Path(tmpdir) / "out"

        metadata = await gatherer.gather("oci::registry.example.com/org/policy:v1", str(destination))

        assert metadata.digest == registry.manifest_digest
        assert (destination / "policy" / "main.rego").read_bytes() == POLICY
        assert len(list(destination.rglob("*.rego"))) == 1
        assert registry.token_requests[0].url.params["scope"] == "repository:org/policy:pull"
        assert registry.requests[0].url.scheme == "https"


@pytest.mark.asyncio
async def test_registry_puller_basic_auth_from_docker_config():
    """Test Basic challenges are answered with docker credentials."""
    registry = MockRegistry(
        layers=[titled_layer("main.rego", POLICY)], blobs={sha256_digest(POLICY): POLICY}, auth="basic"
    )

    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / ".docker").mkdir()
        auth = base64.b64encode(b"robot:secret").decode()
        config = {"auths": {"registry.example.com": {"auth": auth}}}
        (Path(tmpdir) / ".docker" / "config.json").write_text(json.dumps(config))
        puller = RegistryPuller(transport=httpx.MockTransport(registry), home_dir=lambda: tmpdir)
        reference = parse_reference("registry.example.com/org/policy:v1")

        digest = await puller.pull(reference, Path(tmpdir) / "out")

        assert digest == registry.manifest_digest
        assert (Path(tmpdir) / "out" / "main.rego").read_bytes() == POLICY


@pytest.mark.asyncio
async def test_registry_puller_basic_auth_without_credentials():
    """Test a Basic challenge without credentials fails authentication."""
    registry = MockRegistry(layers=[], blobs={}, auth="basic")

    with tempfile.TemporaryDirectory() as tmpdir:
        gatherer = OCIGatherer(puller=RegistryPuller(transport=httpx.MockTransport(registry), home_dir=lambda: tmpdir))

        with pytest.raises(FetchError, match="pulling policy: registry registry.example.com requires credentials"):
            await gatherer.gather("registry.example.com/org/policy:v1", str(Path(tmpdir) / "out"))


@pytest.mark.asyncio
async def test_registry_puller_unpacks_directory_layers():
    """Test layers marked for unpacking are expanded into the destination."""
    bundle = gzipped_dir_tar("bundle", {"main.rego": POLICY, "data.json": b"{}"})
    registry = MockRegistry(
        layers=[titled_layer("bundle", bundle, **{"io.deis.oras.content.unpack": "true"})],
        blobs={sha256_digest(bundle): bundle},
        send_digest=False,
    )

    with tempfile.TemporaryDirectory() as tmpdir:
        puller = RegistryPuller(transport=httpx.MockTransport(registry), home_dir=lambda: tmpdir)

        digest = await puller.pull(parse_reference("registry.example.com/org/policy:v1"), Path(tmpdir) / "out")

        assert digest == registry.manifest_digest
        assert (Path(tmpdir) / "out" / "bundle" / "main.rego").read_bytes() == POLICY
        assert (Path(tmpdir) / "out" / "bundle" / "data.json").read_bytes() == b"{}"


@pytest.mark.asyncio
async def test_registry_puller_rejects_corrupt_blob():
    """Test blobs that do not match their digest fail verification."""
    tampered = b"package main\n\ndeny contains msg if { true }\n"
    layer = {**titled_layer("main.rego", POLICY), "size": len(tampered)}
    registry = MockRegistry(layers=[layer], blobs={layer["digest"]: tampered})

    with tempfile.TemporaryDirectory() as tmpdir:
        gatherer = OCIGatherer(puller=RegistryPuller(transport=httpx.MockTransport(registry), home_dir=lambda: tmpdir))

        with pytest.raises(FetchError, match="failed verification"):
            await gatherer.gather("registry.example.com/org/policy:v1", str(Path(tmpdir) / "out"))


@pytest.mark.asyncio
async def test_registry_puller_rejects_escaping_titles():
    """Test layer titles cannot leave the destination."""
    registry = MockRegistry(layers=[titled_layer("../evil.rego", POLICY)], blobs={sha256_digest(POLICY): POLICY})

    with tempfile.TemporaryDirectory() as tmpdir:
        gatherer = OCIGatherer(puller=RegistryPuller(transport=httpx.MockTransport(registry), home_dir=lambda: tmpdir))

        with pytest.raises(FetchError, match="would escape destination directory"):
            await gatherer.gather("registry.example.com/org/policy:v1", str(Path(tmpdir) / "out"))

        assert not (Path(tmpdir) / "evil.rego").exists()
