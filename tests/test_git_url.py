"""Tests for git locator processing."""

import os

import pytest
from amplifier_gather import LocatorParseError
from amplifier_gather import ParsedGitLocator
from amplifier_gather import URIClassifier
from amplifier_gather import process_git_url
from amplifier_gather.git_url import is_ssh_url
from amplifier_gather.git_url import local_git_url
from amplifier_gather.git_url import parse_git_url
from pydantic import ValidationError


def test_ref_with_smuggled_subdirectory():
    """Test a //subdir inside the ref value is split off."""
    locator = process_git_url("git::https://example.com/org/repo.git?ref=main//sub")

    assert locator.clone_url == "https://example.com/org/repo.git"
    assert locator.ref == "main"
    assert locator.subdirectory == "sub"
    assert locator.depth == ""


def test_scp_form_becomes_ssh_url():
    """Test git@host:path is rewritten to an ssh:// clone URL."""
    locator = process_git_url("git@example.com:org/repo")

    assert locator.clone_url == "ssh://git@example.com/org/repo.git"
    assert locator.ref == ""
    assert locator.subdirectory == ""
    assert locator.depth == ""
    assert is_ssh_url(locator.clone_url)


def test_hosting_shorthand_gets_https():
    """Test github.com/... without a scheme is cloned over https."""
    locator = process_git_url("github.com/org/policies//release?ref=v1&depth=1")

    assert locator.clone_url == "https://github.com/org/policies.git"
    assert locator.ref == "v1"
    assert locator.subdirectory == "release"
    assert locator.depth == "1"


def test_forced_prefix_with_bare_host():
    """Test git::host/org/repo is treated as https."""
    locator = process_git_url("git::example.com/org/repo")

    assert locator.clone_url == "https://example.com/org/repo.git"


def test_path_subdirectory_and_query_subdirectory_agree():
    """Test both subdirectory spellings decompose the same way."""
    in_path = process_git_url("github.com/org/repo//sub?ref=x")
    in_query = process_git_url("github.com/org/repo?ref=x//sub")

    assert in_path == in_query
    assert in_path.subdirectory == "sub"


def test_path_subdirectory_wins_over_query_subdirectory():
    """Test a // in the path takes precedence over one in a query value."""
    locator = process_git_url("github.com/org/repo//from-path?ref=x//from-query")

    assert locator.ref == "x"
    assert locator.subdirectory == "from-path"


def test_other_query_parameters_are_kept_sorted():
    """Test unrelated query parameters survive on the clone URL."""
    locator = process_git_url("https://example.com/org/repo.git?z=1&ref=main&a=2")

    assert locator.clone_url == "https://example.com/org/repo.git?a=2&z=1"
    assert locator.ref == "main"


def test_depth_with_subdirectory():
    """Test a //subdir after the depth value is split off too."""
    locator = process_git_url("git::https://example.com/org/repo?depth=5//lib")

    assert locator.depth == "5"
    assert locator.subdirectory == "lib"


@pytest.mark.parametrize(
    "raw",
    [
        "git::https://example.com/org/repo.git?ref=main//sub",
        "git@example.com:org/repo",
        "github.com/org/policies",
        "git::git://example.com/org/repo",
        "ssh://git@example.com:2222/org/repo.git",
    ],
)
def test_clone_url_is_idempotent(raw: str):
    """Test processing a clone URL again leaves it unchanged."""
    first = process_git_url(raw)
    second = process_git_url(first.clone_url)

    assert second.clone_url == first.clone_url
    assert second.ref == ""
    assert second.subdirectory == ""


def test_local_path_becomes_file_url():
    """Test a path-shaped git locator is cloned from the filesystem."""
    locator = process_git_url("/srv/git/policies.git")

    assert locator.clone_url == "file:///srv/git/policies.git"


def test_tilde_path_uses_injected_home():
    """Test a ~/ git locator is expanded with the classifier's home lookup."""
    classifier = URIClassifier(home_dir=lambda: "/home/user")

    locator = process_git_url("git::~/src/policies", classifier)

    assert locator.clone_url == "file:///home/user/src/policies.git"


def test_relative_path_is_made_absolute():
    """Test a relative git path is anchored at the working directory."""
    locator = process_git_url("./policies.git")

    assert locator.clone_url == "file://" + os.path.abspath("./policies.git")


def test_unclassifiable_locator():
    """Test classification failures name the stage."""
    with pytest.raises(LocatorParseError, match="failed to classify URI: unsupported source protocol: ftp"):
        process_git_url("ftp://example.com/org/repo")


def test_non_git_transport_rejected():
    """Test a scheme git cannot clone over is a parse failure."""
    with pytest.raises(LocatorParseError, match="failed to parse URL"):
        process_git_url("git::mailto://example.com/org/repo")


def test_parse_git_url_forms():
    """Test the three normalizations."""
    assert parse_git_url("https://example.com/org/repo.git") == "https://example.com/org/repo.git"
    assert parse_git_url("git@example.com:org/repo.git") == "ssh://git@example.com/org/repo.git"
    assert parse_git_url("example.com:2222/org/repo.git") == "ssh://example.com:2222/org/repo.git"
    assert parse_git_url("/srv/repo") == "file:///srv/repo"


def test_parsed_locator_validation():
    """Test clone URLs must be scheme-qualified and end in .git."""
    with pytest.raises(ValidationError):
        ParsedGitLocator(clone_url="example.com/org/repo.git")

    with pytest.raises(ValidationError):
        ParsedGitLocator(clone_url="https://example.com/org/repo")


def test_is_ssh_url():
    """Test ssh detection by scheme."""
    assert is_ssh_url("ssh://git@example.com/org/repo.git")
    assert is_ssh_url("git+ssh://example.com/org/repo.git")
    assert not is_ssh_url("https://example.com/org/repo.git")


def test_local_path_keeps_subdirectory_and_query():
    """Test the //subdir marker survives anchoring a local repository path."""
    locator = process_git_url("git::/srv/git/policies.git//lib?ref=main")

    assert locator.clone_url == "file:///srv/git/policies.git"
    assert locator.subdirectory == "lib"
    assert locator.ref == "main"


def test_local_git_url():
    """Test only the repository part of a local locator is normalized."""
    assert local_git_url("/srv/./repo.git//policy?ref=main") == "file:///srv/repo.git//policy?ref=main"
    assert local_git_url("~/repo", home_dir=lambda: "/home/user") == "file:///home/user/repo"
