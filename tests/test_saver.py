"""Tests for savers."""

import io
import tempfile
from pathlib import Path

import pytest
from amplifier_gather import FileSaver
from amplifier_gather import UnsupportedProtocolError
from amplifier_gather import URIKind
from amplifier_gather import new_saver


@pytest.mark.asyncio
async def test_file_saver_creates_parent_directories():
    """Test save writes the data and creates missing parents."""
    with tempfile.TemporaryDirectory() as tmpdir:
        destination = Path(tmpdir) / "a" / "b" / "data.bin"

        await FileSaver().save(io.BytesIO(b"payload"), str(destination))

        assert destination.read_bytes() == b"payload"


@pytest.mark.asyncio
async def test_file_saver_accepts_file_url():
    """Test file:// destinations are written to the local path."""
    with tempfile.TemporaryDirectory() as tmpdir:
        destination = Path(tmpdir) / "data.txt"

        await FileSaver().save(io.BytesIO(b"x"), f"file://{destination}")

        assert destination.read_bytes() == b"x"


@pytest.mark.asyncio
async def test_file_saver_stream():
    """Test save_stream writes every chunk in order."""

    async def chunks():
        for part in (b"one ", b"two ", b"three"):
            yield part

    with tempfile.TemporaryDirectory() as tmpdir:
        destination = Path(tmpdir) / "nested" / "stream.txt"

        await FileSaver().save_stream(chunks(), str(destination))

        assert destination.read_bytes() == b"one two three"


@pytest.mark.asyncio
async def test_file_saver_stream_removes_partial_file_on_error():
    """Test a stream that fails midway leaves no file behind."""

    async def chunks():
        yield b"first half"
        raise ConnectionError("connection reset")

    with tempfile.TemporaryDirectory() as tmpdir:
        destination = Path(tmpdir) / "stream.txt"

        with pytest.raises(ConnectionError, match="connection reset"):
            await FileSaver().save_stream(chunks(), str(destination))

        assert not destination.exists()


def test_new_saver():
    """Test only the file protocol has a saver."""
    assert isinstance(new_saver("file"), FileSaver)
    assert isinstance(new_saver(URIKind.FILE), FileSaver)

    with pytest.raises(UnsupportedProtocolError, match="unsupported protocol: s3"):
        new_saver("s3")
