from pathlib import Path

import pytest
from loguru import logger

from minifypix.compressors import CompressedFile


class FakeCompressor:
    """Stands in for compressors.compress; writes `output` bytes (or the input) to the destination."""

    def __init__(self) -> None:
        self.output = None
        self.error = None
        # stem substring -> exception, for per-file failures
        self.fail_on = {}
        self.calls = []

    def __call__(self, sources, destination_dir, plugins):
        sources = [Path(s) for s in sources]
        self.calls.append((sources, Path(destination_dir), plugins))
        if self.error is not None:
            raise self.error
        for marker, error in self.fail_on.items():
            if any(marker in s.stem for s in sources):
                raise error

        produced = []
        for src in sources:
            dest = Path(destination_dir) / src.name
            data = self.output if self.output is not None else src.read_bytes()
            dest.write_bytes(data)
            produced.append(CompressedFile(source=src, path=dest, size=dest.stat().st_size, engine="fake"))
        return produced


@pytest.fixture
def fake_compressor(monkeypatch):
    fake = FakeCompressor()
    monkeypatch.setattr("minifypix.optimizer.compress", fake)
    return fake


@pytest.fixture
def no_tools(monkeypatch):
    """Force every plugin onto its Pillow / in-process path."""
    monkeypatch.setattr("minifypix.compressors.get_tool_executable", lambda names: None)


@pytest.fixture
def image_file(tmp_path):
    def make(name="photo.jpg", size=1000, fill=b"x"):
        path = tmp_path / name
        path.write_bytes(fill * size)
        return path

    return make


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    # The CLI replaces loguru handlers; drop any sink bound to a captured stream
    logger.remove()
