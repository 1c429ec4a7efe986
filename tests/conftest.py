# tests/conftest.py
"""
Pytest configuration and fixtures for the blob-sync unit tests.

The fixtures wire the fakes from `fakes.py` together and provide factories
for endpoints, file entries and small local sites.
"""

from pathlib import Path
from typing import Callable, Dict, Tuple

import pytest
from fakes import (
    SIGNING_KEY,
    CountingSigner,
    FakeBlobStore,
    FakePublisher,
    make_endpoint,
    sha256_of,
)

from blob_sync.config import AppConfig, Config, EndpointConfig
from blob_sync.models import FileEntry


@pytest.fixture
def endpoints() -> Tuple[EndpointConfig, ...]:
    return tuple(make_endpoint(i) for i in range(3))


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def signer() -> CountingSigner:
    return CountingSigner()


@pytest.fixture
def site_factory(tmp_path: Path) -> Callable[[Dict[str, str]], Path]:
    """
    Provide a factory that writes a small site to a temporary directory.

    Yields:
        A function taking `{relative path: content}` and returning the root.
    """

    def _creator(files: Dict[str, str], name: str = "site") -> Path:
        root: Path = tmp_path / name
        for rel_path, content in files.items():
            p: Path = root / rel_path
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content)
        root.mkdir(parents=True, exist_ok=True)
        return root

    return _creator


@pytest.fixture
def local_entry(tmp_path: Path) -> Callable[[str, str], FileEntry]:
    """Provide a factory for local entries backed by a real file."""

    def _creator(remote_path: str, content: str) -> FileEntry:
        p: Path = tmp_path / "files" / remote_path.lstrip("/")
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content)
        return FileEntry(
            remote_path=remote_path,
            sha256=sha256_of(content.encode()),
            size=len(content),
            local_path=p,
        )

    return _creator


@pytest.fixture
def test_config(endpoints: Tuple[EndpointConfig, ...]) -> Config:
    """
    Provide a fully explicit Config so no environment variable is read.

    Returns:
        Config: A Config instance for use in tests.
    """
    return Config(
        endpoints=endpoints,
        records=make_endpoint(99),
        signing_key=SIGNING_KEY,
        app=AppConfig(show_progress=False, endpoint_timeout_s=5.0),
    )
