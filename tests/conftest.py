"""Shared pytest configuration and fixtures for brew-sync tests."""

from __future__ import annotations

import pytest
from dotenv import load_dotenv

from brew_sync.sync.engine import SyncSession
from fakes import FakeRemoteStore, MemoryDocumentStore, MemoryRecordSource

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live WebDAV/S3 remote",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live WebDAV/S3 remote"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def records():
    return MemoryRecordSource()


@pytest.fixture
def documents():
    return MemoryDocumentStore()


@pytest.fixture
def session(remote, records, documents):
    """SyncSession wired to the in-memory fakes."""
    return SyncSession(
        remote=remote,
        records=records,
        documents=documents,
        device_id="device-aaaaaaaaaaaaaaaa",
    )
