"""
Shared pytest fixtures.

Most tests run against an in-memory store so they never touch the real process
environment; tests of the os.environ-backed paths use `monkeypatch`.
"""
import pytest

from envkit import MemoryEnvStore, Resolver


@pytest.fixture
def store():
    return MemoryEnvStore()


@pytest.fixture
def env(store):
    return Resolver(store=store)
