"""
Shared fixtures for the agent-memory test suite.

Provides common test fixtures including:
- Temporary project and data directories
- Mock embedding backend
- Configuration overrides
- Initialized record store and memory service
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import AsyncGenerator

import numpy as np
import pytest

from agent_memory.config import Config
from agent_memory.indexing.embedder import EmbeddingBackend
from agent_memory.service import MemoryService
from agent_memory.storage.record_store import RecordStore


# ==============================================================================
# Mock Embedding Backend
# ==============================================================================

class MockEmbeddingBackend(EmbeddingBackend):
    """
    Mock embedding backend for fast tests.

    Generates deterministic embeddings based on content hash. Texts listed
    in fail_on raise instead.
    """

    def __init__(self, dimension: int = 384):
        self._dimension = dimension
        self._initialized = False
        self._call_count = 0
        self.fail_on: set[str] = set()

    @property
    def dimension(self) -> int:
        return self._dimension

    async def initialize(self) -> None:
        """Initialize the mock backend."""
        self._initialized = True

    async def embed(self, text: str) -> np.ndarray:
        """Generate a mock embedding for one text."""
        self._call_count += 1
        if text in self.fail_on:
            raise RuntimeError(f"embedding failed for {text!r}")

        # Use hash to seed random generator for reproducibility
        hash_bytes = hashlib.sha256(text.encode()).digest()
        rng = np.random.default_rng(int.from_bytes(hash_bytes[:8], "little"))
        embedding = rng.standard_normal(self._dimension).astype(np.float32)
        return embedding / np.linalg.norm(embedding)

    async def close(self) -> None:
        self._initialized = False

    @property
    def call_count(self) -> int:
        """Number of texts embedded."""
        return self._call_count


@pytest.fixture
def mock_embedder() -> MockEmbeddingBackend:
    """Get a mock embedding backend."""
    return MockEmbeddingBackend(dimension=384)


# ==============================================================================
# Path and Configuration Fixtures
# ==============================================================================

@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Empty project directory."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def test_config(tmp_path: Path, project_dir: Path) -> Config:
    """Configuration rooted in a temporary directory, offline."""
    return Config(
        project_root=project_dir,
        data_dir=tmp_path / ".agent-memory",
        network={"enabled": False},
        storage={"initial_capacity": 64},
    )


# ==============================================================================
# Component Fixtures
# ==============================================================================

@pytest.fixture
async def record_store(test_config: Config) -> AsyncGenerator[RecordStore, None]:
    """Initialized record store."""
    store = RecordStore(test_config)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def memory_service(
    test_config: Config,
    mock_embedder: MockEmbeddingBackend,
) -> AsyncGenerator[MemoryService, None]:
    """Initialized memory service backed by the mock embedder."""
    service = MemoryService(test_config, embedder=mock_embedder)
    await service.initialize()
    yield service
    await service.shutdown()


# ==============================================================================
# Cleanup Fixtures
# ==============================================================================

@pytest.fixture(autouse=True)
def cleanup_env():
    """Clean up environment variables after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
