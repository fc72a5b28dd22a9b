"""
Embedding gateway with a local ONNX implementation.

Provides:
- EmbeddingBackend interface: one text in, one vector out
- Local ONNX MiniLM backend (mean pooling, L2 normalization)
- Lazy model loading and first-use download
"""

from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.request import urlretrieve

import numpy as np
import structlog

from agent_memory.errors import ConfigurationError, NotInitializedError

if TYPE_CHECKING:
    from agent_memory.config import Config

logger = structlog.get_logger(__name__)


_HF_BASE = "https://huggingface.co/sentence-transformers"

MODEL_CONFIGS = {
    "all-MiniLM-L6-v2": {
        "dimension": 384,
        "onnx_url": f"{_HF_BASE}/all-MiniLM-L6-v2/resolve/main/onnx/model.onnx",
        "tokenizer_url": f"{_HF_BASE}/all-MiniLM-L6-v2/resolve/main/tokenizer.json",
    },
    "all-mpnet-base-v2": {
        "dimension": 768,
        "onnx_url": f"{_HF_BASE}/all-mpnet-base-v2/resolve/main/onnx/model.onnx",
        "tokenizer_url": f"{_HF_BASE}/all-mpnet-base-v2/resolve/main/tokenizer.json",
    },
}


class EmbeddingBackend(ABC):
    """Turns a text into a fixed-width float32 vector."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the embedding dimension."""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """Load whatever the backend needs before embedding."""
        pass

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """
        Generate the embedding for a single text.

        Args:
            text: Input text.

        Returns:
            float32 vector of length `dimension`.
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass


class LocalONNXBackend(EmbeddingBackend):
    """
    Local ONNX embedding backend.

    Features:
    - No network required once model files are present
    - Lazy model loading
    - Mean pooling with attention mask
    - Inference off the event loop
    """

    def __init__(
        self,
        config: "Config",
        model_name: str | None = None,
        model_path: Path | None = None,
    ) -> None:
        """
        Initialize the ONNX backend.

        Args:
            config: agent-memory configuration.
            model_name: Model name (from MODEL_CONFIGS).
            model_path: Directory with model.onnx and tokenizer.json.
        """
        self.config = config
        self.model_name = model_name or config.embedding.model_name
        self.model_path = model_path or config.embedding.model_path
        self._dimension = config.embedding.dimension
        self.max_tokens = config.embedding.max_tokens
        self.normalize = config.embedding.normalize

        self._session: Any = None
        self._tokenizer: Any = None
        self._input_names: set[str] = set()
        self._initialized = False

    @property
    def dimension(self) -> int:
        """Return the embedding dimension."""
        return self._dimension

    async def initialize(self) -> None:
        """Load the ONNX model and tokenizer, downloading them if allowed."""
        if self._initialized:
            return

        known = MODEL_CONFIGS.get(self.model_name)
        if known and known["dimension"] != self._dimension:
            raise ConfigurationError(
                f"Model {self.model_name} produces {known['dimension']}-d vectors, "
                f"configured dimension is {self._dimension}"
            )

        logger.info("Initializing ONNX embedding backend", model=self.model_name)

        model_dir = self._get_model_dir()
        model_file = model_dir / "model.onnx"
        tokenizer_file = model_dir / "tokenizer.json"

        if not model_file.exists() or not tokenizer_file.exists():
            await self._download_model(model_dir)

        import onnxruntime as ort
        from tokenizers import Tokenizer

        sess_options = ort.SessionOptions()
        sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        sess_options.intra_op_num_threads = min(4, os.cpu_count() or 1)

        self._session = ort.InferenceSession(
            str(model_file),
            sess_options,
            providers=["CPUExecutionProvider"],
        )
        self._input_names = {i.name for i in self._session.get_inputs()}

        self._tokenizer = Tokenizer.from_file(str(tokenizer_file))
        self._tokenizer.enable_truncation(max_length=self.max_tokens)

        self._initialized = True
        logger.info("ONNX embedding backend initialized", model=self.model_name)

    def _get_model_dir(self) -> Path:
        """Resolve the directory holding model.onnx and tokenizer.json."""
        if self.model_path and Path(self.model_path).is_dir():
            return Path(self.model_path)

        model_dir = self.config.models_dir / self.model_name
        model_dir.mkdir(parents=True, exist_ok=True)
        return model_dir

    async def _download_model(self, model_dir: Path) -> None:
        """Fetch whichever model files are missing."""
        if self.model_name not in MODEL_CONFIGS:
            raise ConfigurationError(
                f"Unknown model {self.model_name}; place model.onnx and "
                f"tokenizer.json in {model_dir}"
            )

        if not self.config.network.enabled:
            raise ConfigurationError(
                f"Model files not found in {model_dir} and network access is disabled"
            )

        urls = MODEL_CONFIGS[self.model_name]
        loop = asyncio.get_running_loop()

        for filename, url_key in (
            ("model.onnx", "onnx_url"),
            ("tokenizer.json", "tokenizer_url"),
        ):
            target = model_dir / filename
            if target.exists():
                continue
            logger.info("Downloading model file", model=self.model_name, file=filename)
            await loop.run_in_executor(None, urlretrieve, urls[url_key], str(target))

    async def embed(self, text: str) -> np.ndarray:
        """Generate the embedding for one text."""
        if not self._initialized:
            await self.initialize()

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._embed_sync, text)

    def _embed_sync(self, text: str) -> np.ndarray:
        """Tokenize, run the session and pool; called from the executor."""
        if self._session is None or self._tokenizer is None:
            raise NotInitializedError("Embedding backend not initialized")

        encoding = self._tokenizer.encode(text)
        input_ids = np.array([encoding.ids], dtype=np.int64)
        attention_mask = np.array([encoding.attention_mask], dtype=np.int64)

        inputs = {"input_ids": input_ids, "attention_mask": attention_mask}
        if "token_type_ids" in self._input_names:
            inputs["token_type_ids"] = np.zeros_like(input_ids)

        last_hidden_state = self._session.run(None, inputs)[0]
        embedding = self._mean_pooling(last_hidden_state, attention_mask)[0]

        if self.normalize:
            norm = np.linalg.norm(embedding)
            if norm > 0:
                embedding = embedding / norm

        return embedding.astype(np.float32)

    def _mean_pooling(
        self,
        last_hidden_state: np.ndarray,
        attention_mask: np.ndarray,
    ) -> np.ndarray:
        """Average token states over the attention mask."""
        mask = np.expand_dims(attention_mask, -1).astype(last_hidden_state.dtype)
        summed = np.sum(last_hidden_state * mask, axis=1)
        counts = np.clip(np.sum(mask, axis=1), a_min=1e-9, a_max=None)
        return summed / counts

    async def close(self) -> None:
        """Release the ONNX session."""
        self._session = None
        self._tokenizer = None
        self._initialized = False


def create_embedder(config: "Config") -> EmbeddingBackend:
    """
    Create the embedding backend for a configuration.

    Args:
        config: agent-memory configuration.

    Returns:
        Configured EmbeddingBackend instance.
    """
    return LocalONNXBackend(config)
