"""
Configuration module for agent-memory.

Typed settings tree for agent-memory. Values come from a config file,
AGENT_MEMORY_ environment variables or keyword overrides.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_memory.errors import ConfigurationError

DATA_DIR_NAME = ".agent-memory"


class StorageScope(str, Enum):
    """Where the record store lives."""

    WORKSPACE = "workspace"
    GLOBAL = "global"


class IndexingOptions(BaseModel):
    """Folder indexing policy: which files qualify and how many."""

    max_file_size: int = Field(
        default=1 * 1024 * 1024,
        ge=1,
        description="Maximum file size to index in bytes",
    )
    exclude_patterns: list[str] = Field(
        default_factory=lambda: [
            "**/node_modules/**",
            "**/dist/**",
            "**/build/**",
            "**/.git/**",
            "**/.vscode/**",
            "**/coverage/**",
            "**/*.min.js",
            "**/*.bundle.js",
            "**/*.map",
        ],
        description="Glob patterns (relative to the indexed folder) to skip",
    )
    include_extensions: list[str] = Field(
        default_factory=lambda: [
            ".ts",
            ".tsx",
            ".js",
            ".jsx",
            ".py",
            ".java",
            ".c",
            ".cpp",
            ".h",
            ".go",
            ".rs",
            ".rb",
            ".php",
            ".cs",
            ".swift",
            ".kt",
        ],
        description="File extensions to index, scanned in this order",
    )
    max_files: int = Field(
        default=500,
        ge=1,
        description="Maximum number of files accepted per folder",
    )

    @field_validator("include_extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Ensure every extension carries its leading dot."""
        return [ext if ext.startswith(".") else f".{ext}" for ext in v]


class ChunkingConfig(BaseModel):
    """Chunk size policy."""

    max_chunk_size: int = Field(
        default=500,
        ge=1,
        description="Size budget for a chunk, in characters",
    )


class EmbeddingConfig(BaseModel):
    """Local embedding model settings."""

    model_name: str = Field(
        default="all-MiniLM-L6-v2",
        description="Name of a known sentence-transformers model",
    )
    model_path: Path | None = Field(
        default=None,
        description="Directory holding model.onnx and tokenizer.json",
    )
    dimension: int = Field(
        default=384,
        ge=8,
        le=4096,
        description="Vector width; fixed for the life of a store",
    )
    max_tokens: int = Field(
        default=256,
        ge=16,
        le=8192,
        description="Maximum tokens per text before truncation",
    )
    normalize: bool = Field(
        default=True,
        description="Scale vectors to unit length",
    )


class StorageConfig(BaseModel):
    """Record store configuration."""

    table_name: str = Field(
        default="code_context",
        pattern=r"^[A-Za-z_][A-Za-z0-9_]*$",
        description="SQLite table holding the records",
    )
    initial_capacity: int = Field(
        default=10000,
        ge=16,
        description="Initial HNSW capacity; grows on demand",
    )
    hnsw_m: int = Field(
        default=16,
        ge=4,
        le=64,
        description="Graph links per HNSW node",
    )
    hnsw_ef_construction: int = Field(
        default=200,
        ge=50,
        le=500,
        description="Candidate list size while inserting",
    )
    hnsw_ef_search: int = Field(
        default=100,
        ge=10,
        le=500,
        description="Candidate list size while searching",
    )


class NetworkConfig(BaseModel):
    """Network access configuration."""

    enabled: bool = Field(
        default=True,
        description="Allow downloading model files on first use",
    )


class Config(BaseSettings):
    """
    Main agent-memory configuration.

    Can be configured via:
    1. Configuration file (agent-memory.toml or agent-memory.yaml)
    2. Environment variables with AGENT_MEMORY_ prefix
    3. Programmatic overrides
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENT_MEMORY_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    project_root: Path = Field(
        default_factory=lambda: Path.cwd(),
        description="Workspace root directory",
    )
    storage_scope: StorageScope = Field(
        default=StorageScope.WORKSPACE,
        description="Store records per workspace or once per user",
    )
    data_dir: Path | None = Field(
        default=None,
        description="Explicit data directory, overrides storage_scope",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum structlog level for the CLI",
    )

    indexing: IndexingOptions = Field(default_factory=IndexingOptions)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)

    @field_validator("project_root", mode="before")
    @classmethod
    def resolve_project_root(cls, v: Path | str) -> Path:
        """Store the workspace root as an absolute path."""
        path = Path(v) if isinstance(v, str) else v
        return path.resolve()

    @property
    def absolute_data_dir(self) -> Path:
        """Data directory after applying data_dir and storage_scope."""
        if self.data_dir is not None:
            if self.data_dir.is_absolute():
                return self.data_dir
            return self.project_root / self.data_dir

        if self.storage_scope == StorageScope.GLOBAL:
            return Path.home() / DATA_DIR_NAME
        return self.project_root / DATA_DIR_NAME

    @property
    def db_path(self) -> Path:
        """Get absolute path to the record database."""
        return self.absolute_data_dir / "memory-db" / "records.db"

    @property
    def models_dir(self) -> Path:
        """Get absolute path to downloaded embedding models."""
        return self.absolute_data_dir / "models"

    def ensure_directories(self) -> None:
        """Create the record database directory."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from a TOML, YAML or JSON file."""
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()
        content = path.read_text()

        if suffix == ".toml":
            import tomllib

            data = tomllib.loads(content)
        elif suffix in (".yaml", ".yml"):
            try:
                import yaml
            except ImportError:
                raise ConfigurationError(
                    "PyYAML required for YAML config files: pip install 'agent-memory[yaml]'"
                )
            data = yaml.safe_load(content) or {}
        elif suffix == ".json":
            data = json.loads(content)
        else:
            raise ConfigurationError(f"Unsupported config format: {suffix}")

        return cls(**data)


def load_config(
    config_path: Path | None = None,
    project_root: Path | None = None,
) -> Config:
    """
    Load configuration with automatic discovery.

    Priority:
    1. Explicit config_path if provided
    2. agent-memory.toml in project_root
    3. .agent-memory/config.toml in project_root
    4. agent-memory.yaml in project_root
    5. Default configuration
    """
    root = project_root or Path.cwd()

    if config_path is not None:
        config = Config.from_file(config_path)
        return config.model_copy(update={"project_root": root.resolve()})

    candidates = [
        root / "agent-memory.toml",
        root / DATA_DIR_NAME / "config.toml",
        root / "agent-memory.yaml",
    ]

    for candidate in candidates:
        if candidate.exists():
            config = Config.from_file(candidate)
            return config.model_copy(update={"project_root": root.resolve()})

    return Config(project_root=root)
