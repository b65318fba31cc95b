"""
Configuration management for the Second Brain assistant.

Provides dataclasses for the embedding model, the local LLM server,
vector and metadata storage, retrieval tuning and logging, plus a manager
that applies environment overrides and validates the result.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import json
import logging
import logging.handlers
import os
from pathlib import Path


@dataclass
class EmbeddingConfig:
    """Configuration for query embedding generation."""
    text_model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimension: int = 384
    normalize_embeddings: bool = True
    device: str = "auto"  # auto, cpu, cuda, mps
    max_sequence_length: int = 512


@dataclass
class LLMConfig:
    """Configuration for the local Ollama server."""
    base_url: str = "http://localhost:11434"
    answer_model: str = "llama3.2"
    rewrite_model: str = "phi3:mini"
    timeout_seconds: int = 120
    answer_temperature: float = 0.7
    answer_max_tokens: int = 500
    translation_temperature: float = 0.1
    translation_max_tokens: int = 200
    expansion_temperature: float = 0.5
    expansion_max_tokens: int = 200
    history_window: int = 10
    target_language: str = "English"


@dataclass
class StorageConfig:
    """Configuration for the vector index and the metadata store."""
    qdrant_url: Optional[str] = None  # remote server; local path used when unset
    qdrant_path: str = "storage/qdrant_db"
    qdrant_api_key: Optional[str] = None
    collection_name: str = "second_brain"
    metadata_db_path: str = "storage/metadata.db"


@dataclass
class RetrievalConfig:
    """Tuning knobs for the retrieval orchestration pipeline."""
    short_query_words: int = 3
    medium_query_words: int = 8
    short_query_count: int = 10
    medium_query_count: int = 7
    long_query_count: int = 5
    broad_query_count: int = 20
    coverage_budget: int = 15
    coverage_floor: int = 2
    lexical_limit: int = 10
    lexical_min_word_length: int = 4
    expansion_max_words: int = 5
    max_expansions: int = 3
    max_expansion_chars: int = 200
    keyword_boost: float = 1.1
    lexical_placeholder_score: float = 0.4
    low_confidence_threshold: float = 0.5
    excerpt_length: int = 200


@dataclass
class LoggingConfig:
    """Configuration for system logging."""
    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = "logs/second_brain.log"
    max_file_size_mb: int = 10
    backup_count: int = 5
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    enable_console_logging: bool = True
    enable_file_logging: bool = True


@dataclass
class SystemConfig:
    """Main system configuration containing all subsystem configs."""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    auto_create_directories: bool = True


class ConfigManager:
    """
    Manages system configuration loading and validation.

    Configuration starts from the dataclass defaults, is overridden by an
    optional JSON file (one object per section: embedding, llm, storage,
    retrieval, logging) and finally by environment variables.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self._config: Optional[SystemConfig] = None

    def load_config(self) -> SystemConfig:
        """Load configuration from defaults, the config file and environment variables."""
        if self._config is None:
            self._config = SystemConfig()
            self._apply_file_overrides()
            self._apply_environment_overrides()
            self._validate_config()
            self._create_directories()
        return self._config

    def _apply_file_overrides(self) -> None:
        """Apply configuration values from the JSON config file, if any."""
        if not self._config or not self.config_path:
            return

        with open(self.config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        for section_name, values in data.items():
            if not hasattr(self._config, section_name):
                raise ValueError(f"Unknown configuration section: {section_name}")
            if not isinstance(values, dict):
                setattr(self._config, section_name, values)
                continue
            section = getattr(self._config, section_name)
            for key, value in values.items():
                if not hasattr(section, key):
                    raise ValueError(f"Unknown configuration key: {section_name}.{key}")
                setattr(section, key, value)

    def _apply_environment_overrides(self) -> None:
        """Apply configuration overrides from environment variables."""
        if not self._config:
            return

        # Embedding config overrides
        if os.getenv("TEXT_MODEL_NAME"):
            self._config.embedding.text_model_name = os.getenv("TEXT_MODEL_NAME")
        if os.getenv("EMBEDDING_DEVICE"):
            self._config.embedding.device = os.getenv("EMBEDDING_DEVICE")
        if os.getenv("EMBEDDING_DIMENSION"):
            self._config.embedding.embedding_dimension = int(os.getenv("EMBEDDING_DIMENSION"))

        # LLM config overrides
        if os.getenv("OLLAMA_BASE_URL"):
            self._config.llm.base_url = os.getenv("OLLAMA_BASE_URL")
        if os.getenv("OLLAMA_MODEL"):
            self._config.llm.answer_model = os.getenv("OLLAMA_MODEL")
        if os.getenv("OLLAMA_REWRITE_MODEL"):
            self._config.llm.rewrite_model = os.getenv("OLLAMA_REWRITE_MODEL")
        if os.getenv("LLM_TEMPERATURE"):
            self._config.llm.answer_temperature = float(os.getenv("LLM_TEMPERATURE"))

        # Storage config overrides
        if os.getenv("QDRANT_URL"):
            self._config.storage.qdrant_url = os.getenv("QDRANT_URL")
        if os.getenv("QDRANT_PATH"):
            self._config.storage.qdrant_path = os.getenv("QDRANT_PATH")
        if os.getenv("QDRANT_API_KEY"):
            self._config.storage.qdrant_api_key = os.getenv("QDRANT_API_KEY")
        if os.getenv("QDRANT_COLLECTION"):
            self._config.storage.collection_name = os.getenv("QDRANT_COLLECTION")
        if os.getenv("METADATA_DB_PATH"):
            self._config.storage.metadata_db_path = os.getenv("METADATA_DB_PATH")

        # Retrieval config overrides
        if os.getenv("COVERAGE_BUDGET"):
            self._config.retrieval.coverage_budget = int(os.getenv("COVERAGE_BUDGET"))

        # Logging config overrides
        if os.getenv("LOG_LEVEL"):
            self._config.logging.level = os.getenv("LOG_LEVEL").upper()
        if os.getenv("LOG_FILE"):
            self._config.logging.log_file = os.getenv("LOG_FILE")

    def _validate_config(self) -> None:
        """Validate configuration values and constraints."""
        if not self._config:
            return

        if self._config.embedding.embedding_dimension <= 0:
            raise ValueError("embedding_dimension must be positive")

        if self._config.llm.answer_temperature < 0 or self._config.llm.answer_temperature > 2:
            raise ValueError("temperature must be between 0 and 2")

        retrieval = self._config.retrieval
        if retrieval.coverage_budget <= 0:
            raise ValueError("coverage_budget must be positive")
        if retrieval.coverage_floor < 1:
            raise ValueError("coverage_floor must be at least 1")
        if retrieval.keyword_boost < 1.0:
            raise ValueError("keyword_boost must not lower scores")
        if not 0.0 <= retrieval.lexical_placeholder_score <= 1.0:
            raise ValueError("lexical_placeholder_score must be within [0, 1]")

        if not self._config.storage.collection_name:
            raise ValueError("collection_name cannot be empty")

        if self._config.logging.level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {self._config.logging.level}")

    def _create_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        if not self._config or not self._config.auto_create_directories:
            return

        directories: List[Path] = [Path(self._config.storage.metadata_db_path).parent]
        if not self._config.storage.qdrant_url:
            directories.append(Path(self._config.storage.qdrant_path))

        if self._config.logging.log_file and self._config.logging.enable_file_logging:
            directories.append(Path(self._config.logging.log_file).parent)

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)


def configure_logging(config: LoggingConfig) -> None:
    """
    Configure root logging handlers from a LoggingConfig.

    Args:
        config: Logging configuration
    """
    handlers: List[logging.Handler] = []

    if config.enable_console_logging:
        handlers.append(logging.StreamHandler())

    if config.enable_file_logging and config.log_file:
        Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                config.log_file,
                maxBytes=config.max_file_size_mb * 1024 * 1024,
                backupCount=config.backup_count,
            )
        )

    logging.basicConfig(
        level=getattr(logging, config.level),
        format=config.log_format,
        handlers=handlers or None,
        force=True,
    )
