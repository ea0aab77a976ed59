"""
KGConfig - Configuration Management

Sensible defaults with full override capability.

Example:
    >>> # Use defaults (reads from environment)
    >>> registry = CanonRegistry()

    >>> # Explicit configuration
    >>> config = KGConfig(
    ...     store_backend="memory",
    ...     resolution_batch_size=25,
    ... )
    >>> registry = CanonRegistry(config=config)

    >>> # From config file
    >>> config = KGConfig.from_file("./canon.toml")

Environment Variables:
    CANON_LLM_PROVIDER - LLM provider name
    CANON_LLM_MODEL - Model for semantic matching
    CANON_EMBEDDING_PROVIDER - Embedding provider name
    CANON_EMBEDDING_MODEL - Embedding model name
    CANON_EMBEDDING_DIMENSIONS - Embedding vector size
    CANON_STORE_BACKEND - "neo4j" or "memory"
    CANON_MIN_CONFIDENCE - Minimum mention confidence for resolution
    CANON_MIN_SIMILARITY - Minimum oracle similarity to accept a match
    CANON_RESOLUTION_BATCH_SIZE - Mentions per oracle call
    CANON_MAX_ENTITIES - Mentions (and tags) loaded per run
    NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD, NEO4J_DATABASE - Graph store
    OPENAI_API_KEY - OpenAI API key (standard name)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, cast

# TOML support: tomllib is built-in for Python 3.11+, use tomli for 3.10
try:
    import tomllib

    def _load_toml(path: Path) -> dict[str, Any]:
        with open(path, "rb") as f:
            return cast(dict[str, Any], tomllib.load(f))

except ImportError:
    import tomli

    def _load_toml(path: Path) -> dict[str, Any]:
        with open(path, "rb") as f:
            return cast(dict[str, Any], tomli.load(f))


class KGConfig:
    """Configuration for CanonKG."""

    # === LLM Configuration ===

    llm_provider: str = "openai"
    """LLM provider for the semantic-matching oracle: "openai" """

    llm_model: str = "gpt-4o-mini"
    """Model for entity matching and tag grouping"""

    llm_temperature: float = 0.2
    """Sampling temperature for matching calls"""

    llm_timeout: float = 60.0
    """Seconds before an oracle request is abandoned"""

    llm_max_retries: int = 2
    """Client retries for transient oracle API errors"""

    # === Embedding Configuration ===

    embedding_provider: str = "openai"
    """Embedding provider: "openai" """

    embedding_model: str = "text-embedding-3-small"
    """Embedding model name"""

    embedding_dimensions: int = 1536
    """Embedding vector dimensions (provider-dependent)"""

    embedding_batch_size: int = 100
    """Texts per embedding API call"""

    embedding_scan_limit: int = 1000
    """Registry records examined per node type in one embedding pass"""

    embedding_timeout: float = 30.0
    """Seconds before an embedding request is abandoned"""

    # === API Keys ===

    openai_api_key: str | None = None

    # === Store Configuration ===

    store_backend: str = "neo4j"
    """Graph store: "neo4j" or "memory" """

    neo4j_uri: str = "bolt://localhost:7688"
    neo4j_user: str = "neo4j"
    neo4j_password: str | None = None
    neo4j_database: str = "neo4j"

    neo4j_max_pool_size: int = 50
    """Max connections in the async driver pool"""

    # === Resolution Configuration ===

    resolution_min_confidence: float = 0.6
    """Mentions below this extraction confidence are never resolved"""

    resolution_max_entities: int = 500
    """Max mentions loaded per run (also caps tags sent for grouping)"""

    resolution_batch_size: int = 50
    """Mentions per oracle call"""

    resolution_min_similarity: float = 0.8
    """Oracle matches below this similarity are not merged"""

    resolution_create_unmatched: bool = True
    """Create canonicals for mentions the oracle leaves unmatched or below threshold"""

    resolution_kind_concurrency: int = 4
    """Entity kinds resolved concurrently (batches within a kind stay sequential)"""

    # === Search Configuration ===

    search_limit: int = 20
    """Default number of search results"""

    search_min_score: float = 0.3
    """Default minimum fused score"""

    search_boost_factor: float = 0.3
    """Boost applied to semantic hits corroborated by lexical rank"""

    search_lexical_divisor: float = 10.0
    """Raw lexical relevance is divided by this to land near 0-1"""

    search_max_candidates: int = 100
    """Upper bound on candidates fetched per sub-query"""

    search_lexical_only_slots: int = 3
    """Lexical-only hits appended to hybrid results"""

    # === Lifecycle Configuration ===

    lifecycle_stuck_threshold_minutes: int = 5
    """In-progress documents older than this are reset to pending"""

    lifecycle_max_retries: int = 3
    """Errored documents with fewer retries than this are retried"""

    def __init__(self, **kwargs: Any) -> None:
        """
        Initialize configuration.

        Args:
            **kwargs: Override any configuration option
        """
        # Load from environment first
        self._load_from_env()

        # Apply explicit overrides
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                raise ValueError(f"Unknown configuration option: {key}")

    def _load_from_env(self) -> None:
        """Load configuration from environment variables."""
        import os

        # API keys and store credentials (standard names)
        self.openai_api_key = os.getenv("OPENAI_API_KEY")
        if uri := os.getenv("NEO4J_URI"):
            self.neo4j_uri = uri
        if user := os.getenv("NEO4J_USER"):
            self.neo4j_user = user
        self.neo4j_password = os.getenv("NEO4J_PASSWORD")
        if database := os.getenv("NEO4J_DATABASE"):
            self.neo4j_database = database

        # CANON_* prefixed settings
        if provider := os.getenv("CANON_LLM_PROVIDER"):
            self.llm_provider = provider
        if model := os.getenv("CANON_LLM_MODEL"):
            self.llm_model = model
        if provider := os.getenv("CANON_EMBEDDING_PROVIDER"):
            self.embedding_provider = provider
        if model := os.getenv("CANON_EMBEDDING_MODEL"):
            self.embedding_model = model
        if dimensions := os.getenv("CANON_EMBEDDING_DIMENSIONS"):
            self.embedding_dimensions = int(dimensions)
        if backend := os.getenv("CANON_STORE_BACKEND"):
            self.store_backend = backend
        if confidence := os.getenv("CANON_MIN_CONFIDENCE"):
            self.resolution_min_confidence = float(confidence)
        if similarity := os.getenv("CANON_MIN_SIMILARITY"):
            self.resolution_min_similarity = float(similarity)
        if batch_size := os.getenv("CANON_RESOLUTION_BATCH_SIZE"):
            self.resolution_batch_size = int(batch_size)
        if max_entities := os.getenv("CANON_MAX_ENTITIES"):
            self.resolution_max_entities = int(max_entities)

    @classmethod
    def from_file(cls, path: str | Path) -> "KGConfig":
        """
        Load configuration from TOML file.

        Nested sections are flattened with the section prefix.

        Example TOML:
            [llm]
            model = "gpt-4o-mini"

            [resolution]
            batch_size = 25
            min_similarity = 0.85

            [neo4j]
            uri = "bolt://graph:7687"

        Args:
            path: Path to TOML configuration file

        Returns:
            KGConfig instance with values from file

        Raises:
            FileNotFoundError: If config file doesn't exist
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        data = _load_toml(path)

        flat_config: dict[str, Any] = {}

        section_mapping = {
            "llm": "llm_",
            "embedding": "embedding_",
            "api_keys": "",  # api_keys.openai -> openai_api_key
            "store": "store_",
            "neo4j": "neo4j_",
            "resolution": "resolution_",
            "search": "search_",
            "lifecycle": "lifecycle_",
        }

        for section, prefix in section_mapping.items():
            if section in data:
                for key, value in data[section].items():
                    if section == "api_keys":
                        flat_config[f"{key}_api_key"] = value
                    else:
                        flat_config[f"{prefix}{key}"] = value

        # Also support flat top-level keys
        for key, value in data.items():
            if key not in section_mapping and not isinstance(value, dict):
                flat_config[key] = value

        return cls(**flat_config)

    @classmethod
    def from_env(cls) -> "KGConfig":
        """Load configuration from environment variables only."""
        return cls()

    def to_file(self, path: str | Path) -> None:
        """
        Save configuration to TOML file.

        Secrets (API keys, store password) are never written.

        Args:
            path: Path to write TOML configuration file
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        sections: dict[str, dict[str, str | int | float | bool | None]] = {
            "llm": {
                "provider": self.llm_provider,
                "model": self.llm_model,
                "temperature": self.llm_temperature,
                "timeout": self.llm_timeout,
                "max_retries": self.llm_max_retries,
            },
            "embedding": {
                "provider": self.embedding_provider,
                "model": self.embedding_model,
                "dimensions": self.embedding_dimensions,
                "batch_size": self.embedding_batch_size,
                "scan_limit": self.embedding_scan_limit,
                "timeout": self.embedding_timeout,
            },
            "store": {
                "backend": self.store_backend,
            },
            "neo4j": {
                "uri": self.neo4j_uri,
                "user": self.neo4j_user,
                "database": self.neo4j_database,
                "max_pool_size": self.neo4j_max_pool_size,
            },
            "resolution": {
                "min_confidence": self.resolution_min_confidence,
                "max_entities": self.resolution_max_entities,
                "batch_size": self.resolution_batch_size,
                "min_similarity": self.resolution_min_similarity,
                "create_unmatched": self.resolution_create_unmatched,
                "kind_concurrency": self.resolution_kind_concurrency,
            },
            "search": {
                "limit": self.search_limit,
                "min_score": self.search_min_score,
                "boost_factor": self.search_boost_factor,
                "lexical_divisor": self.search_lexical_divisor,
                "max_candidates": self.search_max_candidates,
                "lexical_only_slots": self.search_lexical_only_slots,
            },
            "lifecycle": {
                "stuck_threshold_minutes": self.lifecycle_stuck_threshold_minutes,
                "max_retries": self.lifecycle_max_retries,
            },
        }

        # Build TOML string manually (avoids extra dependency)
        lines = ["# CanonKG Configuration", ""]

        for section_name, section_values in sections.items():
            lines.append(f"[{section_name}]")
            for key, value in section_values.items():
                if isinstance(value, str):
                    lines.append(f'{key} = "{value}"')
                elif isinstance(value, bool):
                    lines.append(f"{key} = {str(value).lower()}")
                elif isinstance(value, (int, float)):
                    lines.append(f"{key} = {value}")
            lines.append("")

        lines.extend([
            "# Secrets should be set via environment variables:",
            "# OPENAI_API_KEY, NEO4J_PASSWORD",
            "",
        ])

        path.write_text("\n".join(lines))

    def with_overrides(self, **kwargs: Any) -> "KGConfig":
        """Return new config with specified overrides."""
        new_config = KGConfig.__new__(KGConfig)
        for key in dir(self):
            if not key.startswith("_") and not callable(getattr(self, key)):
                setattr(new_config, key, getattr(self, key))
        for key, value in kwargs.items():
            if not hasattr(new_config, key):
                raise ValueError(f"Unknown configuration option: {key}")
            setattr(new_config, key, value)
        return new_config
