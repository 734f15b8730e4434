"""
Configuration surface for the search and scheduling core.
Values come from presets, then VOCABMIND_* environment variables, then explicit overrides.
"""

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

ENV_PREFIX = "VOCABMIND_"

# Version string
VERSION = "1.0.0"

COLLECTIONS = ("vocabulary", "images", "descriptions")


@dataclass(frozen=True)
class IndexConfig:
    dimensions: int = 384
    provider: str = "hnsw"  # hnsw|memory
    hnsw_m: int = 16
    ef_construction: int = 200
    ef_search: int = 50
    max_elements: int = 1_000_000
    overfetch_factor: int = 3


@dataclass(frozen=True)
class SearchConfig:
    default_limit: int = 20
    max_limit: int = 100
    similarity_threshold: float = 0.7
    rrf_k: int = 60
    vector_weight: float = 1.2
    lexical_weight: float = 1.0
    vector_timeout: float = 10.0
    lexical_timeout: float = 5.0


@dataclass(frozen=True)
class CacheConfig:
    embedding_ttl: int = 86400  # seconds
    max_entries: int = 10000


@dataclass(frozen=True)
class EmbeddingConfig:
    provider: str = "hash"  # hash|sentence-transformers
    model_name: str = "all-MiniLM-L6-v2"
    batch_size: int = 100
    max_concurrency: int = 5
    timeout: float = 10.0


@dataclass(frozen=True)
class ResilienceConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    failure_window: float = 60.0
    retry_attempts: int = 2
    retry_base_delay: float = 0.2
    retry_max_delay: float = 2.0


@dataclass(frozen=True)
class GraphConfig:
    max_depth: int = 3
    edge_weight_decay: float = 0.8
    min_edge_weight: float = 0.3
    auto_connect_threshold: float = 0.85
    max_related: int = 5


@dataclass(frozen=True)
class SchedulerConfig:
    blend_weight: float = 0.5  # share of the baseline interval in the blend
    confidence_threshold: float = 0.5
    prediction_timeout: float = 3.0
    max_interval_days: int = 365
    default_limit: int = 20


@dataclass(frozen=True)
class SyncConfig:
    flush_interval: float = 30.0
    max_queue_size: int = 1000


@dataclass(frozen=True)
class FeatureFlags:
    semantic_search: bool = True
    knowledge_graph: bool = False
    adaptive_scheduling: bool = False
    hybrid_ranking: bool = True


@dataclass(frozen=True)
class AppConfig:
    environment: str = "development"
    log_level: str = "info"
    index: IndexConfig = field(default_factory=IndexConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    features: FeatureFlags = field(default_factory=FeatureFlags)


PRESETS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "development": {
        "features": {"semantic_search": True, "knowledge_graph": False,
                     "adaptive_scheduling": False, "hybrid_ranking": True},
        "search": {"default_limit": 10, "similarity_threshold": 0.7},
        "cache": {"embedding_ttl": 3600},
    },
    "staging": {
        "features": {"semantic_search": True, "knowledge_graph": True,
                     "adaptive_scheduling": False, "hybrid_ranking": True},
        "search": {"default_limit": 20, "similarity_threshold": 0.75},
        "cache": {"embedding_ttl": 43200},
    },
    "production": {
        "features": {"semantic_search": True, "knowledge_graph": True,
                     "adaptive_scheduling": True, "hybrid_ranking": True},
        "search": {"default_limit": 20, "similarity_threshold": 0.8},
        "cache": {"embedding_ttl": 86400},
        "embedding": {"max_concurrency": 3},
    },
    "minimal": {
        "features": {"semantic_search": True, "knowledge_graph": False,
                     "adaptive_scheduling": False, "hybrid_ranking": False},
    },
}


def _parse_env_value(raw: str, current: Any) -> Any:
    """Coerce an environment string to the type of the field's current value."""
    if isinstance(current, bool):
        return raw.lower() == "true"
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def _apply_section(section: Any, values: Dict[str, Any]) -> Any:
    known = {f.name for f in fields(section)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError([f"Unknown setting(s) for {type(section).__name__}: {sorted(unknown)}"])
    return replace(section, **values) if values else section


def _apply(config: AppConfig, overrides: Dict[str, Any]) -> AppConfig:
    top_level = {}
    for name, value in overrides.items():
        current = getattr(config, name, None)
        if isinstance(value, dict) and current is not None and hasattr(current, "__dataclass_fields__"):
            top_level[name] = _apply_section(current, value)
        else:
            top_level[name] = value
    return replace(config, **top_level)


def _env_overrides(config: AppConfig, environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Collect VOCABMIND_<SECTION>_<FIELD> overrides, e.g. VOCABMIND_INDEX_HNSW_M=32."""
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}

    for name in ("log_level",):
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            overrides[name] = raw

    for section_field in fields(config):
        section = getattr(config, section_field.name)
        if not hasattr(section, "__dataclass_fields__"):
            continue
        for f in fields(section):
            key = f"{ENV_PREFIX}{section_field.name.upper()}_{f.name.upper()}"
            raw = environ.get(key)
            if raw is None:
                continue
            try:
                value = _parse_env_value(raw, getattr(section, f.name))
            except ValueError:
                raise ConfigurationError([f"{key} has invalid value {raw!r}"])
            overrides.setdefault(section_field.name, {})[f.name] = value

    return overrides


def load_config(preset: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None,
                environ: Optional[Dict[str, str]] = None, use_env: bool = True) -> AppConfig:
    """
    Build the application configuration.

    Args:
        preset: development|staging|production|minimal (defaults to VOCABMIND_ENVIRONMENT)
        overrides: nested dict of explicit values, applied last
        environ: mapping to read instead of os.environ
        use_env: skip environment variables entirely when False

    Raises:
        ConfigurationError: when the merged configuration is invalid
    """
    source = os.environ if environ is None else environ
    preset = preset or source.get(f"{ENV_PREFIX}ENVIRONMENT", "development")
    if preset not in PRESETS:
        raise ConfigurationError([f"Unknown preset: {preset}"])

    config = _apply(AppConfig(environment=preset), PRESETS[preset])
    if use_env:
        config = _apply(config, _env_overrides(config, source))
    if overrides:
        config = _apply(config, overrides)

    issues = validate_config(config)
    if issues:
        raise ConfigurationError(issues)
    return config


def _check_range(issues: List[str], name: str, value, low, high):
    if value < low or value > high:
        issues.append(f"{name} must be between {low} and {high} (got {value})")


def validate_config(config: AppConfig) -> List[str]:
    """Validate configuration and return any issues."""
    issues = []

    if config.index.provider not in ["hnsw", "memory"]:
        issues.append(f"Invalid index provider: {config.index.provider}")
    if config.embedding.provider not in ["hash", "sentence-transformers"]:
        issues.append(f"Invalid embedding provider: {config.embedding.provider}")
    if config.log_level.lower() not in ["debug", "info", "warning", "warn", "error"]:
        issues.append(f"Invalid log level: {config.log_level}")

    _check_range(issues, "index.dimensions", config.index.dimensions, 1, 65536)
    _check_range(issues, "index.hnsw_m", config.index.hnsw_m, 2, 100)
    _check_range(issues, "index.ef_construction", config.index.ef_construction, 10, 500)
    _check_range(issues, "index.ef_search", config.index.ef_search, 10, 500)
    _check_range(issues, "index.overfetch_factor", config.index.overfetch_factor, 1, 20)

    _check_range(issues, "search.default_limit", config.search.default_limit, 1, config.search.max_limit)
    _check_range(issues, "search.similarity_threshold", config.search.similarity_threshold, 0.0, 1.0)
    _check_range(issues, "search.rrf_k", config.search.rrf_k, 0, 10000)
    if config.search.vector_weight < 0 or config.search.lexical_weight < 0:
        issues.append("search weights must be >= 0")
    if config.search.vector_timeout <= 0 or config.search.lexical_timeout <= 0:
        issues.append("search timeouts must be > 0")

    if config.cache.embedding_ttl < 60:
        issues.append("cache.embedding_ttl must be >= 60 seconds")
    if config.cache.max_entries < 1:
        issues.append("cache.max_entries must be >= 1")

    _check_range(issues, "embedding.batch_size", config.embedding.batch_size, 1, 1000)
    _check_range(issues, "embedding.max_concurrency", config.embedding.max_concurrency, 1, 10)
    if config.embedding.timeout <= 0:
        issues.append("embedding.timeout must be > 0")

    if config.resilience.failure_threshold < 1:
        issues.append("resilience.failure_threshold must be >= 1")
    if config.resilience.reset_timeout <= 0:
        issues.append("resilience.reset_timeout must be > 0")
    if config.resilience.retry_attempts < 0:
        issues.append("resilience.retry_attempts must be >= 0")

    _check_range(issues, "graph.max_depth", config.graph.max_depth, 1, 10)
    _check_range(issues, "graph.edge_weight_decay", config.graph.edge_weight_decay, 0.0, 1.0)
    _check_range(issues, "graph.min_edge_weight", config.graph.min_edge_weight, 0.0, 1.0)
    _check_range(issues, "graph.auto_connect_threshold", config.graph.auto_connect_threshold, 0.0, 1.0)

    _check_range(issues, "scheduler.blend_weight", config.scheduler.blend_weight, 0.0, 1.0)
    _check_range(issues, "scheduler.confidence_threshold", config.scheduler.confidence_threshold, 0.0, 1.0)
    if config.scheduler.prediction_timeout <= 0:
        issues.append("scheduler.prediction_timeout must be > 0")

    if config.sync.flush_interval <= 0:
        issues.append("sync.flush_interval must be > 0")
    if config.sync.max_queue_size < 1:
        issues.append("sync.max_queue_size must be >= 1")

    return issues
