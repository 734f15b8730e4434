"""
Configuration loading: presets, environment overrides, explicit overrides and validation.
"""

import pytest

from vocabmind.core.config import AppConfig, IndexConfig, PRESETS, load_config, validate_config
from vocabmind.core.errors import ConfigurationError


def test_defaults_are_valid():
    assert validate_config(AppConfig()) == []


def test_development_preset_is_default():
    config = load_config(environ={})

    assert config.environment == "development"
    assert config.search.default_limit == 10
    assert config.cache.embedding_ttl == 3600
    assert config.features.knowledge_graph is False


@pytest.mark.parametrize("preset", sorted(PRESETS))
def test_every_preset_loads(preset):
    config = load_config(preset=preset, use_env=False)

    assert config.environment == preset


def test_production_preset_enables_everything():
    config = load_config(preset="production", use_env=False)

    assert config.features.knowledge_graph is True
    assert config.features.adaptive_scheduling is True
    assert config.search.similarity_threshold == 0.8
    assert config.embedding.max_concurrency == 3


def test_environment_selects_preset():
    config = load_config(environ={"VOCABMIND_ENVIRONMENT": "staging"})

    assert config.environment == "staging"
    assert config.search.similarity_threshold == 0.75


def test_environment_overrides_are_typed():
    environ = {
        "VOCABMIND_INDEX_HNSW_M": "32",
        "VOCABMIND_SEARCH_SIMILARITY_THRESHOLD": "0.5",
        "VOCABMIND_FEATURES_KNOWLEDGE_GRAPH": "true",
        "VOCABMIND_EMBEDDING_PROVIDER": "sentence-transformers",
        "VOCABMIND_LOG_LEVEL": "debug",
    }

    config = load_config(environ=environ)

    assert config.index.hnsw_m == 32
    assert config.search.similarity_threshold == 0.5
    assert config.features.knowledge_graph is True
    assert config.embedding.provider == "sentence-transformers"
    assert config.log_level == "debug"


def test_explicit_overrides_win_over_environment():
    config = load_config(
        overrides={"index": {"hnsw_m": 24}},
        environ={"VOCABMIND_INDEX_HNSW_M": "32"},
    )

    assert config.index.hnsw_m == 24
    # untouched fields keep their defaults
    assert config.index.ef_search == IndexConfig().ef_search


def test_use_env_false_ignores_environment(monkeypatch):
    monkeypatch.setenv("VOCABMIND_INDEX_HNSW_M", "32")

    assert load_config(preset="development", use_env=False).index.hnsw_m == 16


def test_unknown_preset_rejected():
    with pytest.raises(ConfigurationError) as exc_info:
        load_config(preset="qa", use_env=False)
    assert "Unknown preset: qa" in exc_info.value.issues


def test_unknown_setting_rejected():
    with pytest.raises(ConfigurationError):
        load_config(overrides={"index": {"hnsw_layers": 4}}, use_env=False)


def test_unparseable_environment_value_rejected():
    with pytest.raises(ConfigurationError):
        load_config(environ={"VOCABMIND_INDEX_HNSW_M": "sixteen"})


@pytest.mark.parametrize("overrides,fragment", [
    ({"index": {"hnsw_m": 1}}, "index.hnsw_m"),
    ({"index": {"ef_search": 5}}, "index.ef_search"),
    ({"index": {"provider": "annoy"}}, "Invalid index provider"),
    ({"search": {"similarity_threshold": 1.5}}, "search.similarity_threshold"),
    ({"cache": {"embedding_ttl": 30}}, "cache.embedding_ttl"),
    ({"embedding": {"max_concurrency": 50}}, "embedding.max_concurrency"),
    ({"scheduler": {"blend_weight": -0.1}}, "scheduler.blend_weight"),
    ({"sync": {"flush_interval": 0}}, "sync.flush_interval"),
    ({"log_level": "chatty"}, "Invalid log level"),
])
def test_out_of_range_values_rejected(overrides, fragment):
    with pytest.raises(ConfigurationError) as exc_info:
        load_config(overrides=overrides, use_env=False)
    assert any(fragment in issue for issue in exc_info.value.issues)
