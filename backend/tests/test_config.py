import pytest

from config import Configuration


def test_defaults():
    cfg = Configuration()
    assert cfg.cache_ttl_sec == 300.0
    assert cfg.max_results_cap == 200
    assert cfg.invalidate_on_write is True
    weights = cfg.ranking_weights()
    assert (weights.distance, weights.rating, weights.tags) == (0.5, 0.3, 0.2)


def test_from_env_reads_and_coerces(monkeypatch):
    monkeypatch.setenv("SEARCH_CACHE_TTL_SEC", "45")
    monkeypatch.setenv("SEARCH_CACHE_MAX_ENTRIES", "8")
    monkeypatch.setenv("SEARCH_INVALIDATE_ON_WRITE", "off")
    monkeypatch.setenv("RANK_WEIGHT_DISTANCE", "0.6")
    monkeypatch.setenv("RANK_WEIGHT_RATING", "0.2")
    monkeypatch.setenv("VENDOR_API_KEY", "abcd1234efgh5678")

    cfg = Configuration.from_env(overrides={"max_radius_km": 50.0, "vendor_seed_path": None})
    assert cfg.cache_ttl_sec == 45.0
    assert cfg.cache_max_entries == 8
    assert cfg.invalidate_on_write is False
    assert cfg.max_radius_km == 50.0
    assert cfg.ranking_weights().distance == 0.6

    summary = cfg.log_summary()
    assert "abcd...5678" in summary
    assert "abcd1234efgh5678" not in summary


def test_weights_not_summing_to_one(monkeypatch):
    monkeypatch.setenv("RANK_WEIGHT_TAGS", "0.5")
    with pytest.raises(ValueError):
        Configuration.from_env().ranking_weights()
