"""Tests for portfolio_pricer.core.config."""

import os
from datetime import time

import pytest
from pydantic import ValidationError

from portfolio_pricer.core.config import (
    FreshnessConfig,
    PricerConfig,
    PricingConfig,
    TefasConfig,
    YahooConfig,
    _auto_cast,
    _merge_env_vars,
    load_config,
)
from portfolio_pricer.core.exceptions import ConfigError
from portfolio_pricer.core.models import CacheBackend, FundZeroPricePolicy


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No PORTFOLIO_PRICER_* variables and no portfolio-pricer.yml in cwd."""
    for key in list(os.environ):
        if key.startswith("PORTFOLIO_PRICER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


class TestDefaults:
    def test_root_defaults(self):
        c = PricerConfig()
        assert c.cache.backend == CacheBackend.SQLITE
        assert c.freshness.cache_duration_seconds == 60
        assert c.freshness.market_open_utc == time(7, 0)
        assert c.freshness.market_close_utc == time(15, 10)
        assert c.tefas.concurrency == 1
        assert c.tefas.min_request_interval == 5.0
        assert c.pricing.max_change_percent == 25.0
        assert c.pricing.derived_max_change_percent == 15.0
        assert c.pricing.fund_zero_price_policy == FundZeroPricePolicy.REPORT
        assert c.pricing.cache_derived is False

    def test_frozen(self):
        c = PricerConfig()
        with pytest.raises(ValidationError):
            c.cache = None


class TestValidation:
    def test_concurrency_positive(self):
        with pytest.raises(ValidationError, match=">= 1"):
            YahooConfig(concurrency=0)

    def test_lookback_covers_weekend(self):
        with pytest.raises(ValidationError, match="lookback_days"):
            TefasConfig(lookback_days=1)

    def test_change_ceiling_positive(self):
        with pytest.raises(ValidationError, match="ceilings"):
            PricingConfig(max_change_percent=0)

    def test_market_window_order(self):
        with pytest.raises(ValidationError, match="before"):
            FreshnessConfig(market_open_utc=time(15, 0), market_close_utc=time(7, 0))

    def test_time_from_string(self):
        c = FreshnessConfig(market_open_utc="06:30", market_close_utc="14:40")
        assert c.market_open_utc == time(6, 30)


class TestLoadConfig:
    def test_defaults(self, clean_env):
        config = load_config()
        assert config == PricerConfig()

    def test_yaml_loading(self, clean_env, tmp_path):
        yaml_file = tmp_path / "pricer.yml"
        yaml_file.write_text(
            "cache:\n  backend: memory\n"
            "tefas:\n  lookback_days: 10\n"
            "pricing:\n  fund_zero_price_policy: substitute\n"
        )
        config = load_config(config_path=str(yaml_file))
        assert config.cache.backend == CacheBackend.MEMORY
        assert config.tefas.lookback_days == 10
        assert config.pricing.fund_zero_price_policy == FundZeroPricePolicy.SUBSTITUTE

    def test_default_file_in_cwd(self, clean_env, tmp_path):
        (tmp_path / "portfolio-pricer.yml").write_text("yahoo:\n  timeout: 3.5\n")
        assert load_config().yahoo.timeout == 3.5

    def test_config_path_from_env(self, clean_env, tmp_path, monkeypatch):
        yaml_file = tmp_path / "elsewhere.yml"
        yaml_file.write_text("api:\n  port: 9000\n")
        monkeypatch.setenv("PORTFOLIO_PRICER_CONFIG", str(yaml_file))
        assert load_config().api.port == 9000

    def test_env_overrides_yaml(self, clean_env, tmp_path, monkeypatch):
        yaml_file = tmp_path / "pricer.yml"
        yaml_file.write_text("tefas:\n  lookback_days: 10\n")
        monkeypatch.setenv("PORTFOLIO_PRICER_TEFAS__LOOKBACK_DAYS", "14")
        config = load_config(config_path=str(yaml_file))
        assert config.tefas.lookback_days == 14

    def test_nested_env_vars(self, clean_env, monkeypatch):
        monkeypatch.setenv("PORTFOLIO_PRICER_PRICING__CACHE_DERIVED", "true")
        monkeypatch.setenv("PORTFOLIO_PRICER_CACHE__BACKEND", "memory")
        config = load_config()
        assert config.pricing.cache_derived is True
        assert config.cache.backend == CacheBackend.MEMORY

    def test_invalid_value_raises(self, clean_env, monkeypatch):
        monkeypatch.setenv("PORTFOLIO_PRICER_YAHOO__CONCURRENCY", "0")
        with pytest.raises(ConfigError):
            load_config()

    def test_missing_config_file_raises(self, clean_env):
        with pytest.raises(ConfigError, match="not found"):
            load_config(config_path="/nonexistent/file.yml")

    def test_missing_env_config_file_raises(self, clean_env, monkeypatch):
        monkeypatch.setenv("PORTFOLIO_PRICER_CONFIG", "/nonexistent/file.yml")
        with pytest.raises(ConfigError, match="PORTFOLIO_PRICER_CONFIG"):
            load_config()

    def test_non_mapping_yaml_raises(self, clean_env, tmp_path):
        yaml_file = tmp_path / "list.yml"
        yaml_file.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(config_path=str(yaml_file))

    def test_broken_yaml_raises(self, clean_env, tmp_path):
        yaml_file = tmp_path / "broken.yml"
        yaml_file.write_text("cache: [unclosed\n")
        with pytest.raises(ConfigError, match="parse"):
            load_config(config_path=str(yaml_file))

    def test_empty_yaml_is_defaults(self, clean_env, tmp_path):
        yaml_file = tmp_path / "empty.yml"
        yaml_file.write_text("")
        assert load_config(config_path=str(yaml_file)) == PricerConfig()


class TestAutoCast:
    def test_bool(self):
        assert _auto_cast("true") is True
        assert _auto_cast("FALSE") is False

    def test_int(self):
        assert _auto_cast("42") == 42

    def test_float(self):
        assert _auto_cast("2.5") == 2.5

    def test_string(self):
        assert _auto_cast("sqlite") == "sqlite"


class TestMergeEnvVars:
    def test_simple_override(self, monkeypatch):
        monkeypatch.setenv("TEST_YAHOO__TIMEOUT", "5")
        result = _merge_env_vars({"yahoo": {"timeout": 15}}, "TEST_")
        assert result["yahoo"]["timeout"] == 5

    def test_creates_nested_structure(self, monkeypatch):
        monkeypatch.setenv("TEST_PRICING__CACHE_DERIVED", "true")
        result = _merge_env_vars({}, "TEST_")
        assert result["pricing"]["cache_derived"] is True

    def test_skips_config_key(self, monkeypatch):
        monkeypatch.setenv("TEST_CONFIG", "/some/path")
        result = _merge_env_vars({}, "TEST_")
        assert "config" not in result
