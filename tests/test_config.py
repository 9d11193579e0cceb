"""Tests for CalcMarkConfig."""

import pytest

from calcmark import DEFAULT_CONFIG, MAX_NESTING_DEPTH, CalcMarkConfig


class TestCalcMarkConfig:
    """Tests for security limit configuration."""

    def test_defaults(self):
        assert DEFAULT_CONFIG.max_nesting_depth == MAX_NESTING_DEPTH == 100
        assert DEFAULT_CONFIG.max_token_count == 10_000

    def test_from_env_defaults(self, monkeypatch):
        monkeypatch.delenv("CALCMARK_MAX_NESTING_DEPTH", raising=False)
        monkeypatch.delenv("CALCMARK_MAX_TOKEN_COUNT", raising=False)

        assert CalcMarkConfig.from_env() == CalcMarkConfig()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CALCMARK_MAX_NESTING_DEPTH", "20")
        monkeypatch.setenv("CALCMARK_MAX_TOKEN_COUNT", "500")

        config = CalcMarkConfig.from_env()

        assert config.max_nesting_depth == 20
        assert config.max_token_count == 500

    def test_blank_value_uses_default(self, monkeypatch):
        monkeypatch.setenv("CALCMARK_MAX_TOKEN_COUNT", "  ")

        assert CalcMarkConfig.from_env().max_token_count == 10_000

    @pytest.mark.parametrize("raw", ["lots", "0", "-5", "1.5"])
    def test_invalid_values(self, monkeypatch, raw):
        monkeypatch.setenv("CALCMARK_MAX_NESTING_DEPTH", raw)

        with pytest.raises(ValueError) as exc_info:
            CalcMarkConfig.from_env()

        assert "CALCMARK_MAX_NESTING_DEPTH" in str(exc_info.value)

    def test_frozen(self):
        with pytest.raises(AttributeError):
            DEFAULT_CONFIG.max_token_count = 1
