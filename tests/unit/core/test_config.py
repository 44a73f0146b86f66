from __future__ import annotations

import pytest

from cobuy.core.config import _build_config
from cobuy.core.exceptions import ConfigurationError


def test_defaults_match_negotiation_rules(monkeypatch):
    for key in (
        "NEGOTIATION_MIN_PERCENTAGE",
        "NEGOTIATION_MAX_PERCENTAGE",
        "NEGOTIATION_TOTAL_TOLERANCE",
        "CLIENT_DEBOUNCE_MS",
        "DATABASE_URL",
    ):
        monkeypatch.delenv(key, raising=False)
    cfg = _build_config("development")
    assert cfg.NEGOTIATION_MIN_PERCENTAGE == 10
    assert cfg.NEGOTIATION_MAX_PERCENTAGE == 90
    assert cfg.NEGOTIATION_TOTAL_TOLERANCE == 0.01
    assert 100 <= cfg.CLIENT_DEBOUNCE_MS <= 200
    assert cfg.DATABASE_URL.startswith("sqlite")


def test_production_forces_debug_off(monkeypatch):
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("DATABASE_URL", "postgresql://cobuy:secret@db:5432/cobuy")
    cfg = _build_config("production")
    assert cfg.is_production is True
    assert cfg.DEBUG is False


@pytest.mark.parametrize(
    "key, value",
    [
        ("DATABASE_URL", "mysql://db/cobuy"),
        ("LOG_LEVEL", "chatty"),
        ("NEGOTIATION_MIN_PERCENTAGE", "95"),
        ("NEGOTIATION_TOTAL_TOLERANCE", "0"),
        ("CLIENT_DEBOUNCE_MS", "5"),
        ("REALTIME_QUEUE_SIZE", "0"),
    ],
)
def test_invalid_settings_are_rejected(monkeypatch, key, value):
    monkeypatch.setenv(key, value)
    with pytest.raises(ConfigurationError):
        _build_config("development")
