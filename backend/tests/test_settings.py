"""Tests for application settings."""
import importlib

import pytest


@pytest.fixture
def settings_module():
    import backend.app.settings as settings
    yield settings
    importlib.reload(settings)


def test_database_url_respects_env_var(monkeypatch, settings_module):
    """DATABASE_URL uses the env var when set."""
    monkeypatch.setenv("DATABASE_URL", "sqlite:////var/data/zengauge.db")
    importlib.reload(settings_module)

    assert settings_module.DATABASE_URL == "sqlite:////var/data/zengauge.db"


def test_database_url_defaults_to_local_sqlite(monkeypatch, settings_module):
    """DATABASE_URL falls back to repo-root zengauge.db when env var is unset."""
    monkeypatch.delenv("DATABASE_URL", raising=False)
    importlib.reload(settings_module)

    assert settings_module.DATABASE_URL.startswith("sqlite:///")
    assert settings_module.DATABASE_URL.endswith("zengauge.db")


def test_training_defaults(monkeypatch, settings_module):
    for var in ("TRAIN_EPOCHS", "TRAIN_BATCH_SIZE", "SYNTHETIC_SEED_SIZE", "HISTORY_CAP"):
        monkeypatch.delenv(var, raising=False)
    importlib.reload(settings_module)

    assert settings_module.WINDOW_SIZE == 3
    assert settings_module.TRAIN_EPOCHS == 30
    assert settings_module.TRAIN_BATCH_SIZE == 4
    assert settings_module.SYNTHETIC_SEED_SIZE == 50
    assert settings_module.HISTORY_CAP == 100


def test_training_budget_from_env(monkeypatch, settings_module):
    monkeypatch.setenv("TRAIN_EPOCHS", "5")
    monkeypatch.setenv("TRAIN_LEARNING_RATE", "0.01")
    importlib.reload(settings_module)

    assert settings_module.TRAIN_EPOCHS == 5
    assert settings_module.TRAIN_LEARNING_RATE == 0.01
