"""Unit tests for settings and the guard factory."""

import math

import pytest
from pathlib import Path
from tempfile import NamedTemporaryFile
from pydantic import ValidationError
from unittest.mock import Mock

from costguard.config.settings import Settings
from costguard.core.factory import create_guard
from costguard.core.guard import EnforcementMode
from costguard.core.ledger import LocalLedger, SharedLedger


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from COSTGUARD_* variables and any .env in the working directory."""
    for name in ("LIMIT", "MODE", "WEBHOOK", "REDIS_URL", "REDIS", "SILENT", "PRIVACY", "ENABLED"):
        monkeypatch.delenv(f"COSTGUARD_{name}", raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults():
    settings = Settings()

    assert settings.limit == 10.0
    assert settings.mode is EnforcementMode.SOFT
    assert settings.redis_url is None
    assert settings.shared_key == "costguard:budget"
    assert settings.shared_ttl_seconds == 86400
    assert settings.price_cache_ttl_seconds == 3600
    assert settings.exit_code == 1


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("COSTGUARD_LIMIT", "2.5")
    monkeypatch.setenv("COSTGUARD_MODE", "kill")
    monkeypatch.setenv("COSTGUARD_REDIS_URL", "redis://localhost:6379/0")

    settings = Settings()

    assert settings.limit == 2.5
    assert settings.mode is EnforcementMode.HARD_EXIT
    assert settings.redis_url == "redis://localhost:6379/0"


@pytest.mark.parametrize("limit", [0, -5, float("nan"), True, "lots"])
def test_invalid_limit(limit):
    with pytest.raises(ValidationError):
        Settings(limit=limit)


def test_infinite_limit_allowed():
    assert math.isinf(Settings(limit=float("inf")).limit)


def test_redis_aliases():
    assert Settings(redis="redis://a").redis_url == "redis://a"
    assert Settings(shared_ledger_address="redis://b").redis_url == "redis://b"


def test_unknown_mode():
    with pytest.raises(ValidationError):
        Settings(mode="explode")


def test_load_from_file():
    with NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        f.write("limit: 3.0\nmode: warnOnly\nsilent: true\n")
        path = f.name

    try:
        settings = Settings.load_from_file(path)
    finally:
        Path(path).unlink()

    assert settings.limit == 3.0
    assert settings.mode is EnforcementMode.WARN_ONLY
    assert settings.silent is True


def test_create_guard_local():
    guard = create_guard(Settings(limit=2.0, mode="notify", silent=True))

    assert guard.get_limit() == 2.0
    assert guard.mode is EnforcementMode.WARN_ONLY
    assert isinstance(guard.ledger, LocalLedger)
    assert guard.notifier is None
    assert guard.display.silent


def test_create_guard_overrides():
    exit_func = Mock()
    guard = create_guard(
        Settings(silent=True), limit=1.0, mode="hard_exit", webhook="https://hooks.example.com/x",
        exit_func=exit_func,
    )

    assert guard.get_limit() == 1.0
    assert guard.mode is EnforcementMode.HARD_EXIT
    assert guard.notifier.url == "https://hooks.example.com/x"


def test_create_guard_rejects_bad_override():
    with pytest.raises(ValidationError):
        create_guard(Settings(), limit=-1)


def test_create_guard_shared():
    guard = create_guard(Settings(redis_url="redis://localhost:6379/0", shared_key="team:budget"))

    assert isinstance(guard.ledger, SharedLedger)
    assert guard.ledger.key == "team:budget"
    assert guard.get_cost() is None


def test_create_guard_privacy_and_estimation():
    guard = create_guard(Settings(privacy=True, token_estimation_mode="heuristic", silent=True))

    assert guard.attributor.privacy
    assert guard.attributor.token_estimator.estimation_mode == "heuristic"
