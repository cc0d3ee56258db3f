from __future__ import annotations

import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ambient_mind.config import Settings  # noqa: E402


_ENV_KEYS = (
    "SQLITE_PATH",
    "SERVER_MEMORY_ENABLED",
    "SERVER_MEMORY_CHANNELS",
    "SERVER_MEMORY_EXCLUDED_CHANNELS",
    "IMPORTANCE_THRESHOLD",
    "EMBEDDING_BATCH_SIZE",
    "EMBEDDING_INTERVAL_SECONDS",
    "DEEP_RECALL_THRESHOLD",
    "MEMORY_SEARCH_THRESHOLD",
    "HOURLY_SUMMARY_ENABLED",
    "OPENROUTER_API_KEY",
    "EMBEDDING_MODEL",
    "LLM_EVALUATOR_RATE_LIMIT_PER_MINUTE",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults_are_valid(clean_env: pytest.MonkeyPatch) -> None:
    settings = Settings.from_env()

    settings.validate()
    assert settings.sqlite_path == Path("./data/ambient_mind.db")
    assert settings.server_memory_enabled is True
    assert settings.importance_threshold == 0.3
    assert settings.embedding_batch_size == 10
    assert settings.deep_recall_threshold == 0.4
    assert settings.openrouter_api_key == ""


def test_env_values_are_parsed(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("SERVER_MEMORY_ENABLED", "off")
    clean_env.setenv("SERVER_MEMORY_CHANNELS", "123, abc, 456,,")
    clean_env.setenv("IMPORTANCE_THRESHOLD", " 0.45 ")
    clean_env.setenv("EMBEDDING_BATCH_SIZE", "not-a-number")
    clean_env.setenv("HOURLY_SUMMARY_ENABLED", "Yes")
    clean_env.setenv("EMBEDDING_MODEL", "   ")

    settings = Settings.from_env()

    assert settings.server_memory_enabled is False
    assert settings.server_memory_channel_ids == {"123", "456"}
    assert settings.importance_threshold == 0.45
    assert settings.embedding_batch_size == 10
    assert settings.hourly_summary_enabled is True
    assert settings.embedding_model == "openai/text-embedding-3-small"


@pytest.mark.parametrize(
    ("key", "value", "message"),
    [
        ("IMPORTANCE_THRESHOLD", "1.5", "IMPORTANCE_THRESHOLD"),
        ("DEEP_RECALL_THRESHOLD", "-0.1", "DEEP_RECALL_THRESHOLD"),
        ("EMBEDDING_BATCH_SIZE", "0", "EMBEDDING_BATCH_SIZE"),
        ("EMBEDDING_BATCH_SIZE", "101", "EMBEDDING_BATCH_SIZE"),
        ("EMBEDDING_INTERVAL_SECONDS", "0.5", "EMBEDDING_INTERVAL_SECONDS"),
        ("LLM_EVALUATOR_RATE_LIMIT_PER_MINUTE", "0", "RATE_LIMIT"),
        ("OPENROUTER_API_KEY", "put_your_openrouter_api_key_here", "placeholder"),
    ],
)
def test_validate_rejects_bad_values(clean_env: pytest.MonkeyPatch, key: str, value: str, message: str) -> None:
    clean_env.setenv(key, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env().validate()


def test_validate_rejects_overlapping_channel_lists(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("SERVER_MEMORY_CHANNELS", "1,2,3")
    clean_env.setenv("SERVER_MEMORY_EXCLUDED_CHANNELS", "3,4")

    with pytest.raises(ValueError, match="overlap: 3"):
        Settings.from_env().validate()
