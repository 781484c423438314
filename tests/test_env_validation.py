import os

import pytest

import env_validation
from env_validation import get_env_float, get_env_int, validate_environment


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for var in ("DB_PATH", "GEMINI_MODEL", "GEMINI_API_BASE", "LLM_TIMEOUT", "ACTIVITY_LOG_LIMIT", "GOOGLE_API_KEY"):
        # Blank rather than delete so the defaults written by validate_environment are undone
        monkeypatch.setenv(var, "")
    monkeypatch.setenv("CONTENT_DIR", str(tmp_path))
    return monkeypatch


def test_defaults_are_applied(clean_env):
    validate_environment()
    assert os.environ["DB_PATH"] == "data.db"
    assert os.environ["GEMINI_MODEL"] == "gemini-1.5-flash"
    assert os.environ["GEMINI_API_BASE"].startswith("https://")


def test_invalid_url_rejected(clean_env):
    clean_env.setenv("GEMINI_API_BASE", "ftp://example.com")
    with pytest.raises(env_validation.EnvironmentError):
        validate_environment()


def test_non_numeric_timeout_rejected(clean_env):
    clean_env.setenv("LLM_TIMEOUT", "soon")
    with pytest.raises(env_validation.EnvironmentError):
        validate_environment()


def test_missing_content_dir_rejected(clean_env, tmp_path):
    clean_env.setenv("CONTENT_DIR", str(tmp_path / "missing"))
    with pytest.raises(env_validation.EnvironmentError, match="CONTENT_DIR"):
        validate_environment()


def test_typed_accessors(monkeypatch):
    monkeypatch.setenv("COUNT", "12")
    monkeypatch.setenv("BAD_COUNT", "twelve")
    monkeypatch.setenv("RATIO", "0.25")

    assert get_env_int("COUNT", 1) == 12
    assert get_env_int("BAD_COUNT", 7) == 7
    assert get_env_float("RATIO", 1.0) == 0.25
    assert get_env_float("MISSING_RATIO", 1.5) == 1.5
