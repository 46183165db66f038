import pytest


KEY_ENV_VARS = (
    "SNAP_SOLVER_API_KEY",
    "SNAP_SOLVER_PROVIDER",
    "OPENAI_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "ANTHROPIC_API_KEY",
)


@pytest.fixture(autouse=True)
def _clear_key_env(monkeypatch):
    for key in KEY_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
