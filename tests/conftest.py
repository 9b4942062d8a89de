"""Shared fixtures for streamwire tests."""

import pytest

_ENV_VARS = (
    "STREAMWIRE_API_KEY",
    "STREAMWIRE_PROVIDER",
    "DEEPSEEK_API_KEY",
    "OPENAI_API_KEY",
    "CUSTOM_API_KEY",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep real credentials in the environment out of the tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class RecordingSink:
    """Diagnostics sink that keeps every line."""

    def __init__(self):
        self.lines: list[str] = []

    def append_line(self, text: str) -> None:
        self.lines.append(text)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
