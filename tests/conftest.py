import os

import pytest

# Settings are cached on first use, so the environment must be in place before main is imported
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "10000")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from logging_config import configure_logging  # noqa: E402


@pytest.fixture(autouse=True)
def structured_logging():
    """Point log output at the stderr captured for the current test."""
    configure_logging(os.environ["LOG_LEVEL"], "json")


@pytest.fixture
def transactions_csv(tmp_path):
    """Write CSV text to a temporary file and return its path."""
    def _write(content: str, name: str = "transactions.csv"):
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path
    return _write
