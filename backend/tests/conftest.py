from pathlib import Path

import pytest

from carenotify.settings import Settings

BACKEND_DIR = Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Settings from config.test.toml; secrets are never read in tests."""
    return Settings(
        config_path=BACKEND_DIR / "config.test.toml",
        secrets_path=BACKEND_DIR / "tests" / "secrets.absent.toml",
    )
