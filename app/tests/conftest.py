import sys
import pathlib

import pytest

# Ensure the project root is importable so `import app` works
ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Prevent pydantic-settings from attempting to read any .env files during tests.
try:
    import pydantic_settings.sources as _psources
    _psources.DotEnvSettingsSource._read_env_files = lambda self, case_sensitive=None: {}
except (ImportError, AttributeError):
    pass

from app.tests.factories import FakeDB  # noqa: E402


@pytest.fixture
def fake_db():
    return FakeDB()
