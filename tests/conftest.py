import sys
from pathlib import Path

# Ensure the `macrofit` package is importable when running pytest from the repository root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest


@pytest.fixture(autouse=True)
def clear_settings_cache():
    from macrofit.core import config

    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()
