"""Shared pytest configuration for the Letterbuds test-suite."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ``app`` lives at the repository root and is imported without installation.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def anyio_backend() -> str:
    """Run AnyIO tests on asyncio only; trio is not a dependency."""

    return "asyncio"
