import sys
from pathlib import Path

import httpx
import pytest

# Allow `import keepmarks` without installing the package.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from keepmarks.store import BookmarkStore  # noqa: E402


@pytest.fixture(autouse=True)
def _block_real_network(monkeypatch):
    """Tests must never leave the machine; stub HTTP with httpx.MockTransport."""

    async def _blocked(*_args, **_kwargs):
        raise AssertionError("real network request attempted during tests")

    monkeypatch.setattr(httpx.AsyncHTTPTransport, "handle_async_request", _blocked)


@pytest.fixture
def store():
    with BookmarkStore(":memory:") as s:
        yield s
