from __future__ import annotations

from typing import List, Optional, Sequence

import pytest

from gallery_walker.config import TraversalConfig

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class ScriptedSeries:
    """Stand-in for a page: one reference and one "next" answer per step."""

    def __init__(self, refs: Sequence[Optional[str]], nexts: Sequence[bool]) -> None:
        self.refs = list(refs)
        self.nexts = list(nexts)
        self.position = 0
        self.reads = 0
        self.clicks = 0

    async def extract(self, page) -> Optional[str]:
        assert page is self
        self.reads += 1
        return self.refs[min(self.position, len(self.refs) - 1)]

    async def click_next(self, page) -> bool:
        assert page is self
        self.clicks += 1
        available = self.nexts[min(self.position, len(self.nexts) - 1)]
        if available:
            self.position += 1
        return available


class RecordingDownloader:
    """Download callback that fails according to a per-reference script."""

    def __init__(self, failures=None) -> None:
        self.failures = {key: list(value) for key, value in (failures or {}).items()}
        self.calls: List[str] = []

    async def __call__(self, ref: str) -> None:
        self.calls.append(ref)
        pending = self.failures.get(ref)
        if pending:
            raise pending.pop(0)


class FakeResponse:
    def __init__(self, status_code: int = 200, chunks=(PNG_BYTES,), error=None) -> None:
        self.status_code = status_code
        self.chunks = list(chunks)
        self.error = error
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


class FakeSession:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.headers = {}
        self.calls = []
        self.closed = False

    def get(self, url, timeout=None, stream=False):
        self.calls.append((url, timeout, stream))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


@pytest.fixture
def fast_config() -> TraversalConfig:
    return TraversalConfig(inter_step_delay=(0, 0), retry_pause=0.0)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return sleep
