"""Shared fixtures for transcoding tests."""

from typing import Any, Optional

import pytest

from fakes import FakeFetcher, FakePublisher, FakeToolkit, InMemoryJobStore
from vidpress.modules.transcoding.selector import SelectorConfig
from vidpress.modules.transcoding.service import TranscodingPipeline
from vidpress.modules.transcoding.tracker import JobLifecycleTracker


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def tracker(store: InMemoryJobStore) -> JobLifecycleTracker:
    return JobLifecycleTracker(store)


@pytest.fixture
def processing_dir(tmp_path) -> str:
    path = tmp_path / "processing"
    path.mkdir()
    return str(path)


@pytest.fixture
def make_pipeline(store: InMemoryJobStore, processing_dir: str):
    """Build a pipeline around fakes; pass any collaborator to override it."""

    def _make(
        toolkit: Optional[FakeToolkit] = None,
        fetcher: Optional[FakeFetcher] = None,
        publisher: Optional[FakePublisher] = None,
        **kwargs: Any,
    ) -> TranscodingPipeline:
        kwargs.setdefault("selector_config", SelectorConfig())
        kwargs.setdefault("max_concurrent_jobs", 2)
        kwargs.setdefault("loudness_max_duration", 300.0)
        return TranscodingPipeline(
            tracker=JobLifecycleTracker(store),
            toolkit=toolkit or FakeToolkit(),
            fetcher=fetcher or FakeFetcher(),
            publisher=publisher or FakePublisher(),
            processing_dir=processing_dir,
            **kwargs,
        )

    return _make
