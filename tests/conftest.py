"""Shared fixtures: a fake engine and a session pool around it."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from rehearse.core.config.main import RehearseConfig
from rehearse.core.engine.fake import FakeEngine
from rehearse.core.session import SessionPool

pytest_plugins = ["pytester"]


@pytest.fixture
def config(tmp_path: Path) -> RehearseConfig:
    """Fast defaults: no acquire backoff, short waits, artifacts under tmp_path."""
    cfg = RehearseConfig()
    cfg.browser.engine = "fake"
    cfg.project.base_url = "https://app.test"
    cfg.project.artifacts_directory = str(tmp_path / "artifacts")
    cfg.session.concurrency_limit = 2
    cfg.session.acquire_backoff = 0
    cfg.timeouts.wait = 1.0
    cfg.timeouts.poll_interval = 0.05
    cfg.timeouts.teardown_grace = 0.2
    cfg.retry.delay = 0
    return cfg


@pytest.fixture
def engine(config: RehearseConfig) -> FakeEngine:
    return FakeEngine(config.browser, config.timeouts)


@pytest.fixture
async def pool(engine: FakeEngine, config: RehearseConfig) -> AsyncIterator[SessionPool]:
    async with SessionPool(engine, config) as pool:
        yield pool
