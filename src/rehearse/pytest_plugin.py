"""Pytest integration for rehearse.

Registered through the ``pytest11`` entry point, so installing the package is
enough. The browser pool lives on the session event loop; async tests that
use the browser fixtures run on that loop too::

    pytestmark = pytest.mark.asyncio(loop_scope="session")


    async def test_search(rehearse_page):
        await rehearse_page.goto("/")
        await rehearse_page.wait_for(element_visible("#results"))
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio

from rehearse.core.cancel import CancellationToken
from rehearse.core.config.main import RehearseConfig
from rehearse.core.data.factory import DataFactory
from rehearse.core.diagnostics import DiagnosticRecord, save_record
from rehearse.core.engine.factory import create_engine, get_available_engines
from rehearse.core.errors import ConfigError
from rehearse.core.session import SessionPool

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Generator

    from rehearse.core.api import ApiClient
    from rehearse.core.page import Page
    from rehearse.core.session import Context

failure_key = pytest.StashKey[BaseException]()
seed_key = pytest.StashKey[int]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("rehearse", "browser end-to-end tests")
    group.addoption("--rehearse-config", default=None, help="Path to rehearse.yaml (default: ./rehearse.yaml)")
    group.addoption(
        "--rehearse-engine",
        default=None,
        choices=get_available_engines(),
        help="Browser engine to drive, overrides browser.engine",
    )
    group.addoption("--rehearse-headed", action="store_true", default=False, help="Show the browser window")
    group.addoption("--rehearse-artifacts", default=None, help="Directory for traces and diagnostics")
    group.addoption("--rehearse-seed", type=int, default=None, help="Replay test data generated with this seed")


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers", "rehearse_context(**options): ContextConfig overrides for the test's browser context"
    )


def pytest_report_header(config: pytest.Config) -> str | None:
    seed = config.getoption("rehearse_seed")
    engine = config.getoption("rehearse_engine")
    if seed is None and engine is None:
        return None
    return f"rehearse: engine={engine or 'from config'}, seed={seed}"


@pytest.hookimpl(wrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo[None]) -> Generator[None, pytest.TestReport, pytest.TestReport]:
    report = yield
    if report.failed and call.excinfo is not None:
        item.stash[failure_key] = call.excinfo.value
    return report


@pytest.fixture(scope="session")
def rehearse_config(pytestconfig: pytest.Config) -> RehearseConfig:
    """Effective configuration: rehearse.yaml, REHEARSE_* variables, then command-line flags."""
    path = pytestconfig.getoption("rehearse_config")
    try:
        config = RehearseConfig.load_config(Path(path) if path else None)
    except ConfigError as e:
        raise pytest.UsageError(str(e)) from e

    if pytestconfig.getoption("rehearse_headed"):
        config.browser.headless = False
    if engine := pytestconfig.getoption("rehearse_engine"):
        config.browser.engine = engine
    if artifacts := pytestconfig.getoption("rehearse_artifacts"):
        config.project.artifacts_directory = artifacts
    return config


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def rehearse_pool(rehearse_config: RehearseConfig) -> AsyncIterator[SessionPool]:
    """Session-wide pool; every browser is closed when the test session ends."""
    async with SessionPool(create_engine(rehearse_config), rehearse_config) as pool:
        yield pool


@pytest.fixture
def rehearse_token() -> CancellationToken:
    return CancellationToken()


@pytest_asyncio.fixture(loop_scope="session")
async def rehearse_context(
    request: pytest.FixtureRequest, rehearse_pool: SessionPool, rehearse_token: CancellationToken
) -> AsyncIterator[Context]:
    """A fresh, isolated browser context, torn down after the test whatever its outcome."""
    marker = request.node.get_closest_marker("rehearse_context")
    config = rehearse_pool.config.context_config(**(marker.kwargs if marker else {}))
    test_id = request.node.nodeid
    loop = asyncio.get_running_loop()
    start = loop.time()
    snapshot = None

    async with rehearse_pool.context(config, label=test_id, token=rehearse_token) as context:
        yield context
        failure = request.node.stash.get(failure_key, None)
        if failure is not None and context.pages:
            snapshot = await context.pages[-1].snapshot()

    if failure is not None:
        record = DiagnosticRecord.from_exception(
            test_id,
            failure,
            snapshot=snapshot,
            elapsed_s=loop.time() - start,
            fixture_seed=request.node.stash.get(seed_key, None),
            trace_path=str(context.trace_path) if context.trace_path else None,
        )
        save_record(record, rehearse_pool.artifacts_dir)


@pytest_asyncio.fixture(loop_scope="session")
async def rehearse_api(rehearse_pool: SessionPool) -> AsyncIterator[ApiClient]:
    """Backend API client configured from the ``api`` section, disposed after the test."""
    async with rehearse_pool.api() as client:
        yield client


@pytest_asyncio.fixture(loop_scope="session")
async def rehearse_page(rehearse_context: Context) -> Page:
    return await rehearse_context.new_page()


@pytest.fixture
def fixture_factory(request: pytest.FixtureRequest, pytestconfig: pytest.Config) -> DataFactory:
    """Data factory seeded from ``--rehearse-seed``, or randomly; the seed lands in failure diagnostics."""
    factory = DataFactory(pytestconfig.getoption("rehearse_seed"))
    request.node.stash[seed_key] = factory.seed
    return factory
