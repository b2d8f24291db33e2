"""Pytest configuration for the CodexDesk test suite."""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from types import MethodType, ModuleType
from typing import TYPE_CHECKING

import pytest

from codexdesk.log import LOG_DIR_ENV
from codexdesk.transcript import InMemoryTranscriptStore
from tests.event_utils import ManualTickSource

if TYPE_CHECKING:  # pragma: no cover - typing hints for wx fixtures
    import wx


def _normalise_marker_name(name: str) -> str:
    return name.replace("-", "_")


def _normalise_prefix(value: str) -> str:
    value = value.replace("\\", "/").strip()
    return value.rstrip("/")


def _path_matches_prefixes(path: str, prefixes: Sequence[str]) -> bool:
    return any(path == prefix or path.startswith(f"{prefix}/") for prefix in prefixes)


_SUITE_STASH_KEY = pytest.StashKey["SuiteDefinition"]()


@dataclass(frozen=True)
class SuiteDefinition:
    """Describe how a logical test suite should filter collected tests."""

    name: str
    include_any: Sequence[str] = ()
    exclude_any: Sequence[str] = ()
    include_by_default: bool = True
    include_paths: Sequence[str] = ()
    exclude_paths: Sequence[str] = ()
    description: str = ""

    def should_run(self, item: pytest.Item) -> bool:
        markers = {_normalise_marker_name(marker.name) for marker in item.iter_markers()}
        include = {_normalise_marker_name(name) for name in self.include_any}
        exclude = {_normalise_marker_name(name) for name in self.exclude_any}
        include_paths = tuple(_normalise_prefix(path) for path in self.include_paths)
        exclude_paths = tuple(_normalise_prefix(path) for path in self.exclude_paths)
        path = item.nodeid.split("::", 1)[0].replace("\\", "/")

        if include and markers & include:
            return True
        if include_paths and _path_matches_prefixes(path, include_paths):
            return True
        if not self.include_by_default:
            return False
        return not (
            markers & exclude
            or (exclude_paths and _path_matches_prefixes(path, exclude_paths))
        )


SUITES: Mapping[str, SuiteDefinition] = {
    "core": SuiteDefinition(
        name="core",
        exclude_any=("gui",),
        exclude_paths=("tests/gui",),
        description="Engine, protocol, settings and CLI checks without a display",
    ),
    "gui": SuiteDefinition(
        name="gui",
        include_any=("gui",),
        include_by_default=False,
        include_paths=("tests/gui",),
        description="wx tick source and desktop wiring under xvfb",
    ),
}


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--suite",
        action="store",
        choices=sorted(SUITES),
        help="Select the logical test suite to run",
    )


def pytest_configure(config: pytest.Config) -> None:
    suite_name = config.getoption("--suite")
    if suite_name is None:
        return
    config.stash[_SUITE_STASH_KEY] = SUITES[suite_name]


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    suite = config.stash.get(_SUITE_STASH_KEY, None)
    if suite is None:
        return

    selected: list[pytest.Item] = []
    deselected: list[pytest.Item] = []
    for item in items:
        if suite.should_run(item):
            selected.append(item)
        else:
            deselected.append(item)

    if deselected:
        config.hook.pytest_deselected(items=deselected)
        items[:] = selected


@pytest.fixture(autouse=True, scope="session")
def _isolated_log_dir(tmp_path_factory: pytest.TempPathFactory) -> Iterator[None]:
    """Keep log files written by the code under test out of the home directory."""

    previous = os.environ.get(LOG_DIR_ENV)
    os.environ[LOG_DIR_ENV] = str(tmp_path_factory.mktemp("logs"))
    yield
    if previous is None:
        os.environ.pop(LOG_DIR_ENV, None)
    else:
        os.environ[LOG_DIR_ENV] = previous


@pytest.fixture
def ticks() -> ManualTickSource:
    return ManualTickSource()


@pytest.fixture
def store() -> InMemoryTranscriptStore:
    return InMemoryTranscriptStore()


@pytest.fixture(scope="session")
def _wx_session_app(request: pytest.FixtureRequest, xvfb: None) -> tuple[ModuleType, wx.App]:
    """Create a shared ``wx.App`` guarded by the xvfb fixture."""

    wx = pytest.importorskip("wx")
    app = wx.App()
    _install_safe_yield(app)

    def _finalise() -> None:
        _destroy_top_windows(wx)
        with contextlib.suppress(Exception):
            app.Destroy()

    request.addfinalizer(_finalise)
    return wx, app


def _destroy_top_windows(wx: ModuleType) -> None:
    """Hide and destroy any lingering top-level windows."""

    for window in list(wx.GetTopLevelWindows()):
        if not window:
            continue
        with contextlib.suppress(Exception):
            window.Hide()
            window.Destroy()


def _install_safe_yield(app: wx.App) -> None:
    """Replace ``wx.App.Yield`` with a crash-resistant event pump."""

    if not hasattr(app, "HasPendingEvents") or not hasattr(app, "ProcessPendingEvents"):
        return

    def _safe_yield(self: wx.App, *args, **kwargs) -> None:
        for _ in range(5):
            had_events = False
            while self.HasPendingEvents():
                had_events = True
                self.ProcessPendingEvents()
            if not had_events:
                break

    app.Yield = MethodType(_safe_yield, app)


@pytest.fixture
def wx_app(_wx_session_app: tuple[ModuleType, wx.App]) -> Iterator[wx.App]:
    """Return the shared ``wx.App`` with no top-level windows left over."""

    wx, app = _wx_session_app
    _destroy_top_windows(wx)
    yield app
    _destroy_top_windows(wx)


@pytest.fixture
def reset_logger() -> Iterator[None]:
    """Detach handlers installed by ``configure_logging`` once the test ends."""

    import codexdesk.log as log_module

    logger = log_module.logger
    prev_handlers = list(logger.handlers)
    prev_level = logger.level
    prev_log_dir = log_module._log_dir
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    log_module._log_dir = None
    try:
        yield
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
        logger.handlers.extend(prev_handlers)
        logger.setLevel(prev_level)
        log_module._log_dir = prev_log_dir
