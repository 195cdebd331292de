"""
Root pytest configuration for all wallet engine tests.

This conftest.py provides global pytest options, hooks and fixtures that
apply to all tests across the project.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from pathlib import Path

import pytest
from pytest import StashKey

from btccore.settings import reset_settings

# Define a StashKey for fail_on_skip option
_fail_on_skip_key: StashKey[bool] = StashKey[bool]()


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom pytest options available globally."""
    parser.addoption(
        "--fail-on-skip",
        action="store_true",
        default=False,
        help="Treat skipped tests as failures (for CI to catch missing setup)",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Store global options in config stash."""
    config.stash[_fail_on_skip_key] = config.getoption("--fail-on-skip", default=False)


@pytest.hookimpl(tryfirst=True)
def pytest_runtest_makereport(
    item: pytest.Item,
    call: pytest.CallInfo[None],
) -> pytest.TestReport | None:
    """Convert skipped tests to failures when --fail-on-skip is enabled."""
    from _pytest.runner import pytest_runtest_makereport as orig_makereport

    report = orig_makereport(item, call)  # type: ignore[arg-type]

    fail_on_skip = item.config.stash.get(_fail_on_skip_key, False)

    if fail_on_skip and report.skipped:
        if hasattr(report, "longrepr") and report.longrepr:
            if isinstance(report.longrepr, tuple) and len(report.longrepr) >= 3:
                skip_reason = report.longrepr[2]
            else:
                skip_reason = str(report.longrepr)
        else:
            skip_reason = "Unknown reason"

        report.outcome = "failed"
        report.longrepr = f"Test was skipped but --fail-on-skip is enabled: {skip_reason}"

    return report  # type: ignore[return-value]


@pytest.fixture(autouse=True)
def isolated_settings(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[None, None, None]:
    """Keep a developer's own config file and BTCWALLET_* env vars out of tests."""
    for name in list(os.environ):
        if name.upper().startswith("BTCWALLET_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BTCWALLET_CONFIG_FILE", str(tmp_path / "no-config.toml"))
    reset_settings()
    yield
    reset_settings()
