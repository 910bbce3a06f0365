"""
Shared test fixtures for Sherpa tests.
"""

import json
import os

import pytest
import structlog

from sherpa.core import config as config_module
from sherpa.core.config import load_rules, parse_rules
from sherpa.core.guard import Guard
from sherpa.core.rules import CheckResult


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep the developer's ~/.sherpa and SHERPA_* variables out of tests."""
    monkeypatch.setattr(config_module, "USER_CONFIG", tmp_path / "no-user-config.toml")
    for key in list(os.environ):
        if key.startswith(config_module.ENV_PREFIX):
            monkeypatch.delenv(key)
    yield
    structlog.reset_defaults()


@pytest.fixture(scope="session")
def default_rules():
    return load_rules()


@pytest.fixture
def check(default_rules):
    """Evaluate a command with the shipped rules."""
    guard = Guard(default_rules)

    def _check(command: str) -> CheckResult:
        return guard.evaluate(command)

    return _check


@pytest.fixture
def guard_for():
    """Factory: Guard for an inline TOML rule document."""

    def _make(text: str, **kwargs) -> Guard:
        return Guard(parse_rules(text), **kwargs)

    return _make


@pytest.fixture
def hook_input():
    """Factory for generating PreToolUse hook input JSON."""

    def _make(command: str) -> str:
        return json.dumps({"tool_name": "Bash", "tool_input": {"command": command}})

    return _make


def blocked_by(result: CheckResult) -> str | None:
    """Name of the rule that blocked, or None."""
    if result.blocked and result.rule is not None:
        return result.rule.name
    return None
