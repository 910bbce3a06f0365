"""Sherpa configuration: settings and rule documents."""

from __future__ import annotations

import os
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, fields
from importlib import resources
from pathlib import Path
from typing import Any

from sherpa.core.rules import Rule, RuleSet

USER_CONFIG = Path.home() / ".sherpa" / "config.toml"
PROJECT_CONFIG_NAME = ".sherpa.toml"
ENV_CONFIG = "SHERPA_CONFIG"
ENV_PREFIX = "SHERPA_"
DEFAULT_LOG = Path.home() / ".claude" / "sherpa.log"


class ConfigError(ValueError):
    """Malformed settings file or rule document."""


@dataclass
class Config:
    """Parsed settings."""

    max_tokens: int = 2000
    """Outputs above this many tokens are offloaded to scratch."""

    preview_tokens: int = 500
    scratch_dir: str = ".claude/scratch"
    max_age_minutes: int = 60
    max_scratch_size_mb: int = 50
    rules: Path | None = None  # None = shipped rules.toml
    fast_path: bool = True
    log: Path | None = DEFAULT_LOG  # None = no logging


_INT_SETTINGS = frozenset(
    {"max_tokens", "preview_tokens", "max_age_minutes", "max_scratch_size_mb"}
)


# === Settings Loading ===


def _find_project_config(cwd: Path) -> Path | None:
    """Walk up from cwd to find .sherpa.toml."""
    current = cwd.resolve()
    while True:
        candidate = current / PROJECT_CONFIG_NAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:  # reached root
            return None
        current = parent


def load_config(cwd: Path, environ: Mapping[str, str] | None = None) -> Config:
    """Load user, project and $SHERPA_CONFIG settings, then SHERPA_* overrides.

    Later sources win per key.
    """
    env = os.environ if environ is None else environ
    settings: dict[str, Any] = {}

    # 1. User config (lowest priority)
    if USER_CONFIG.is_file():
        settings.update(_load_settings_file(USER_CONFIG))

    # 2. Project config (walk up from cwd)
    project_path = _find_project_config(cwd)
    if project_path is not None:
        settings.update(_load_settings_file(project_path))

    # 3. Explicit config file
    env_path = env.get(ENV_CONFIG)
    if env_path:
        env_config_path = Path(env_path).expanduser()
        if env_config_path.is_file():
            settings.update(_load_settings_file(env_config_path))

    # 4. Single-setting overrides (highest priority)
    settings.update(_env_overrides(env))

    return Config(**settings)


def _load_settings_file(path: Path) -> dict[str, Any]:
    try:
        settings = parse_settings(path.read_text())
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from None
    # Rule files are relative to the config that names them
    rules = settings.get("rules")
    if rules is not None and not rules.is_absolute():
        settings["rules"] = path.parent / rules
    return settings


def parse_config(text: str) -> Config:
    """Parse a settings document into a Config. Raises ConfigError."""
    return Config(**parse_settings(text))


def parse_settings(text: str) -> dict[str, Any]:
    """Parse and validate a settings document, returning only the keys it sets."""
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML: {e}") from None

    settings: dict[str, Any] = {}
    for key, value in raw.items():
        _apply_setting(settings, key.replace("-", "_"), value)
    return settings


def _apply_setting(settings: dict[str, Any], key: str, value: Any) -> None:
    """Validate one setting and store it. Raises ConfigError."""
    if key in _INT_SETTINGS:
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ConfigError(f"'{key}' requires a non-negative integer, got {value!r}")
        settings[key] = value

    elif key == "fast_path":
        if not isinstance(value, bool):
            raise ConfigError(f"'fast_path' must be true or false, got {value!r}")
        settings[key] = value

    elif key == "scratch_dir":
        if not isinstance(value, str) or not value:
            raise ConfigError("'scratch_dir' requires a path")
        settings[key] = value

    elif key == "rules":
        if not isinstance(value, str) or not value:
            raise ConfigError("'rules' requires a path")
        settings[key] = Path(value).expanduser()

    elif key == "log":
        if not isinstance(value, str):
            raise ConfigError("'log' requires a path")
        # Empty string turns logging off
        settings[key] = Path(value).expanduser() if value else None

    else:
        raise ConfigError(f"unknown setting '{key}'")


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Read SHERPA_<SETTING> variables, coerced to each setting's type."""
    settings: dict[str, Any] = {}
    for f in fields(Config):
        value = env.get(ENV_PREFIX + f.name.upper())
        if value is None:
            continue
        if f.name in _INT_SETTINGS:
            try:
                parsed: Any = int(value)
            except ValueError:
                raise ConfigError(
                    f"{ENV_PREFIX}{f.name.upper()} requires a number, got '{value}'"
                ) from None
        elif f.name == "fast_path":
            parsed = value.lower() in ("1", "true", "yes")
        else:
            parsed = value
        try:
            _apply_setting(settings, f.name, parsed)
        except ConfigError as e:
            raise ConfigError(f"{ENV_PREFIX}{f.name.upper()}: {e}") from None
    return settings


# === Rule Documents ===

_RULE_KEYS = frozenset(
    {
        "name",
        "reason",
        "command",
        "subcommand",
        "flags",
        "flag_mode",
        "path_patterns",
        "arg_patterns",
        "pipe_targets",
    }
)

# Allow rules are containment whitelists: command and paths only
_ALLOW_KEYS = frozenset({"name", "reason", "command", "path_patterns"})


def default_rules_text() -> str:
    """The rule document shipped with the package."""
    return resources.files("sherpa").joinpath("rules.toml").read_text()


def load_rules(path: Path | None = None) -> RuleSet:
    """Load a rule document from path, or the shipped rules when None."""
    if path is None:
        return parse_rules(default_rules_text())
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigError(f"cannot read rules file {path}: {e.strerror}") from None
    try:
        return parse_rules(text)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from None


def parse_rules(text: str) -> RuleSet:
    """Parse a TOML rule document with [[block]] and [[allow]] tables.

    Raises ConfigError on missing name/reason, unknown keys, duplicate
    names, bad flag_mode, wrong types, or regexes that do not compile.
    """
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML: {e}") from None

    unknown = set(raw) - {"block", "allow"}
    if unknown:
        raise ConfigError(f"unknown section '{sorted(unknown)[0]}'")

    seen: set[str] = set()
    lists: dict[str, tuple[Rule, ...]] = {}
    for section in ("block", "allow"):
        entries = raw.get(section, [])
        if not isinstance(entries, list):
            raise ConfigError(f"'{section}' must be an array of tables")
        rules = []
        for i, entry in enumerate(entries):
            try:
                rule = _parse_rule(entry, allow=section == "allow")
                if rule.name in seen:
                    raise ConfigError(f"duplicate rule name '{rule.name}'")
            except ConfigError as e:
                raise ConfigError(f"{section}[{i}]: {e}") from None
            seen.add(rule.name)
            rules.append(rule)
        lists[section] = tuple(rules)

    return RuleSet(block=lists["block"], allow=lists["allow"])


def _parse_rule(entry: Any, allow: bool) -> Rule:
    if not isinstance(entry, dict):
        raise ConfigError("rule must be a table")

    allowed_keys = _ALLOW_KEYS if allow else _RULE_KEYS
    for key in entry:
        if key not in allowed_keys:
            raise ConfigError(f"unknown key '{key}'")

    name = _required_str(entry, "name")
    reason = _required_str(entry, "reason")

    flag_mode = entry.get("flag_mode", "all")
    if flag_mode not in ("all", "any"):
        raise ConfigError(f"'flag_mode' must be 'all' or 'any', got {flag_mode!r}")

    subcommand = entry.get("subcommand")
    if subcommand is not None and not isinstance(subcommand, str):
        raise ConfigError("'subcommand' must be a string")

    command = _string_list(entry, "command")
    path_patterns = _string_list(entry, "path_patterns")
    arg_patterns = _string_list(entry, "arg_patterns")
    pipe_targets = _string_list(entry, "pipe_targets")

    for pattern in (path_patterns or ()) + (arg_patterns or ()):
        try:
            re.compile(pattern)
        except re.error as e:
            raise ConfigError(f"invalid pattern {pattern!r}: {e}") from None

    if pipe_targets is not None and command is None:
        raise ConfigError("'pipe_targets' requires 'command' (the piped source)")

    return Rule(
        name=name,
        reason=reason,
        command=frozenset(command) if command is not None else None,
        subcommand=subcommand,
        flags=_string_list(entry, "flags"),
        flag_mode=flag_mode,
        path_patterns=path_patterns,
        arg_patterns=arg_patterns,
        pipe_targets=frozenset(pipe_targets) if pipe_targets is not None else None,
    )


def _required_str(entry: dict[str, Any], key: str) -> str:
    value = entry.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"rule requires '{key}'")
    return value


def _string_list(entry: dict[str, Any], key: str) -> tuple[str, ...] | None:
    """A string or list of strings, as a tuple. None when the key is absent."""
    if key not in entry:
        return None
    value = entry[key]
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise ConfigError(f"'{key}' must be a string or a non-empty list of strings")
