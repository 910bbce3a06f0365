"""
Rule matching engine.

Block rules deny a command; allow rules clear a single command even when a
block rule would match it. Rules carrying pipe_targets are pipeline-only
and are checked against whole pipelines, never against single commands.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Literal

from sherpa.core.parser import StructuredCommand
from sherpa.core.paths import PathInfo, normalize_path
from sherpa.core.syntax import Command, Pipeline, Script


@dataclass(frozen=True)
class Rule:
    """A declarative predicate over a StructuredCommand.

    Absent filters (None) always pass.
    """

    name: str
    reason: str
    command: frozenset[str] | None = None
    subcommand: str | None = None
    flags: tuple[str, ...] | None = None
    flag_mode: Literal["all", "any"] = "all"
    path_patterns: tuple[str, ...] | None = None
    arg_patterns: tuple[str, ...] | None = None
    pipe_targets: frozenset[str] | None = None

    @property
    def is_pipeline_rule(self) -> bool:
        return bool(self.pipe_targets)


@dataclass(frozen=True)
class RuleSet:
    """Allow and block rules, each in declared order."""

    block: tuple[Rule, ...] = ()
    allow: tuple[Rule, ...] = ()


@dataclass(frozen=True)
class CheckResult:
    """Verdict for one evaluation. rule is set only when blocked."""

    blocked: bool
    rule: Rule | None = None

    def __repr__(self) -> str:
        if self.rule is None:
            return f"CheckResult(blocked={self.blocked!r})"
        return f"CheckResult(blocked={self.blocked!r}, rule={self.rule.name!r})"


ALLOWED = CheckResult(blocked=False)


class PatternCache:
    """Read-through cache of compiled regexes, keyed by pattern text."""

    def __init__(self) -> None:
        self._compiled: dict[str, re.Pattern[str]] = {}
        self._lock = threading.Lock()

    def get(self, pattern: str) -> re.Pattern[str]:
        regex = self._compiled.get(pattern)
        if regex is None:
            with self._lock:
                regex = self._compiled.get(pattern)
                if regex is None:
                    regex = re.compile(pattern)
                    self._compiled[pattern] = regex
        return regex

    def __len__(self) -> int:
        return len(self._compiled)

    def __contains__(self, pattern: object) -> bool:
        return pattern in self._compiled


class RuleMatcher:
    """Evaluates commands and pipelines against a RuleSet."""

    def __init__(self, cache: PatternCache | None = None) -> None:
        self.cache = cache if cache is not None else PatternCache()

    def matches_block(self, cmd: StructuredCommand, rule: Rule) -> bool:
        """Check a command against a block rule. All present filters must pass."""
        if rule.command is not None and cmd.command not in rule.command:
            return False

        if rule.subcommand is not None and cmd.subcommand != rule.subcommand:
            return False

        if rule.flags is not None:
            if rule.flag_mode == "any":
                if not any(f in cmd.flags for f in rule.flags):
                    return False
            elif not all(f in cmd.flags for f in rule.flags):
                return False

        if rule.path_patterns is not None:
            candidates = _path_candidates(cmd)
            if not candidates:
                return False
            # Original and normalized forms both count, so ../ cannot hide a target
            if not any(
                self._search_any(rule.path_patterns, info.original)
                or self._search_any(rule.path_patterns, info.normalized)
                for info in candidates
            ):
                return False

        if rule.arg_patterns is not None:
            if not self._search_any(rule.arg_patterns, " ".join(cmd.raw_tokens)):
                return False

        return True

    def matches_allow(self, cmd: StructuredCommand, rule: Rule) -> bool:
        """Check a command against an allow rule (command and path filters only).

        Every path candidate must fall within one of the allowed patterns.
        Accepting a match on any single path would be looser: it would let
        `rm -rf /tmp/a /` through on the strength of /tmp/a alone.
        """
        if rule.command is not None and cmd.command not in rule.command:
            return False

        if rule.path_patterns is not None:
            candidates = _path_candidates(cmd)
            if not candidates:
                return False
            return all(
                any(self.is_path_within_allowed(info, p) for p in rule.path_patterns)
                for info in candidates
            )

        return True

    def is_path_within_allowed(self, info: PathInfo, pattern: str) -> bool:
        """Test the authoritative form: normalized when traversal is present."""
        regex = self.cache.get(pattern)
        if info.has_traversal:
            return regex.search(info.normalized) is not None
        return regex.search(info.original) is not None

    def match_pipeline(self, root: Script | None, rules: RuleSet) -> Rule | None:
        """Find a source command piped into a target command (curl ... | sh).

        Only pipelines directly under the script are considered. The target
        may appear at any later stage, not just the next one.
        """
        if not isinstance(root, Script):
            return None

        for node in root.commands:
            if not isinstance(node, Pipeline):
                continue

            stages = [
                stage.name
                for stage in node.commands
                if isinstance(stage, Command) and stage.name
            ]

            for rule in rules.block:
                if not rule.pipe_targets:
                    continue
                sources = rule.command or frozenset()
                for i, name in enumerate(stages):
                    if name in sources and any(
                        later in rule.pipe_targets for later in stages[i + 1 :]
                    ):
                        return rule

        return None

    def check(self, cmd: StructuredCommand, rules: RuleSet) -> CheckResult:
        """Allow rules first, then block rules in order. First match wins."""
        for rule in rules.allow:
            if self.matches_allow(cmd, rule):
                return ALLOWED

        for rule in rules.block:
            if rule.is_pipeline_rule:
                continue
            if self.matches_block(cmd, rule):
                return CheckResult(blocked=True, rule=rule)

        return ALLOWED

    def _search_any(self, patterns: tuple[str, ...], text: str) -> bool:
        return any(self.cache.get(p).search(text) for p in patterns)


def _path_candidates(cmd: StructuredCommand) -> list[PathInfo]:
    """Path-like args, or all positional args when none look like paths."""
    paths = cmd.path_like_args if cmd.path_like_args else cmd.positional_args
    return [normalize_path(p) for p in paths]
