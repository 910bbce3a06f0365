"""
Decision engine for the pre-execution hook.

Parses a command once, checks pipelines, then checks each extracted
command. Anything that goes wrong resolves to allowed: the guard must never
break the agent, so it fails open and reports the problem in the log.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from sherpa.core.allowlists import FAST_PATH_COMMANDS, is_fast_path_safe
from sherpa.core.parser import extract_commands
from sherpa.core.rules import ALLOWED, CheckResult, RuleMatcher, RuleSet
from sherpa.core.syntax import ParseError, parse_script

log = structlog.get_logger()


def fast_path_commands(
    rules: RuleSet, candidates: Iterable[str] = FAST_PATH_COMMANDS
) -> frozenset[str]:
    """Restrict fast-path candidates to commands no block rule can match.

    A command-level block rule without a command filter matches anything,
    which disables the fast path. Pipeline rules need a | and are excluded
    by the compound check.
    """
    targeted: set[str] = set()
    for rule in rules.block:
        if rule.is_pipeline_rule:
            continue
        if rule.command is None:
            return frozenset()
        targeted.update(rule.command)
    return frozenset(candidates) - targeted


class Guard:
    """Evaluates command text against a fixed RuleSet."""

    def __init__(
        self,
        rules: RuleSet,
        matcher: RuleMatcher | None = None,
        fast_path: Iterable[str] | None = FAST_PATH_COMMANDS,
    ) -> None:
        self.rules = rules
        self.matcher = matcher if matcher is not None else RuleMatcher()
        self.fast_path = fast_path_commands(rules, fast_path) if fast_path else frozenset()

    def evaluate(self, command: str) -> CheckResult:
        """Return the verdict for command. Never raises."""
        if not isinstance(command, str) or not command.strip():
            return ALLOWED

        if self.fast_path and is_fast_path_safe(command, self.fast_path):
            return ALLOWED

        try:
            return self._evaluate_parsed(command)
        except ParseError as e:
            log.warning("parse_failed", command=command, error=str(e))
            return ALLOWED
        except Exception:
            log.exception("evaluation_failed", command=command)
            return ALLOWED

    def _evaluate_parsed(self, command: str) -> CheckResult:
        script = parse_script(command)

        pipe_rule = self.matcher.match_pipeline(script, self.rules)
        if pipe_rule is not None:
            return CheckResult(blocked=True, rule=pipe_rule)

        for cmd in extract_commands(script):
            result = self.matcher.check(cmd, self.rules)
            if result.blocked:
                return result

        return ALLOWED
