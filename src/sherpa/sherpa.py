"""Claude Code hooks for blocking dangerous bash commands and offloading output.

PreToolUse (`sherpa pre`): parses the proposed command with bashlex and
matches it against the block/allow rules in rules.toml. A blocked command
exits with code 2 and the rule's reason on stderr, which Claude sees as
feedback. Everything else exits 0.

PostToolUse (`sherpa post`): outputs above max_tokens are written to a
scratch file and replaced by a pointer message with a tail preview.

Design assumptions:
- The guard is a seatbelt for a well-intentioned agent, not a sandbox for
  adversarial input.
- Breaking the agent loop is worse than missing a block, so parse failures
  and internal errors fail open (allow) and are logged.

Exit codes:
- 0: allow. Output (post) is JSON on stdout.
- 2: block. stderr shown to Claude.

Decisions are logged as JSON lines to ~/.claude/sherpa.log (see `log`
setting).
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, TextIO

import click
import structlog

from sherpa.core.allowlists import FAST_PATH_COMMANDS
from sherpa.core.config import Config, ConfigError, load_config, load_rules
from sherpa.core.guard import Guard
from sherpa.core.offload import offload_output
from sherpa.core.rules import CheckResult

EXIT_ALLOW = 0
EXIT_BLOCK = 2

# Bound untrusted request size before it reaches the parser
MAX_REQUEST_BYTES = 10 * 1024 * 1024

log = structlog.get_logger()

_file_handler: logging.FileHandler | None = None


def setup_logging(log_path: Path | None) -> None:
    """Configure structlog to append JSON lines to log_path.

    Without a usable log file, warnings and errors go to stderr. Never to
    stdout, which carries hook output.
    """
    global _file_handler
    if _file_handler is not None:
        _file_handler.close()
        _file_handler = None

    stream: TextIO = sys.stderr
    level = logging.WARNING
    if log_path is not None:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            _file_handler = logging.FileHandler(log_path)
            _file_handler.setLevel(logging.INFO)
            stream = _file_handler.stream
            level = logging.INFO
        except OSError as e:
            print(f"sherpa: cannot open log file {log_path}: {e.strerror}", file=sys.stderr)

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )


@lru_cache(maxsize=8)
def _guard_for(rules_path: Path | None, fast_path: bool) -> Guard:
    """Build a Guard once per rule file; rules and regex cache live for the process."""
    return Guard(load_rules(rules_path), fast_path=FAST_PATH_COMMANDS if fast_path else None)


def check_command(command: str, config: Config | None = None) -> CheckResult:
    """Evaluate command against the configured rules."""
    if config is None:
        config = Config()
    return _guard_for(config.rules, config.fast_path).evaluate(command)


def load_config_or_default(cwd: Path, stderr: TextIO | None = None) -> Config:
    """Layered settings for cwd, or the defaults when a settings file is broken.

    A bad setting must not switch the guard off, so the error is reported
    and the built-in rules stay in force.
    """
    try:
        return load_config(cwd)
    except ConfigError as e:
        print(f"sherpa: {e}", file=stderr or sys.stderr)
        return Config()


# === Hooks ===


def run_pre(
    stdin: TextIO | None = None,
    stderr: TextIO | None = None,
    cwd: Path | None = None,
    config: Config | None = None,
) -> int:
    """PreToolUse hook. Returns the process exit code."""
    stdin = stdin or sys.stdin
    stderr = stderr or sys.stderr
    if config is None:
        config = load_config_or_default(cwd or Path.cwd(), stderr)
    try:
        data = json.load(stdin)
        command = (data.get("tool_input") or {}).get("command")
        if not command:
            return EXIT_ALLOW

        result = check_command(command, config)

        if result.blocked and result.rule is not None:
            log.info("blocked", rule=result.rule.name, command=command)
            print("BLOCKED by sherpa", file=stderr)
            print(f"  Rule: {result.rule.name}", file=stderr)
            print(f"  Reason: {result.rule.reason}", file=stderr)
            print(f"  Command: {command}", file=stderr)
            return EXIT_BLOCK

        log.info("allowed", command=command)
        return EXIT_ALLOW
    except Exception as e:
        # Graceful degradation: allow on error
        log.exception("pre_hook_failed")
        print(f"sherpa pre error: {e}", file=stderr)
        return EXIT_ALLOW


def run_post(
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
    cwd: Path | None = None,
    config: Config | None = None,
) -> None:
    """PostToolUse hook. Writes the (possibly rewritten) hook input to stdout."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr
    cwd = cwd or Path.cwd()
    if config is None:
        config = load_config_or_default(cwd, stderr)
    raw = stdin.read()
    try:
        data = json.loads(raw)
        if data.get("tool_name") != "Bash":
            print(json.dumps(data), file=stdout)
            return

        tool_result = data.get("tool_result") or {}
        stdout_text = tool_result.get("stdout") or ""
        stderr_text = tool_result.get("stderr") or ""
        exit_code = tool_result.get("exit_code") or 0

        out = offload_output(stdout_text, exit_code, config, cwd)
        err = offload_output(stderr_text, exit_code, config, cwd)

        if out.modified or err.modified:
            data = {
                **data,
                "tool_result": {**tool_result, "stdout": out.result, "stderr": err.result},
            }
        print(json.dumps(data), file=stdout)
    except Exception as e:
        # Pass the original through untouched
        log.exception("post_hook_failed")
        print(f"sherpa post error: {e}", file=stderr)
        stdout.write(raw)


def handle_request(raw: str | bytes, config: Config, cwd: Path) -> dict[str, Any]:
    """Answer one daemon request: {"type": "pre" | "post", "data": {...}}.

    The transport (socket, framing) is the caller's concern; this enforces
    the request size bound and maps each request to a JSON-able response.
    """
    size = len(raw.encode()) if isinstance(raw, str) else len(raw)
    if size > MAX_REQUEST_BYTES:
        return {"error": "Request too large"}
    try:
        request = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {"error": "Invalid JSON"}
    if not isinstance(request, dict):
        return {"error": "Invalid JSON"}

    data = request.get("data") or {}
    if not isinstance(data, dict):
        return {"error": "Invalid request"}

    if request.get("type") == "pre":
        command = data.get("command") or ""
        if not isinstance(command, str):
            return {"error": "Invalid request"}
        result = check_command(command, config)
        response: dict[str, Any] = {"blocked": result.blocked}
        if result.rule is not None:
            response["rule"] = {"name": result.rule.name, "reason": result.rule.reason}
        return response

    if request.get("type") == "post":
        exit_code = data.get("exit_code") or 0
        stdout_text = data.get("stdout") or ""
        stderr_text = data.get("stderr") or ""
        if not isinstance(stdout_text, str) or not isinstance(stderr_text, str):
            return {"error": "Invalid request"}
        out = offload_output(stdout_text, exit_code, config, cwd)
        err = offload_output(stderr_text, exit_code, config, cwd)
        return {
            "stdout": out.result,
            "stderr": err.result,
            "modified": out.modified or err.modified,
        }

    return {"error": "Unknown request type"}


# === Entry point ===


@dataclass
class HookContext:
    config: Config
    cwd: Path


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="sherpa-guard", prog_name="sherpa")
@click.pass_context
def main(ctx: click.Context) -> None:
    """Command-safety hooks for Claude Code."""
    cwd = Path.cwd()
    config = load_config_or_default(cwd)
    setup_logging(config.log)
    ctx.obj = HookContext(config=config, cwd=cwd)


@main.command()
@click.pass_context
def pre(ctx: click.Context) -> None:
    """PreToolUse hook: block dangerous bash commands."""
    ctx.exit(run_pre(cwd=ctx.obj.cwd, config=ctx.obj.config))


@main.command()
@click.pass_context
def post(ctx: click.Context) -> None:
    """PostToolUse hook: offload large output."""
    run_post(cwd=ctx.obj.cwd, config=ctx.obj.config)


@main.command()
@click.argument("command")
@click.pass_context
def check(ctx: click.Context, command: str) -> None:
    """Print the verdict for COMMAND."""
    result = check_command(command, ctx.obj.config)
    if result.blocked and result.rule is not None:
        click.echo(f"BLOCKED {result.rule.name}: {result.rule.reason}")
        ctx.exit(EXIT_BLOCK)
    click.echo("allowed")


if __name__ == "__main__":
    main()
