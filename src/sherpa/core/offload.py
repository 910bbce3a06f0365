"""
Output offloading for the post-execution hook.

Large command output is written to a scratch file and replaced with a short
pointer message plus the tail of the output, so it does not flood the
agent's context.
"""

from __future__ import annotations

import hashlib
import math
import time
from dataclasses import dataclass
from pathlib import Path

import structlog

from sherpa.core.config import Config

log = structlog.get_logger()

SCRATCH_PREFIX = "out_"
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class OffloadResult:
    modified: bool
    result: str


def count_tokens(text: str) -> int:
    """Estimate tokens at ~4 characters each."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def offload_output(
    output: str, exit_code: int, config: Config, cwd: Path | None = None
) -> OffloadResult:
    """Pass small output through; offload large output to scratch_dir."""
    tokens = count_tokens(output)
    if tokens <= config.max_tokens:
        return OffloadResult(modified=False, result=output)

    scratch_dir = (cwd or Path.cwd()) / config.scratch_dir
    scratch_dir.mkdir(parents=True, exist_ok=True)
    cleanup_scratch(scratch_dir, config.max_age_minutes, config.max_scratch_size_mb)

    digest = hashlib.md5(output.encode()).hexdigest()[:8]
    filepath = scratch_dir / f"{SCRATCH_PREFIX}{digest}_exit{exit_code}.txt"
    filepath.write_text(output)

    lines = output.split("\n")
    preview_lines: list[str] = []
    preview_tokens = 0
    for line in reversed(lines):
        if preview_tokens >= config.preview_tokens:
            break
        preview_lines.insert(0, line)
        preview_tokens += count_tokens(line)

    log.info("offloaded", path=str(filepath), tokens=tokens, exit_code=exit_code)

    size_kb = len(output) / 1024
    result = "\n".join(
        [
            f"┌─ Output offloaded ({len(lines)} lines, {size_kb:.1f}KB, ~{tokens} tokens)",
            f"│ File: {filepath}",
            f"│ Hint: grep <pattern> {filepath}",
            f"└─ Last {len(preview_lines)} lines:",
            "\n".join(preview_lines),
        ]
    )
    return OffloadResult(modified=True, result=result)


def cleanup_scratch(
    scratch_dir: Path, max_age_minutes: int, max_size_mb: int, now: float | None = None
) -> list[Path]:
    """Delete expired scratch files, then the oldest until under the size cap.

    Only out_* files are touched. Returns the removed paths.
    """
    if not scratch_dir.is_dir():
        return []

    now = time.time() if now is None else now
    max_age = max_age_minutes * 60
    max_bytes = max_size_mb * 1024 * 1024

    files: list[tuple[Path, int, float]] = []
    for path in scratch_dir.iterdir():
        if not path.name.startswith(SCRATCH_PREFIX):
            continue
        try:
            stat = path.stat()
        except OSError:
            continue  # removed concurrently
        files.append((path, stat.st_size, stat.st_mtime))

    total = sum(size for _, size, _ in files)
    removed: list[Path] = []
    remaining: list[tuple[Path, int, float]] = []

    for path, size, mtime in files:
        if now - mtime > max_age and _unlink(path):
            removed.append(path)
            total -= size
        else:
            remaining.append((path, size, mtime))

    # Oldest first until under the cap
    for path, size, _ in sorted(remaining, key=lambda f: f[2]):
        if total <= max_bytes:
            break
        if _unlink(path):
            removed.append(path)
            total -= size

    if removed:
        log.info("scratch_removed", count=len(removed), scratch_dir=str(scratch_dir))
    return removed


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
    except OSError:
        return False
    return True
