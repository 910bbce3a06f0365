"""
Fast-path allowlist for the guard.

Commands here skip parsing entirely when the text is a single simple
command. The guard drops any name that a block rule targets, so this list
only trades speed, never safety.
"""

from __future__ import annotations

# === Fast-Path Commands ===
# Read-only builtins and viewers that run on nearly every agent turn

FAST_PATH_COMMANDS = frozenset(
    {
        # === Output ===
        "echo",  # print arguments
        "printf",  # formatted print
        # === Listing & Navigation ===
        "ls",  # list directory contents
        "pwd",  # print working directory
        "cd",  # change directory
        # === System Info ===
        "date",  # print date
        "whoami",  # print effective user
        "id",  # print user and group ids
        # === File Content Viewing ===
        "cat",  # concatenate and print files
        "head",  # print first lines of file
        "tail",  # print last lines of file
        "wc",  # word, line, byte count
        # === Text Processing ===
        "grep",  # search text patterns
        "awk",  # pattern scanning
        "sed",  # stream editor
        # === No-ops ===
        "true",  # exit 0
        "false",  # exit 1
        ":",  # null command
    }
)


# === Compound Metacharacters ===
# Any of these means more than one command (or a nested one) may run

COMPOUND_MARKERS = (
    "|",  # pipelines and ||
    "&",  # && and background jobs
    ";",  # sequences
    "`",  # backtick substitution
    "$(",  # command substitution
    "<(",  # process substitution
    ">(",  # process substitution
    "\n",  # newline-separated statements
)


def is_fast_path_safe(command: str, commands: frozenset[str] = FAST_PATH_COMMANDS) -> bool:
    """True if command is a single invocation of a fast-path command."""
    words = command.split()
    if not words or words[0] not in commands:
        return False
    return not any(marker in command for marker in COMPOUND_MARKERS)
