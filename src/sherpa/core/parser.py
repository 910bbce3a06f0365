"""
Command extraction from the shell syntax tree.

Flattens a parsed script into StructuredCommand records: flags split out,
path-like arguments classified, multi-verb subcommands resolved.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from sherpa.core.syntax import (
    Command,
    Grouping,
    Logical,
    Node,
    Pipeline,
    Script,
    Sequence,
)

# -10, -1.5: positional numbers, not flag clusters
SIGNED_NUMBER = re.compile(r"^-[\d.]+$")

PATH_PREFIXES = ("/", "~", "$", ".")

# Multi-verb tools: command -> global options that consume the next token
MULTI_VERB_COMMANDS: dict[str, frozenset[str]] = {
    "git": frozenset({"-C", "-c", "--git-dir", "--work-tree", "--namespace"}),
}


@dataclass
class StructuredCommand:
    """One parsed invocation, the unit the rule matcher works on."""

    command: str
    positional_args: list[str] = field(default_factory=list)
    flags: set[str] = field(default_factory=set)
    """Short-flag characters (-rf -> r, f) and long-flag names (--force -> force)."""

    path_like_args: list[str] = field(default_factory=list)
    raw_tokens: list[str] = field(default_factory=list)
    """Suffix tokens as written, joined with spaces for arg pattern matching."""

    subcommand: str | None = None
    subcommand_args: list[str] = field(default_factory=list)


def extract_commands(node: Node | None) -> list[StructuredCommand]:
    """Walk a syntax tree and return its commands, left to right, depth first.

    Unrecognized nodes and nameless commands contribute nothing.
    """
    if node is None:
        return []

    commands: list[StructuredCommand] = []

    if isinstance(node, (Script, Sequence, Pipeline)):
        for child in node.commands:
            commands.extend(extract_commands(child))

    elif isinstance(node, Logical):
        commands.extend(extract_commands(node.left))
        commands.extend(extract_commands(node.right))

    elif isinstance(node, Command):
        parsed = parse_command(node)
        if parsed is not None:
            commands.append(parsed)
        for sub in node.substitutions:
            commands.extend(extract_commands(sub))

    elif isinstance(node, Grouping):
        for child in node.body:
            commands.extend(extract_commands(child))

    # Unknown: nothing to extract
    return commands


def parse_command(node: Command) -> StructuredCommand | None:
    """Classify the suffix tokens of a single command node.

    Returns None when the node has no command name.
    """
    if not node.name:
        return None

    info = StructuredCommand(command=node.name)
    global_options = MULTI_VERB_COMMANDS.get(node.name)
    # Indexes into positional_args consumed as a global option's value
    option_values: set[int] = set()
    previous = None

    for text in node.suffix:
        if not text:
            continue

        info.raw_tokens.append(text)

        if text.startswith("--"):
            info.flags.add(text[2:].split("=", 1)[0])
        elif text.startswith("-") and len(text) > 1 and not SIGNED_NUMBER.match(text):
            info.flags.update(text[1:])
        else:
            if global_options and previous in global_options and not _has_verb(info, option_values):
                option_values.add(len(info.positional_args))
            info.positional_args.append(text)
            if text.startswith(PATH_PREFIXES):
                info.path_like_args.append(text)
        previous = text

    if global_options is not None:
        for i, arg in enumerate(info.positional_args):
            if i not in option_values:
                info.subcommand = arg
                info.subcommand_args = info.positional_args[i + 1 :]
                break

    return info


def _has_verb(info: StructuredCommand, option_values: set[int]) -> bool:
    """True once a positional argument that is not an option value was seen."""
    return len(info.positional_args) > len(option_values)
