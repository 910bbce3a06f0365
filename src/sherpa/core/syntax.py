"""
Shell syntax tree consumed by the guard.

bashlex produces a loosely-typed AST whose node shape depends on a "kind"
string. This module folds it into a small closed set of node types so the
rest of the guard can dispatch on type instead of on strings:

    Script      top level, one entry per statement
    Sequence    commands joined by ; & or newline
    Pipeline    commands joined by |
    Logical     && / || with left and right operands
    Command     a simple command: name, suffix words, nested substitutions
    Grouping    subshells, brace groups, if/for/while/until bodies, functions
    Unknown     anything else; contributes no commands
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

import bashlex

# List operators that separate statements; && and || bind tighter.
SEQUENCE_OPERATORS = frozenset({";", "&", "\n"})
LOGICAL_OPERATORS = frozenset({"&&", "||"})

# Syntax delimiters that never carry commands: (, ), {, }, do, done, then, fi, !
_SKIPPED_KINDS = frozenset({"reservedword", "operator", "pipe"})

# Compound statements whose bodies are walked like a subshell
_GROUPING_KINDS = frozenset({"if", "for", "while", "until"})

_SUBSTITUTION_KINDS = frozenset({"commandsubstitution", "processsubstitution"})


class ParseError(ValueError):
    """Command text could not be parsed as bash."""


@dataclass
class Command:
    """A simple command: name word plus suffix words (quotes removed)."""

    name: str | None
    suffix: list[str] = field(default_factory=list)
    substitutions: list[Node] = field(default_factory=list)
    kind: Literal["command"] = "command"


@dataclass
class Pipeline:
    commands: list[Node] = field(default_factory=list)
    kind: Literal["pipeline"] = "pipeline"


@dataclass
class Logical:
    op: str
    left: Node
    right: Node
    kind: Literal["logical"] = "logical"


@dataclass
class Sequence:
    commands: list[Node] = field(default_factory=list)
    kind: Literal["sequence"] = "sequence"


@dataclass
class Grouping:
    body: list[Node] = field(default_factory=list)
    kind: Literal["grouping"] = "grouping"


@dataclass
class Unknown:
    """A construct the guard does not model."""

    source_kind: str
    kind: Literal["unknown"] = "unknown"


@dataclass
class Script:
    commands: list[Node] = field(default_factory=list)
    kind: Literal["script"] = "script"


Node = Union[Script, Sequence, Pipeline, Logical, Command, Grouping, Unknown]


def parse_script(text: str) -> Script:
    """Parse bash text into a Script.

    Raises ParseError on malformed input, and on constructs bashlex does
    not implement (case statements, arithmetic expansion).
    """
    try:
        parts = bashlex.parse(text)
    except (bashlex.errors.ParsingError, NotImplementedError) as e:
        raise ParseError(f"invalid bash: {e}") from e

    script = Script()
    for part in parts:
        node = from_bashlex(part)
        # Top-level statements are flattened so pipelines sit directly under the script
        if isinstance(node, Sequence):
            script.commands.extend(node.commands)
        else:
            script.commands.append(node)
    return script


def from_bashlex(node: Any) -> Node:
    """Convert one bashlex node (and its children) into a syntax tree node."""
    kind = getattr(node, "kind", None)

    if kind == "command":
        return _convert_command(node)

    elif kind == "pipeline":
        return Pipeline(
            commands=[
                from_bashlex(p)
                for p in node.parts
                if getattr(p, "kind", None) not in _SKIPPED_KINDS
            ]
        )

    elif kind == "list":
        return _convert_list(node.parts)

    elif kind == "compound":
        body: list[Node] = [
            from_bashlex(p)
            for p in node.list
            if getattr(p, "kind", None) not in _SKIPPED_KINDS
        ]
        for redirect in getattr(node, "redirects", None) or []:
            body.extend(_collect_substitutions(getattr(redirect, "output", None)))
        return Grouping(body=body)

    elif kind in _GROUPING_KINDS:
        body = []
        for p in node.parts:
            part_kind = getattr(p, "kind", None)
            if part_kind == "word":
                # Loop words (for x in a b) are not commands; their substitutions are
                body.extend(_collect_substitutions(p))
            elif part_kind not in _SKIPPED_KINDS:
                body.append(from_bashlex(p))
        return Grouping(body=body)

    elif kind == "function":
        return Grouping(body=[from_bashlex(node.body)])

    return Unknown(source_kind=str(kind))


def _convert_command(node: Any) -> Command:
    """Build a Command from a bashlex command node.

    Redirects and leading assignments are not part of the suffix. Command
    and process substitutions in words, assignments or redirect targets are
    kept as subtrees.
    """
    words: list[str] = []
    substitutions: list[Node] = []
    for part in node.parts:
        part_kind = getattr(part, "kind", None)
        if part_kind == "word":
            words.append(part.word)
        if part_kind in ("word", "assignment"):
            substitutions.extend(_collect_substitutions(part))
        elif part_kind == "redirect":
            # output is a word node, or an int for fd duplication (2>&1)
            substitutions.extend(_collect_substitutions(getattr(part, "output", None)))

    if not words:
        return Command(name=None, substitutions=substitutions)
    return Command(name=words[0], suffix=words[1:], substitutions=substitutions)


def _collect_substitutions(word: Any) -> list[Node]:
    found: list[Node] = []
    for part in getattr(word, "parts", None) or []:
        if getattr(part, "kind", None) in _SUBSTITUTION_KINDS:
            found.append(from_bashlex(part.command))
        else:
            found.extend(_collect_substitutions(part))
    return found


def _convert_list(parts: list[Any]) -> Node:
    """Fold a bashlex list into Sequence/Logical nodes.

    a && b || c ; d  ->  Sequence([Logical(||, Logical(&&, a, b), c), d])
    """
    segments: list[Node] = []
    current: Node | None = None
    pending_op: str | None = None

    for part in parts:
        if getattr(part, "kind", None) == "operator":
            if part.op in LOGICAL_OPERATORS:
                pending_op = part.op
            elif part.op in SEQUENCE_OPERATORS:
                if current is not None:
                    segments.append(current)
                current = None
                pending_op = None
            continue

        child = from_bashlex(part)
        if current is not None and pending_op is not None:
            current = Logical(op=pending_op, left=current, right=child)
        elif current is not None:
            # Adjacent statements without an operator (newline-separated)
            segments.append(current)
            current = child
        else:
            current = child
        pending_op = None

    if current is not None:
        segments.append(current)

    if len(segments) == 1:
        return segments[0]
    return Sequence(commands=segments)
