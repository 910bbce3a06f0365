"""
Sherpa - command-safety gate for Claude Code.

Blocks dangerous bash commands before they run and offloads large output
after they finish.
"""

from __future__ import annotations

__version__ = "0.3.0"

from sherpa.sherpa import check_command

__all__ = ["check_command", "__version__"]
