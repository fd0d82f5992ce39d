"""Connection scope of an upstream stream.

A connection is either global (sees every directory) or bound to one working
directory.  The two cases are a plain tagged union; callers branch with
``isinstance`` or ``match``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class GlobalScope:
    """Scope-free connection (``/global/event`` or legacy ``/event``)."""

    def describe(self) -> str:
        return "global"


@dataclass(frozen=True)
class DirectoryScope:
    """Connection bound to one working directory (``/event?directory=...``)."""

    path: str

    def describe(self) -> str:
        return f"directory:{self.path}"


ConnectionScope = GlobalScope | DirectoryScope
