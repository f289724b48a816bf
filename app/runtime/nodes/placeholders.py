# app/runtime/nodes/placeholders.py
from __future__ import annotations


class _NoopNode:
    """Accepts any input and returns an empty string. No side effects yet."""

    async def execute(self, input: str) -> str:
        return ""


class StartNode(_NoopNode):
    pass


class EndNode(_NoopNode):
    pass


class LocalNode(_NoopNode):
    """Will run a local script."""


class UserNode(_NoopNode):
    """Will wait for user input."""
