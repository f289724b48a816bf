# app/runtime/flow.py
from __future__ import annotations

from pocketflow import AsyncFlow

from app.runtime.worknode import Worknode


def make_node_flow(node: Worknode) -> AsyncFlow:
    """Flow entered at ``node``.

    With no successors wired the flow ends after the node and returns its "ok".
    """
    return AsyncFlow(start=node)
