# app/services/registry.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from app.runtime.flow import make_node_flow
from app.runtime.nodes.ai_node import AINode
from app.runtime.worknode import Worknode
from app.services.deepseek_client import DeepSeekClient

logger = logging.getLogger(__name__)


class NodeRegistry:
    """In-memory nodes keyed by id. Runs of the same node are serialized."""

    def __init__(self) -> None:
        self._nodes: Dict[str, Worknode] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def add(self, node: Worknode) -> str:
        node_id = str(node.id)
        self._nodes[node_id] = node
        self._locks[node_id] = asyncio.Lock()
        logger.info("Registered %s node %s", node.kind, node_id)
        return node_id

    def get(self, node_id: str) -> Worknode:
        return self._nodes[node_id]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    async def run(self, node_id: str, input_text: str) -> Dict[str, Any]:
        """Run one node through a flow and return the shared store."""
        node = self.get(node_id)
        shared: Dict[str, Any] = {"input_text": input_text}
        async with self._locks[node_id]:
            await make_node_flow(node).run_async(shared)
        return shared

    async def aclose(self) -> None:
        for node in self._nodes.values():
            client = client_of(node)
            if client is not None:
                await client.aclose()


def client_of(node: Worknode) -> Optional[DeepSeekClient]:
    core = node.core
    if isinstance(core, AINode):
        return core.service.client
    return None


registry = NodeRegistry()


def get_registry() -> NodeRegistry:
    return registry
