# app/runtime/worknode.py
from __future__ import annotations

import uuid
from typing import Any, Dict, Protocol, runtime_checkable

from pocketflow import AsyncNode

from app.errors import AINodeError, PilotError, PilotErrorType


@runtime_checkable
class NodeCore(Protocol):
    """What a workflow node kind must provide."""

    async def execute(self, input: str) -> str: ...


class Worknode(AsyncNode):
    """A node in the workflow graph: a fixed id plus a replaceable core.

    - prep_async: read ``input_text`` from shared
    - exec_async: run the core (single attempt)
    - post_async: write ``output_text`` and ``outputs[id]`` to shared, route "ok"
    """

    def __init__(self, core: NodeCore, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._id = uuid.uuid4()
        self.core = core

    @property
    def id(self) -> uuid.UUID:
        return self._id

    @property
    def kind(self) -> str:
        return type(self.core).__name__

    async def execute(self, input: str) -> str:
        try:
            return await self.core.execute(input)
        except AINodeError as e:
            raise PilotError(PilotErrorType.AI_NODE, "AI node failed to execute") from e

    async def prep_async(self, shared: Dict[str, Any]) -> str:
        return str(shared.get("input_text") or "")

    async def exec_async(self, prep: str) -> str:
        return await self.execute(prep)

    async def post_async(self, shared: Dict[str, Any], prep: str, exec_res: str) -> str:
        shared["output_text"] = exec_res
        shared.setdefault("outputs", {})[str(self.id)] = exec_res
        return "ok"
