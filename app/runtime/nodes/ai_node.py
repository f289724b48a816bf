# app/runtime/nodes/ai_node.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from app.errors import AINodeError, AINodeErrorType, DeepSeekError
from app.schemas.chat import Chat
from app.services.deepseek_client import DeepSeekClient, message_content

logger = logging.getLogger(__name__)


@dataclass
class DeepSeekService:
    """AI service backed by a DeepSeekClient owned by this service."""

    client: DeepSeekClient

    async def complete(self, history: Sequence[Chat]) -> str:
        try:
            response = await self.client.send_request(history)
            return message_content(response)
        except DeepSeekError as e:
            raise AINodeError(AINodeErrorType.DEEPSEEK, "Failed to send request to DeepSeek") from e


# Only one service today; add variants to this union.
AIService = Union[DeepSeekService]


class AINode:
    """Chat node: wraps the input in prefix/suffix and sends the running history.

    - history[0] is the system turn whenever ``role`` is set
    - each successful execute appends a user turn then an assistant turn
    - the user turn is appended before the request, so a failed request leaves it
      in history without a reply
    """

    def __init__(
        self,
        service: AIService,
        *,
        role: Optional[str] = None,
        history: Optional[Sequence[Chat]] = None,
        prompt_prefix: str = "",
        prompt_suffix: str = "",
        input: str = "",
    ) -> None:
        self.service = service
        self.history: List[Chat] = list(history or [])
        self.prompt_prefix = prompt_prefix
        self.prompt_suffix = prompt_suffix
        self.input = input
        self._role: Optional[str] = None
        self.role = role

    @classmethod
    def builder(cls, service: AIService) -> "AINodeBuilder":
        return AINodeBuilder(service)

    @property
    def role(self) -> Optional[str]:
        return self._role

    @role.setter
    def role(self, role: Optional[str]) -> None:
        if role is None:
            if self._role is not None:
                del self.history[0]
        elif self._role is None:
            self.history.insert(0, Chat.system(role))
        else:
            self.history[0] = Chat.system(role)
        self._role = role

    def compose_prompt(self) -> str:
        return f"{self.prompt_prefix}\n{self.input}\n{self.prompt_suffix}"

    async def execute(self, input: Optional[str] = None) -> str:
        if input is not None:
            self.input = input

        self.history.append(Chat.user(self.compose_prompt()))
        logger.debug("AI node sending %d turns", len(self.history))

        reply = await self.service.complete(self.history)

        self.history.append(Chat.assistant(reply))
        return reply


class AINodeBuilder:
    def __init__(self, service: AIService) -> None:
        self._service = service
        self._role: Optional[str] = None
        self._history: List[Chat] = []
        self._prompt_prefix = ""
        self._prompt_suffix = ""
        self._input = ""

    def role(self, role: Optional[str]) -> "AINodeBuilder":
        self._role = role
        return self

    def history(self, history: Sequence[Chat]) -> "AINodeBuilder":
        self._history = list(history)
        return self

    def prompt_prefix(self, prefix: str) -> "AINodeBuilder":
        self._prompt_prefix = prefix
        return self

    def prompt_suffix(self, suffix: str) -> "AINodeBuilder":
        self._prompt_suffix = suffix
        return self

    def input(self, text: str) -> "AINodeBuilder":
        self._input = text
        return self

    def build(self) -> AINode:
        return AINode(
            self._service,
            role=self._role,
            history=self._history,
            prompt_prefix=self._prompt_prefix,
            prompt_suffix=self._prompt_suffix,
            input=self._input,
        )
