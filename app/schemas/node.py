from pydantic import BaseModel, Field
from typing import List, Optional

from app.schemas.chat import Chat
from app.services.deepseek_client import DeepSeekModel, ResponseFormat


class AINodeCreate(BaseModel):
    role: Optional[str] = None
    prompt_prefix: str = ""
    prompt_suffix: str = ""
    model: DeepSeekModel = DeepSeekModel.CHAT
    # read from the configured env var when no file is given
    api_key_file: Optional[str] = None
    # generation options; range checks happen in the client, not here
    frequency_penalty: Optional[float] = None
    max_tokens: Optional[int] = None
    presence_penalty: Optional[float] = None
    response_format: Optional[ResponseFormat] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    logprobs: bool = False
    top_logprobs: Optional[int] = None


class NodeView(BaseModel):
    id: str
    kind: str
    history: List[Chat] = Field(default_factory=list)


class ExecuteIn(BaseModel):
    input: str


class UsageView(BaseModel):
    completion_tokens: int = 0
    prompt_tokens: int = 0
    prompt_cache_hit_tokens: int = 0
    prompt_cache_miss_tokens: int = 0
    total_tokens: int = 0


class ExecuteOut(BaseModel):
    output: str
    last_usage: Optional[UsageView] = None
    total_usage: Optional[UsageView] = None


class UsageOut(BaseModel):
    last: UsageView
    total: UsageView
