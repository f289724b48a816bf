# app/api/nodes.py
import os
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from app.config import settings
from app.errors import DeepSeekError, DeepSeekErrorType, PilotError, root_error_type
from app.runtime.nodes.ai_node import AINode, DeepSeekService
from app.runtime.worknode import Worknode
from app.schemas.chat import Chat
from app.schemas.node import AINodeCreate, ExecuteIn, ExecuteOut, NodeView, UsageOut, UsageView
from app.services.deepseek_client import DeepSeekClient
from app.services.registry import NodeRegistry, client_of, get_registry

router = APIRouter(prefix="/api/nodes", tags=["nodes"])

# failures the caller can fix by changing the request/config
_CLIENT_SIDE = (DeepSeekErrorType.REQUEST_PARAM, DeepSeekErrorType.API_KEY)


def _get_node(registry: NodeRegistry, node_id: str) -> Worknode:
    if node_id not in registry:
        raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
    return registry.get(node_id)


def _history_of(node: Worknode) -> List[Chat]:
    return list(node.core.history) if isinstance(node.core, AINode) else []


@router.post("", response_model=NodeView)
async def create_ai_node(
    payload: AINodeCreate,
    registry: NodeRegistry = Depends(get_registry),
):
    """Create a DeepSeek-backed AI node. The key comes from a file if given, else the env."""
    builder = (
        DeepSeekClient.builder(settings.deepseek_url, payload.model)
        .frequency_penalty(payload.frequency_penalty)
        .max_tokens(payload.max_tokens)
        .presence_penalty(payload.presence_penalty)
        .response_format(payload.response_format)
        .temperature(payload.temperature)
        .top_p(payload.top_p)
        .logprobs(payload.logprobs)
        .top_logprobs(payload.top_logprobs)
    )
    if payload.api_key_file:
        try:
            builder = builder.api_key_from_file(payload.api_key_file)
        except DeepSeekError as e:
            raise HTTPException(status_code=400, detail=str(e))
    else:
        builder = builder.api_key(os.getenv(settings.api_key_env))

    core = (
        AINode.builder(DeepSeekService(builder.build()))
        .role(payload.role)
        .prompt_prefix(payload.prompt_prefix)
        .prompt_suffix(payload.prompt_suffix)
        .build()
    )
    node = Worknode(core)
    node_id = registry.add(node)
    return NodeView(id=node_id, kind=node.kind, history=_history_of(node))


@router.post("/{node_id}/execute", response_model=ExecuteOut)
async def execute_node(
    node_id: str,
    payload: ExecuteIn,
    registry: NodeRegistry = Depends(get_registry),
):
    node = _get_node(registry, node_id)
    try:
        shared = await registry.run(node_id, payload.input)
    except PilotError as e:
        status = 400 if root_error_type(e) in _CLIENT_SIDE else 502
        raise HTTPException(status_code=status, detail=str(e))

    out = ExecuteOut(output=shared["output_text"])
    client = client_of(node)
    if client is not None:
        out.last_usage = UsageView(**client.last_usage.as_dict())
        out.total_usage = UsageView(**client.total_usage.as_dict())
    return out


@router.get("/{node_id}/history", response_model=List[Chat])
async def get_node_history(
    node_id: str,
    registry: NodeRegistry = Depends(get_registry),
):
    return _history_of(_get_node(registry, node_id))


@router.get("/{node_id}/usage", response_model=UsageOut)
async def get_node_usage(
    node_id: str,
    registry: NodeRegistry = Depends(get_registry),
):
    client = client_of(_get_node(registry, node_id))
    if client is None:
        return UsageOut(last=UsageView(), total=UsageView())
    return UsageOut(
        last=UsageView(**client.last_usage.as_dict()),
        total=UsageView(**client.total_usage.as_dict()),
    )
