# test/test_services/test_deepseek_client.py
import json
from typing import Any, Dict, List

import httpx
import pytest

from app.config import DEEPSEEK_API_URL
from app.errors import DeepSeekError, DeepSeekErrorType
from app.schemas.chat import Chat
from app.services.deepseek_client import (
    DeepSeekClient,
    DeepSeekModel,
    ResponseFormat,
    StreamOption,
    Usage,
    message_content,
)

HISTORY = [
    Chat(role="system", content="You are a helpful assistant"),
    Chat(role="user", content="Hi"),
]

USAGE = {
    "completion_tokens": 9,
    "prompt_tokens": 11,
    "prompt_cache_hit_tokens": 0,
    "prompt_cache_miss_tokens": 11,
    "total_tokens": 20,
}


def ok_body(content: str = "Hello! How can I help?", usage: Any = USAGE) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "id": "cmpl-1",
        "object": "chat.completion",
        "model": "deepseek-chat",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
    }
    if usage is not None:
        body["usage"] = usage
    return body


class Recorder:
    """MockTransport handler that records requests and replays a fixed response."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


def make_client(handler, api_key: Any = "sk-test", **options) -> DeepSeekClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DeepSeekClient(DEEPSEEK_API_URL, DeepSeekModel.CHAT, api_key=api_key, http_client=http, **options)


# -----------------------------
# Validation
# -----------------------------
def test_unset_options_are_valid_with_key():
    client = DeepSeekClient(DEEPSEEK_API_URL, DeepSeekModel.CHAT, api_key="sk-test")
    assert client.check_params()
    assert client.invalid_params() == []


def test_fully_configured_client_is_valid():
    client = (
        DeepSeekClient.builder(DEEPSEEK_API_URL, DeepSeekModel.CHAT)
        .api_key("sk-test")
        .frequency_penalty(0.5)
        .max_tokens(2048)
        .presence_penalty(0.5)
        .response_format(ResponseFormat.JSON)
        .stream(True)
        .stream_option(StreamOption(include_usage=True))
        .temperature(0.5)
        .top_p(0.5)
        .logprobs(True)
        .top_logprobs(10)
        .build()
    )
    assert client.check_params()


@pytest.mark.parametrize(
    "option, value",
    [
        ("frequency_penalty", -2.1),
        ("frequency_penalty", 2.5),
        ("presence_penalty", -3.0),
        ("presence_penalty", 2.01),
        ("max_tokens", 0),
        ("max_tokens", 9000),
        ("temperature", -0.1),
        ("temperature", 2.1),
        ("top_p", -0.5),
        ("top_p", 1.5),
    ],
)
def test_out_of_range_option_fails_validation(option, value):
    client = DeepSeekClient(DEEPSEEK_API_URL, DeepSeekModel.CHAT, api_key="sk-test", **{option: value})
    assert client.check_params() is False
    assert client.invalid_params() == [option]


@pytest.mark.parametrize(
    "option, value",
    [
        ("frequency_penalty", -2.0),
        ("presence_penalty", 2.0),
        ("max_tokens", 1),
        ("max_tokens", 8192),
        ("temperature", 0.0),
        ("temperature", 2.0),
        ("top_p", 0.0),
        ("top_p", 1.0),
    ],
)
def test_range_bounds_are_inclusive(option, value):
    client = DeepSeekClient(DEEPSEEK_API_URL, DeepSeekModel.CHAT, api_key="sk-test", **{option: value})
    assert client.check_params()


def test_max_tokens_9000_is_rejected():
    client = DeepSeekClient.builder(DEEPSEEK_API_URL, DeepSeekModel.CHAT).api_key("sk-test").max_tokens(9000).build()
    assert client.check_max_tokens() is False
    assert client.check_params() is False


def test_top_logprobs_requires_logprobs():
    client = DeepSeekClient(DEEPSEEK_API_URL, DeepSeekModel.CHAT, api_key="sk-test", top_logprobs=3)
    assert client.check_top_logprobs() is False
    assert client.check_params() is False

    client.logprobs = True
    assert client.check_top_logprobs()
    assert client.check_params()


def test_stream_option_requires_effective_stream():
    client = DeepSeekClient(
        DEEPSEEK_API_URL, DeepSeekModel.CHAT, api_key="sk-test", stream_option=StreamOption(include_usage=True)
    )
    # stream unset -> default False
    assert client.check_stream_option() is False

    client.stream = False
    assert client.check_stream_option() is False

    client.stream = True
    assert client.check_stream_option()
    assert client.check_params()


def test_missing_api_key_fails_validation():
    client = DeepSeekClient(DEEPSEEK_API_URL, DeepSeekModel.CHAT)
    assert client.check_params() is False
    assert client.invalid_params() == ["api_key"]


# -----------------------------
# Credentials
# -----------------------------
def test_api_key_from_env(monkeypatch):
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-env")
    client = DeepSeekClient.builder(DEEPSEEK_API_URL, DeepSeekModel.CHAT).api_key_from_env("DEEPSEEK_API_KEY").build()
    assert client.api_key == "sk-env"


def test_api_key_from_env_missing(monkeypatch):
    monkeypatch.delenv("DEEPSEEK_TEST_MISSING_KEY", raising=False)
    with pytest.raises(DeepSeekError) as ei:
        DeepSeekClient.builder(DEEPSEEK_API_URL, DeepSeekModel.CHAT).api_key_from_env("DEEPSEEK_TEST_MISSING_KEY")
    assert ei.value.error_type is DeepSeekErrorType.API_KEY
    assert "DEEPSEEK_TEST_MISSING_KEY" in str(ei.value)


def test_api_key_from_file_is_verbatim(tmp_path):
    key_file = tmp_path / "api_key.txt"
    key_file.write_text("sk-file\n", encoding="utf-8")

    client = DeepSeekClient.builder(DEEPSEEK_API_URL, DeepSeekModel.CHAT).api_key_from_file(str(key_file)).build()
    assert client.api_key == "sk-file\n"

    client.api_key = None
    client.load_api_key_from_file(str(key_file))
    assert client.api_key == "sk-file\n"


def test_api_key_from_unreadable_file(tmp_path):
    client = DeepSeekClient(DEEPSEEK_API_URL, DeepSeekModel.CHAT)
    with pytest.raises(DeepSeekError) as ei:
        client.load_api_key_from_file(str(tmp_path / "nope.txt"))
    assert ei.value.error_type is DeepSeekErrorType.API_KEY
    assert str(ei.value) == "ApiKeyError: Can't read the api key file."
    assert client.api_key is None


# -----------------------------
# Request body
# -----------------------------
def test_request_body_uses_defaults_for_unset_options():
    client = DeepSeekClient("https://example.test/chat/completions", DeepSeekModel.CHAT)

    body = client.build_request_body(HISTORY)

    assert body == {
        "messages": [
            {"content": "You are a helpful assistant", "role": "system"},
            {"content": "Hi", "role": "user"},
        ],
        "model": "deepseek-chat",
        "frequency_penalty": 0.0,
        "max_tokens": 4096,
        "presence_penalty": 0.0,
        "response_format": {"type": "text"},
        "stop": None,
        "stream": False,
        "stream_options": None,
        "temperature": 1.0,
        "top_p": 1.0,
        "tools": None,
        "tool_choice": "none",
        "logprobs": False,
        "top_logprobs": None,
    }
    # defaults are not written back
    assert client.max_tokens is None
    assert client.temperature is None


def test_request_body_with_configured_options():
    client = (
        DeepSeekClient.builder(DEEPSEEK_API_URL, DeepSeekModel.REASONER)
        .frequency_penalty(0.5)
        .max_tokens(2048)
        .presence_penalty(0.5)
        .response_format(ResponseFormat.JSON)
        .stream(True)
        .stream_option(StreamOption(include_usage=True))
        .temperature(0.5)
        .top_p(0.5)
        .logprobs(True)
        .top_logprobs(10)
        .build()
    )

    body = client.build_request_body(HISTORY)

    assert body["model"] == "deepseek-reasoner"
    assert body["frequency_penalty"] == 0.5
    assert "frequency_panalty" not in body
    assert body["max_tokens"] == 2048
    assert body["presence_penalty"] == 0.5
    assert body["response_format"] == {"type": "json"}
    assert body["stream"] is True
    assert body["stream_options"] == {"include_usage": True}
    assert body["temperature"] == 0.5
    assert body["top_p"] == 0.5
    assert body["logprobs"] is True
    assert body["top_logprobs"] == 10


# -----------------------------
# send_request
# -----------------------------
@pytest.mark.asyncio
async def test_send_request_success_updates_usage():
    rec = Recorder(httpx.Response(200, json=ok_body()))
    client = make_client(rec)

    data = await client.send_request(HISTORY)

    assert message_content(data) == "Hello! How can I help?"
    assert client.last_usage == Usage(**USAGE)
    assert client.total_usage == Usage(**USAGE)

    await client.send_request(HISTORY)
    assert client.last_usage == Usage(**USAGE)
    assert client.total_usage.total_tokens == 40
    assert client.total_usage.prompt_cache_miss_tokens == 22

    req = rec.requests[0]
    assert req.method == "POST"
    assert str(req.url) == DEEPSEEK_API_URL
    assert req.headers["Authorization"] == "Bearer sk-test"
    assert req.headers["Content-Type"] == "application/json"
    sent = json.loads(req.content)
    assert sent["messages"] == [{"content": "You are a helpful assistant", "role": "system"}, {"content": "Hi", "role": "user"}]
    assert sent["tool_choice"] == "none"


@pytest.mark.asyncio
async def test_send_request_posts_to_configured_url():
    rec = Recorder(httpx.Response(200, json=ok_body()))
    client = make_client(rec)
    client.url = "http://localhost:9999/v1/chat/completions"

    await client.send_request(HISTORY)

    assert str(rec.requests[0].url) == "http://localhost:9999/v1/chat/completions"


@pytest.mark.asyncio
async def test_invalid_params_never_reach_transport():
    rec = Recorder(httpx.Response(200, json=ok_body()))
    client = make_client(rec, max_tokens=9000)

    with pytest.raises(DeepSeekError) as ei:
        await client.send_request(HISTORY)

    assert ei.value.error_type is DeepSeekErrorType.REQUEST_PARAM
    assert "max_tokens" in str(ei.value)
    assert rec.requests == []
    assert client.total_usage == Usage()


@pytest.mark.asyncio
async def test_missing_api_key_never_reaches_transport():
    rec = Recorder(httpx.Response(200, json=ok_body()))
    client = make_client(rec, api_key=None)

    with pytest.raises(DeepSeekError) as ei:
        await client.send_request(HISTORY)

    assert ei.value.error_type is DeepSeekErrorType.REQUEST_PARAM
    assert rec.requests == []


@pytest.mark.asyncio
async def test_http_error_carries_status_and_server_message():
    rec = Recorder(httpx.Response(401, json={"error": {"message": "Authentication Fails", "type": "authentication_error"}}))
    client = make_client(rec)

    with pytest.raises(DeepSeekError) as ei:
        await client.send_request(HISTORY)

    assert ei.value.error_type is DeepSeekErrorType.REQUEST
    assert "401" in ei.value.message
    assert "Authentication Fails" in ei.value.message
    assert len(rec.requests) == 1  # no retry


@pytest.mark.asyncio
async def test_http_error_without_parsable_body():
    rec = Recorder(httpx.Response(503, text="<html>busy</html>"))
    client = make_client(rec)

    with pytest.raises(DeepSeekError) as ei:
        await client.send_request(HISTORY)

    assert ei.value.message == "Request failed with status: 503, Failed to parse error message"


@pytest.mark.asyncio
async def test_transport_failure_is_request_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)

    with pytest.raises(DeepSeekError) as ei:
        await client.send_request(HISTORY)

    assert ei.value.error_type is DeepSeekErrorType.REQUEST
    assert ei.value.message == "Failed to send request."
    assert isinstance(ei.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_non_json_body_is_request_error():
    client = make_client(Recorder(httpx.Response(200, text="not json")))

    with pytest.raises(DeepSeekError) as ei:
        await client.send_request(HISTORY)

    assert ei.value.error_type is DeepSeekErrorType.REQUEST


@pytest.mark.asyncio
async def test_missing_usage_leaves_counters_untouched():
    client = make_client(Recorder(httpx.Response(200, json=ok_body(usage=None))))

    with pytest.raises(DeepSeekError) as ei:
        await client.send_request(HISTORY)

    assert ei.value.error_type is DeepSeekErrorType.RESPONSE
    assert "usage statistics" in ei.value.message
    assert client.last_usage == Usage()
    assert client.total_usage == Usage()


@pytest.mark.asyncio
async def test_incomplete_usage_is_response_error():
    usage = dict(USAGE)
    del usage["prompt_cache_hit_tokens"]
    client = make_client(Recorder(httpx.Response(200, json=ok_body(usage=usage))))

    with pytest.raises(DeepSeekError) as ei:
        await client.send_request(HISTORY)

    assert ei.value.message == "The response does not contain prompt cache hit tokens."
    assert client.total_usage == Usage()


@pytest.mark.asyncio
async def test_empty_usage_is_response_error():
    client = make_client(Recorder(httpx.Response(200, json=ok_body(usage={}))))

    with pytest.raises(DeepSeekError) as ei:
        await client.send_request(HISTORY)

    assert ei.value.message == "The usage statistics is empty."


@pytest.mark.asyncio
async def test_empty_content_is_response_error():
    client = make_client(Recorder(httpx.Response(200, json=ok_body(content=""))))

    with pytest.raises(DeepSeekError) as ei:
        await client.send_request(HISTORY)

    assert ei.value.error_type is DeepSeekErrorType.RESPONSE
    assert ei.value.message == "The response is empty."
    assert client.total_usage == Usage()


@pytest.mark.asyncio
async def test_missing_choices_is_response_error():
    client = make_client(Recorder(httpx.Response(200, json={"usage": USAGE})))

    with pytest.raises(DeepSeekError) as ei:
        await client.send_request(HISTORY)

    assert ei.value.message == "The response format is not valid."
