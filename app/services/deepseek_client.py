# app/services/deepseek_client.py
from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx

from app.config import DEEPSEEK_API_URL, settings
from app.errors import DeepSeekError, DeepSeekErrorType
from app.schemas.chat import Chat

logger = logging.getLogger(__name__)

# Substituted at serialization time only; the client keeps None for unset options.
DEFAULT_FREQUENCY_PENALTY = 0.0
DEFAULT_MAX_TOKENS = 4096
DEFAULT_PRESENCE_PENALTY = 0.0
DEFAULT_STREAM = False
DEFAULT_TEMPERATURE = 1.0
DEFAULT_TOP_P = 1.0

PENALTY_RANGE = (-2.0, 2.0)
MAX_TOKENS_RANGE = (1, 8192)
TEMPERATURE_RANGE = (0.0, 2.0)
TOP_P_RANGE = (0.0, 1.0)


class DeepSeekModel(str, Enum):
    CHAT = "deepseek-chat"
    REASONER = "deepseek-reasoner"


class ResponseFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


DEFAULT_RESPONSE_FORMAT = ResponseFormat.TEXT


@dataclass(frozen=True)
class StreamOption:
    # if true, the stream ends with an extra chunk carrying usage statistics
    include_usage: bool


@dataclass(frozen=True)
class Usage:
    """Token usage reported by DeepSeek. Usage() is the zero value; combine with +."""

    completion_tokens: int = 0
    prompt_tokens: int = 0
    prompt_cache_hit_tokens: int = 0
    prompt_cache_miss_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        if not isinstance(other, Usage):
            return NotImplemented
        return Usage(**{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)})

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_response(cls, usage: Any) -> "Usage":
        """Parse the ``usage`` object of a completion response; every counter is required."""
        if usage is None:
            raise DeepSeekError(
                DeepSeekErrorType.RESPONSE, "The response does not contain usage statistics."
            )
        if not usage:
            raise DeepSeekError(DeepSeekErrorType.RESPONSE, "The usage statistics is empty.")
        if not isinstance(usage, dict):
            raise DeepSeekError(DeepSeekErrorType.RESPONSE, "The usage statistics is not valid.")

        counts: Dict[str, int] = {}
        for f in fields(cls):
            value = usage.get(f.name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise DeepSeekError(
                    DeepSeekErrorType.RESPONSE,
                    f"The response does not contain {f.name.replace('_', ' ')}.",
                )
            counts[f.name] = value
        return cls(**counts)


def read_api_key_from_env(name: Optional[str] = None) -> str:
    name = name or settings.api_key_env
    value = os.getenv(name)
    if value is None:
        raise DeepSeekError(DeepSeekErrorType.API_KEY, f"Environment variable {name} not found.")
    return value


def read_api_key_from_file(path: str) -> str:
    # contents are used verbatim, no strip
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DeepSeekError(DeepSeekErrorType.API_KEY, "Can't read the api key file.") from e


def message_content(data: Any) -> str:
    """Return ``choices[0].message.content`` from a completion response."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        content = None
    if not isinstance(content, str):
        raise DeepSeekError(DeepSeekErrorType.RESPONSE, "The response format is not valid.")
    if not content:
        raise DeepSeekError(DeepSeekErrorType.RESPONSE, "The response is empty.")
    return content


def _error_message(res: httpx.Response) -> str:
    try:
        return str(res.json()["error"]["message"])
    except (ValueError, KeyError, TypeError):
        return "Failed to parse error message"


def _in_range(value: Optional[float], bounds: tuple) -> bool:
    if value is None:
        return True
    low, high = bounds
    return low <= value <= high


def _or_default(value: Any, default: Any) -> Any:
    return default if value is None else value


class DeepSeekClient:
    """Client for the DeepSeek Chat Completions API.

    Holds connection settings, generation options and usage counters. Options left
    as None are sent with their documented defaults. Every option is a plain
    attribute and may be changed between requests; ``check_params`` runs before
    each request.
    """

    def __init__(
        self,
        url: str,
        model: DeepSeekModel,
        *,
        api_key: Optional[str] = None,
        frequency_penalty: Optional[float] = None,
        max_tokens: Optional[int] = None,
        presence_penalty: Optional[float] = None,
        response_format: Optional[ResponseFormat] = None,
        stream: Optional[bool] = None,
        stream_option: Optional[StreamOption] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        logprobs: bool = False,
        top_logprobs: Optional[int] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.model = DeepSeekModel(model)
        self.frequency_penalty = frequency_penalty
        self.max_tokens = max_tokens
        self.presence_penalty = presence_penalty
        self.response_format = response_format
        self.stream = stream
        self.stream_option = stream_option
        # temperature and top_p should not both be tuned
        self.temperature = temperature
        self.top_p = top_p
        self.logprobs = logprobs
        self.top_logprobs = top_logprobs
        self.timeout = settings.timeout if timeout is None else timeout

        self.total_usage = Usage()
        self.last_usage = Usage()

        self._client = http_client

    @classmethod
    def builder(cls, url: str = DEEPSEEK_API_URL, model: DeepSeekModel = DeepSeekModel.CHAT) -> "DeepSeekClientBuilder":
        return DeepSeekClientBuilder(url, model)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    # ---- credentials ----

    def load_api_key_from_env(self, name: Optional[str] = None) -> None:
        self.api_key = read_api_key_from_env(name)

    def load_api_key_from_file(self, path: str) -> None:
        self.api_key = read_api_key_from_file(path)

    # ---- validation ----

    @property
    def effective_stream(self) -> bool:
        return _or_default(self.stream, DEFAULT_STREAM)

    def check_frequency_penalty(self) -> bool:
        return _in_range(self.frequency_penalty, PENALTY_RANGE)

    def check_max_tokens(self) -> bool:
        return _in_range(self.max_tokens, MAX_TOKENS_RANGE)

    def check_presence_penalty(self) -> bool:
        return _in_range(self.presence_penalty, PENALTY_RANGE)

    def check_stream_option(self) -> bool:
        return self.stream_option is None or self.effective_stream

    def check_temperature(self) -> bool:
        return _in_range(self.temperature, TEMPERATURE_RANGE)

    def check_top_p(self) -> bool:
        return _in_range(self.top_p, TOP_P_RANGE)

    def check_top_logprobs(self) -> bool:
        return self.logprobs or self.top_logprobs is None

    def check_api_key(self) -> bool:
        return self.api_key is not None

    def invalid_params(self) -> List[str]:
        """Names of the options that fail validation (empty when all pass)."""
        checks = {
            "frequency_penalty": self.check_frequency_penalty,
            "max_tokens": self.check_max_tokens,
            "presence_penalty": self.check_presence_penalty,
            "stream_option": self.check_stream_option,
            "temperature": self.check_temperature,
            "top_p": self.check_top_p,
            "top_logprobs": self.check_top_logprobs,
            "api_key": self.check_api_key,
        }
        return [name for name, check in checks.items() if not check()]

    def check_params(self) -> bool:
        return not self.invalid_params()

    # ---- request / response ----

    def build_request_body(self, history: Sequence[Chat]) -> Dict[str, Any]:
        response_format = _or_default(self.response_format, DEFAULT_RESPONSE_FORMAT)
        stream_options = None
        if self.stream_option is not None:
            stream_options = {"include_usage": self.stream_option.include_usage}

        return {
            "messages": [{"content": chat.content, "role": chat.role} for chat in history],
            "model": self.model.value,
            "frequency_penalty": _or_default(self.frequency_penalty, DEFAULT_FREQUENCY_PENALTY),
            "max_tokens": _or_default(self.max_tokens, DEFAULT_MAX_TOKENS),
            "presence_penalty": _or_default(self.presence_penalty, DEFAULT_PRESENCE_PENALTY),
            "response_format": {"type": ResponseFormat(response_format).value},
            "stop": None,
            "stream": self.effective_stream,
            "stream_options": stream_options,
            "temperature": _or_default(self.temperature, DEFAULT_TEMPERATURE),
            "top_p": _or_default(self.top_p, DEFAULT_TOP_P),
            "tools": None,
            "tool_choice": "none",
            "logprobs": self.logprobs,
            "top_logprobs": self.top_logprobs,
        }

    async def send_request(self, history: Sequence[Chat]) -> Dict[str, Any]:
        """
        Validate options, POST the conversation once and return the parsed response.
        Usage counters are updated only when the response is complete.
        Raises DeepSeekError on failure; nothing is retried.
        """
        invalid = self.invalid_params()
        if invalid:
            logger.warning("DeepSeek request rejected, invalid params: %s", ", ".join(invalid))
            raise DeepSeekError(
                DeepSeekErrorType.REQUEST_PARAM,
                f"The parameters are not valid: {', '.join(invalid)}.",
            )

        payload = self.build_request_body(history)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        logger.debug("POST %s model=%s messages=%d", self.url, self.model.value, len(history))
        try:
            res = await self._get_client().post(self.url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.warning("DeepSeek request to %s failed: %r", self.url, e)
            raise DeepSeekError(DeepSeekErrorType.REQUEST, "Failed to send request.") from e

        if not res.is_success:
            detail = _error_message(res)
            logger.warning("DeepSeek returned HTTP %s: %s", res.status_code, detail)
            raise DeepSeekError(
                DeepSeekErrorType.REQUEST,
                f"Request failed with status: {res.status_code}, {detail}",
            )

        try:
            data = res.json()
        except ValueError as e:
            raise DeepSeekError(DeepSeekErrorType.REQUEST, "Failed to parse response text.") from e

        message_content(data)
        usage = Usage.from_response(data.get("usage"))

        self.last_usage = usage
        self.total_usage = self.total_usage + usage
        logger.info(
            "DeepSeek usage: prompt=%d completion=%d total=%d (cumulative %d)",
            usage.prompt_tokens,
            usage.completion_tokens,
            usage.total_tokens,
            self.total_usage.total_tokens,
        )
        return data


class DeepSeekClientBuilder:
    """Chained configuration for a DeepSeekClient, finished by ``build()``.

        client = (
            DeepSeekClient.builder(DEEPSEEK_API_URL, DeepSeekModel.CHAT)
            .api_key_from_env()
            .max_tokens(2048)
            .temperature(0.5)
            .build()
        )
    """

    def __init__(self, url: str, model: DeepSeekModel) -> None:
        self._url = url
        self._model = model
        self._options: Dict[str, Any] = {}

    def _set(self, name: str, value: Any) -> "DeepSeekClientBuilder":
        self._options[name] = value
        return self

    def api_key(self, api_key: Optional[str]) -> "DeepSeekClientBuilder":
        return self._set("api_key", api_key)

    def api_key_from_env(self, name: Optional[str] = None) -> "DeepSeekClientBuilder":
        return self._set("api_key", read_api_key_from_env(name))

    def api_key_from_file(self, path: str) -> "DeepSeekClientBuilder":
        return self._set("api_key", read_api_key_from_file(path))

    def frequency_penalty(self, value: Optional[float]) -> "DeepSeekClientBuilder":
        return self._set("frequency_penalty", value)

    def max_tokens(self, value: Optional[int]) -> "DeepSeekClientBuilder":
        return self._set("max_tokens", value)

    def presence_penalty(self, value: Optional[float]) -> "DeepSeekClientBuilder":
        return self._set("presence_penalty", value)

    def response_format(self, value: Optional[ResponseFormat]) -> "DeepSeekClientBuilder":
        return self._set("response_format", value)

    def stream(self, value: Optional[bool]) -> "DeepSeekClientBuilder":
        return self._set("stream", value)

    def stream_option(self, value: Optional[StreamOption]) -> "DeepSeekClientBuilder":
        return self._set("stream_option", value)

    def temperature(self, value: Optional[float]) -> "DeepSeekClientBuilder":
        return self._set("temperature", value)

    def top_p(self, value: Optional[float]) -> "DeepSeekClientBuilder":
        return self._set("top_p", value)

    def logprobs(self, value: bool) -> "DeepSeekClientBuilder":
        return self._set("logprobs", value)

    def top_logprobs(self, value: Optional[int]) -> "DeepSeekClientBuilder":
        return self._set("top_logprobs", value)

    def timeout(self, seconds: float) -> "DeepSeekClientBuilder":
        return self._set("timeout", seconds)

    def http_client(self, client: httpx.AsyncClient) -> "DeepSeekClientBuilder":
        return self._set("http_client", client)

    def build(self) -> DeepSeekClient:
        return DeepSeekClient(self._url, self._model, **self._options)
