"""
Completion gateway over OpenAI-compatible chat completion APIs.

Turns a provider configuration and a message sequence into a priced
completion result. Every call is independent: the gateway keeps no state
between requests and never retries.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import httpx
import openai
from openai import AsyncOpenAI

from ..core.errors import ConfigNotFound, GatewayError, ProtocolError, ProviderError
from ..core.pricing import PricingTable
from ..core.token_counter import TokenUsage
from ..storage.models import ProviderConfig
from ..storage.repository import ConfigStore

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.openai.com/v1/chat/completions"
DEFAULT_TIMEOUT = 60.0
VALID_ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class Message:
    """A single chat message."""
    role: str
    content: str

    def __post_init__(self):
        """Validate role and content."""
        if self.role not in VALID_ROLES:
            raise ValueError(f"role must be one of: {list(VALID_ROLES)}")
        if not isinstance(self.content, str):
            raise ValueError("content must be a string")

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


PROBE_MESSAGES = (
    Message(role="user", content='Hello, this is a test message. Please respond with "OK".'),
)

MessageLike = Union[Message, Mapping[str, str]]


@dataclass(frozen=True)
class CompletionResult:
    """Outcome of one completion request."""
    content: str
    usage: TokenUsage
    cost: float
    config_id: str = ""
    model: str = ""


def resolve_endpoint(config: ProviderConfig, default_endpoint: str = DEFAULT_ENDPOINT) -> str:
    """Endpoint a configuration sends its requests to."""
    return config.base_url or default_endpoint


def parse_completion_envelope(body: Any) -> Tuple[str, TokenUsage]:
    """Extract generated text and token usage from a response body.

    Args:
        body: Decoded JSON body of a successful response

    Returns:
        Tuple of (content, usage)

    Raises:
        ProtocolError: If the body does not have the expected shape
    """
    if not isinstance(body, dict):
        raise ProtocolError("Response body is not a JSON object")

    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ProtocolError("Response is missing 'choices'")

    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    if not isinstance(message, dict):
        raise ProtocolError("Response is missing 'choices[0].message'")

    content = message.get("content")
    if not isinstance(content, str):
        raise ProtocolError("Response is missing 'choices[0].message.content'")

    usage = body.get("usage")
    if not isinstance(usage, dict):
        raise ProtocolError("Response is missing 'usage'")

    counts = {}
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        value = usage.get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ProtocolError(f"Response has invalid 'usage.{key}': {value!r}")
        counts[key] = value

    return content, TokenUsage(
        prompt_tokens=counts["prompt_tokens"],
        completion_tokens=counts["completion_tokens"],
    )


def _provider_message(error: openai.APIStatusError) -> str:
    """Provider-supplied error message, falling back to the SDK's message."""
    body = error.body
    if isinstance(body, dict):
        nested = body.get("error")
        if isinstance(nested, dict) and isinstance(nested.get("message"), str):
            return nested["message"]
        if isinstance(body.get("message"), str):
            return body["message"]
    return error.message


class CompletionGateway:
    """Dispatches chat completions and prices the token usage.

    Configurations are resolved through the config store; costs come from
    the pricing table, with the configuration's flat rate as a fallback
    for models the table does not know.
    """

    def __init__(
        self,
        configs: ConfigStore,
        pricing: PricingTable,
        default_endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the gateway.

        Args:
            configs: Store used to resolve configuration ids
            pricing: Pricing table used to compute costs (read only)
            default_endpoint: Endpoint for configs without a base_url
            timeout: Default per-request timeout in seconds

        Raises:
            ValueError: If default_endpoint is empty or timeout is not positive
        """
        if not default_endpoint or not default_endpoint.strip():
            raise ValueError("default_endpoint is required and cannot be empty")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        self.configs = configs
        self.pricing = pricing
        self.default_endpoint = default_endpoint
        self.timeout = timeout

    async def complete(
        self,
        config_id: str,
        messages: Sequence[MessageLike],
        timeout: Optional[float] = None,
    ) -> CompletionResult:
        """Send messages using a stored configuration.

        Args:
            config_id: Id of the configuration to use
            messages: Chat messages to send
            timeout: Request timeout in seconds (defaults to the gateway's)

        Returns:
            CompletionResult with generated text, usage and cost

        Raises:
            ConfigNotFound: If config_id is unknown; nothing is sent
            ProviderError: On non-2xx responses, transport failures or timeouts
            ProtocolError: If a 2xx response has an unexpected body
        """
        config = self.configs.get(config_id)
        if config is None:
            raise ConfigNotFound(config_id)
        return await self.complete_config(config, messages, timeout=timeout)

    async def complete_config(
        self,
        config: ProviderConfig,
        messages: Sequence[MessageLike],
        timeout: Optional[float] = None,
    ) -> CompletionResult:
        """Send messages using a configuration that need not be stored.

        Raises the same errors as ``complete``, apart from ConfigNotFound.
        """
        payload = _normalize_messages(messages)
        if not payload:
            raise ValueError("messages is required and cannot be empty")

        endpoint = resolve_endpoint(config, self.default_endpoint)
        request_timeout = timeout if timeout is not None else self.timeout
        logger.info("Dispatching completion for %s (model=%s) to %s", config.id, config.model, endpoint)

        client = AsyncOpenAI(
            api_key=config.api_key,
            timeout=request_timeout,
            max_retries=0,
        )
        try:
            # Absolute URL: the SDK posts to the endpoint exactly as configured
            response = await client.post(
                endpoint,
                body={
                    "model": config.model,
                    "messages": payload,
                    "max_tokens": config.max_tokens,
                    "temperature": config.temperature,
                },
                cast_to=httpx.Response,
            )
            body = response.json()
        except openai.APIStatusError as e:
            raise ProviderError(_provider_message(e), status_code=e.status_code) from e
        except openai.APITimeoutError as e:
            raise ProviderError(f"Request timed out after {request_timeout}s") from e
        except openai.APIConnectionError as e:
            raise ProviderError(str(e)) from e
        except ValueError as e:
            raise ProtocolError(f"Response body is not valid JSON: {e}") from e
        finally:
            await client.close()

        content, usage = parse_completion_envelope(body)
        cost = self.estimate_cost(config, usage)
        logger.debug("Completion for %s used %d tokens, cost %.6f", config.id, usage.total_tokens, cost)

        return CompletionResult(
            content=content,
            usage=usage,
            cost=cost,
            config_id=config.id,
            model=config.model,
        )

    async def test_connection(self, config: ProviderConfig, timeout: Optional[float] = None) -> bool:
        """Probe a candidate configuration with a canned message.

        Returns:
            True if the probe succeeds, False on any gateway error
        """
        try:
            await self.complete_config(config, PROBE_MESSAGES, timeout=timeout)
        except GatewayError as e:
            logger.warning("Connection test failed for %s: %s", config.name, e)
            return False
        return True

    async def complete_many(
        self,
        config_ids: Sequence[str],
        messages: Sequence[MessageLike],
        timeout: Optional[float] = None,
    ) -> Dict[str, Union[CompletionResult, GatewayError]]:
        """Send the same messages to several configurations concurrently.

        Returns:
            For each id, its CompletionResult or the GatewayError it raised
        """
        ids = list(dict.fromkeys(config_ids))
        outcomes = await asyncio.gather(
            *(self.complete(config_id, messages, timeout=timeout) for config_id in ids),
            return_exceptions=True,
        )

        results: Dict[str, Union[CompletionResult, GatewayError]] = {}
        for config_id, outcome in zip(ids, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, GatewayError):
                raise outcome
            results[config_id] = outcome
        return results

    def estimate_cost(self, config: ProviderConfig, usage: TokenUsage) -> float:
        """Price token usage for a configuration.

        Uses the pricing table when it knows the model, otherwise the
        configuration's flat per-1K rate, otherwise zero.
        """
        if self.pricing.get_pricing(config.model) is not None:
            return self.pricing.calculate_cost(
                config.model, usage.prompt_tokens, usage.completion_tokens
            )
        if config.cost_per_1k_tokens is not None:
            return usage.total_tokens / 1000 * config.cost_per_1k_tokens
        return 0.0


def _normalize_messages(messages: Sequence[MessageLike]) -> List[Dict[str, str]]:
    normalized = []
    for message in messages:
        if not isinstance(message, Message):
            message = Message(role=message["role"], content=message["content"])
        normalized.append(message.to_dict())
    return normalized
