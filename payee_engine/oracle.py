"""
LLM oracle client.

The oracle is consulted only when cache and fuzzy matching run out. Structured
calls take a pydantic model as the schema and return a validated instance, so
callers never poke at free-form JSON.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

import anthropic
from pydantic import BaseModel, ValidationError

from config.logging import logger
from config.settings import settings
from payee_engine.errors import ConfigError, OracleError, OracleResponseError

T = TypeVar("T", bound=BaseModel)

_TRAILING_COMMA = re.compile(r",\s*([}\]])")

JSON_INSTRUCTIONS = """Respond with a single JSON object and nothing else (no markdown, no commentary).
The object must validate against this JSON schema:
{schema}"""


def parse_json_response(content: str) -> Any:
    """
    Parse JSON out of an LLM reply.

    Handles ```json fences, trailing commas and prose around the payload.

    Raises:
        OracleResponseError: If no JSON value can be recovered
    """
    text = (content or "").strip()
    if not text:
        raise OracleResponseError("Oracle returned an empty response")

    # Handle markdown code blocks
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()

    attempts = [text, _TRAILING_COMMA.sub(r"\1", text)]
    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = text.find(opener), text.rfind(closer)
        if start != -1 and end > start:
            attempts.append(_TRAILING_COMMA.sub(r"\1", text[start:end + 1]))

    for candidate in attempts:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    raise OracleResponseError(
        "Oracle response is not valid JSON", {"response": text[:500]}
    )


@dataclass(frozen=True)
class OracleCapabilities:
    web_search: bool
    structured_output: bool


class OracleClient(ABC):
    """Text and structured generation against some LLM provider."""

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    def capabilities(self) -> OracleCapabilities:
        ...

    @abstractmethod
    def generate_text(
        self,
        prompt: str,
        system: Optional[str] = None,
        web_search: bool = False,
    ) -> str:
        """
        Raises:
            ConfigError: If the client is not configured
            OracleError: On transport or provider failure
            OracleResponseError: If the reply has no text
        """

    def generate_object(
        self,
        prompt: str,
        schema: type[T],
        system: Optional[str] = None,
        web_search: bool = False,
    ) -> T:
        """
        Generate a reply and validate it against a pydantic model.

        Raises:
            OracleResponseError: If the reply does not parse or validate
        """
        instructions = JSON_INSTRUCTIONS.format(
            schema=json.dumps(schema.model_json_schema(), indent=2)
        )
        system = f"{system}\n\n{instructions}" if system else instructions

        text = self.generate_text(prompt, system=system, web_search=web_search)
        data = parse_json_response(text)
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise OracleResponseError(
                f"Oracle response does not match {schema.__name__}",
                {"errors": e.errors(include_url=False), "response": text[:500]},
            ) from e


class AnthropicOracle(OracleClient):
    """Oracle backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        web_search_enabled: Optional[bool] = None,
        client: Optional[anthropic.Anthropic] = None,
    ):
        self.api_key = settings.ANTHROPIC_API_KEY if api_key is None else api_key
        self.model = model or settings.ORACLE_MODEL
        self.max_tokens = max_tokens or settings.ORACLE_MAX_TOKENS
        self.web_search_enabled = (
            settings.ORACLE_WEB_SEARCH if web_search_enabled is None else web_search_enabled
        )
        self._client = client

    @property
    def client(self) -> anthropic.Anthropic:
        if self._client is None:
            if not self.api_key:
                raise ConfigError("ANTHROPIC_API_KEY is not configured")
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def is_configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def capabilities(self) -> OracleCapabilities:
        return OracleCapabilities(web_search=self.web_search_enabled, structured_output=False)

    def generate_text(
        self,
        prompt: str,
        system: Optional[str] = None,
        web_search: bool = False,
    ) -> str:
        if not self.is_configured():
            raise ConfigError("ANTHROPIC_API_KEY is not configured")

        kwargs = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        if web_search:
            if self.web_search_enabled:
                kwargs["tools"] = [{
                    "type": "web_search_20250305",
                    "name": "web_search",
                    "max_uses": settings.ORACLE_WEB_SEARCH_MAX_USES,
                }]
            else:
                logger.warning("Web search requested but disabled, continuing without it")

        try:
            response = self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise OracleError(f"Anthropic request failed: {e}", {"model": self.model}) from e

        # Web search replies interleave tool blocks with text blocks
        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ).strip()
        if not text:
            raise OracleResponseError(
                "Oracle returned no text content", {"stop_reason": response.stop_reason}
            )
        return text
