import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import anthropic
import httpx
from pydantic import BaseModel

from feedback_python_backend.errors import UpstreamAnalysisError
from feedback_python_backend.instrumentation import track_api_call
from feedback_python_backend.services.llm_config import get_env_oracle_defaults, model_for_stage
from feedback_python_backend.services.oracle_schemas import OracleTool, validate_payload

logger = logging.getLogger("feedback_backend")

_CLIENT_CACHE: Dict[Tuple[str, str, float], Any] = {}
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-5-20250929"


class OracleError(Exception):
    """Transport failure, non-2xx status, missing tool call, or unparseable arguments."""


@dataclass
class StructuredRequest:
    """One forced-tool oracle call."""

    stage: str
    tool: OracleTool
    system: str
    prompt: str
    model: str
    max_tokens: int = 8000
    temperature: float = 0.3
    context: Dict[str, Any] = field(default_factory=dict)


def build_request(
    config: Dict[str, Any],
    stage: str,
    tool: OracleTool,
    system: str,
    prompt: str,
    context: Optional[Dict[str, Any]] = None,
) -> StructuredRequest:
    return StructuredRequest(
        stage=stage,
        tool=tool,
        system=system,
        prompt=prompt,
        model=model_for_stage(config, stage),
        max_tokens=int(config.get("max_tokens", 8000)),
        temperature=float(config.get("temperature", 0.3)),
        context=dict(context or {}),
    )


def _preview_text(value: Any, limit: int) -> str:
    text = str(value or "")
    if len(text) <= limit:
        return text
    return f"{text[:limit]}...<truncated {len(text) - limit} chars>"


def _tracking_context(oracle: Any, request: StructuredRequest) -> Dict[str, Any]:
    return {
        "survey_id": request.context.get("survey_id"),
        "session_id": request.context.get("session_id"),
        "feature": request.stage,
        "model": request.model,
    }


def extract_json_from_text(text: str) -> Any:
    if text is None:
        raise ValueError("Oracle response text is empty")

    # Strip chain-of-thought wrappers some gateway models emit
    normalized = re.sub(r"<think>.*?</think>", "", str(text), flags=re.IGNORECASE | re.DOTALL).strip()
    if not normalized:
        raise json.JSONDecodeError("No JSON object found", str(text), 0)

    try:
        return json.loads(normalized)
    except json.JSONDecodeError:
        pass

    if "```" in normalized:
        for fence in ("```json", "```"):
            if fence in normalized:
                snippet = normalized.split(fence, 1)[1]
                if "```" in snippet:
                    candidate = snippet.split("```", 1)[0].strip()
                    try:
                        return json.loads(candidate)
                    except json.JSONDecodeError:
                        continue

    # Decode the first valid JSON value from any object/array start
    decoder = json.JSONDecoder()
    for index, char in enumerate(normalized):
        if char not in "{[":
            continue
        try:
            decoded, _ = decoder.raw_decode(normalized[index:])
            return decoded
        except json.JSONDecodeError:
            continue

    raise json.JSONDecodeError("No JSON object found", normalized, 0)


class GatewayOracle:
    """OpenAI-compatible chat completions gateway with forced function calling."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 120,
        trace: bool = True,
        preview_chars: int = 280,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.trace = trace
        self.preview_chars = preview_chars
        self.transport = transport

    @track_api_call("oracle.gateway", extract_context=_tracking_context)
    async def _complete(self, request: StructuredRequest) -> Dict[str, Any]:
        payload = {
            "model": request.model,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.prompt},
            ],
            "tools": [request.tool.openai_tool()],
            "tool_choice": {"type": "function", "function": {"name": request.tool.name}},
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        url = f"{self.base_url}/v1/chat/completions"
        if self.trace:
            logger.info("[ORACLE API] POST %s model=%s tool=%s context=%s", url, request.model, request.tool.name, request.context)

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            try:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise OracleError(
                    f"Oracle returned {exc.response.status_code}: {_preview_text(exc.response.text, self.preview_chars)}"
                ) from exc
            except httpx.HTTPError as exc:
                raise OracleError(f"Oracle request failed: {exc}") from exc

        if self.trace:
            logger.info(
                "[ORACLE API] %s status=%s preview=%s",
                url,
                response.status_code,
                _preview_text(response.text, self.preview_chars),
            )
        try:
            return response.json()
        except ValueError as exc:
            raise OracleError("Oracle response body is not JSON") from exc

    async def invoke(self, request: StructuredRequest) -> Any:
        data = await self._complete(request)
        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise OracleError("Oracle response has no message") from exc
        if not isinstance(message, dict):
            raise OracleError(f"Oracle response message is not an object: {type(message).__name__}")

        tool_calls = message.get("tool_calls") or []
        try:
            if tool_calls:
                arguments = tool_calls[0]["function"]["arguments"]
                return json.loads(arguments) if isinstance(arguments, str) else arguments
            if message.get("content"):
                # Providers that ignore tools answer in plain content
                return extract_json_from_text(message["content"])
        except (KeyError, TypeError, json.JSONDecodeError) as exc:
            raise OracleError(f"Could not parse {request.tool.name} arguments: {exc}") from exc

        raise OracleError(f"No tool call in oracle response for {request.tool.name}")


class AnthropicOracle:
    """Anthropic Messages API with a forced tool_use block."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: float = 120,
        default_model: str = DEFAULT_ANTHROPIC_MODEL,
        trace: bool = True,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ) -> None:
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout_seconds)
        self.default_model = default_model
        self.trace = trace

    def _model(self, request: StructuredRequest) -> str:
        return request.model if request.model.startswith("claude") else self.default_model

    @track_api_call("oracle.anthropic", extract_context=_tracking_context)
    async def _create(self, request: StructuredRequest) -> Any:
        model = self._model(request)
        if self.trace:
            logger.info("[ORACLE API] anthropic model=%s tool=%s context=%s", model, request.tool.name, request.context)
        try:
            return await self.client.messages.create(
                model=model,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                system=request.system,
                messages=[{"role": "user", "content": request.prompt}],
                tools=[request.tool.anthropic_tool()],
                tool_choice={"type": "tool", "name": request.tool.name},
            )
        except anthropic.APIError as exc:
            raise OracleError(f"Anthropic request failed: {exc}") from exc

    async def invoke(self, request: StructuredRequest) -> Any:
        message = await self._create(request)
        for block in message.content:
            if getattr(block, "type", None) == "tool_use" and block.name == request.tool.name:
                return block.input
        raise OracleError(f"No tool_use block in oracle response for {request.tool.name}")


def get_oracle(config: Optional[Dict[str, Any]] = None):
    resolved = config or get_env_oracle_defaults()
    mode = str(resolved.get("mode", "gateway"))
    timeout = float(resolved.get("timeout_seconds", 120))

    if mode == "anthropic":
        key = (mode, str(resolved.get("anthropic_api_key") or ""), timeout)
        if key not in _CLIENT_CACHE:
            _CLIENT_CACHE[key] = AnthropicOracle(
                api_key=resolved.get("anthropic_api_key"),
                timeout_seconds=timeout,
                default_model=resolved.get("anthropic_model", DEFAULT_ANTHROPIC_MODEL),
                trace=bool(resolved.get("trace", True)),
            )
        return _CLIENT_CACHE[key]

    base_url = str(resolved.get("base_url", "")).rstrip("/")
    key = (mode, f"{base_url}|{resolved.get('api_key') or ''}", timeout)
    if key not in _CLIENT_CACHE:
        _CLIENT_CACHE[key] = GatewayOracle(
            base_url,
            api_key=resolved.get("api_key"),
            timeout_seconds=timeout,
            trace=bool(resolved.get("trace", True)),
            preview_chars=int(resolved.get("preview_chars", 280)),
        )
    return _CLIENT_CACHE[key]


async def call_tool(oracle: Any, request: StructuredRequest) -> BaseModel:
    """Invoke the oracle and validate its arguments; any failure becomes UpstreamAnalysisError."""
    try:
        payload = await oracle.invoke(request)
    except OracleError as exc:
        logger.error("[%s] oracle call failed context=%s: %s", request.stage, request.context, exc)
        raise UpstreamAnalysisError(str(exc), context={**request.context, "tool": request.tool.name}) from exc
    return validate_payload(request.tool, payload, request.context)
