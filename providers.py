"""Gateway to the hosted language models used for generation and grading.

Every call maps to exactly one upstream request. There is no retry and no
substitute content: missing credentials, HTTP failures and empty completions
are raised to the caller.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import uuid4

import requests

import db
from env_validation import PROVIDER_KEY_VARS, get_env_float, get_env_int
from errors import EmptyResponseError, ProviderError, UpstreamError

logger = logging.getLogger(__name__)

_LLM_LOGGER = logging.getLogger("philo.llm")
if not _LLM_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _LLM_LOGGER.addHandler(_handler)
_LLM_LOGGER.setLevel(logging.INFO)
_LLM_LOGGER.propagate = False

DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", "openai")
ANTHROPIC_VERSION = "2023-06-01"


@dataclass(frozen=True)
class ProviderSpec:
    name: str
    label: str
    api_url: str
    model_id: str
    wire_format: str  # "chat_completions" or "anthropic_messages"

    @property
    def key_env(self) -> str:
        return PROVIDER_KEY_VARS[self.name]


def _spec(name: str, label: str, url: str, model_id: str, wire_format: str = "chat_completions") -> ProviderSpec:
    prefix = name.upper()
    return ProviderSpec(
        name=name,
        label=label,
        api_url=os.getenv(f"{prefix}_API_URL", url),
        model_id=os.getenv(f"{prefix}_MODEL_ID", model_id),
        wire_format=wire_format,
    )


PROVIDERS: Dict[str, ProviderSpec] = {
    "deepseek": _spec("deepseek", "AI1 (DeepSeek)", "https://api.deepseek.com/chat/completions", "deepseek-chat"),
    "openai": _spec("openai", "AI2 (GPT-4)", "https://api.openai.com/v1/chat/completions", "gpt-4o"),
    "anthropic": _spec(
        "anthropic",
        "AI3 (Claude)",
        "https://api.anthropic.com/v1/messages",
        "claude-sonnet-4-20250514",
        "anthropic_messages",
    ),
    "perplexity": _spec(
        "perplexity",
        "AI4 (Perplexity)",
        "https://api.perplexity.ai/chat/completions",
        "llama-3.1-sonar-small-128k-online",
    ),
}

_MODEL_ALIASES = {
    "ai1": "deepseek",
    "ai2": "openai",
    "ai3": "anthropic",
    "ai4": "perplexity",
    "gpt-4o": "openai",
    "gpt-4": "openai",
    "gpt": "openai",
    "claude": "anthropic",
    "sonar": "perplexity",
}


def resolve_model(model_name: Optional[str]) -> ProviderSpec:
    key = (model_name or DEFAULT_MODEL).strip().lower()
    key = _MODEL_ALIASES.get(key, key)
    spec = PROVIDERS.get(key)
    if spec is None:
        raise ProviderError(f"Unsupported model: {model_name}")
    return spec


def available_models() -> list[dict[str, Any]]:
    return [
        {"name": spec.name, "label": spec.label, "configured": bool(os.getenv(spec.key_env))}
        for spec in PROVIDERS.values()
    ]


def _strip_think(text: str) -> str:
    return re.sub(r"<think>.*?</think>", "", text or "", flags=re.DOTALL).strip()


def _coerce_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _build_request(spec: ProviderSpec, api_key: str, prompt: str, system_prompt: str, max_tokens: int):
    temperature = get_env_float("LLM_TEMPERATURE", 0.7)
    if spec.wire_format == "anthropic_messages":
        payload: Dict[str, Any] = {
            "model": spec.model_id,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            payload["system"] = system_prompt
        headers = {
            "Content-Type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        return payload, headers

    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    payload = {
        "model": spec.model_id,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    headers = {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}
    return payload, headers


def _extract_content(spec: ProviderSpec, data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    if spec.wire_format == "anthropic_messages":
        blocks = data.get("content") or []
        parts = [
            str(block.get("text") or "")
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text"
        ]
        return "".join(parts)
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    return str(message.get("content") or choices[0].get("text") or "")


def _usage(data: Any) -> tuple[Optional[int], Optional[int]]:
    usage = data.get("usage") if isinstance(data, dict) else None
    if not isinstance(usage, dict):
        return None, None
    tokens_in = _coerce_int(usage.get("prompt_tokens") or usage.get("input_tokens"))
    tokens_out = _coerce_int(usage.get("completion_tokens") or usage.get("output_tokens"))
    return tokens_in, tokens_out


def generate(
    model_name: Optional[str],
    prompt: str,
    system_prompt: str = "",
    *,
    user_id: Optional[str] = None,
    prompt_kind: Optional[str] = None,
    max_tokens: Optional[int] = None,
) -> str:
    """Send ``prompt`` to the provider behind ``model_name`` and return its raw text."""

    spec = resolve_model(model_name)
    api_key = os.getenv(spec.key_env)
    if not api_key:
        raise ProviderError(
            f"{spec.label} is not available: {spec.key_env} is not configured",
        )

    limit = int(max_tokens) if max_tokens else get_env_int("LLM_MAX_TOKENS", 4000)
    payload, headers = _build_request(spec, api_key, prompt, system_prompt, limit)

    request_id = str(uuid4())
    outcome = "ok"
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    start = time.perf_counter()
    try:
        try:
            response = requests.post(
                spec.api_url,
                json=payload,
                headers=headers,
                timeout=get_env_float("LLM_TIMEOUT", 90.0),
            )
        except requests.RequestException as exc:
            outcome = "transport_error"
            logger.warning("%s request failed: %s", spec.name, exc)
            raise UpstreamError(f"{spec.label} request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            outcome = f"http_{response.status_code}"
            body = (response.text or "")[:300]
            logger.warning("%s returned HTTP %s: %s", spec.name, response.status_code, body)
            raise UpstreamError(
                f"{spec.label} API error: {response.status_code}",
                upstream_status=response.status_code,
                detail=body,
            )

        try:
            data = response.json()
        except ValueError as exc:
            outcome = "invalid_body"
            raise UpstreamError(
                f"{spec.label} returned a non-JSON body",
                upstream_status=response.status_code,
            ) from exc

        tokens_in, tokens_out = _usage(data)
        content = _strip_think(_extract_content(spec, data))
        if not content:
            outcome = "empty"
            logger.error("Empty response from %s", spec.name)
            raise EmptyResponseError(f"Empty response from {spec.label}")
        return content
    finally:
        latency_ms = int((time.perf_counter() - start) * 1000)
        try:
            db.record_llm_metric(
                user_id,
                spec.name,
                spec.model_id,
                latency_ms,
                tokens_in,
                tokens_out,
                prompt_kind=prompt_kind,
                outcome=outcome,
            )
        except Exception as exc:
            logger.debug("llm metric not recorded: %s", exc)
        _LLM_LOGGER.info(
            json.dumps(
                {
                    "event": "llm_call",
                    "request_id": request_id,
                    "user_id": user_id,
                    "provider": spec.name,
                    "model": spec.model_id,
                    "prompt_kind": prompt_kind or "default",
                    "latency_ms": latency_ms,
                    "tokens_in": tokens_in,
                    "tokens_out": tokens_out,
                    "outcome": outcome,
                },
                ensure_ascii=False,
            )
        )
