# brain_client.py — Language-model client behind the Brain assistant
"""
Talks to any OpenAI-compatible /chat/completions endpoint (OpenAI, Groq or a
local server). Provider and key are resolved on every call so tests and
operators can change the environment without a restart.

Without an API key the client answers with a stub reply instead of failing,
which keeps local development and the test suite offline.
"""
import os
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from exceptions import UpstreamFailure
from telemetry import span

logger = logging.getLogger("taskflow.brain")

LLM_PROVIDERS = {
    "openai": {"base_url": "https://api.openai.com/v1", "env_key": "OPENAI_API_KEY", "default_model": "gpt-4o"},
    "groq": {"base_url": "https://api.groq.com/openai/v1", "env_key": "GROQ_API_KEY", "default_model": "llama-3.3-70b-versatile"},
    "local": {"base_url": None, "env_key": None, "default_model": "llama3.1:8b"},
}
REQUEST_TIMEOUT = float(os.getenv("BRAIN_TIMEOUT_SECONDS", "60"))

DEFAULT_SYSTEM_PROMPT = (
    "You are an AI assistant integrated into TaskFlow, a task management application. "
    "Help users with task planning, productivity advice, project management, and general "
    "assistance. Be concise, helpful, and professional."
)
EMPTY_REPLY = "I apologize, but I couldn't generate a response."
ANALYSIS_FALLBACK = "Unable to analyze productivity data at this time."


@dataclass
class BrainReply:
    message: str
    model_used: str
    usage: Optional[Dict[str, int]] = None


@dataclass
class _Provider:
    key: str
    base_url: str
    model: str
    api_key: Optional[str] = field(default=None, repr=False)

    @property
    def is_stub(self) -> bool:
        return self.key == "stub"


def _resolve_provider() -> _Provider:
    """BRAIN_PROVIDER wins when its key is present, then openai, groq, local."""
    preferred = os.getenv("BRAIN_PROVIDER", "").lower()
    model_override = os.getenv("BRAIN_MODEL") or None
    order = [preferred] if preferred in LLM_PROVIDERS else []
    order += [p for p in ("openai", "groq", "local") if p not in order]

    for pk in order:
        pc = LLM_PROVIDERS[pk]
        if pk == "local":
            base_url = os.getenv("LOCAL_LLM_URL")
            if not base_url:
                continue
            return _Provider(pk, base_url.rstrip("/"), model_override or pc["default_model"], "local")
        api_key = os.getenv(pc["env_key"])
        if api_key:
            return _Provider(pk, pc["base_url"], model_override or pc["default_model"], api_key)
    return _Provider("stub", "", model_override or "stub-model")


async def _chat_completion(
    messages: List[Dict[str, str]],
    max_tokens: int = 1000,
    temperature: float = 0.7,
    json_mode: bool = False,
) -> Dict[str, Any]:
    """One /chat/completions round trip.

    Returns {"content", "usage", "model_used"}; any transport or HTTP error
    becomes UpstreamFailure.
    """
    provider = _resolve_provider()
    if provider.is_stub:
        last = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
        return {"content": f"[Stub] Brain reply to: {last[:200]}", "usage": None, "model_used": provider.model}

    payload: Dict[str, Any] = {
        "model": provider.model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}

    try:
        with span("brain.chat_completion", provider=provider.key, model=provider.model):
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                resp = await client.post(
                    f"{provider.base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {provider.api_key}", "Content-Type": "application/json"},
                    json=payload,
                )
                resp.raise_for_status()
                data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"LLM call failed ({provider.key}/{provider.model}): {e}")
        raise UpstreamFailure("Failed to communicate with AI assistant. Please try again.")

    choice = (data.get("choices") or [{}])[0]
    return {
        "content": (choice.get("message") or {}).get("content") or "",
        "usage": data.get("usage"),
        "model_used": provider.model,
    }


async def chat_with_brain(history: List[Dict[str, Any]], system_prompt: Optional[str] = None) -> BrainReply:
    """Send the whole conversation; raises UpstreamFailure when the model is unreachable."""
    messages = [{"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT}]
    messages += [{"role": m["role"], "content": m["content"]} for m in history]

    result = await _chat_completion(messages, max_tokens=1000, temperature=0.7)
    usage = result.get("usage")
    if usage:
        usage = {k: usage.get(k, 0) for k in ("prompt_tokens", "completion_tokens", "total_tokens")}
    return BrainReply(
        message=result["content"] or EMPTY_REPLY,
        model_used=result["model_used"],
        usage=usage,
    )


def _parse_suggestions(content: str) -> List[str]:
    parsed = json.loads(content or "{}")
    if isinstance(parsed, list):
        items = parsed
    else:
        items = parsed.get("suggestions") or parsed.get("subtasks") or []
    return [str(item) for item in items if item]


async def generate_task_suggestions(
    task_title: str,
    description: Optional[str] = None,
    workspace_context: Optional[str] = None,
) -> List[str]:
    """3-5 subtasks for a task; an empty list whenever anything goes wrong."""
    prompt = f'Based on this task: "{task_title}"'
    if description:
        prompt += f' with description: "{description}"'
    if workspace_context:
        prompt += f' in workspace context: "{workspace_context}"'
    prompt += (
        ", suggest 3-5 actionable subtasks or steps. "
        'Return a JSON object of the form {"suggestions": ["..."]}.'
    )
    messages = [
        {"role": "system", "content": "You are a task planning expert. Generate practical, actionable subtasks. Respond with JSON only."},
        {"role": "user", "content": prompt},
    ]

    try:
        result = await _chat_completion(messages, max_tokens=500, temperature=0.7, json_mode=True)
        return _parse_suggestions(result["content"])
    except (UpstreamFailure, ValueError, AttributeError) as e:
        logger.warning(f"Task suggestions unavailable: {e}")
        return []


async def analyze_productivity(snapshot: Dict[str, Any]) -> str:
    """Short narrative over an analytics snapshot; a fixed sentence on failure."""
    prompt = (
        f"Analyze this productivity data: {json.dumps(snapshot)}. Provide insights, trends, "
        "and actionable recommendations for improvement. Keep it concise and actionable."
    )
    messages = [
        {"role": "system", "content": "You are a productivity analyst. Provide clear, actionable insights based on task management data."},
        {"role": "user", "content": prompt},
    ]
    try:
        result = await _chat_completion(messages, max_tokens=300, temperature=0.7)
    except UpstreamFailure:
        return ANALYSIS_FALLBACK
    return result["content"] or ANALYSIS_FALLBACK
