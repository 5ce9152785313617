from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

import requests
from pydantic import BaseModel, ValidationError

from ..db_models import WarrantyDB
from ..errors import GenerationFailed, UpstreamUnavailable
from ..models import ClaimEmailDraft, SeverityVerdict, TroubleshootingSteps, UserContact
from .audit import log_redacted

logger = logging.getLogger(__name__)

_LLM_PROVIDER = os.getenv("LLM_PROVIDER", "none").lower()
_OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434")
_OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1")
_LLM_TIMEOUT_SEC = float(os.getenv("LLM_TIMEOUT_SEC", "30"))

M = TypeVar("M", bound=BaseModel)

_DECODER = json.JSONDecoder()


def _configured() -> Tuple[bool, Optional[str]]:
    if _LLM_PROVIDER == "none":
        return False, "AI provider is not configured (LLM_PROVIDER=none)"
    if _LLM_PROVIDER != "ollama":
        return False, f"Unsupported LLM_PROVIDER: {_LLM_PROVIDER}"
    return True, None


def _post_ollama(path: str, payload: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    try:
        resp = requests.post(
            f"{_OLLAMA_URL.rstrip('/')}{path}",
            json=payload,
            timeout=_LLM_TIMEOUT_SEC,
        )
    except requests.exceptions.Timeout:
        return None, f"Ollama call timed out after {_LLM_TIMEOUT_SEC:g}s"
    except requests.exceptions.RequestException as exc:
        return None, f"Ollama call failed: {exc}"
    if resp.status_code != 200:
        return None, f"Ollama error {resp.status_code}: {resp.text[:200]}"
    try:
        return resp.json(), None
    except ValueError as exc:
        return None, f"Ollama response parse failed: {exc}"


def chat(messages: List[Dict[str, str]], temperature: float = 0.7) -> str:
    """Multi-turn call; raises UpstreamUnavailable on any transport or provider problem."""
    ok, err = _configured()
    if not ok:
        raise UpstreamUnavailable(err)
    data, err = _post_ollama(
        "/api/chat",
        {
            "model": _OLLAMA_MODEL,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature},
        },
    )
    if err:
        raise UpstreamUnavailable(err)
    text = ((data or {}).get("message") or {}).get("content") or ""
    if not text.strip():
        raise UpstreamUnavailable("AI provider returned an empty reply")
    log_redacted("llm_call", f"engine=ollama model={_OLLAMA_MODEL} reply={text}", keep=64)
    return text.strip()


def generate_text(prompt: str, json_mode: bool = False) -> str:
    ok, err = _configured()
    if not ok:
        raise UpstreamUnavailable(err)
    payload: Dict[str, Any] = {"model": _OLLAMA_MODEL, "prompt": prompt, "stream": False}
    if json_mode:
        payload["format"] = "json"
    data, err = _post_ollama("/api/generate", payload)
    if err:
        raise UpstreamUnavailable(err)
    text = (data or {}).get("response") or ""
    if not text.strip():
        raise UpstreamUnavailable("AI provider returned an empty reply")
    log_redacted("llm_call", f"engine=ollama model={_OLLAMA_MODEL} prompt={prompt}", keep=64)
    return text


def parse_json_object(text: str) -> Dict[str, Any]:
    """Pull the first JSON object out of a model reply (code fences and prose tolerated)."""
    text = text or ""
    start = text.find("{")
    if start < 0:
        raise GenerationFailed("AI reply did not contain a JSON object")
    last_error = None
    # a brace in leading prose is skipped; trailing text after the object is ignored
    while start >= 0:
        try:
            parsed, _ = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError as exc:
            last_error = exc
            start = text.find("{", start + 1)
            continue
        if isinstance(parsed, dict):
            return parsed
        start = text.find("{", start + 1)
    detail = f": {last_error.msg}" if last_error else ""
    raise GenerationFailed(f"AI reply was not valid JSON{detail}")


def parse_structured(text: str, model: Type[M]) -> M:
    try:
        return model.model_validate(parse_json_object(text))
    except ValidationError as exc:
        raise GenerationFailed(f"AI reply did not match {model.__name__}: {exc.error_count()} errors") from exc


# prompts ---------------------------------------------------------------------------


def _diagnostic_system_prompt(warranty: WarrantyDB) -> str:
    return (
        "You are a warranty claim assistant helping a user diagnose a product issue.\n"
        f"Product: {warranty.product_name}\n"
        f"Brand: {warranty.brand or 'N/A'}\n"
        f"Category: {warranty.category or 'General'}\n"
        f"Purchase date: {warranty.purchase_date}\n"
        f"Warranty duration: {warranty.coverage_months} months\n"
        "Ask one clarifying question at a time, suggest safe troubleshooting steps, "
        "say whether the issue looks covered, and recommend filing a claim when it does. "
        "Keep replies to 2-3 sentences in plain language."
    )


def _transcript(history: Sequence[Dict[str, Any]]) -> str:
    return "\n".join(f"{m.get('role')}: {m.get('content')}" for m in history)


def diagnostic_reply(history: Sequence[Dict[str, Any]], warranty: WarrantyDB) -> str:
    messages = [{"role": "system", "content": _diagnostic_system_prompt(warranty)}]
    messages.extend({"role": m["role"], "content": m["content"]} for m in history)
    return chat(messages)


def assess_severity(issue_description: str, history: Sequence[Dict[str, Any]]) -> SeverityVerdict:
    prompt = (
        "Analyze the severity of this product issue.\n\n"
        f"Issue: {issue_description}\n\n"
        f"Conversation:\n{_transcript(history)}\n\n"
        'Respond with JSON only: {"severity": "low|medium|high", "recommendClaim": true|false, '
        '"reasoning": "..."}'
    )
    return parse_structured(generate_text(prompt, json_mode=True), SeverityVerdict)


def compose_claim_email(
    warranty: WarrantyDB,
    issue_description: str,
    troubleshooting_steps: Sequence[str],
    conversation_summary: str,
    user: UserContact,
) -> ClaimEmailDraft:
    steps = "\n".join(f"{i}. {s}" for i, s in enumerate(troubleshooting_steps, start=1)) or "None"
    prompt = (
        "Write a professional warranty claim email to the manufacturer.\n\n"
        f"Product: {warranty.product_name}\n"
        f"Brand: {warranty.brand or 'N/A'}\n"
        f"Serial number: {warranty.serial_number or 'N/A'}\n"
        f"Purchase date: {warranty.purchase_date}\n"
        f"Warranty duration: {warranty.coverage_months} months\n"
        f"Retailer: {warranty.retailer or 'N/A'}\n\n"
        f"Issue description:\n{issue_description}\n\n"
        f"Troubleshooting steps attempted:\n{steps}\n\n"
        f"Conversation summary:\n{conversation_summary or 'N/A'}\n\n"
        f"Customer: {user.name or 'N/A'}, {user.email or 'N/A'}, {user.phone or 'N/A'}\n\n"
        "Also rate the severity as low, medium or high.\n"
        'Respond with JSON only: {"subject": "...", "body": "...", "severity": "low|medium|high"}'
    )
    return parse_structured(generate_text(prompt, json_mode=True), ClaimEmailDraft)


def troubleshooting_steps(category: Optional[str], issue_description: str) -> List[str]:
    prompt = (
        "Give 3-5 safe troubleshooting steps a non-technical user can try.\n"
        f"Product category: {category or 'General'}\n"
        f"Issue: {issue_description}\n"
        'Respond with JSON only: {"steps": ["...", "..."]}'
    )
    parsed = parse_structured(generate_text(prompt, json_mode=True), TroubleshootingSteps)
    return [s.strip() for s in parsed.steps if s and s.strip()]


def health() -> Tuple[bool, str, Optional[str]]:
    ok, err = _configured()
    if not ok:
        return False, err, None
    try:
        resp = requests.get(f"{_OLLAMA_URL.rstrip('/')}/api/tags", timeout=5)
        if resp.status_code != 200:
            return False, f"Ollama health error {resp.status_code}", _OLLAMA_MODEL
        return True, "Ollama reachable", _OLLAMA_MODEL
    except requests.exceptions.RequestException as exc:
        return False, f"Ollama unreachable: {exc}", _OLLAMA_MODEL
