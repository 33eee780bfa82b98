"""Vision model access for ticket reading."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol


class VisionRefusal(RuntimeError):
    pass


class VisionClient(Protocol):
    def vision_json(self, *, prompt: str, data_url: str, model: str, schema: dict) -> Any:
        """Return JSON object matching schema."""


_REFUSAL_MARKERS = ("can't assist", "cannot assist", "i'm sorry", "unable to help")


def _strip_code_fences(text: str) -> str:
    t = text.strip()
    if t.startswith("```"):
        t = t.strip("`")
        t = t.replace("json\n", "", 1).strip()
    return t


def ticket_instruction(schema: dict) -> str:
    """User-turn text naming the fields the schema asks for."""

    fields = [f for f in schema.get("schema", {}).get("required", []) if f != "confidence"]
    if not fields:
        return "Read this poker tournament ticket."
    return (
        "Read this poker tournament ticket and fill in: "
        + ", ".join(fields)
        + ". Use null for anything that is not printed on it."
    )


def _refusal_text(message: Any) -> Optional[str]:
    refusal = getattr(message, "refusal", None)
    if refusal:
        return refusal
    lowered = (message.content or "").lower()
    if any(m in lowered for m in _REFUSAL_MARKERS):
        return message.content
    return None


@dataclass
class OpenAIVisionClient:
    """Live client using the openai python package."""

    # Below the engine's OCR budget so a stuck request does not outlive it.
    timeout: float = 40.0
    max_retries: int = 1

    def vision_json(self, *, prompt: str, data_url: str, model: str, schema: dict) -> Dict[str, Any]:
        try:
            from openai import OpenAI
        except Exception as e:  # pragma: no cover
            raise RuntimeError("openai python package not installed. Run: pip install -e .") from e

        client = OpenAI(timeout=self.timeout, max_retries=self.max_retries)
        resp = client.chat.completions.create(
            model=model,
            response_format={"type": "json_schema", "json_schema": schema},
            messages=[
                # System messages can only contain text; the ticket goes in the user message.
                {"role": "system", "content": prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": ticket_instruction(schema)},
                        {"type": "image_url", "image_url": {"url": data_url, "detail": "high"}},
                    ],
                },
            ],
            temperature=0,
        )

        message = resp.choices[0].message
        refusal = _refusal_text(message)
        if refusal:
            raise VisionRefusal(refusal)

        text = (message.content or "").strip()
        if not text:
            raise RuntimeError("Model returned empty response")

        t = _strip_code_fences(text)
        try:
            obj = json.loads(t)
        except json.JSONDecodeError as e:
            raise RuntimeError(f"Model did not return valid JSON. Raw output:\n{t}") from e
        if not isinstance(obj, dict):
            raise RuntimeError(f"Expected a JSON object for {schema.get('name', 'ticket')}, got {type(obj).__name__}")
        return obj
