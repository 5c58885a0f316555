import json
import logging
import re
from typing import Any

import requests
from pydantic import BaseModel, ValidationError

from processing.prompts import SUMMARY_SYSTEM_PROMPT, SUMMARY_USER_PROMPT

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT_CHARS = 100_000

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```\s*$")


class Topic(BaseModel):
    title: str
    summary: str = ""
    action_items: list[Any] = []


class SummaryJSON(BaseModel):
    title: str
    participants: list[str] = []
    topics: list[Topic] = []
    key_decisions: list[str] = []
    next_steps: list[str] = []
    tone: str = "professional"
    overall_summary: str


def _excerpt(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def fallback_summary_json(transcript: str) -> dict:
    return SummaryJSON(
        title="Meeting Summary",
        overall_summary=transcript[:300] + "...",
    ).model_dump()


def fallback_summary_markdown(transcript: str) -> str:
    return f"# Meeting Summary\n\n{transcript[:500]}..."


def error_fallback(transcript: str, reason: str) -> dict:
    """Summary used when the model output is unusable or the provider call failed."""
    summary_json = SummaryJSON(
        title="Meeting Summary",
        overall_summary=_excerpt(transcript, 500),
        topics=[Topic(title="Discussion", summary="Full transcript available")],
    ).model_dump()
    summary_markdown = (
        "# Meeting Summary\n\n"
        "## Transcript\n"
        f"{_excerpt(transcript, 1000)}\n\n"
        "---\n"
        f"*Note: AI summarization encountered an error: {reason}*"
    )
    return {"summaryJSON": summary_json, "summaryMarkdown": summary_markdown}


def strip_code_fences(content: str) -> str:
    content = _FENCE_START.sub("", content.strip())
    return _FENCE_END.sub("", content).strip()


def extract_json_object(content: str) -> str | None:
    """Return the first balanced ``{...}`` substring, ignoring braces inside strings."""
    start = content.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(content)):
            ch = content[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return content[start : i + 1]
        start = content.find("{", start + 1)
    return None


def _validate_summary_json(value) -> dict | None:
    if not isinstance(value, dict):
        return None
    try:
        return SummaryJSON.model_validate(value).model_dump()
    except ValidationError as e:
        logger.warning("summaryJSON does not match the schema: %s", e.errors()[:3])
        return None


def parse_summary_response(raw: str, transcript: str) -> dict:
    """Turn raw model output into ``{summaryJSON, summaryMarkdown}``. Never raises.

    Strict parse first, then the first balanced JSON object in the text. A missing
    or malformed top-level field is replaced by a fallback built from the transcript;
    text with no usable JSON at all gets the error fallback.
    """
    content = strip_code_fences(raw or "")
    if not content:
        return error_fallback(transcript, "Empty response from AI")

    try:
        parsed = json.loads(content)
    except ValueError as e:
        candidate = extract_json_object(content)
        if candidate is None:
            logger.warning("No JSON found in summarizer output")
            return error_fallback(transcript, str(e))
        try:
            parsed = json.loads(candidate)
        except ValueError as inner:
            logger.warning("Extracted JSON did not parse: %s", inner)
            return error_fallback(transcript, str(inner))

    if not isinstance(parsed, dict):
        parsed = {}

    summary_json = _validate_summary_json(parsed.get("summaryJSON"))
    summary_markdown = parsed.get("summaryMarkdown")
    if not isinstance(summary_markdown, str) or not summary_markdown.strip():
        summary_markdown = None

    if summary_json is None or summary_markdown is None:
        logger.warning("Summarizer output is missing required fields, using fallback")
    return {
        "summaryJSON": summary_json or fallback_summary_json(transcript),
        "summaryMarkdown": summary_markdown or fallback_summary_markdown(transcript),
    }


class Summarizer:
    def __init__(self, provider: str = "anthropic", api_key: str = None,
                 model: str = None, ollama_url: str = None, ollama_model: str = None,
                 timeout: float = 300):
        self.provider = provider
        self.api_key = api_key
        self.model = model
        self.ollama_url = ollama_url or "http://localhost:11434"
        self.ollama_model = ollama_model or "llama3.3"
        self.timeout = timeout

    def summarize(self, transcript: str) -> dict:
        """Summarize a transcript. Always returns a well-formed result."""
        if len(transcript) > MAX_TRANSCRIPT_CHARS:
            logger.info("Transcript truncated from %d chars", len(transcript))
        user_prompt = SUMMARY_USER_PROMPT.format(transcript=transcript[:MAX_TRANSCRIPT_CHARS])

        try:
            raw = self._call_llm(user_prompt)
        except Exception as e:
            logger.error("AI summarization error: %s", e)
            return error_fallback(transcript, str(e))

        return parse_summary_response(raw, transcript)

    def _call_llm(self, user_prompt: str) -> str:
        if self.provider == "anthropic" and self.api_key:
            return self._call_anthropic(user_prompt)

        if self.provider == "ollama" or not self.api_key:
            try:
                return self._call_ollama(user_prompt)
            except Exception as e:
                if self.api_key:
                    logger.warning("Ollama failed (%s), trying Anthropic...", e)
                    return self._call_anthropic(user_prompt)
                raise

        return self._call_anthropic(user_prompt)

    def _call_anthropic(self, user_prompt: str) -> str:
        import anthropic

        client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout)
        message = client.messages.create(
            model=self.model or "claude-sonnet-4-5-20250929",
            max_tokens=4096,
            system=SUMMARY_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return message.content[0].text

    def _call_ollama(self, user_prompt: str) -> str:
        response = requests.post(
            f"{self.ollama_url}/api/generate",
            json={
                "model": self.ollama_model,
                "system": SUMMARY_SYSTEM_PROMPT,
                "prompt": user_prompt,
                "format": "json",
                "stream": False,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()["response"]
