import json

import pytest
import requests

from processing import summarizer as summarizer_module
from processing.summarizer import (
    MAX_TRANSCRIPT_CHARS,
    Summarizer,
    extract_json_object,
    parse_summary_response,
    strip_code_fences,
)

TRANSCRIPT = "Ana: we ship on Friday. Luis: I will tag the build tonight. " * 20

GOOD = {
    "summaryJSON": {
        "title": "Release sync",
        "participants": ["Ana", "Luis"],
        "topics": [{"title": "Release", "summary": "Friday ship", "action_items": ["Tag build"]}],
        "key_decisions": ["Ship on Friday"],
        "next_steps": ["Tag the build"],
        "tone": "upbeat",
        "overall_summary": "The release goes out on Friday.",
    },
    "summaryMarkdown": "# Release sync\n\nShip on Friday.",
}


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n{"a": 1}```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_extract_first_balanced_object():
    text = 'Here you go: {"a": {"b": 1}} and also {"c": 2}'
    assert extract_json_object(text) == '{"a": {"b": 1}}'


def test_extract_ignores_braces_inside_strings():
    text = 'prefix {"text": "a } tricky { string", "n": 1} suffix'
    assert json.loads(extract_json_object(text)) == {"text": "a } tricky { string", "n": 1}


def test_extract_returns_none_without_object():
    assert extract_json_object("no json here") is None
    assert extract_json_object("{ never closed") is None


def test_parse_valid_json():
    result = parse_summary_response(json.dumps(GOOD), TRANSCRIPT)
    assert result["summaryJSON"]["title"] == "Release sync"
    assert result["summaryJSON"]["tone"] == "upbeat"
    assert result["summaryMarkdown"] == GOOD["summaryMarkdown"]


def test_parse_fenced_json():
    raw = "```json\n" + json.dumps(GOOD) + "\n```"
    assert parse_summary_response(raw, TRANSCRIPT)["summaryJSON"]["title"] == "Release sync"


def test_parse_json_embedded_in_prose():
    raw = "Sure! Here is the summary:\n" + json.dumps(GOOD) + "\nLet me know if you need more."
    assert parse_summary_response(raw, TRANSCRIPT)["summaryMarkdown"] == GOOD["summaryMarkdown"]


def test_missing_markdown_keeps_json():
    raw = json.dumps({"summaryJSON": GOOD["summaryJSON"]})
    result = parse_summary_response(raw, TRANSCRIPT)
    assert result["summaryJSON"]["title"] == "Release sync"
    assert result["summaryMarkdown"] == f"# Meeting Summary\n\n{TRANSCRIPT[:500]}..."


def test_missing_json_uses_transcript_fallback():
    raw = json.dumps({"summaryMarkdown": "# Notes"})
    result = parse_summary_response(raw, TRANSCRIPT)
    summary = result["summaryJSON"]
    assert summary["title"] == "Meeting Summary"
    assert summary["overall_summary"] == TRANSCRIPT[:300] + "..."
    assert summary["topics"] == []
    assert summary["key_decisions"] == []
    assert summary["next_steps"] == []
    assert summary["tone"] == "professional"
    assert result["summaryMarkdown"] == "# Notes"


def test_schema_mismatch_falls_back():
    broken = dict(GOOD, summaryJSON={"title": "x", "topics": "not a list", "overall_summary": "y"})
    result = parse_summary_response(json.dumps(broken), TRANSCRIPT)
    assert result["summaryJSON"]["title"] == "Meeting Summary"
    assert result["summaryMarkdown"] == GOOD["summaryMarkdown"]


def test_optional_fields_get_defaults():
    minimal = {"summaryJSON": {"title": "T", "overall_summary": "S"}, "summaryMarkdown": "# T"}
    summary = parse_summary_response(json.dumps(minimal), TRANSCRIPT)["summaryJSON"]
    assert summary["participants"] == []
    assert summary["topics"] == []
    assert summary["tone"] == "professional"


@pytest.mark.parametrize("raw", ["I could not summarize this.", "", "{broken json", "[1, 2, 3]"])
def test_unusable_output_is_well_formed(raw):
    result = parse_summary_response(raw, "short transcript")
    summary = result["summaryJSON"]
    assert summary["title"] == "Meeting Summary"
    assert summary["overall_summary"].startswith("short transcript")
    assert summary["key_decisions"] == []
    assert summary["next_steps"] == []
    assert isinstance(result["summaryMarkdown"], str) and result["summaryMarkdown"]


def test_non_json_text_gets_error_fallback():
    result = parse_summary_response("I could not summarize this.", "short transcript")
    assert result["summaryJSON"]["topics"][0]["title"] == "Discussion"
    assert "AI summarization encountered an error" in result["summaryMarkdown"]


def test_provider_error_never_raises(monkeypatch):
    summarizer = Summarizer(provider="ollama")

    def boom(prompt):
        raise requests.ConnectionError("ollama is down")

    monkeypatch.setattr(summarizer, "_call_llm", boom)
    result = summarizer.summarize("hello everyone")

    assert result["summaryJSON"]["overall_summary"] == "hello everyone"
    assert "ollama is down" in result["summaryMarkdown"]


def test_long_transcript_is_truncated(monkeypatch):
    summarizer = Summarizer(provider="ollama")
    prompts = []
    monkeypatch.setattr(summarizer, "_call_llm", lambda prompt: prompts.append(prompt) or json.dumps(GOOD))

    summarizer.summarize("x" * (MAX_TRANSCRIPT_CHARS + 5000))

    assert prompts[0].count("x") == MAX_TRANSCRIPT_CHARS


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


def test_ollama_request(monkeypatch):
    captured = {}

    def fake_post(url, json=None, timeout=None):
        captured.update(url=url, json=json, timeout=timeout)
        return FakeResponse({"response": '{"summaryJSON": null}'})

    monkeypatch.setattr(summarizer_module.requests, "post", fake_post)
    summarizer = Summarizer(provider="ollama", ollama_url="http://ollama:11434",
                            ollama_model="llama3.3", timeout=12)

    result = summarizer.summarize("hello")

    assert captured["url"] == "http://ollama:11434/api/generate"
    assert captured["json"]["model"] == "llama3.3"
    assert captured["json"]["stream"] is False
    assert captured["timeout"] == 12
    assert result["summaryJSON"]["title"] == "Meeting Summary"


def test_ollama_failure_falls_back_to_anthropic(monkeypatch):
    summarizer = Summarizer(provider="ollama", api_key="sk-test")

    def ollama_down(prompt):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(summarizer, "_call_ollama", ollama_down)
    monkeypatch.setattr(summarizer, "_call_anthropic", lambda prompt: json.dumps(GOOD))

    assert summarizer.summarize("hello")["summaryJSON"]["title"] == "Release sync"
