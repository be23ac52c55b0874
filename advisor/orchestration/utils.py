"""
Utility functions for LLM response parsing and text cleanup.
"""
import json
import re
from typing import Any, Dict, Optional


def extract_json_from_llm_response(content: str) -> Optional[Dict[str, Any]]:
    """
    Extract the first well-formed JSON object from an LLM response.

    Tries multiple strategies:
    1. Direct JSON parsing
    2. Markdown code block extraction (```json or ```)
    3. Find JSON object boundaries { ... }
    4. Handle trailing commas

    Returns None if no valid JSON found (no warning logged - this is expected behavior
    when the model doesn't return structured data).

    Args:
        content: Raw LLM response text

    Returns:
        Parsed dictionary or None if extraction fails
    """
    if not content:
        return None

    content = content.strip()

    # Strategy 1: Try direct parsing
    try:
        result = json.loads(content)
        if isinstance(result, dict):
            return result
    except json.JSONDecodeError:
        pass

    # Strategy 2: Extract from markdown code blocks
    patterns = [
        r'```json\s*([\s\S]*?)\s*```',
        r'```\s*([\s\S]*?)\s*```',
    ]
    for pattern in patterns:
        match = re.search(pattern, content, re.DOTALL)
        if match:
            try:
                result = json.loads(match.group(1).strip())
                if isinstance(result, dict):
                    return result
            except json.JSONDecodeError:
                pass

    # Strategy 3: Find JSON object by braces
    start = content.find('{')
    while start != -1:
        end = _matching_brace(content, start)
        if end != -1:
            json_str = content[start:end]
            try:
                result = json.loads(json_str)
                if isinstance(result, dict):
                    return result
            except json.JSONDecodeError:
                # Strategy 4: Try fixing common issues
                try:
                    result = json.loads(_fix_common_json_issues(json_str))
                    if isinstance(result, dict):
                        return result
                except json.JSONDecodeError:
                    pass
        start = content.find('{', start + 1)

    return None


def _matching_brace(content: str, start: int) -> int:
    """Index just past the brace closing the one at `start`, or -1."""
    brace_count = 0
    in_string = False
    escape_next = False

    for i in range(start, len(content)):
        char = content[i]

        if escape_next:
            escape_next = False
            continue

        if char == '\\':
            escape_next = True
            continue

        if char == '"':
            in_string = not in_string
            continue

        if not in_string:
            if char == '{':
                brace_count += 1
            elif char == '}':
                brace_count -= 1
                if brace_count == 0:
                    return i + 1

    return -1


def _fix_common_json_issues(json_str: str) -> str:
    """Remove trailing commas before } or ]."""
    return re.sub(r',\s*([}\]])', r'\1', json_str)


_URL_RE = re.compile(r"https?://[^\s)]+")


def remove_urls(text: str) -> str:
    return _URL_RE.sub("", text or "").strip()


def clean_response(text: str) -> str:
    """Strip markdown formatting so the reply is plain text. No truncation."""
    cleaned = re.sub(r"\*\*([^*]+)\*\*", r"\1", text or "")
    cleaned = re.sub(r"\*([^*]+)\*", r"\1", cleaned)
    cleaned = re.sub(r"(?m)^#{1,6}\s+", "", cleaned)
    cleaned = re.sub(r"`([^`]+)`", r"\1", cleaned)
    cleaned = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", cleaned)
    cleaned = remove_urls(cleaned)
    return cleaned.strip()


_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]?(?=\s|$)")


def trim_to_last_sentence(text: str) -> str:
    """
    Trim a length-limited generation back to its last complete sentence.

    Only trims when that boundary lies within the trailing half of the text;
    otherwise the text is returned as generated (whitespace-stripped).
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return trimmed
    if re.search(r"[.!?][\"')\]]?$", trimmed):
        return trimmed

    last_end = -1
    for match in _SENTENCE_END_RE.finditer(trimmed):
        last_end = match.end()

    if last_end > len(trimmed) * 0.5:
        return trimmed[:last_end].strip()
    return trimmed


LENGTH_FINISH_REASONS = frozenset({"length", "max_tokens", "MAX_TOKENS"})


def was_length_limited(message: Any) -> bool:
    """True if the provider reports the generation stopped at the output budget."""
    metadata = getattr(message, "response_metadata", None) or {}
    for key in ("finish_reason", "stop_reason", "done_reason", "finishReason"):
        if metadata.get(key) in LENGTH_FINISH_REASONS:
            return True
    return False
