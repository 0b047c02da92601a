import json
import re
from typing import Any

_FENCE_RE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)
_decoder = json.JSONDecoder()


def _unfence(text: str) -> str:
    body = (text or "").strip()
    m = _FENCE_RE.match(body)
    return m.group(1).strip() if m else body


def extract_json(text: str) -> Any:
    """
    Parse the first JSON object or array embedded in model output.
    Markdown fences, leading prose and trailing prose are all tolerated.
    """
    body = _unfence(text)
    last_err: ValueError | None = None
    for m in re.finditer(r"[\{\[]", body):
        try:
            value, _ = _decoder.raw_decode(body, m.start())
            return value
        except json.JSONDecodeError as e:
            last_err = e
    if last_err is not None:
        raise ValueError(f"Malformed JSON in text: {last_err}")
    raise ValueError("No JSON object/array found in text")


def extract_json_object(text: str) -> dict:
    parsed = extract_json(text)
    if not isinstance(parsed, dict):
        raise ValueError(f"JSON is not an object (got {type(parsed).__name__})")
    return parsed
