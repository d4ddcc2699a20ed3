"""
Extract the JSON object from free-form model output.

The model is asked for bare JSON but may wrap it in ```json fences or add a
sentence before/after it. Everything outside the first "{" and the last "}"
is discarded before parsing.
"""
import json
from typing import Any, Dict

from app.core.errors import UpstreamMalformedResponse


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Parse the single JSON object embedded in `text`.
    Raises UpstreamMalformedResponse (with a truncated excerpt) when there is
    no {...} span or the span is not valid JSON.
    """
    if not text:
        raise UpstreamMalformedResponse("Empty response from analysis service", raw="")

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise UpstreamMalformedResponse("Analysis response did not contain a JSON object", raw=text)

    candidate = text[start:end + 1]
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise UpstreamMalformedResponse(f"Analysis response is not valid JSON: {e.msg}", raw=text) from e
    return data
