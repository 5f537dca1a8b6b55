import json
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Optional, Sequence, Union

import numpy as np
import requests

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def ollama_generate(
    prompt: str,
    model: str,
    base_url: str,
    temperature: float = 0.2,
    system: Optional[str] = None,
    json_mode: bool = False,
    timeout: int = 120,
) -> str:
    payload = {
        "model": model,
        "prompt": prompt,
        "options": {"temperature": temperature},
        "stream": False,  # important
    }
    if system:
        payload["system"] = system
    if json_mode:
        payload["format"] = "json"
    resp = requests.post(f"{base_url}/api/generate", json=payload, timeout=timeout)
    resp.raise_for_status()
    return resp.json().get("response", "") or ""


def ollama_embed(text: str, model: str, base_url: str, timeout: int = 30) -> List[float]:
    resp = requests.post(
        f"{base_url}/api/embeddings",
        json={"model": model, "prompt": text},
        timeout=timeout,
    )
    resp.raise_for_status()
    return [float(x) for x in resp.json().get("embedding", [])]


def extract_json(s: str) -> Any:
    """Pull the JSON object out of an LLM reply.

    Tolerates markdown fences and chatter around the object. Raises
    ``ValueError`` when nothing parseable is found.
    """
    if not s or not s.strip():
        raise ValueError("empty response")
    fenced = _FENCED_JSON.search(s)
    candidate = fenced.group(1) if fenced else s
    candidate = candidate.strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass
    # heuristics to find JSON inside
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start < 0 or end <= start:
        raise ValueError("no JSON object in response")
    return json.loads(candidate[start:end + 1])


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors must have the same length ({va.shape} != {vb.shape})")
    den = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if den == 0.0:
        return 0.0
    return max(-1.0, min(1.0, float(np.dot(va, vb)) / den))


def round_half_up(value: Union[int, float, Decimal]) -> int:
    """Round .5 away from zero instead of to the nearest even integer."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def similarity_to_percentage(similarity: float) -> int:
    """Rescale a cosine similarity from [-1, 1] to [0, 100]."""
    return round_half_up((Decimal(str(similarity)) + 1) / 2 * 100)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length]
