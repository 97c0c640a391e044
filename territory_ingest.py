"""
Decoding of territory updates posted by the game server.

The game server's HTTP client cannot set a JSON content type, so the body
``{"bases":[...]}`` often arrives form-encoded. Decoded with bracket nesting,
that body turns into ``{'{"bases":': {'<array body>': ''}}``, which is
stitched back into JSON here.
"""
import json
import logging
import re
from typing import Any, Dict
from urllib.parse import parse_qsl

from territory_models import TerritorySnapshot

logger = logging.getLogger(__name__)

_BRACKET_SEGMENT = re.compile(r"\[([^\[\]]*)\]")


class TerritoryPayloadError(ValueError):
    pass


# =========================================================
# BODY DECODING
# =========================================================
def decode_form_body(text: str) -> Dict[str, Any]:
    """
    Decode ``a[b][c]=v`` style form fields into nested dicts.
    Text after the last bracket segment is dropped.
    """
    out: Dict[str, Any] = {}
    for key, value in parse_qsl(text, keep_blank_values=True):
        idx = key.find("[")
        if idx <= 0:
            out[key] = value
            continue
        path = [key[:idx]] + _BRACKET_SEGMENT.findall(key[idx:])
        node = out
        for part in path[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[path[-1]] = value
    return out


def decode_body(raw: bytes, content_type: str) -> Any:
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise TerritoryPayloadError("Body is not valid UTF-8") from e

    ct = (content_type or "").split(";")[0].strip().lower()
    if ct == "application/json":
        try:
            return json.loads(text, parse_constant=_reject_constant)
        except json.JSONDecodeError as e:
            raise TerritoryPayloadError(f"Invalid JSON body: {e}") from e
    if ct == "application/x-www-form-urlencoded":
        return decode_form_body(text)
    return text


# =========================================================
# PAYLOAD -> SNAPSHOT
# =========================================================
def is_mangled(payload: Any) -> bool:
    if not isinstance(payload, dict) or len(payload) != 1:
        return False
    (key,) = payload.keys()
    return isinstance(key, str) and key.startswith("{")


def reconstruct_mangled(payload: Dict[str, Any]) -> str:
    ((prefix, nested),) = payload.items()
    if nested == "" or nested is None:
        # whole JSON document ended up as a single flat key
        return prefix
    if not isinstance(nested, dict) or len(nested) != 1:
        raise TerritoryPayloadError("Unrecognized form-encoded territory payload")
    (array_body,) = nested.keys()
    return f"{prefix}[{array_body}]}}"


def parse_territory_payload(payload: Any) -> TerritorySnapshot:
    if is_mangled(payload):
        json_text = reconstruct_mangled(payload)
        logger.info("[API] Reconstructed JSON: %s...", json_text[:150])
        data = _loads(json_text)
    elif isinstance(payload, (str, bytes)):
        data = _loads(payload)
    else:
        data = payload

    if not isinstance(data, dict):
        raise TerritoryPayloadError("Territory payload must be a JSON object")
    if not isinstance(data.get("bases"), list):
        raise TerritoryPayloadError("Territory payload needs a 'bases' list")
    try:
        return TerritorySnapshot.from_dict(data)
    except TypeError as e:
        raise TerritoryPayloadError(str(e)) from e


def _loads(text: Any) -> Any:
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except (json.JSONDecodeError, TypeError) as e:
        raise TerritoryPayloadError(f"Invalid territory JSON: {e}") from e


def _reject_constant(name: str) -> Any:
    raise TerritoryPayloadError(f"Non-finite number {name} in territory payload")
