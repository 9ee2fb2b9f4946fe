"""JSON encoding for stored values, metadata and id lists."""

import json
from typing import Any

from recall.core.logging import get_logger

logger = get_logger("memory.codec")


def encode_value(value: Any) -> str:
    """Serialize a context value. Non-JSON types fall back to their str()."""
    return json.dumps(value, default=str)


def decode_value(raw: str | None) -> Any:
    """Deserialize a context value, keeping raw text that isn't JSON."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def encode_metadata(metadata: dict[str, Any] | str | None) -> str | None:
    if metadata is None:
        return None
    if isinstance(metadata, str):
        # Already opaque text from an earlier failed decode
        return metadata
    return json.dumps(metadata, default=str)


def decode_metadata(raw: str | None) -> dict[str, Any] | str | None:
    """Decode stored metadata; anything that isn't a JSON object stays raw."""
    if not raw:
        return None
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug(f"Keeping undecodable metadata as text: {raw[:50]}")
        return raw
    if not isinstance(decoded, dict):
        return raw
    return decoded


def encode_ids(ids: list[int] | str | None) -> str | None:
    if ids is None:
        return None
    if isinstance(ids, str):
        return ids
    return json.dumps(list(ids))


def decode_ids(raw: str | None) -> list[int] | str | None:
    if not raw:
        return None
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        return raw
    if not isinstance(decoded, list):
        return raw
    return decoded
