"""
msgpack_codec.py - MessagePack encoding of stored values.

Record bodies and metadata index documents are stored as MessagePack
maps. Encoding is canonical: map keys are sorted at every nesting
level, so equal values always produce equal bytes.
"""

from typing import Any

import msgpack

from journal_sync.errors import ValidationError


def _canonical(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _canonical(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_canonical(item) for item in value]
    return value


def pack_value(data: dict[str, Any]) -> bytes:
    """
    Encode a stored value.

    Raises:
        ValidationError: If data is not a dict or holds unencodable values
    """
    if not isinstance(data, dict):
        raise ValidationError(
            f"Stored values must be dicts, got {type(data).__name__}",
            field="value",
        )
    try:
        return msgpack.packb(_canonical(data), use_bin_type=True)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Cannot encode stored value: {e}", field="value") from e


def unpack_value(blob: bytes) -> dict[str, Any]:
    """
    Decode a stored value.

    Raises:
        ValidationError: If blob is not a MessagePack map
    """
    try:
        result = msgpack.unpackb(blob, raw=False)
    except (msgpack.UnpackException, ValueError, TypeError) as e:
        raise ValidationError(f"Corrupt stored value: {e}", field="value", value=blob[:50]) from e

    if not isinstance(result, dict):
        raise ValidationError(
            f"Stored value is a {type(result).__name__}, not a map",
            field="value",
        )
    return result
