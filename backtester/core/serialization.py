import math
from typing import Any

import orjson


def _sanitize(value: Any) -> Any:
    # orjson emits null for non-finite floats; keep infinities readable instead
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return None
        return "Infinity" if value > 0 else "-Infinity"
    if isinstance(value, dict):
        return {k: _sanitize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(v) for v in value]
    return value


def dumps(content: Any, indent: bool = False) -> bytes:
    """
    High-performance JSON encoding using orjson.

    Accepts plain data or any record exposing `to_dict()`. numpy scalars and
    arrays, dates and enums are handled natively by orjson.
    """
    if hasattr(content, "to_dict"):
        content = content.to_dict()
    option = orjson.OPT_SERIALIZE_NUMPY
    if indent:
        option |= orjson.OPT_INDENT_2
    return orjson.dumps(_sanitize(content), option=option)
