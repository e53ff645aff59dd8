# isopod/codec.py
from __future__ import annotations

from typing import Any, Optional
import json

from .config import Settings
from .deserialize import deserialize
from .errors import DecodeError
from .hostglobals import HostGlobalIndex
from .serialize import serialize
from .sources import SourceCompiler

__all__ = ["dumps", "loads"]


def dumps(
    value: Any,
    *,
    index: Optional[HostGlobalIndex] = None,
    settings: Optional[Settings] = None,
    indent: Optional[int] = None,
) -> str:
    """
    Serialize `value` and encode the result as JSON text.

    Special floats never reach the encoder (they have their own nodes), so
    `allow_nan=False` only guards against malformed handler output.
    """
    payload = serialize(value, index=index, settings=settings)
    return json.dumps(payload, allow_nan=False, ensure_ascii=False, indent=indent)


def loads(
    text: str,
    *,
    index: Optional[HostGlobalIndex] = None,
    compiler: Optional[SourceCompiler] = None,
    settings: Optional[Settings] = None,
) -> Any:
    """Inverse of `dumps`. Invalid JSON is reported as `DecodeError`."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"invalid JSON payload: {exc}") from exc
    return deserialize(payload, index=index, compiler=compiler, settings=settings)
