# isopod/errors.py
from __future__ import annotations

from typing import Sequence


class IsopodError(Exception):
    """Base exception for isopod."""


class ConfigError(IsopodError):
    pass


class SerializeError(IsopodError):
    pass


class UnsupportedTypeError(SerializeError):
    """
    Raised by the graph builder when a value has no registered handler and the
    `serialize.on_unsupported` policy is "raise".
    """

    def __init__(self, value_type: type) -> None:
        self.value_type = value_type
        name = f"{value_type.__module__}.{value_type.__qualname__}"
        super().__init__(f"cannot dehydrate value of unsupported type {name}")


class DecodeError(IsopodError):
    pass


class OrphanRefError(DecodeError):
    """
    Raised when an incoming reference graph contains one or more Refs `[N]`
    pointing outside the node sequence.

    Parameters
    ----------
    message : str | None
        Optional explicit message. If omitted, a message is built from `orphans`.
    orphans : Sequence[tuple[str, int]] | None
        Pairs of (json_path, slot) for each out-of-range Ref, e.g. ("$[0].keys.b", 7).
    size : int | None
        Number of nodes in the offending graph.
    """

    def __init__(
        self,
        message: str | None = None,
        *,
        orphans: Sequence[tuple[str, int]] | None = None,
        size: int | None = None,
    ) -> None:
        self.orphans: list[tuple[str, int]] = list(orphans or [])
        self.size: int | None = size

        if message is None:
            details = "; ".join(f"path={p} ref={slot}" for (p, slot) in self.orphans) or "unknown location(s)"
            extra = f" (graph has {size} node(s))" if size is not None else ""
            message = f"reference graph contains out-of-range ref(s): {details}{extra}"

        super().__init__(message)


class UnresolvedSingletonError(DecodeError):
    """A HostGlobal path does not resolve in the current process."""

    def __init__(self, path: Sequence[str], reason: str | None = None) -> None:
        self.path: list[str] = list(path)
        msg = f"cannot resolve host global {'.'.join(self.path)!r}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class ReconstructionError(DecodeError):
    """
    A node could not be turned back into a live value (compilation failure,
    class refusing `__new__`, unsupported node under the "raise" policy...).
    """

    def __init__(self, message: str, *, slot: int | None = None, type: str | None = None) -> None:
        self.slot = slot
        self.type = type
        where = []
        if slot is not None:
            where.append(f"slot={slot}")
        if type is not None:
            where.append(f"type={type}")
        suffix = f" ({', '.join(where)})" if where else ""
        super().__init__(f"{message}{suffix}")


class RemoteTraceback(Exception):
    """
    Formatted traceback of an exception that was dehydrated in another process.
    Chained as `__cause__` of the reconstructed exception so it shows up in
    the usual "The above exception was the direct cause..." report.
    """

    def __init__(self, tb: str) -> None:
        self.tb = tb
        super().__init__(tb)

    def __str__(self) -> str:
        return self.tb
