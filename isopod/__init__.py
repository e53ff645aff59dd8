"""
isopod: flatten any object graph (aliases, cycles, shared buffers, classes,
functions) into a JSON-safe list of nodes, and rebuild it.

    >>> graph = isopod.serialize(value)
    >>> clone = isopod.deserialize(graph)
"""
from .codec import dumps, loads
from .config import Settings, load_settings
from .deserialize import deserialize
from .errors import (
    ConfigError,
    DecodeError,
    IsopodError,
    OrphanRefError,
    ReconstructionError,
    RemoteTraceback,
    SerializeError,
    UnresolvedSingletonError,
    UnsupportedTypeError,
)
from .hostglobals import HostGlobalIndex, get_host_index
from .serialize import serialize
from .sources import ExecCompiler, SourceCompiler
from .tags import Symbol, TypeTag

__all__ = [
    "serialize",
    "deserialize",
    "dumps",
    "loads",
    "Symbol",
    "TypeTag",
    "Settings",
    "load_settings",
    "HostGlobalIndex",
    "get_host_index",
    "ExecCompiler",
    "SourceCompiler",
    "IsopodError",
    "ConfigError",
    "SerializeError",
    "UnsupportedTypeError",
    "DecodeError",
    "OrphanRefError",
    "UnresolvedSingletonError",
    "ReconstructionError",
    "RemoteTraceback",
]
