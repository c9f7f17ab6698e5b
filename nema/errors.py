"""Error taxonomy shared by the storage, client, and conversation layers."""

from __future__ import annotations


class NemaError(Exception):
    """Base class for every error raised by the neuron-state engine."""


class StorageError(NemaError):
    """Schema, serialisation, or query failure in the snapshot store."""


class NotFoundError(StorageError):
    """The snapshot store holds no state yet."""


class ResponseFormatError(NemaError):
    """The model reply does not match the expected JSON schema."""


class LLMError(NemaError):
    """The language-model call failed, timed out, or was cancelled."""


__all__ = [
    "LLMError",
    "NemaError",
    "NotFoundError",
    "ResponseFormatError",
    "StorageError",
]
