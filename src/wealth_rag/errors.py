"""Error taxonomy for the retrieval engine.

Provider problems (embedding or generation) are always recovered locally, so
they are modelled twice: as exceptions raised inside the provider adapters and
as an explicit ``Ok | ProviderError`` result that callers branch on. Store
problems are fatal to a retrieval call and surface as :class:`RetrievalError`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class WealthRagError(Exception):
    """Base class for every error raised by this package."""


class ProviderUnavailable(WealthRagError):
    """An embedding or text-generation provider was unreachable or errored."""


class MalformedStructuredReply(ProviderUnavailable):
    """The generation provider replied with text that is not the expected four fields."""


class StoreUnavailable(WealthRagError):
    """The vector store could not be reached or rejected a request."""


class ChunkingFailure(WealthRagError):
    """Structural traversal of a document failed unexpectedly."""


class RetrievalError(WealthRagError):
    """A retrieval call failed; distinct from a successful empty result."""


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful provider outcome."""

    value: T


@dataclass(frozen=True, slots=True)
class ProviderError:
    """Failed provider outcome carrying a human-readable reason."""

    reason: str
    error: Exception | None = None


ProviderResult = Union[Ok[T], ProviderError]
