"""
TableSource: abstract interface for every importable source kind.

A source turns a descriptor (where the table lives) plus per-request
credentials into an open ``SourceSession``.  The session answers two
questions, in order: what are the columns, and what are the records.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError

from core.errors import InvalidSourceError
from core.normalizer import ColumnSpec, FieldExtractor, primitive_field


class SourceSession(ABC):
    """One open connection to a source for the duration of an import."""

    extractor: FieldExtractor = staticmethod(primitive_field)

    @abstractmethod
    async def columns(self) -> List[ColumnSpec]:
        ...

    @abstractmethod
    async def records(self, columns: List[ColumnSpec]) -> List[Mapping[str, Any]]:
        ...


class TableSource(ABC):
    """Abstract base for all import sources."""

    descriptor_model: Type[BaseModel]
    refresh_mode: str = "manual"

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def source_type(self) -> str:
        """Slug stored in ``source_info.type``."""
        ...

    @property
    @abstractmethod
    def mime_type(self) -> str:
        ...

    # ── Descriptor handling ─────────────────────────────────────────────

    def parse_descriptor(self, payload: Mapping[str, Any]) -> BaseModel:
        try:
            return self.descriptor_model.model_validate(dict(payload))
        except ValidationError as exc:
            raise InvalidSourceError(f"Invalid {self.source_type} source: {exc}") from exc

    @abstractmethod
    def sheet_name(self, descriptor: Any) -> str:
        ...

    def default_title(self, descriptor: Any) -> str:
        return self.sheet_name(descriptor)

    def source_info(self, descriptor: Any, owner_id: Optional[int] = None) -> Dict[str, Any]:
        info = descriptor.model_dump(by_alias=True, exclude_none=True)
        info.update({"type": self.source_type, "refreshMode": self.refresh_mode})
        return info

    # ── Data access ─────────────────────────────────────────────────────

    @abstractmethod
    def open(self, descriptor: Any, credentials: Mapping[str, Any]) -> "SessionContext":
        """Return an async context manager yielding a ``SourceSession``."""
        ...

    def is_configured(self) -> bool:
        return True


SessionContext = Any  # an async context manager yielding SourceSession


@asynccontextmanager
async def static_session(session: SourceSession) -> AsyncIterator[SourceSession]:
    """For sources whose session holds no live resource."""
    yield session
