# Narrow contract over the managed document database, plus an in-memory
# implementation seeded from a JSON file for local development and tests.

import asyncio
import copy
import json
import logging
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class FieldFilter(BaseModel):
    """Equality or lower-bound filter on a top-level field."""
    field: str
    op: Literal["==", ">="] = "=="
    value: Any

    def matches(self, doc: Document) -> bool:
        if self.field not in doc:
            return False
        current = doc[self.field]
        if self.op == "==":
            return current == self.value
        try:
            return current >= self.value
        except TypeError:
            return False


class RangeFilter(BaseModel):
    """Half-open string range start <= doc[field] < end."""
    field: str
    start: str
    end: str

    def matches(self, doc: Document) -> bool:
        value = doc.get(self.field)
        return isinstance(value, str) and self.start <= value < self.end


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> Optional[Document]: ...
    async def set(self, collection: str, doc_id: str, data: Document) -> None: ...
    async def find(self, collection: str, filters: Sequence[FieldFilter] = ()) -> List[Tuple[str, Document]]: ...
    async def range_query(
        self,
        collection: str,
        range_filter: RangeFilter,
        filters: Sequence[FieldFilter] = (),
    ) -> List[Tuple[str, Document]]: ...


class InMemoryDocumentStore:
    """
    Dict-backed store. Documents are copied on the way in and out so callers
    can never mutate stored state by accident.
    """

    def __init__(self, collections: Optional[Dict[str, Dict[str, Document]]] = None):
        self._collections: Dict[str, Dict[str, Document]] = copy.deepcopy(collections or {})
        self._lock = asyncio.Lock()

    @classmethod
    def from_file(cls, file_path: str) -> "InMemoryDocumentStore":
        """Load `{"<collection>": {"<id>": {...}}}` from a JSON file."""
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.error(f"Seed data file not found at: {file_path}")
            return cls()
        if not isinstance(data, dict):
            logger.error(f"Seed data at {file_path} is not a JSON object; starting empty")
            return cls()
        store = cls({name: docs for name, docs in data.items() if isinstance(docs, dict)})
        logger.info(f"Loaded seed data from {file_path}: {store.counts()}")
        return store

    def counts(self) -> Dict[str, int]:
        return {name: len(docs) for name, docs in self._collections.items()}

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        async with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        async with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    async def find(self, collection: str, filters: Sequence[FieldFilter] = ()) -> List[Tuple[str, Document]]:
        async with self._lock:
            return [
                (doc_id, copy.deepcopy(doc))
                for doc_id, doc in self._collections.get(collection, {}).items()
                if all(f.matches(doc) for f in filters)
            ]

    async def range_query(
        self,
        collection: str,
        range_filter: RangeFilter,
        filters: Sequence[FieldFilter] = (),
    ) -> List[Tuple[str, Document]]:
        async with self._lock:
            matches = [
                (doc_id, doc)
                for doc_id, doc in self._collections.get(collection, {}).items()
                if range_filter.matches(doc) and all(f.matches(doc) for f in filters)
            ]
            # Ordered by the range field, like an index scan would be.
            matches.sort(key=lambda pair: pair[1][range_filter.field])
            return [(doc_id, copy.deepcopy(doc)) for doc_id, doc in matches]
