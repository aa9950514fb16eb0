"""
In-memory backend connection.

`MemoryConnection` stands in for a remote document server: collections of JSON-like
documents that can be fetched one at a time or queried with a small subset of
Mongo-style operators. Every fetch is a coroutine so async resource kinds suspend on it
exactly like they would on a network round trip.
"""

import asyncio
import copy
from collections import defaultdict
from typing import Any, Dict, List, Optional

_AGGREGATES = {
    "$sum": sum,
    "$min": min,
    "$max": max,
    "$avg": lambda values: sum(values) / len(values) if values else None,
}


class MemoryConnection:
    """Collections of documents served with optional simulated latency."""

    def __init__(self, latency: float = 0.0, collections: Optional[Dict[str, Dict[str, dict]]] = None):
        self.latency = latency
        self._collections: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self.fetch_count = 0
        for name, docs in (collections or {}).items():
            for doc_id, doc in docs.items():
                self.insert(name, dict(doc, id=doc_id))

    # ========================================================================
    # WRITES
    # ========================================================================

    def insert(self, collection: str, doc: dict) -> str:
        if "id" not in doc:
            raise ValueError(f"Document for '{collection}' has no 'id'")
        self._collections[collection][str(doc["id"])] = copy.deepcopy(doc)
        return str(doc["id"])

    def remove(self, collection: str, doc_id: str) -> None:
        self._collections[collection].pop(doc_id, None)

    # ========================================================================
    # READS
    # ========================================================================

    async def fetch_doc(self, collection: str, doc_id: str) -> Optional[dict]:
        await self._delay()
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def fetch_query(self, collection: str, query: dict) -> List[dict]:
        await self._delay()
        return [copy.deepcopy(doc) for doc in self._match(collection, query)]

    async def fetch_extra(self, collection: str, query: dict) -> Any:
        """Evaluate ``$count`` or ``$aggregate`` over the matching documents."""
        await self._delay()
        docs = self._match(collection, query)
        if query.get("$count"):
            return len(docs)

        aggregate = query.get("$aggregate") or {}
        result = {}
        for name, expression in aggregate.items():
            ((op, field),) = expression.items()
            if op not in _AGGREGATES:
                raise ValueError(f"Unsupported aggregate operator: {op}")
            values = [doc[field] for doc in docs if field in doc]
            result[name] = _AGGREGATES[op](values) if values or op == "$avg" else None
        return result

    def _match(self, collection: str, query: dict) -> List[dict]:
        docs = list(self._collections.get(collection, {}).values())
        filters = {k: v for k, v in (query or {}).items() if not k.startswith("$")}
        matched = [
            doc for doc in docs if all(doc.get(k) == v for k, v in filters.items())
        ]

        sort = (query or {}).get("$sort")
        if sort:
            for field, direction in reversed(list(sort.items())):
                matched.sort(key=lambda doc: doc.get(field), reverse=direction < 0)

        limit = (query or {}).get("$limit")
        if limit is not None:
            matched = matched[:limit]
        return matched

    async def _delay(self) -> None:
        self.fetch_count += 1
        # Always yield once so fetches are real suspension points.
        await asyncio.sleep(self.latency)

    def __repr__(self) -> str:
        counts = {name: len(docs) for name, docs in self._collections.items()}
        return f"MemoryConnection({counts})"


__all__ = ["MemoryConnection"]
