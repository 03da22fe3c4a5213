"""
In-process document store.

Keeps every collection in an insertion-ordered dict. Used by the test
suite and by STORE_BACKEND=memory for throwaway local sessions; nothing
survives a restart.
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Sequence

from documents.base import (
    DocumentNotFoundError,
    DocumentStore,
    WhereClause,
    generate_id,
    matches_where,
    normalize_collection_path,
    split_document_path,
    validate_where,
)

logger = logging.getLogger(__name__)


def _sort_key(field: str):
    def key(doc: Dict[str, Any]):
        value = doc.get(field)
        return (value is not None, value if value is not None else 0)
    return key


class MemoryDocumentStore(DocumentStore):
    """Dict-backed DocumentStore.

    Attributes:
        fail_writes: When set to an exception instance, every write raises
            it. Lets tests simulate a backend outage.
    """

    backend_name = "memory"

    def __init__(self, clock=None):
        super().__init__(clock=clock)
        # collection path -> {doc id -> document body}
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.fail_writes: Optional[Exception] = None
        self.write_count = 0

    def _check_writable(self) -> None:
        if self.fail_writes is not None:
            raise self.fail_writes
        self.write_count += 1

    async def create_document(self, collection_path: str, fields: Dict[str, Any]) -> str:
        path = normalize_collection_path(collection_path)
        self._check_writable()
        doc_id = generate_id()
        self._collections.setdefault(path, {})[doc_id] = copy.deepcopy(self._resolve_fields(fields))
        await self._publish(path, doc_id)
        return doc_id

    async def update_document(self, doc_path: str, fields: Dict[str, Any]) -> None:
        collection, doc_id = split_document_path(doc_path)
        self._check_writable()
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise DocumentNotFoundError(doc_path)
        docs[doc_id].update(copy.deepcopy(self._resolve_fields(fields)))
        await self._publish(collection, doc_id)

    async def set_document(self, doc_path: str, fields: Dict[str, Any],
                           merge: bool = False) -> None:
        collection, doc_id = split_document_path(doc_path)
        self._check_writable()
        docs = self._collections.setdefault(collection, {})
        resolved = copy.deepcopy(self._resolve_fields(fields))
        if merge and doc_id in docs:
            docs[doc_id].update(resolved)
        else:
            docs[doc_id] = resolved
        await self._publish(collection, doc_id)

    async def delete_document(self, doc_path: str) -> None:
        collection, doc_id = split_document_path(doc_path)
        self._check_writable()
        docs = self._collections.get(collection, {})
        if docs.pop(doc_id, None) is None:
            return
        await self._publish(collection, doc_id)

    async def get_document(self, doc_path: str) -> Optional[Dict[str, Any]]:
        collection, doc_id = split_document_path(doc_path)
        doc = self._collections.get(collection, {}).get(doc_id)
        if doc is None:
            return None
        result = copy.deepcopy(doc)
        result["id"] = doc_id
        return result

    async def query(self, collection_path: str,
                    where: Optional[Sequence[WhereClause]] = None,
                    order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        path = normalize_collection_path(collection_path)
        validate_where(where)
        results = []
        for doc_id, doc in self._collections.get(path, {}).items():
            if matches_where(doc, where):
                result = copy.deepcopy(doc)
                result["id"] = doc_id
                results.append(result)
        if order_by:
            results.sort(key=_sort_key(order_by))
        return results
