# flames/document_store.py

import copy
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import sessionmaker

from flames.entities import Base, Document
from flames.errors import NotFoundError

logger = logging.getLogger("flames_backend")

# record field -> indexed column
_ORDERABLE_COLUMNS = {
    "createdAt": Document.created_at,
    "updatedAt": Document.updated_at,
}


def merge_fields(record: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of `record` with `fields` merged in.

    Dotted keys ("deployment.url") address nested sub-records, which are
    created on demand. Plain keys overwrite.
    """
    out = copy.deepcopy(record)
    for key, value in fields.items():
        parts = key.split(".")
        node = out
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = copy.deepcopy(value)
    return out


class SqlDocumentStore:
    """
    Document-store contract (create / get / merge / query) on top of a single
    SQLAlchemy table. Every record is a JSON blob keyed by (collection, id).
    """

    def __init__(self, session_factory: sessionmaker, create_tables: bool = True):
        self.SessionFactory = session_factory
        if create_tables:
            Base.metadata.create_all(session_factory.kw["bind"])

    def create(self, collection: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or uuid4().hex
        record = dict(data)
        record["id"] = doc_id

        session = self.SessionFactory()
        try:
            session.add(Document(collection=collection, id=doc_id, data=record))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        return doc_id

    def get(self, collection: str, doc_id: str) -> Dict[str, Any]:
        session = self.SessionFactory()
        try:
            row = session.get(Document, (collection, doc_id))
            if row is None:
                raise NotFoundError(f"{collection}/{doc_id} not found")
            return copy.deepcopy(row.data)
        finally:
            session.close()

    def merge(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Partial merge-write. Read and write happen in one transaction with the
        row locked where the backend supports it, so two writers never
        interleave on the same record.
        """
        session = self.SessionFactory()
        try:
            row = (
                session.query(Document)
                .filter(Document.collection == collection, Document.id == doc_id)
                .with_for_update()
                .one_or_none()
            )
            if row is None:
                raise NotFoundError(f"{collection}/{doc_id} not found")
            # JSON columns only notice reassignment, not in-place mutation
            row.data = merge_fields(row.data or {}, fields)
            merged = copy.deepcopy(row.data)
            session.commit()
            return merged
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def query(self, collection: str, order_by: str = "createdAt", descending: bool = True,
              limit: Optional[int] = 20) -> List[Dict[str, Any]]:
        column = _ORDERABLE_COLUMNS.get(order_by)
        if column is None:
            raise ValueError(f"Cannot order by '{order_by}'. Known fields: {sorted(_ORDERABLE_COLUMNS)}")

        session = self.SessionFactory()
        try:
            q = (
                session.query(Document)
                .filter(Document.collection == collection)
                .order_by(column.desc() if descending else column.asc())
            )
            if limit is not None:
                q = q.limit(limit)
            rows = q.all()
            return [copy.deepcopy(r.data) for r in rows]
        finally:
            session.close()
