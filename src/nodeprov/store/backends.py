"""Namespaced object stores holding material records.

Two implementations of the same small contract: an in-process dict for
tests and embedding, and a sqlite file (WAL journal) for durable use.
``RecordNotFound`` is the only way absence is reported.
"""
from __future__ import annotations

import base64
import json
import os
import sqlite3
import threading
import time
from copy import deepcopy
from dataclasses import asdict, dataclass, field
from typing import Dict, Optional, Protocol, Tuple

from ..errors import RecordNotFound, StoreError


@dataclass
class NodeRef:
    """Owning node of a record; records go away with their owner."""

    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    kind: Optional[str] = None


@dataclass
class MaterialRecord:
    name: str
    namespace: str
    data: Dict[str, bytes] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    owner: Optional[NodeRef] = None


class ObjectStore(Protocol):
    def get(self, namespace: str, name: str) -> MaterialRecord: ...

    def create_or_update(self, record: MaterialRecord, owner: Optional[NodeRef] = None,
                         labels: Optional[Dict[str, str]] = None) -> None: ...

    def delete(self, record: MaterialRecord) -> None: ...


def _stamp(record: MaterialRecord, owner: Optional[NodeRef], labels: Optional[Dict[str, str]]) -> MaterialRecord:
    rec = deepcopy(record)
    if owner is not None:
        rec.owner = deepcopy(owner)
    if labels:
        rec.labels = {**rec.labels, **labels}
    return rec


class InMemoryObjectStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[Tuple[str, str], MaterialRecord] = {}

    def get(self, namespace: str, name: str) -> MaterialRecord:
        with self._lock:
            rec = self._records.get((namespace, name))
            if rec is None:
                raise RecordNotFound(f"record '{name}' not found in namespace '{namespace}'")
            return deepcopy(rec)

    def create_or_update(self, record: MaterialRecord, owner: Optional[NodeRef] = None,
                         labels: Optional[Dict[str, str]] = None) -> None:
        rec = _stamp(record, owner, labels)
        with self._lock:
            self._records[(rec.namespace, rec.name)] = rec

    def delete(self, record: MaterialRecord) -> None:
        with self._lock:
            if self._records.pop((record.namespace, record.name), None) is None:
                raise RecordNotFound(f"record '{record.name}' not found in namespace '{record.namespace}'")

    def delete_owned_by(self, owner: NodeRef) -> int:
        """Remove every record whose owner matches ``owner``; returns the count."""
        with self._lock:
            keys = [k for k, r in self._records.items()
                    if r.owner is not None and r.owner.name == owner.name and r.owner.namespace == owner.namespace]
            for k in keys:
                del self._records[k]
            return len(keys)

    def __len__(self) -> int:
        return len(self._records)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS records(
  namespace TEXT NOT NULL,
  name TEXT NOT NULL,
  data_json TEXT NOT NULL,
  labels_json TEXT,
  owner_json TEXT,
  updated_ts INTEGER NOT NULL,
  PRIMARY KEY(namespace, name)
);
"""


class SQLiteObjectStore:
    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        with self._lock:
            c = self._connect()
            try:
                for stmt in _SCHEMA.strip().split(';'):
                    s = stmt.strip()
                    if s:
                        c.execute(s)
            finally:
                c.close()

    def _connect(self) -> sqlite3.Connection:
        d = os.path.dirname(self.path)
        if d:
            os.makedirs(d, exist_ok=True)
        try:
            conn = sqlite3.connect(self.path, timeout=5, isolation_level=None)
            conn.execute('PRAGMA journal_mode=WAL;')
            conn.execute('PRAGMA synchronous=NORMAL;')
        except sqlite3.Error as e:
            raise StoreError(f"cannot open store '{self.path}': {e}") from e
        return conn

    def get(self, namespace: str, name: str) -> MaterialRecord:
        with self._lock:
            c = self._connect()
            try:
                row = c.execute('SELECT data_json, labels_json, owner_json FROM records WHERE namespace=? AND name=?',
                                (namespace, name)).fetchone()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e
            finally:
                c.close()
        if not row:
            raise RecordNotFound(f"record '{name}' not found in namespace '{namespace}'")
        data_json, labels_json, owner_json = row
        data = {k: base64.b64decode(v) for k, v in json.loads(data_json).items()}
        owner = NodeRef(**json.loads(owner_json)) if owner_json else None
        return MaterialRecord(name=name, namespace=namespace, data=data,
                              labels=json.loads(labels_json) if labels_json else {}, owner=owner)

    def create_or_update(self, record: MaterialRecord, owner: Optional[NodeRef] = None,
                         labels: Optional[Dict[str, str]] = None) -> None:
        rec = _stamp(record, owner, labels)
        data_json = json.dumps({k: base64.b64encode(v).decode() for k, v in rec.data.items()}, sort_keys=True)
        owner_json = json.dumps(asdict(rec.owner)) if rec.owner is not None else None
        with self._lock:
            c = self._connect()
            try:
                c.execute('INSERT INTO records(namespace,name,data_json,labels_json,owner_json,updated_ts) VALUES (?,?,?,?,?,?) '
                          'ON CONFLICT(namespace,name) DO UPDATE SET data_json=excluded.data_json, '
                          'labels_json=excluded.labels_json, owner_json=excluded.owner_json, updated_ts=excluded.updated_ts',
                          (rec.namespace, rec.name, data_json, json.dumps(rec.labels, sort_keys=True), owner_json, int(time.time())))
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e
            finally:
                c.close()

    def delete(self, record: MaterialRecord) -> None:
        with self._lock:
            c = self._connect()
            try:
                deleted = c.execute('DELETE FROM records WHERE namespace=? AND name=?',
                                    (record.namespace, record.name)).rowcount
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e
            finally:
                c.close()
        if deleted == 0:
            raise RecordNotFound(f"record '{record.name}' not found in namespace '{record.namespace}'")
