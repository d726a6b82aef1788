"""Persist crypto bundles as named material records.

Each (category, node) pair maps to five records named
``<category>-<node>-<kind>``; kinds are admincerts, cacerts, intercerts,
signcert and keystore. Writes are upserts, so repeating a call with the
same bundle leaves the store unchanged.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Dict, List, Optional

from ..crypto.bundle import CryptoBundle, CryptoBundleSet
from ..crypto.certs import convert_certs_to_bytes
from ..crypto.models import SecretSpec, get_admin_certs_from_spec
from ..errors import RecordNotFound, StoreError, wrap
from ..obs.prom import observe_record
from ..utils.logging import get_logger
from .backends import MaterialRecord, NodeRef, ObjectStore


class SecretType(str, Enum):
    ECERT = "ecert"
    TLS = "tls"
    CLIENTAUTH = "clientauth"


KINDS = ("admincerts", "cacerts", "intercerts", "signcert", "keystore")

_INDEXED = re.compile(r"^(?P<type>[a-z]+)-(?P<idx>\d+)\.pem$")


def record_name(category: str, node_name: str, kind: str) -> str:
    return f"{_category(category)}-{node_name}-{kind}"


def _category(category) -> str:
    return category.value if isinstance(category, SecretType) else str(category)


def certs_data(cert_type: str, certs: List[bytes]) -> Dict[str, bytes]:
    # index is list position, so skipped entries leave a gap
    return {f"{cert_type}-{i}.pem": c for i, c in enumerate(certs) if c}


def cert_bytes_from_data(data: Dict[str, bytes]) -> List[bytes]:
    def key(k: str):
        m = _INDEXED.match(k)
        return (0, int(m.group("idx")), k) if m else (1, 0, k)

    return [data[k] for k in sorted(data, key=key)]


class MaterialStore:
    def __init__(self, store: ObjectStore, labels: Optional[Dict[str, str]] = None,
                 logger: Optional[logging.Logger] = None):
        self.store = store
        self.labels = dict(labels or {})
        self.log = logger or get_logger("store")

    # single records

    def create_admin_record(self, name: str, node: NodeRef, admin_certs: List[bytes],
                            labels: Optional[Dict[str, str]] = None) -> None:
        if not admin_certs or admin_certs[0] == b"":
            return
        self.create_or_update(node, name, certs_data("admincert", admin_certs), labels)

    def create_ca_certs_record(self, name: str, node: NodeRef, ca_certs: List[bytes],
                               labels: Optional[Dict[str, str]] = None) -> None:
        if not ca_certs:
            return
        self.create_or_update(node, name, certs_data("cacert", ca_certs), labels)

    def create_intermediate_certs_record(self, name: str, node: NodeRef, inter_certs: List[bytes],
                                         labels: Optional[Dict[str, str]] = None) -> None:
        if not inter_certs:
            return
        self.create_or_update(node, name, certs_data("intercert", inter_certs), labels)

    def create_sign_cert_record(self, name: str, node: NodeRef, cert: bytes,
                                labels: Optional[Dict[str, str]] = None) -> None:
        if not cert:
            return
        self.create_or_update(node, name, {"cert.pem": cert}, labels)

    def create_key_record(self, name: str, node: NodeRef, key: bytes,
                          labels: Optional[Dict[str, str]] = None) -> None:
        if not key:
            return
        self.create_or_update(node, name, {"key.pem": key}, labels)

    def create_or_update(self, node: NodeRef, name: str, data: Dict[str, bytes],
                         labels: Optional[Dict[str, str]] = None) -> None:
        self.log.info("create/update record '%s'", name)
        merged = {**self.labels, **(labels or {})}
        rec = MaterialRecord(name=name, namespace=node.namespace, data=dict(data), labels=merged)
        try:
            self.store.create_or_update(rec, owner=node, labels=merged)
        except Exception as e:
            observe_record("upsert", "fail")
            raise wrap(e, f"failed to create or update record '{name}'", StoreError) from e
        observe_record("upsert", "ok")

    def get_record(self, name: str, node: NodeRef) -> Optional[MaterialRecord]:
        """Return the record or None when it does not exist."""
        try:
            rec = self.store.get(node.namespace, name)
        except RecordNotFound:
            observe_record("get", "not_found")
            return None
        except Exception as e:
            observe_record("get", "fail")
            raise wrap(e, f"failed to get record '{name}'", StoreError) from e
        observe_record("get", "ok")
        return rec

    # per category

    def generate_records(self, category, node: NodeRef, bundle: Optional[CryptoBundle],
                         labels: Optional[Dict[str, str]] = None) -> None:
        if bundle is None:
            return
        cat = _category(category)
        if cat != SecretType.TLS.value:
            try:
                self.create_admin_record(record_name(cat, node.name, "admincerts"), node, bundle.admin_certs, labels)
            except Exception as e:
                raise wrap(e, "failed to create admin certs record") from e
        self._write_non_admin(cat, node, bundle, labels)

    def update_records(self, category, node: NodeRef, bundle: Optional[CryptoBundle],
                       labels: Optional[Dict[str, str]] = None) -> None:
        # admin certs go through update_admin_cert_record
        if bundle is None:
            return
        self._write_non_admin(_category(category), node, bundle, labels)

    def _write_non_admin(self, cat: str, node: NodeRef, bundle: CryptoBundle,
                         labels: Optional[Dict[str, str]]) -> None:
        steps = (
            ("cacerts", self.create_ca_certs_record, bundle.ca_certs, "ca certs"),
            ("intercerts", self.create_intermediate_certs_record, bundle.intermediate_certs, "intermediate ca certs"),
            ("signcert", self.create_sign_cert_record, bundle.sign_cert, "signing cert"),
            ("keystore", self.create_key_record, bundle.private_key, "key"),
        )
        for kind, fn, value, what in steps:
            try:
                fn(record_name(cat, node.name, kind), node, value, labels)
            except Exception as e:
                raise wrap(e, f"failed to create {what} record") from e

    def update_admin_cert_record(self, node: NodeRef, secret_spec: Optional[SecretSpec],
                                 labels: Optional[Dict[str, str]] = None) -> None:
        admin_certs = get_admin_certs_from_spec(secret_spec)
        if not admin_certs or admin_certs[0] == "":
            return
        certs = convert_certs_to_bytes(admin_certs)
        self.create_or_update(node, record_name(SecretType.ECERT, node.name, "admincerts"),
                              certs_data("admincert", certs), labels)

    def create_orderer_ca_certs_record(self, node: NodeRef, certs: List[bytes],
                                       labels: Optional[Dict[str, str]] = None) -> None:
        """Store externalized address-override certs as cert<i>.pem, matching their rewritten paths."""
        if not certs:
            return
        self.create_or_update(node, f"{node.name}-orderercacerts",
                              {f"cert{i}.pem": c for i, c in enumerate(certs)}, labels)

    def get_admin_certs(self, node: NodeRef) -> Dict[str, bytes]:
        """Current admin cert blobs for the node identity; empty when absent."""
        rec = self.get_record(record_name(SecretType.ECERT, node.name, "admincerts"), node)
        return dict(rec.data) if rec is not None else {}

    def get_crypto_from_records(self, category, node: NodeRef) -> CryptoBundle:
        cat = _category(category)
        bundle = CryptoBundle()
        rec = self.get_record(record_name(cat, node.name, "admincerts"), node)
        if rec is not None:
            bundle.admin_certs = cert_bytes_from_data(rec.data)
        rec = self.get_record(record_name(cat, node.name, "cacerts"), node)
        if rec is not None:
            bundle.ca_certs = cert_bytes_from_data(rec.data)
        rec = self.get_record(record_name(cat, node.name, "intercerts"), node)
        if rec is not None:
            bundle.intermediate_certs = cert_bytes_from_data(rec.data)
        rec = self.get_record(record_name(cat, node.name, "signcert"), node)
        if rec is not None:
            bundle.sign_cert = rec.data.get("cert.pem", b"")
        rec = self.get_record(record_name(cat, node.name, "keystore"), node)
        if rec is not None:
            bundle.private_key = rec.data.get("key.pem", b"")
        return bundle

    def delete_records(self, category, node: NodeRef) -> None:
        cat = _category(category)
        for kind in KINDS:
            name = record_name(cat, node.name, kind)
            try:
                self.store.delete(MaterialRecord(name=name, namespace=node.namespace))
            except RecordNotFound:
                observe_record("delete", "not_found")
                continue
            except Exception as e:
                observe_record("delete", "fail")
                raise wrap(e, f"failed to delete record '{name}'", StoreError) from e
            observe_record("delete", "ok")

    # whole bundle sets

    def generate_records_from_response(self, node: NodeRef, response: Optional[CryptoBundleSet],
                                       labels: Optional[Dict[str, str]] = None) -> None:
        if response is None:
            return
        for cat, bundle, what in self._members(response):
            try:
                self.generate_records(cat, node, bundle, labels)
            except Exception as e:
                raise wrap(e, f"failed to generate {what} records") from e

    def update_records_from_response(self, node: NodeRef, response: Optional[CryptoBundleSet],
                                     labels: Optional[Dict[str, str]] = None) -> None:
        if response is None:
            return
        for cat, bundle, what in self._members(response):
            try:
                self.update_records(cat, node, bundle, labels)
            except Exception as e:
                raise wrap(e, f"failed to update {what} records") from e

    def get_crypto_response_from_records(self, node: NodeRef) -> CryptoBundleSet:
        """Read back all three categories; a category with no records comes back as None."""
        out = CryptoBundleSet()
        for cat, attr, what in ((SecretType.ECERT, "enrollment", "ecert"),
                                (SecretType.TLS, "tls", "tls"),
                                (SecretType.CLIENTAUTH, "client_auth", "client auth")):
            try:
                bundle = self.get_crypto_from_records(cat, node)
            except Exception as e:
                raise wrap(e, f"failed to get {what} crypto") from e
            setattr(out, attr, None if bundle.is_empty() else bundle)
        return out

    def delete_all_records(self, node: NodeRef) -> None:
        for cat in SecretType:
            self.delete_records(cat, node)

    @staticmethod
    def _members(response: CryptoBundleSet):
        return (
            (SecretType.ECERT, response.enrollment, "ecert"),
            (SecretType.TLS, response.tls, "tls"),
            (SecretType.CLIENTAUTH, response.client_auth, "client auth"),
        )
