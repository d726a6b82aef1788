import pytest

from nodeprov.crypto.bundle import CryptoBundle, CryptoBundleSet
from nodeprov.errors import RecordNotFound
from nodeprov.store.backends import MaterialRecord, NodeRef, SQLiteObjectStore
from nodeprov.store.materials import MaterialStore


def test_sqlite_get_missing(tmp_path):
    store = SQLiteObjectStore(str(tmp_path / "m.db"))
    with pytest.raises(RecordNotFound):
        store.get("default", "nope")
    with pytest.raises(RecordNotFound):
        store.delete(MaterialRecord(name="nope", namespace="default"))


def test_sqlite_upsert_and_namespaces(tmp_path):
    store = SQLiteObjectStore(str(tmp_path / "m.db"))
    owner = NodeRef(name="orderer1", namespace="ns1", uid="u1", kind="Orderer")
    store.create_or_update(MaterialRecord(name="r", namespace="ns1", data={"a.pem": b"\x00\x01"}),
                           owner=owner, labels={"k": "v"})
    store.create_or_update(MaterialRecord(name="r", namespace="ns1", data={"b.pem": b"two"}), owner=owner)
    rec = store.get("ns1", "r")
    assert rec.data == {"b.pem": b"two"}
    assert rec.owner == owner
    with pytest.raises(RecordNotFound):
        store.get("ns2", "r")


def test_sqlite_persists_across_instances(tmp_path):
    path = str(tmp_path / "sub" / "m.db")
    node = NodeRef(name="peer0")
    response = CryptoBundleSet(enrollment=CryptoBundle(
        ca_certs=[b"ca"], admin_certs=[b"admin"], sign_cert=b"sign", private_key=b"key"))
    MaterialStore(SQLiteObjectStore(path)).generate_records_from_response(node, response)

    reopened = MaterialStore(SQLiteObjectStore(path))
    assert reopened.get_crypto_response_from_records(node) == response
    reopened.delete_all_records(node)
    assert reopened.get_crypto_response_from_records(node) == CryptoBundleSet()
