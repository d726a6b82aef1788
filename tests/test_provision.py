import base64

import pytest

from nodeprov.config import HSM_PROXY_LIBRARY
from nodeprov.crypto.msp import MSPParser
from nodeprov.crypto.providers import Cryptos
from nodeprov.crypto.models import MSP, MSPSpec, SecretSpec
from nodeprov.errors import CertOUError, ConfigMergeError, InvalidCryptoError
from nodeprov.hsm.descriptor import read_hsm_config
from nodeprov.nodeconfig.io import read_core_bytes, read_core_file, read_orderer_bytes
from nodeprov.nodeconfig.peer import CoreV2
from nodeprov.obs.prom import prometheus_latest
from nodeprov.provision import materialize_config, provision_crypto, rotate_admin_certs
from nodeprov.store.backends import InMemoryObjectStore, NodeRef
from nodeprov.store.materials import MaterialStore

NODE = NodeRef(name="peer1", namespace="org1")

HSM = """
library:
  filepath: /opt/vendor/lib/libpkcs11.so
  image: registry.example.com/hsm-client:1.0
"""


def _enc(data: bytes) -> str:
    return base64.b64encode(data).decode()


def _msp(pki, ous=("peer",)):
    return MSP(
        key_store=_enc(b"key-pem"),
        sign_certs=_enc(pki.leaf_pem(ous=ous)),
        ca_certs=[_enc(pki.root_pem)],
        admin_certs=[_enc(b"admin-0")],
    )


def test_provision_crypto_persists_bundles(pki):
    store = MaterialStore(InMemoryObjectStore())
    tls = _msp(pki, ous=())
    tls.admin_certs = []
    cryptos = Cryptos(enrollment=MSPParser(_msp(pki)), tls=MSPParser(tls))
    response = provision_crypto(cryptos, store, NODE, "peer")
    assert store.get_crypto_response_from_records(NODE) == response
    assert store.get_admin_certs(NODE) == {"admincert-0.pem": b"admin-0"}


def test_provision_crypto_rejects_wrong_ou_before_writing(pki):
    backend = InMemoryObjectStore()
    cryptos = Cryptos(enrollment=MSPParser(_msp(pki, ous=("client",))))
    with pytest.raises(CertOUError) as ei:
        provision_crypto(cryptos, MaterialStore(backend), NODE, "peer")
    assert str(ei.value).startswith(
        "failed to provision crypto for 'peer1': invalid OU for peer identity: invalid OU for signcert")
    assert len(backend) == 0


def test_provision_crypto_reports_invalid_input(pki):
    cryptos = Cryptos(enrollment=MSPParser(MSP(sign_certs="x")))
    with pytest.raises(InvalidCryptoError) as ei:
        provision_crypto(cryptos, MaterialStore(InMemoryObjectStore()), NODE, "peer")
    assert str(ei.value) == ("failed to provision crypto for 'peer1': could not enrollment get crypto: "
                             "invalid crypto: unable to parse MSP, keystore not specified")


def test_provision_crypto_update_keeps_admin(pki):
    store = MaterialStore(InMemoryObjectStore())
    provision_crypto(Cryptos(enrollment=MSPParser(_msp(pki))), store, NODE, "peer")
    renewed = _msp(pki)
    renewed.admin_certs = [_enc(b"admin-new")]
    provision_crypto(Cryptos(enrollment=MSPParser(renewed)), store, NODE, "peer", update=True)
    assert store.get_admin_certs(NODE) == {"admincert-0.pem": b"admin-0"}


def test_rotate_admin_certs():
    store = MaterialStore(InMemoryObjectStore())
    spec = SecretSpec(msp=MSPSpec(component=MSP(admin_certs=[_enc(b"a0")])))
    assert rotate_admin_certs(store, NODE, spec) is True
    assert rotate_admin_certs(store, NODE, spec) is False
    spec.msp.component.admin_certs.append(_enc(b"a1"))
    assert rotate_admin_certs(store, NODE, spec) is True
    assert store.get_admin_certs(NODE) == {"admincert-0.pem": b"a0", "admincert-1.pem": b"a1"}


def test_materialize_peer_config_with_hsm(tmp_path):
    store = MaterialStore(InMemoryObjectStore())
    baseline = read_core_bytes(b"peer:\n  id: peer0\n  BCCSP:\n    Default: SW\n")
    override = read_core_bytes(
        "peer:\n  BCCSP:\n    Default: PKCS11\n    PKCS11:\n      Label: org1\n      Pin: '1234'\n"
        "  deliveryclient:\n    addressOverrides:\n"
        f"      - from: orderer0:7050\n        to: orderer0.ext:443\n        caCertsFile: {_enc(b'orderer-ca')}\n"
        .encode())
    path = tmp_path / "core.yaml"

    certs = materialize_config(baseline, override, str(path), hsm=read_hsm_config(HSM), store=store, node=NODE)

    assert certs == [b"orderer-ca"]
    written = read_core_file(str(path))
    pkcs11 = written.peer.bccsp.pkcs11
    assert pkcs11.library == "/hsm/lib/libpkcs11.so"
    assert pkcs11.label == "org1"
    assert pkcs11.software_verify is True
    entry = written.peer.delivery_client.address_overrides[0]
    assert entry.ca_certs_file == "/orderer/certs/cert0.pem"
    rec = store.get_record("peer1-orderercacerts", NODE)
    assert rec.data == {"cert0.pem": b"orderer-ca"}


def test_materialize_orderer_config_with_proxy(tmp_path):
    baseline = read_orderer_bytes(b"general:\n  listenPort: 7050\n  BCCSP:\n    Default: SW\n")
    override = read_orderer_bytes(b"general:\n  BCCSP:\n    Default: PKCS11\n")
    path = tmp_path / "orderer.yaml"

    certs = materialize_config(baseline, override, str(path), using_hsm_proxy=True,
                               hsm=read_hsm_config(HSM))
    assert certs == []
    written = read_orderer_bytes(path.read_bytes())
    assert written.general.listen_port == 7050
    assert written.general.bccsp.pkcs11.library == HSM_PROXY_LIBRARY
    assert written.general.bccsp.pkcs11.software_verify is True


def test_materialize_wraps_merge_failure(tmp_path):
    baseline = read_core_bytes(b"{}")
    with pytest.raises(ConfigMergeError, match="^failed to materialize peer config: failed to merge peer"):
        materialize_config(baseline, CoreV2(), str(tmp_path / "core.yaml"))
    assert not (tmp_path / "core.yaml").exists()


def test_metrics_exposed():
    body, content_type = prometheus_latest()
    assert b"nodeprov_config_merges_total" in body
    assert content_type.startswith("text/plain")
