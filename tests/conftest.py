import datetime as dt

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


def _name(cn, ous=()):
    attrs = [x509.NameAttribute(NameOID.COMMON_NAME, cn)]
    attrs += [x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, ou) for ou in ous]
    return x509.Name(attrs)


def _pem(cert):
    return cert.public_bytes(serialization.Encoding.PEM)


def issue(subject, public_key, issuer_cert, issuer_key, ca=False, extensions=()):
    now = dt.datetime.now(dt.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_cert.subject if issuer_cert is not None else subject)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - dt.timedelta(minutes=5))
        .not_valid_after(now + dt.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
    )
    if issuer_cert is not None:
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_cert.public_key()), critical=False)
    for ext in extensions:
        builder = builder.add_extension(ext, critical=False)
    return builder.sign(issuer_key, hashes.SHA256())


class PKI:
    """Root CA, intermediate CA and a helper to issue leaf certs."""

    def __init__(self):
        self.root_key = ec.generate_private_key(ec.SECP256R1())
        self.root = issue(_name("test-root-ca"), self.root_key.public_key(), None, self.root_key, ca=True)
        self.inter_key = ec.generate_private_key(ec.SECP256R1())
        self.inter = issue(_name("test-intermediate-ca"), self.inter_key.public_key(),
                           self.root, self.root_key, ca=True)

    @property
    def root_pem(self):
        return _pem(self.root)

    @property
    def inter_pem(self):
        return _pem(self.inter)

    def leaf_pem(self, cn="peer1", ous=("peer",)):
        key = ec.generate_private_key(ec.SECP256R1())
        return _pem(issue(_name(cn, ous), key.public_key(), self.root, self.root_key))

    def sign_csr(self, csr, ous=("peer",)):
        exts = []
        try:
            exts.append(csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value)
        except x509.ExtensionNotFound:
            pass
        cn = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        return _pem(issue(_name(cn, ous), csr.public_key(), self.inter, self.inter_key, extensions=exts))


@pytest.fixture(scope="session")
def pki():
    return PKI()