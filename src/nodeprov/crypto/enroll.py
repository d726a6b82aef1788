"""Enrollment against a Fabric-style certificate authority over HTTPS.

``FabricCAClient`` speaks the CA's REST API (``/cainfo`` for liveness,
``/api/v1/enroll`` for issuance). ``Enroller`` adapts it to the provider
contract and adds the admin certificates declared in the request.
"""
from __future__ import annotations

import base64
import ipaddress
import logging
import os
import ssl
from typing import List, Optional, Tuple

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ..config import load_config
from ..errors import InvalidCryptoError, ProvisioningError, wrap
from ..utils.logging import get_logger
from .bundle import CryptoBundle
from .certs import base64_to_bytes
from .models import Enrollment

ENROLL_PATH = "/api/v1/enroll"
CAINFO_PATH = "/cainfo"


def _san_entries(hosts: List[str]) -> List[x509.GeneralName]:
    out: List[x509.GeneralName] = []
    for h in hosts:
        try:
            out.append(x509.IPAddress(ipaddress.ip_address(h)))
        except ValueError:
            out.append(x509.DNSName(h))
    return out


def generate_key_and_csr(common_name: str, hosts: List[str]) -> Tuple[bytes, bytes]:
    """Return (PKCS8 PEM private key, PEM CSR) for a fresh P-256 key."""
    key = ec.generate_private_key(ec.SECP256R1())
    builder = x509.CertificateSigningRequestBuilder().subject_name(
        x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    )
    sans = _san_entries(hosts)
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)
    csr = builder.sign(key, hashes.SHA256())
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return key_pem, csr.public_bytes(serialization.Encoding.PEM)


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        return bool(cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca)
    except x509.ExtensionNotFound:
        return False


def _is_root(cert: x509.Certificate) -> bool:
    try:
        aki = cert.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier).value.key_identifier
    except x509.ExtensionNotFound:
        aki = None
    if not aki:
        return True
    try:
        ski = cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value.digest
    except x509.ExtensionNotFound:
        return False
    return aki == ski


def split_ca_chain(chain: bytes) -> Tuple[List[bytes], List[bytes]]:
    """Split a PEM CA chain into (root certs, intermediate certs).

    When any intermediate is present the whole chain is kept as a single
    intermediate entry so that the trust path stays complete.
    """
    if not chain.strip():
        return [], []
    try:
        certs = x509.load_pem_x509_certificates(chain)
    except ValueError as e:
        raise ProvisioningError(f"Failed to parse certificate in the CA chain: {e}") from e
    roots: List[bytes] = []
    inters: List[bytes] = []
    for cert in certs:
        if not _is_ca(cert):
            raise ProvisioningError("A certificate in the CA chain is not a CA certificate")
        pem = cert.public_bytes(serialization.Encoding.PEM)
        if _is_root(cert):
            roots.append(pem)
        else:
            inters.append(pem)
    if inters:
        inters = [chain]
    return roots, inters


class FabricCAClient:
    def __init__(self, enrollment: Enrollment, home_dir: str = "", tls_cert: bytes = b"",
                 transport: Optional[httpx.BaseTransport] = None,
                 logger: Optional[logging.Logger] = None):
        self.enrollment = enrollment
        self.home_dir = home_dir
        self.tls_cert = tls_cert
        self._transport = transport
        self.log = logger or get_logger("enroll")

    @property
    def url(self) -> str:
        return f"https://{self.enrollment.ca_host}:{self.enrollment.ca_port}"

    def _ssl_context(self) -> ssl.SSLContext:
        ctx = ssl.create_default_context(cadata=self.tls_cert.decode("utf-8"))
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        return ctx

    def _client(self, timeout: float) -> httpx.Client:
        if self._transport is not None:
            return httpx.Client(base_url=self.url, timeout=timeout, transport=self._transport)
        return httpx.Client(base_url=self.url, timeout=timeout, verify=self._ssl_context())

    def ping_ca(self, timeout: float) -> None:
        url = f"{self.url}{CAINFO_PATH}"
        self.log.info("pinging CA at '%s' with timeout %ss", url, timeout)
        try:
            with self._client(timeout) as client:
                r = client.get(CAINFO_PATH)
        except Exception as e:
            raise wrap(e, f"pinging '{url}' failed") from e
        if r.status_code != 200:
            raise ProvisioningError(
                f"pinging '{url}' failed: failed health check, ca is not running (status {r.status_code})")

    def enroll(self, timeout: Optional[float] = None) -> CryptoBundle:
        req = self.enrollment
        self.log.info("enrolling '%s' with CA '%s'", req.enroll_id, req.ca_host)
        hosts = req.csr.hosts if req.csr is not None else []
        key_pem, csr_pem = generate_key_and_csr(req.enroll_id, hosts)
        body = {"certificate_request": csr_pem.decode("utf-8")}
        if req.ca_name:
            body["caname"] = req.ca_name
        if timeout is None:
            timeout = load_config().ca_ping_timeout_sec
        with self._client(timeout) as client:
            r = client.post(ENROLL_PATH, json=body, auth=(req.enroll_id, req.enroll_secret))
        try:
            payload = r.json()
        except ValueError:
            payload = {}
        if r.status_code != 200 or not payload.get("success", False):
            raise ProvisioningError(
                f"enroll request failed with status {r.status_code}: {payload.get('errors') or r.text}")
        result = payload.get("result") or {}
        try:
            sign_cert = base64.b64decode(result.get("Cert", ""))
            chain = base64.b64decode((result.get("ServerInfo") or {}).get("CAChain", ""))
        except ValueError as e:
            raise ProvisioningError(f"malformed enroll response: {e}") from e
        ca_certs, inter_certs = split_ca_chain(chain)
        self._store_key(key_pem)
        return CryptoBundle(
            ca_certs=ca_certs,
            intermediate_certs=inter_certs,
            sign_cert=sign_cert,
            private_key=key_pem,
        )

    def _store_key(self, key_pem: bytes) -> None:
        if not self.home_dir:
            return
        keystore = os.path.join(self.home_dir, "msp", "keystore")
        os.makedirs(keystore, mode=0o750, exist_ok=True)
        path = os.path.join(keystore, "key.pem")
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key_pem)


class Enroller:
    def __init__(self, client: FabricCAClient, timeout: Optional[float] = None,
                 logger: Optional[logging.Logger] = None):
        self.client = client
        self.timeout = timeout if timeout is not None else load_config().ca_ping_timeout_sec
        self.log = logger or get_logger("enroll")

    def ping(self) -> None:
        self.log.info("checking CA is reachable before enrolling")
        self.client.ping_ca(self.timeout)

    def validate(self) -> None:
        req = self.client.enrollment
        if not req.ca_host:
            raise InvalidCryptoError("unable to enroll, CA host not specified")
        if not req.ca_port:
            raise InvalidCryptoError("unable to enroll, CA port not specified")
        if not req.enroll_id:
            raise InvalidCryptoError("unable to enroll, enrollment ID not specified")
        if not req.enroll_secret:
            raise InvalidCryptoError("unable to enroll, enrollment secret not specified")
        if not req.ca_tls.ca_cert:
            raise InvalidCryptoError("unable to enroll, CA TLS certificate not specified")

    def fetch(self) -> CryptoBundle:
        try:
            bundle = self.client.enroll(self.timeout)
        except Exception as e:
            raise wrap(e, "failed to enroll with CA") from e
        for admin_cert in self.client.enrollment.admin_certs:
            try:
                bundle.admin_certs.append(base64_to_bytes(admin_cert))
            except Exception as e:
                raise wrap(e, "failed to parse admin cert") from e
        return bundle


def new_enroller(enrollment: Enrollment, home_dir: str, timeout: Optional[float] = None,
                 transport: Optional[httpx.BaseTransport] = None) -> Enroller:
    client = FabricCAClient(enrollment, home_dir, enrollment.get_ca_tls_bytes(), transport=transport)
    return Enroller(client, timeout=timeout)
