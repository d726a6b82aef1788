"""Certificate helpers and organizational-unit (OU) checks."""
from __future__ import annotations

import base64
import binascii
from typing import Iterable, List, Mapping

from cryptography import x509
from cryptography.x509.oid import NameOID

from ..errors import CertOUError, DecodeError


def base64_to_bytes(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"illegal base64 data: {e}") from e


def convert_certs_to_bytes(certs: Iterable[str]) -> List[bytes]:
    return [base64_to_bytes(c) for c in certs]


def load_pem_certificate(pem_bytes: bytes) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(pem_bytes)
    except ValueError as e:
        raise DecodeError(f"failed to parse certificate: {e}") from e


def organizational_units(cert: x509.Certificate) -> List[str]:
    return [str(a.value) for a in cert.subject.get_attributes_for_oid(NameOID.ORGANIZATIONAL_UNIT_NAME)]


def verify_cert_ou(pem_bytes: bytes, ou: str) -> None:
    cert = load_pem_certificate(pem_bytes)
    ous = organizational_units(cert)
    if not ous:
        raise CertOUError("OU not defined")
    if ou.lower() not in [o.lower() for o in ous]:
        raise CertOUError(f"cert does not have right OU, expecting '{ou}'")


def certs_differ(current: Mapping[str, bytes], updated: List[str]) -> bool:
    """True when the base64 ``updated`` list holds certs not present in ``current``.

    Order is ignored. An empty ``updated`` list never counts as a difference.
    """
    if len(current) != len(updated) and len(updated) > 0:
        return True
    existing = list(current.values())
    for cert_b64 in updated:
        if base64_to_bytes(cert_b64) not in existing:
            return True
    return False
