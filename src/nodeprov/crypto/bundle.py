from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ..errors import wrap
from .certs import verify_cert_ou


@dataclass
class CryptoBundle:
    """Certificates and key for one (node, category) pair."""

    ca_certs: List[bytes] = field(default_factory=list)
    intermediate_certs: List[bytes] = field(default_factory=list)
    admin_certs: List[bytes] = field(default_factory=list)
    sign_cert: bytes = b""
    private_key: bytes = b""

    def is_empty(self) -> bool:
        return not (self.ca_certs or self.intermediate_certs or self.admin_certs
                    or self.sign_cert or self.private_key)

    def verify_cert_ou(self, role: str) -> None:
        # Admin certs are accepted as supplied; only the signing cert is checked.
        if not self.sign_cert:
            return
        try:
            verify_cert_ou(self.sign_cert, role.lower())
        except Exception as e:
            raise wrap(e, "invalid OU for signcert") from e


@dataclass
class CryptoBundleSet:
    enrollment: Optional[CryptoBundle] = None
    tls: Optional[CryptoBundle] = None
    client_auth: Optional[CryptoBundle] = None

    def verify_cert_ou(self, role: str) -> None:
        if self.enrollment is None:
            return
        try:
            self.enrollment.verify_cert_ou(role)
        except Exception as e:
            raise wrap(e, f"invalid OU for {role} identity") from e
