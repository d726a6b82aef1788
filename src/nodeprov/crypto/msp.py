from __future__ import annotations

import logging
from typing import List, Optional

from ..errors import InvalidCryptoError, wrap
from ..utils.logging import get_logger
from .bundle import CryptoBundle
from .certs import base64_to_bytes
from .models import MSP


class MSPParser:
    """Provider for material that was issued elsewhere and supplied base64-encoded."""

    def __init__(self, msp: MSP, logger: Optional[logging.Logger] = None):
        self.msp = msp
        self.log = logger or get_logger("msp")

    def ping(self) -> None:
        # nothing to reach
        return None

    def validate(self) -> None:
        if not self.msp.key_store:
            raise InvalidCryptoError("unable to parse MSP, keystore not specified")
        if not self.msp.sign_certs:
            raise InvalidCryptoError("unable to parse MSP, signcert not specified")
        if not self.msp.ca_certs:
            raise InvalidCryptoError("unable to parse MSP, ca certs not specified")

    def fetch(self) -> CryptoBundle:
        self.log.debug("parsing supplied MSP material")
        bundle = CryptoBundle()
        bundle.sign_cert = self._decode(self.msp.sign_certs, "signcert")
        bundle.private_key = self._decode(self.msp.key_store, "keystore")
        bundle.admin_certs = self._decode_all(self.msp.admin_certs, "admin cert")
        bundle.intermediate_certs = self._decode_all(self.msp.intermediate_certs, "intermediate cert")
        bundle.ca_certs = self._decode_all(self.msp.ca_certs, "ca cert")
        return bundle

    @staticmethod
    def _decode(value: str, what: str) -> bytes:
        try:
            return base64_to_bytes(value)
        except Exception as e:
            raise wrap(e, f"failed to parse {what}") from e

    def _decode_all(self, values: List[str], what: str) -> List[bytes]:
        return [self._decode(v, what) for v in values]
