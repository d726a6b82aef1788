"""Crypto sourcing contract and the per-node orchestration over it.

A provider answers three questions in order: is the issuer reachable
(``ping``), is the request well formed (``validate``), and what material
does it produce (``fetch``). Failures raise; there are no retries here.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from ..errors import CAUnreachableError, InvalidCryptoError, wrap
from ..obs.prom import observe_crypto
from ..utils.logging import get_logger
from .bundle import CryptoBundle, CryptoBundleSet
from .models import EnrollmentSpec, MSPSpec


@runtime_checkable
class CryptoProvider(Protocol):
    def ping(self) -> None: ...

    def validate(self) -> None: ...

    def fetch(self) -> CryptoBundle: ...


def generate_crypto(provider: CryptoProvider, bundle: str = "") -> CryptoBundle:
    try:
        provider.ping()
    except Exception as e:
        observe_crypto(bundle, "ping", False)
        raise wrap(e, "ca is not reachable", CAUnreachableError) from e
    try:
        provider.validate()
    except Exception as e:
        observe_crypto(bundle, "validate", False)
        raise wrap(e, "invalid crypto", InvalidCryptoError) from e
    try:
        result = provider.fetch()
    except Exception:
        observe_crypto(bundle, "fetch", False)
        raise
    observe_crypto(bundle, "fetch", True)
    return result


@dataclass
class Cryptos:
    enrollment: Optional[CryptoProvider] = None
    tls: Optional[CryptoProvider] = None
    client_auth: Optional[CryptoProvider] = None
    logger: Optional[logging.Logger] = None

    def generate_crypto_response(self) -> CryptoBundleSet:
        log = self.logger or get_logger("crypto")
        result = CryptoBundleSet()
        for bundle, attr in (("enrollment", "enrollment"), ("tls", "tls"), ("clientauth", "client_auth")):
            provider = getattr(self, attr)
            if provider is None:
                continue
            log.info("generating %s crypto", bundle)
            try:
                setattr(result, attr, generate_crypto(provider, bundle))
            except Exception as e:
                raise wrap(e, f"could not {bundle} get crypto") from e
        return result


def get_common_enrollers(cryptos: Cryptos, enrollment_spec: Optional[EnrollmentSpec],
                         storage_path: str, timeout: Optional[float] = None) -> None:
    """Attach TLS and client-auth enrollers that are requested but not yet set."""
    from .enroll import new_enroller

    if enrollment_spec is None:
        return
    if enrollment_spec.tls is not None and cryptos.tls is None:
        cryptos.tls = new_enroller(enrollment_spec.tls, os.path.join(storage_path, "tls"), timeout=timeout)
    if enrollment_spec.client_auth is not None and cryptos.client_auth is None:
        cryptos.client_auth = new_enroller(
            enrollment_spec.client_auth, os.path.join(storage_path, "clientauth"), timeout=timeout)


def get_msp_crypto(cryptos: Cryptos, msp_spec: Optional[MSPSpec]) -> None:
    from .msp import MSPParser

    if msp_spec is None:
        return
    if msp_spec.component is not None:
        cryptos.enrollment = MSPParser(msp_spec.component)
    if msp_spec.tls is not None:
        cryptos.tls = MSPParser(msp_spec.tls)
    if msp_spec.client_auth is not None:
        cryptos.client_auth = MSPParser(msp_spec.client_auth)
