"""Error taxonomy for provisioning and configuration composition.

Every layer adds exactly one piece of context in front of the cause, so the
final message reads like a chain: ``could not tls get crypto: ca is not
reachable: pinging 'https://ca:7054/cainfo' failed: ...``. The original
exception stays reachable through ``__cause__``.
"""
from __future__ import annotations

from typing import Type, TypeVar


class ProvisioningError(Exception):
    """Root of all errors raised by nodeprov."""


class CAUnreachableError(ProvisioningError):
    """The certificate-issuing service did not answer the connectivity check."""


class InvalidCryptoError(ProvisioningError):
    """Enrollment request or pre-supplied material failed validation."""


class CertOUError(InvalidCryptoError):
    """Signing certificate does not carry the expected organizational unit."""


class StoreError(ProvisioningError):
    """Object store operation failed."""


class RecordNotFound(StoreError):
    """Requested material record does not exist. Treated as 'absent' by readers."""


class DecodeError(ProvisioningError):
    """Base64, PEM or YAML content could not be decoded."""


class ConfigMergeError(ProvisioningError):
    """Applying configuration overrides failed."""


class HSMConfigError(ProvisioningError):
    """HSM descriptor is missing or malformed."""


E = TypeVar("E", bound=ProvisioningError)


def wrap(err: BaseException, msg: str, cls: Type[E] = None) -> E:  # type: ignore[assignment]
    """Return a new error whose message is ``msg: <err>``.

    The class defaults to the class of ``err`` when it is already a
    ProvisioningError so that callers matching on the category still match
    after context has been added. Use ``raise wrap(err, "...") from err``.
    """
    if cls is None:
        cls = type(err) if isinstance(err, ProvisioningError) else ProvisioningError  # type: ignore[assignment]
    return cls(f"{msg}: {err}")  # type: ignore[misc]


__all__ = [
    "ProvisioningError",
    "CAUnreachableError",
    "InvalidCryptoError",
    "CertOUError",
    "StoreError",
    "RecordNotFound",
    "DecodeError",
    "ConfigMergeError",
    "HSMConfigError",
    "wrap",
]
