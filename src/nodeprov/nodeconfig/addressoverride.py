from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from pydantic import Field

from ..config import ADDRESS_OVERRIDE_CERT_PATH
from ..crypto.certs import base64_to_bytes
from .types import ConfigModel


class AddressOverride(ConfigModel):
    """Delivery endpoint rewrite. ``ca_certs_file`` is base64 PEM on input, a path after merge."""

    from_: str = Field("", alias="from")
    to: str = ""
    ca_certs_file: str = ""


def cert_path(index: int) -> str:
    return ADDRESS_OVERRIDE_CERT_PATH.format(index=index)


def externalize_address_overrides(
    entries: Sequence[AddressOverride],
    previous_certs: Optional[Sequence[bytes]] = None,
) -> Tuple[List[AddressOverride], List[bytes]]:
    """Move embedded CA certs out of the override list.

    Returns new entries whose ``ca_certs_file`` points at
    ``/orderer/certs/cert<i>.pem`` plus the decoded cert for each position.
    An entry that already carries its own path keeps the bytes recorded for
    that position in ``previous_certs``. Bad base64 raises DecodeError.
    """
    previous = list(previous_certs or [])
    rewritten: List[AddressOverride] = []
    certs: List[bytes] = []
    for i, entry in enumerate(entries):
        path = cert_path(i)
        if entry.ca_certs_file == path and i < len(previous):
            data = previous[i]
        else:
            data = base64_to_bytes(entry.ca_certs_file)
        rewritten.append(entry.model_copy(update={"ca_certs_file": path}, deep=True))
        certs.append(data)
    return rewritten, certs
