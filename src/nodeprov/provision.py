"""Top-level flows consumed by the reconciliation layer.

Each flow returns normally or raises one ProvisioningError whose message
chains the context of every layer it passed through.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .crypto.bundle import CryptoBundleSet
from .crypto.certs import certs_differ
from .crypto.providers import Cryptos
from .crypto.models import SecretSpec, get_admin_certs_from_spec
from .errors import wrap
from .hsm.descriptor import HSMConfig
from .nodeconfig.io import write_to_file
from .nodeconfig.peer import Core
from .nodeconfig.types import NodeConfig
from .store.backends import NodeRef
from .store.materials import MaterialStore
from .utils.logging import get_logger


def provision_crypto(cryptos: Cryptos, store: MaterialStore, node: NodeRef, role: str, *,
                     update: bool = False, labels: Optional[Dict[str, str]] = None,
                     logger: Optional[logging.Logger] = None) -> CryptoBundleSet:
    """Generate crypto for ``node``, check the identity OU against ``role`` and persist it."""
    log = logger or get_logger("provision")
    try:
        response = cryptos.generate_crypto_response()
        response.verify_cert_ou(role)
        if update:
            store.update_records_from_response(node, response, labels)
        else:
            store.generate_records_from_response(node, response, labels)
    except Exception as e:
        log.error("crypto provisioning failed for '%s': %s", node.name, e)
        raise wrap(e, f"failed to provision crypto for '{node.name}'") from e
    log.info("crypto provisioned for '%s'", node.name)
    return response


def rotate_admin_certs(store: MaterialStore, node: NodeRef, secret_spec: Optional[SecretSpec],
                       labels: Optional[Dict[str, str]] = None) -> bool:
    """Rewrite the admin cert record when the declared admin certs changed. Returns True if rewritten."""
    declared = get_admin_certs_from_spec(secret_spec)
    try:
        changed = certs_differ(store.get_admin_certs(node), declared)
        if changed:
            store.update_admin_cert_record(node, secret_spec, labels)
    except Exception as e:
        raise wrap(e, "failed to update admin certs") from e
    return changed


def materialize_config(baseline: NodeConfig, override: Optional[NodeConfig], path: str, *,
                       using_hsm_proxy: bool = False, hsm: Optional[HSMConfig] = None,
                       store: Optional[MaterialStore] = None, node: Optional[NodeRef] = None,
                       logger: Optional[logging.Logger] = None) -> List[bytes]:
    """Merge ``override`` into ``baseline`` in place and write the result to ``path``.

    Returns the CA certs pulled out of delivery address overrides (peers
    only), which are also stored when ``store`` and ``node`` are given.
    """
    log = logger or get_logger("provision")
    try:
        baseline.merge_with(override, using_hsm_proxy)
        if hsm is not None and not using_hsm_proxy:
            baseline.set_bccsp_library(hsm.hsm_library_path())
        certs = baseline.address_override_certs if isinstance(baseline, Core) else []
        write_to_file(baseline, path)
        if store is not None and node is not None:
            store.create_orderer_ca_certs_record(node, certs)
    except Exception as e:
        raise wrap(e, f"failed to materialize {baseline.kind} config") from e
    log.info("%s config written to %s", baseline.kind, path)
    return certs
