"""Provisioner configuration.

Module constants come from the environment (a local .env is honored). The
structured ``ProvisionerConfig`` is layered: defaults, then
config/nodeprov.yml if present, then environment overrides.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

load_dotenv()

DATA_DIR = os.getenv("NODEPROV_DATA_DIR", "var/data")
STORE_DB = os.getenv("NODEPROV_STORE_DB", os.path.join(DATA_DIR, "materials.db"))
ENROLL_HOME_DIR = os.getenv("NODEPROV_ENROLL_HOME_DIR", os.path.join(DATA_DIR, "enroll"))
HSM_CONFIG_PATH = os.getenv("NODEPROV_HSM_CONFIG", "config/hsm-config.yaml")

# Fixed paths shared with the node images; these must match what the images expect.
HSM_PROXY_LIBRARY = os.getenv("NODEPROV_HSM_PROXY_LIBRARY", "/usr/local/lib/libpkcs11-proxy.so")
HSM_LIBRARY_DIR = "/hsm/lib"
SHARED_MOUNT_PATH = "/shared"
ADDRESS_OVERRIDE_CERT_PATH = "/orderer/certs/cert{index}.pem"

_DEFAULT = {
    "ca_ping_timeout_sec": 30.0,
    "namespace": "default",
    "store_db": STORE_DB,
    "enroll_home_dir": ENROLL_HOME_DIR,
    "hsm_config_path": HSM_CONFIG_PATH,
    "pvc_volume_name": "fabric-node-0",
}


@dataclass
class ProvisionerConfig:
    ca_ping_timeout_sec: float = _DEFAULT["ca_ping_timeout_sec"]
    namespace: str = _DEFAULT["namespace"]
    store_db: str = _DEFAULT["store_db"]
    enroll_home_dir: str = _DEFAULT["enroll_home_dir"]
    hsm_config_path: str = _DEFAULT["hsm_config_path"]
    pvc_volume_name: str = _DEFAULT["pvc_volume_name"]


_CONFIG: ProvisionerConfig | None = None

_DEF_PATH = os.path.join(os.getcwd(), "config", "nodeprov.yml")

_ENV_MAP = {
    "ca_ping_timeout_sec": ("NODEPROV_CA_PING_TIMEOUT_SEC", float),
    "namespace": ("NODEPROV_NAMESPACE", str),
    "store_db": ("NODEPROV_STORE_DB", str),
    "enroll_home_dir": ("NODEPROV_ENROLL_HOME_DIR", str),
    "hsm_config_path": ("NODEPROV_HSM_CONFIG", str),
    "pvc_volume_name": ("NODEPROV_PVC_VOLUME_NAME", str),
}


def _env_changed(cfg: ProvisionerConfig) -> bool:
    for k, (env, cast) in _ENV_MAP.items():
        if env not in os.environ:
            continue
        try:
            env_val = cast(os.environ[env])
        except ValueError:
            continue
        if env_val != getattr(cfg, k):
            return True
    return False


def load_config(path: str | None = None) -> ProvisionerConfig:
    global _CONFIG
    if _CONFIG is not None and path is None and not _env_changed(_CONFIG):
        return _CONFIG
    data: Dict[str, Any] = dict(_DEFAULT)
    # File first
    cfg_path = path or _DEF_PATH
    if os.path.exists(cfg_path):
        with open(cfg_path, "r", encoding="utf-8") as f:
            file_cfg = yaml.safe_load(f) or {}
        if isinstance(file_cfg, dict):
            data.update({k: v for k, v in file_cfg.items() if k in _DEFAULT})
    # Env overrides
    for k, (env, cast) in _ENV_MAP.items():
        if env in os.environ:
            try:
                data[k] = cast(os.environ[env])
            except ValueError:
                pass
    cfg = ProvisionerConfig(
        ca_ping_timeout_sec=float(data["ca_ping_timeout_sec"]),
        namespace=str(data["namespace"]),
        store_db=str(data["store_db"]),
        enroll_home_dir=str(data["enroll_home_dir"]),
        hsm_config_path=str(data["hsm_config_path"]),
        pvc_volume_name=str(data["pvc_volume_name"]),
    )
    if path is None:
        _CONFIG = cfg
    return cfg
