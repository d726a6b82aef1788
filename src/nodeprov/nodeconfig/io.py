"""Read and write node configuration documents (YAML).

Peer documents get a one-shot upgrade for the older scalar form of
``peer.gossip.bootstrap``: if the document does not validate, that single
field is rewritten to a list and validation is attempted once more.
"""
from __future__ import annotations

from copy import deepcopy
from typing import Any, Dict, Optional, Tuple, Type

import yaml
from pydantic import ValidationError

from ..errors import DecodeError, wrap
from .orderer import ORDERER_VERSIONS, OrdererV25
from .peer import CORE_VERSIONS, Core
from .types import BCCSP, NodeConfig


def _load_yaml(data: bytes) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise DecodeError(f"invalid yaml: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise DecodeError(f"expected a mapping at the document root, got {type(raw).__name__}")
    return raw


def _read_file(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise DecodeError(f"failed to read '{path}': {e}") from e


def _key_like(section: Dict[str, Any], name: str) -> Any:
    for key in section:
        if isinstance(key, str) and key.lower() == name:
            return key
    return name


def convert_bootstrap_to_array(raw: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """Return a copy with a scalar ``peer.gossip.bootstrap`` turned into a list.

    The flag tells whether anything was rewritten. An empty string becomes
    an absent value.
    """
    peer_key = _key_like(raw, "peer")
    peer = raw.get(peer_key)
    if not isinstance(peer, dict):
        return raw, False
    gossip_key = _key_like(peer, "gossip")
    gossip = peer.get(gossip_key)
    if not isinstance(gossip, dict):
        return raw, False
    bootstrap_key = _key_like(gossip, "bootstrap")
    bootstrap = gossip.get(bootstrap_key)
    if not isinstance(bootstrap, str):
        return raw, False
    out = deepcopy(raw)
    out[peer_key][gossip_key][bootstrap_key] = [bootstrap] if bootstrap else None
    return out, True


def _core_class(version: str) -> Type[Core]:
    try:
        return CORE_VERSIONS[version]
    except KeyError:
        raise DecodeError(f"unsupported peer config version '{version}'") from None


def read_core_bytes(data: bytes, version: str = "v25") -> Core:
    cls = _core_class(version)
    raw = _load_yaml(data)
    try:
        return cls.model_validate(raw)
    except ValidationError as e:
        upgraded, changed = convert_bootstrap_to_array(raw)
        if not changed:
            raise DecodeError(f"failed to parse peer config: {e}") from e
    try:
        return cls.model_validate(upgraded)
    except ValidationError as e:
        raise DecodeError(f"failed to parse peer config after converting peer.gossip.bootstrap: {e}") from e


def read_core_file(path: str, version: str = "v25") -> Core:
    return read_core_bytes(_read_file(path), version)


def read_orderer_bytes(data: bytes, version: str = "v25") -> OrdererV25:
    try:
        cls = ORDERER_VERSIONS[version]
    except KeyError:
        raise DecodeError(f"unsupported orderer config version '{version}'") from None
    try:
        return cls.model_validate(_load_yaml(data))
    except ValidationError as e:
        raise DecodeError(f"failed to parse orderer config: {e}") from e


def read_orderer_file(path: str, version: str = "v25") -> OrdererV25:
    return read_orderer_bytes(_read_file(path), version)


def to_bytes(cfg: NodeConfig) -> bytes:
    return cfg.to_bytes()


def write_to_file(cfg: NodeConfig, path: str) -> None:
    try:
        cfg.write_to_file(path)
    except OSError as e:
        raise wrap(e, f"failed to write config to '{path}'") from e


def deep_copy(cfg: NodeConfig) -> NodeConfig:
    return cfg.deep_copy()


def get_bccsp_section(cfg: NodeConfig) -> Optional[BCCSP]:
    return cfg.get_bccsp_section()


def set_bccsp_library(cfg: NodeConfig, library: str) -> None:
    cfg.set_bccsp_library(library)
