from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import Field

from ..errors import ConfigMergeError, wrap
from ..obs.prom import observe_merge
from ..utils.logging import get_logger
from .merge import merge_with_overwrite
from .types import BCCSP, ConfigModel, Duration, NodeConfig, apply_pkcs11_defaults


class OrdererTLS(ConfigModel):
    enabled: Optional[bool] = None
    private_key: Optional[str] = None
    certificate: Optional[str] = None
    root_cas: Optional[List[str]] = None
    client_auth_required: Optional[bool] = None
    client_root_cas: Optional[List[str]] = None


class Cluster(ConfigModel):
    listen_address: Optional[str] = None
    listen_port: Optional[int] = None
    server_certificate: Optional[str] = None
    server_private_key: Optional[str] = None
    client_certificate: Optional[str] = None
    client_private_key: Optional[str] = None
    root_cas: Optional[List[str]] = None
    dial_timeout: Optional[Duration] = None
    rpc_timeout: Optional[Duration] = None
    replication_buffer_size: Optional[int] = None
    replication_pull_timeout: Optional[Duration] = None
    replication_retry_timeout: Optional[Duration] = None


class Keepalive(ConfigModel):
    server_min_interval: Optional[Duration] = None
    server_interval: Optional[Duration] = None
    server_timeout: Optional[Duration] = None


class OrdererProfile(ConfigModel):
    enabled: Optional[bool] = None
    address: Optional[str] = None


class OrdererAuthentication(ConfigModel):
    time_window: Optional[Duration] = None
    no_expiration_checks: Optional[bool] = None


class General(ConfigModel):
    listen_address: Optional[str] = None
    listen_port: Optional[int] = None
    tls: OrdererTLS = Field(default_factory=OrdererTLS)
    cluster: Cluster = Field(default_factory=Cluster)
    keepalive: Keepalive = Field(default_factory=Keepalive)
    connection_timeout: Optional[Duration] = None
    genesis_file: Optional[str] = None
    bootstrap_file: Optional[str] = None
    bootstrap_method: Optional[str] = None
    profile: OrdererProfile = Field(default_factory=OrdererProfile)
    local_msp_dir: Optional[str] = None
    local_msp_id: Optional[str] = None
    bccsp: Optional[BCCSP] = Field(None, alias="BCCSP")
    authentication: OrdererAuthentication = Field(default_factory=OrdererAuthentication)
    max_recv_msg_size: Optional[int] = None
    max_send_msg_size: Optional[int] = None


class FileLedger(ConfigModel):
    location: Optional[str] = None


class Debug(ConfigModel):
    broadcast_trace_dir: Optional[str] = None
    deliver_trace_dir: Optional[str] = None


class OrdererOperations(ConfigModel):
    listen_address: Optional[str] = None
    tls: OrdererTLS = Field(default_factory=OrdererTLS)


class OrdererStatsd(ConfigModel):
    network: Optional[str] = None
    address: Optional[str] = None
    write_interval: Optional[Duration] = None
    prefix: Optional[str] = None


class OrdererMetrics(ConfigModel):
    provider: Optional[str] = None
    statsd: OrdererStatsd = Field(default_factory=OrdererStatsd)


class Admin(ConfigModel):
    listen_address: Optional[str] = None
    tls: OrdererTLS = Field(default_factory=OrdererTLS)


class ChannelParticipation(ConfigModel):
    enabled: Optional[bool] = None
    max_request_body_size: Optional[int] = None


class OrdererV25(NodeConfig):
    kind: ClassVar[str] = "orderer"

    general: General = Field(default_factory=General)
    file_ledger: FileLedger = Field(default_factory=FileLedger)
    debug: Debug = Field(default_factory=Debug)
    # free-form: consensus plugins define their own keys
    consensus: Optional[Dict[str, Any]] = None
    operations: OrdererOperations = Field(default_factory=OrdererOperations)
    metrics: OrdererMetrics = Field(default_factory=OrdererMetrics)
    admin: Admin = Field(default_factory=Admin)
    channel_participation: ChannelParticipation = Field(default_factory=ChannelParticipation)

    def _bccsp_holder(self):
        return self.general

    def merge_with(self, override: Optional["OrdererV25"], using_hsm_proxy: bool = False,
                   logger: Optional[logging.Logger] = None) -> "OrdererV25":
        log = logger or get_logger("nodeconfig")
        if override is not None:
            try:
                merge_with_overwrite(self, override)
            except Exception as e:
                observe_merge(self.kind, False)
                raise wrap(e, "failed to merge orderer configuration overrides", ConfigMergeError) from e
        apply_pkcs11_defaults(self.general.bccsp, using_hsm_proxy)
        observe_merge(self.kind, True)
        log.debug("merged orderer config overrides (pkcs11=%s)", self.using_pkcs11())
        return self


ORDERER_VERSIONS = {
    "v25": OrdererV25,
}
