"""Peer core configuration, one schema per release line (v1, v2, v25).

Later releases extend the earlier sections rather than redefining them, so
the merge and defaulting rules are shared across all three.
"""
from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import Field, PrivateAttr

from ..errors import ConfigMergeError, wrap
from ..obs.prom import observe_merge
from ..utils.logging import get_logger
from .addressoverride import AddressOverride, externalize_address_overrides
from .merge import merge_with_overwrite
from .types import BCCSP, ConfigModel, Duration, File, Files, NodeConfig, apply_pkcs11_defaults


# sections shared by every release

class KeepAliveClient(ConfigModel):
    interval: Optional[Duration] = None
    timeout: Optional[Duration] = None


class KeepAlive(ConfigModel):
    min_interval: Optional[Duration] = None
    client: KeepAliveClient = Field(default_factory=KeepAliveClient)
    delivery_client: KeepAliveClient = Field(default_factory=KeepAliveClient)


class Election(ConfigModel):
    startup_grace_period: Optional[Duration] = None
    membership_sample_interval: Optional[Duration] = None
    leader_election_duration: Optional[Duration] = None
    leader_alive_threshold: Optional[Duration] = None


class PvtData(ConfigModel):
    pull_retry_threshold: Optional[Duration] = None
    transientstore_max_block_retention: Optional[int] = None
    push_ack_timeout: Optional[Duration] = None
    btl_pull_margin: Optional[int] = None
    reconcile_batch_size: Optional[int] = None
    reconcile_sleep_interval: Optional[Duration] = None
    reconciliation_enabled: Optional[bool] = None
    skip_pulling_invalid_transactions_during_commit: Optional[bool] = None


class State(ConfigModel):
    enabled: Optional[bool] = None
    check_interval: Optional[Duration] = None
    response_timeout: Optional[Duration] = None
    batch_size: Optional[int] = None
    block_buffer_size: Optional[int] = None
    max_retries: Optional[int] = None


class Gossip(ConfigModel):
    bootstrap: Optional[List[str]] = None
    use_leader_election: Optional[bool] = None
    org_leader: Optional[bool] = None
    membership_tracker_interval: Optional[Duration] = None
    endpoint: Optional[str] = None
    max_block_count_to_store: Optional[int] = None
    max_propagation_burst_latency: Optional[Duration] = None
    max_propagation_burst_size: Optional[int] = None
    propagate_iterations: Optional[int] = None
    propagate_peer_num: Optional[int] = None
    pull_interval: Optional[Duration] = None
    pull_peer_num: Optional[int] = None
    request_state_info_interval: Optional[Duration] = None
    publish_state_info_interval: Optional[Duration] = None
    state_info_retention_interval: Optional[Duration] = None
    publish_cert_period: Optional[Duration] = None
    skip_block_verification: Optional[bool] = None
    dial_timeout: Optional[Duration] = None
    conn_timeout: Optional[Duration] = None
    recv_buff_size: Optional[int] = None
    send_buff_size: Optional[int] = None
    digest_wait_time: Optional[Duration] = None
    request_wait_time: Optional[Duration] = None
    response_wait_time: Optional[Duration] = None
    alive_time_interval: Optional[Duration] = None
    alive_expiration_timeout: Optional[Duration] = None
    reconnect_interval: Optional[Duration] = None
    external_endpoint: Optional[str] = None
    election: Election = Field(default_factory=Election)
    pvt_data: PvtData = Field(default_factory=PvtData)
    state: State = Field(default_factory=State)
    max_connection_attempts: Optional[int] = None
    msg_expiration_factor: Optional[int] = None


class TLS(ConfigModel):
    enabled: Optional[bool] = None
    client_auth_required: Optional[bool] = None
    cert: File = Field(default_factory=File)
    key: File = Field(default_factory=File)
    root_cert: File = Field(default_factory=File)
    client_root_cas: Files = Field(default_factory=Files)
    client_key: File = Field(default_factory=File)
    client_cert: File = Field(default_factory=File)


class Authentication(ConfigModel):
    timewindow: Optional[Duration] = None


class Client(ConfigModel):
    conn_timeout: Optional[Duration] = None


class DeliveryClient(ConfigModel):
    reconnect_total_time_threshold: Optional[Duration] = None
    conn_timeout: Optional[Duration] = None
    re_connect_backoff_threshold: Optional[Duration] = None
    address_overrides: Optional[List[AddressOverride]] = None


class Profile(ConfigModel):
    enabled: Optional[bool] = None
    listen_address: Optional[str] = None


class AdminService(ConfigModel):
    listen_address: Optional[str] = None


class HandlerConfig(ConfigModel):
    name: Optional[str] = None
    library: Optional[str] = None


class Handlers(ConfigModel):
    auth_filters: Optional[List[HandlerConfig]] = None
    decorators: Optional[List[HandlerConfig]] = None
    endorsers: Optional[Dict[str, HandlerConfig]] = None
    validators: Optional[Dict[str, HandlerConfig]] = None


class Discovery(ConfigModel):
    enabled: Optional[bool] = None
    auth_cache_enabled: Optional[bool] = None
    auth_cache_max_size: Optional[int] = None
    auth_cache_purge_retention_ratio: Optional[float] = None
    org_members_allowed_access: Optional[bool] = None


class Concurrency(ConfigModel):
    qscc: Optional[int] = None


class Limits(ConfigModel):
    concurrency: Concurrency = Field(default_factory=Concurrency)


class OperationsTLS(ConfigModel):
    enabled: Optional[bool] = None
    key: File = Field(default_factory=File)
    cert: File = Field(default_factory=File)
    client_auth_required: Optional[bool] = None
    client_root_cas: Files = Field(default_factory=Files)


class Operations(ConfigModel):
    listen_address: Optional[str] = None
    tls: OperationsTLS = Field(default_factory=OperationsTLS)


class Statsd(ConfigModel):
    network: Optional[str] = None
    address: Optional[str] = None
    write_interval: Optional[Duration] = None
    prefix: Optional[str] = None


class Metrics(ConfigModel):
    provider: Optional[str] = None
    statsd: Statsd = Field(default_factory=Statsd)


class ChaincodeID(ConfigModel):
    path: Optional[str] = None
    name: Optional[str] = None


class Golang(ConfigModel):
    runtime: Optional[str] = None
    dynamic_link: Optional[bool] = None


class Runtime(ConfigModel):
    runtime: Optional[str] = None


class ChaincodeLogging(ConfigModel):
    level: Optional[str] = None
    shim: Optional[str] = None
    format: Optional[str] = None


class SystemPlugin(ConfigModel):
    enabled: Optional[bool] = None
    name: Optional[str] = None
    path: Optional[str] = None
    invokable_external: Optional[bool] = None
    invokable_cc2cc: Optional[bool] = Field(None, alias="invokableCC2CC")


class Chaincode(ConfigModel):
    id: ChaincodeID = Field(default_factory=ChaincodeID)
    builder: Optional[str] = None
    pull: Optional[bool] = None
    golang: Golang = Field(default_factory=Golang)
    java: Runtime = Field(default_factory=Runtime)
    node: Runtime = Field(default_factory=Runtime)
    startup_timeout: Optional[Duration] = Field(None, alias="startuptimeout")
    execute_timeout: Optional[Duration] = Field(None, alias="executetimeout")
    install_timeout: Optional[Duration] = None
    mode: Optional[str] = None
    keep_alive: Optional[Duration] = Field(None, alias="keepalive")
    system: Optional[Dict[str, str]] = None
    logging: ChaincodeLogging = Field(default_factory=ChaincodeLogging)
    system_plugins: Optional[List[SystemPlugin]] = None


class DockerTLS(ConfigModel):
    enabled: Optional[bool] = None
    ca: File = Field(default_factory=File)
    cert: File = Field(default_factory=File)
    key: File = Field(default_factory=File)


class VMDocker(ConfigModel):
    tls: DockerTLS = Field(default_factory=DockerTLS)
    attach_stdout: Optional[bool] = None
    host_config: Optional[Dict[str, Any]] = None


class VM(ConfigModel):
    endpoint: Optional[str] = None
    docker: VMDocker = Field(default_factory=VMDocker)


class CouchDBConfig(ConfigModel):
    couch_db_address: Optional[str] = Field(None, alias="couchDBAddress")
    username: Optional[str] = None
    password: Optional[str] = None
    max_retries: Optional[int] = None
    max_retries_on_startup: Optional[int] = None
    request_timeout: Optional[Duration] = None
    query_limit: Optional[int] = Field(None, alias="internalQueryLimit")
    max_batch_update_size: Optional[int] = None
    warm_indexes_after_n_blocks: Optional[int] = Field(None, alias="warmIndexesAfterNBlocks")
    create_global_changes_db: Optional[bool] = Field(None, alias="createGlobalChangesDB")


class LedgerState(ConfigModel):
    state_database: Optional[str] = None
    total_query_limit: Optional[int] = None
    couchdb_config: CouchDBConfig = Field(default_factory=CouchDBConfig, alias="couchDBConfig")


class LedgerHistory(ConfigModel):
    enable_history_database: Optional[bool] = None


class Ledger(ConfigModel):
    state: LedgerState = Field(default_factory=LedgerState)
    history: LedgerHistory = Field(default_factory=LedgerHistory)


class Peer(ConfigModel):
    id: Optional[str] = None
    network_id: Optional[str] = None
    listen_address: Optional[str] = None
    chaincode_listen_address: Optional[str] = None
    chaincode_address: Optional[str] = None
    address: Optional[str] = None
    address_auto_detect: Optional[bool] = None
    keepalive: KeepAlive = Field(default_factory=KeepAlive)
    gossip: Gossip = Field(default_factory=Gossip)
    tls: TLS = Field(default_factory=TLS)
    authentication: Authentication = Field(default_factory=Authentication)
    file_system_path: Optional[str] = None
    bccsp: Optional[BCCSP] = Field(None, alias="BCCSP")
    msp_config_path: Optional[str] = None
    local_msp_id: Optional[str] = None
    client: Client = Field(default_factory=Client)
    delivery_client: DeliveryClient = Field(default_factory=DeliveryClient, alias="deliveryclient")
    local_msp_type: Optional[str] = None
    profile: Profile = Field(default_factory=Profile)
    admin_service: AdminService = Field(default_factory=AdminService)
    handlers: Handlers = Field(default_factory=Handlers)
    validator_pool_size: Optional[int] = None
    discovery: Discovery = Field(default_factory=Discovery)
    limits: Limits = Field(default_factory=Limits)


# v2 additions

class KeepAliveV2(KeepAlive):
    interval: Optional[Duration] = None
    timeout: Optional[Duration] = None


class ImplicitCollectionDisseminationPolicy(ConfigModel):
    required_peer_count: Optional[int] = None
    max_peer_count: Optional[int] = None


class PvtDataV2(PvtData):
    implicit_collection_dissemination_policy: ImplicitCollectionDisseminationPolicy = Field(
        default_factory=ImplicitCollectionDisseminationPolicy)


class GossipV2(Gossip):
    pvt_data: PvtDataV2 = Field(default_factory=PvtDataV2)


class ConcurrencyV2(ConfigModel):
    endorser_service: Optional[int] = None
    deliver_service: Optional[int] = None
    gateway_service: Optional[int] = None


class LimitsV2(ConfigModel):
    concurrency: ConcurrencyV2 = Field(default_factory=ConcurrencyV2)


class Gateway(ConfigModel):
    enabled: Optional[bool] = None
    endorsement_timeout: Optional[Duration] = None
    dial_timeout: Optional[Duration] = None


class ExternalBuilder(ConfigModel):
    path: Optional[str] = None
    name: Optional[str] = None
    environment_white_list: Optional[List[str]] = None
    propagate_environment: Optional[List[str]] = None


class ChaincodeV2(Chaincode):
    external_builders: Optional[List[ExternalBuilder]] = None


class CouchDBConfigV2(CouchDBConfig):
    cache_size: Optional[int] = None


class SnapShots(ConfigModel):
    root_dir: Optional[str] = None


class LedgerStateV2(LedgerState):
    couchdb_config: CouchDBConfigV2 = Field(default_factory=CouchDBConfigV2, alias="couchDBConfig")
    snapshots: SnapShots = Field(default_factory=SnapShots, alias="SnapShots")


class PvtDataStore(ConfigModel):
    coll_elg_proc_max_db_batch_size: Optional[int] = None
    coll_elg_proc_db_batches_interval: Optional[int] = None
    deprioritized_data_reconciler_interval: Optional[Duration] = None


class LedgerV2(Ledger):
    state: LedgerStateV2 = Field(default_factory=LedgerStateV2)
    pvt_data_store: PvtDataStore = Field(default_factory=PvtDataStore, alias="pvtdataStore")


class PeerV2(Peer):
    gateway: Gateway = Field(default_factory=Gateway)
    keepalive: KeepAliveV2 = Field(default_factory=KeepAliveV2)
    gossip: GossipV2 = Field(default_factory=GossipV2)
    limits: LimitsV2 = Field(default_factory=LimitsV2)
    max_recv_msg_size: Optional[int] = None
    max_send_msg_size: Optional[int] = None


# v25 additions

class GatewayV25(Gateway):
    broadcast_timeout: Optional[Duration] = None


class PvtDataStoreV25(PvtDataStore):
    purge_interval: Optional[int] = None
    purged_key_audit_logging: Optional[bool] = None


class LedgerV25(LedgerV2):
    pvt_data_store: PvtDataStoreV25 = Field(default_factory=PvtDataStoreV25, alias="pvtdataStore")


class PeerV25(PeerV2):
    gateway: GatewayV25 = Field(default_factory=GatewayV25)


class Core(NodeConfig):
    kind: ClassVar[str] = "peer"

    _address_override_certs: List[bytes] = PrivateAttr(default_factory=list)

    def _bccsp_holder(self):
        return self.peer

    def merge_with(self, override: Optional["Core"], using_hsm_proxy: bool = False,
                   logger: Optional[logging.Logger] = None) -> "Core":
        """Apply ``override`` onto this config, then HSM defaults and address-override extraction."""
        log = logger or get_logger("nodeconfig")
        if override is not None:
            try:
                merge_with_overwrite(self, override)
            except Exception as e:
                observe_merge(self.kind, False)
                raise wrap(e, "failed to merge peer configuration overrides", ConfigMergeError) from e

        apply_pkcs11_defaults(self.peer.bccsp, using_hsm_proxy)

        dc = self.peer.delivery_client
        try:
            rewritten, certs = externalize_address_overrides(dc.address_overrides or [],
                                                             self._address_override_certs)
        except Exception as e:
            observe_merge(self.kind, False)
            raise wrap(e, "failed to convert base64 certs to filepath") from e
        if dc.address_overrides is not None:
            dc.address_overrides = rewritten
        self._address_override_certs = certs
        observe_merge(self.kind, True)
        log.debug("merged peer config overrides (pkcs11=%s, address overrides=%d)",
                  self.using_pkcs11(), len(certs))
        return self

    @property
    def address_override_certs(self) -> List[bytes]:
        return list(self._address_override_certs)

    def get_address_overrides(self) -> List[Tuple[AddressOverride, bytes]]:
        entries = self.peer.delivery_client.address_overrides or []
        return list(zip(entries, self._address_override_certs))

    def get_max_name_length(self) -> Optional[int]:
        return self.max_name_length


class CoreV1(Core):
    peer: Peer = Field(default_factory=Peer)
    chaincode: Chaincode = Field(default_factory=Chaincode)
    operations: Operations = Field(default_factory=Operations)
    metrics: Metrics = Field(default_factory=Metrics)
    vm: VM = Field(default_factory=VM)
    ledger: Ledger = Field(default_factory=Ledger)
    max_name_length: Optional[int] = Field(None, alias="maxnamelength")


class CoreV2(CoreV1):
    peer: PeerV2 = Field(default_factory=PeerV2)
    chaincode: ChaincodeV2 = Field(default_factory=ChaincodeV2)
    ledger: LedgerV2 = Field(default_factory=LedgerV2)


class CoreV25(CoreV2):
    peer: PeerV25 = Field(default_factory=PeerV25)
    ledger: LedgerV25 = Field(default_factory=LedgerV25)


CORE_VERSIONS = {
    "v1": CoreV1,
    "v2": CoreV2,
    "v25": CoreV25,
}
