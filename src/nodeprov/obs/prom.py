"""Prometheus instrumentation for the node provisioner.

Labels stay low-cardinality: bundle/stage/outcome for crypto generation,
operation/outcome for material records, node kind for config merges.
"""
from __future__ import annotations
from prometheus_client import (
    CollectorRegistry,
    Counter,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

REGISTRY = CollectorRegistry()

CRYPTO_COUNTER = Counter(
    "nodeprov_crypto_generation_total",
    "Crypto generation attempts by bundle, stage reached and outcome.",
    ["bundle", "stage", "result"],
    registry=REGISTRY,
)
RECORD_OPS = Counter(
    "nodeprov_record_operations_total",
    "Material record operations against the object store.",
    ["op", "result"],
    registry=REGISTRY,
)
CONFIG_MERGES = Counter(
    "nodeprov_config_merges_total",
    "Configuration override merges by node kind and outcome.",
    ["kind", "result"],
    registry=REGISTRY,
)


def observe_crypto(bundle: str, stage: str, ok: bool):
    CRYPTO_COUNTER.labels(bundle=bundle or "unknown", stage=stage, result="ok" if ok else "fail").inc()


def observe_record(op: str, result: str):
    # result is one of ok / not_found / fail
    RECORD_OPS.labels(op=op, result=result).inc()


def observe_merge(kind: str, ok: bool):
    CONFIG_MERGES.labels(kind=kind, result="ok" if ok else "fail").inc()


def prometheus_latest() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
