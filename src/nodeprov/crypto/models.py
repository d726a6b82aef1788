"""Declarative crypto requests as authored on a node resource.

Field names follow the camelCase wire form (``caHost``, ``enrollid``...)
while Python code uses snake_case attributes.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..errors import DecodeError, wrap
from .certs import base64_to_bytes


class _Wire(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CATLS(_Wire):
    ca_cert: str = Field("", alias="cacert")


class CSR(_Wire):
    hosts: List[str] = Field(default_factory=list)


class Enrollment(_Wire):
    ca_host: str = ""
    ca_port: str = ""
    ca_name: str = Field("", alias="caname")
    ca_tls: CATLS = Field(default_factory=CATLS, alias="catls")
    enroll_id: str = Field("", alias="enrollid")
    enroll_secret: str = Field("", alias="enrollsecret")
    admin_certs: List[str] = Field(default_factory=list, alias="admincerts")
    csr: Optional[CSR] = None

    def get_ca_tls_bytes(self) -> bytes:
        if not self.ca_tls.ca_cert:
            return b""
        try:
            return base64_to_bytes(self.ca_tls.ca_cert)
        except DecodeError as e:
            raise wrap(e, "failed to decode CA TLS certificate") from e


class EnrollmentSpec(_Wire):
    component: Optional[Enrollment] = None
    tls: Optional[Enrollment] = None
    client_auth: Optional[Enrollment] = Field(None, alias="clientauth")


class MSP(_Wire):
    key_store: str = Field("", alias="keystore")
    sign_certs: str = Field("", alias="signcerts")
    ca_certs: List[str] = Field(default_factory=list, alias="cacerts")
    intermediate_certs: List[str] = Field(default_factory=list, alias="intermediatecerts")
    admin_certs: List[str] = Field(default_factory=list, alias="admincerts")


class MSPSpec(_Wire):
    component: Optional[MSP] = None
    tls: Optional[MSP] = None
    client_auth: Optional[MSP] = Field(None, alias="clientauth")


class SecretSpec(_Wire):
    enrollment: Optional[EnrollmentSpec] = None
    msp: Optional[MSPSpec] = None


def get_admin_certs_from_spec(spec: Optional[SecretSpec]) -> List[str]:
    """Admin certs declared for the node identity; MSP material wins over enrollment."""
    if spec is None:
        return []
    if spec.msp is not None:
        return list(spec.msp.component.admin_certs) if spec.msp.component else []
    if spec.enrollment is not None and spec.enrollment.component is not None:
        return list(spec.enrollment.component.admin_certs)
    return []
