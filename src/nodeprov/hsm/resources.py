"""Minimal workload resource shapes the HSM projection writes into.

These mirror the subset of the container-orchestrator pod spec that the
projection touches. Keys serialize in camelCase.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Spec(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EnvVar(_Spec):
    name: str
    value: str = ""


class KeyToPath(_Spec):
    key: str
    path: str


class SecretVolumeSource(_Spec):
    secret_name: str = ""
    items: List[KeyToPath] = Field(default_factory=list)


class EmptyDirVolumeSource(_Spec):
    medium: str = ""


class PVCVolumeSource(_Spec):
    claim_name: str


class VolumeSource(_Spec):
    secret: Optional[SecretVolumeSource] = None
    empty_dir: Optional[EmptyDirVolumeSource] = None
    persistent_volume_claim: Optional[PVCVolumeSource] = None
    config_map: Optional[Dict] = None
    host_path: Optional[Dict] = None


class Volume(_Spec):
    name: str
    volume_source: VolumeSource = Field(default_factory=VolumeSource)


class VolumeMount(_Spec):
    name: str
    mount_path: str
    sub_path: str = ""


class SecurityContext(_Spec):
    run_as_user: Optional[int] = None
    run_as_non_root: Optional[bool] = None
    privileged: Optional[bool] = None
    allow_privilege_escalation: Optional[bool] = None


class ResourceRequirements(_Spec):
    requests: Dict[str, str] = Field(default_factory=dict)
    limits: Dict[str, str] = Field(default_factory=dict)


class Container(_Spec):
    name: str
    image: str = ""
    image_pull_policy: str = ""
    command: List[str] = Field(default_factory=list)
    env: List[EnvVar] = Field(default_factory=list)
    volume_mounts: List[VolumeMount] = Field(default_factory=list)
    security_context: Optional[SecurityContext] = None
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)

    def append_env_if_missing(self, env: EnvVar) -> None:
        if all(e.name != env.name for e in self.env):
            self.env.append(env.model_copy())

    def append_volume_mount_if_missing(self, mount: VolumeMount) -> None:
        # one mount per path
        if all(m.mount_path != mount.mount_path for m in self.volume_mounts):
            self.volume_mounts.append(mount.model_copy())


class LocalObjectReference(_Spec):
    name: str = ""


class Workload(_Spec):
    """Pod template of a node deployment."""

    containers: List[Container] = Field(default_factory=list)
    init_containers: List[Container] = Field(default_factory=list)
    volumes: List[Volume] = Field(default_factory=list)
    image_pull_secrets: List[LocalObjectReference] = Field(default_factory=list)

    def get_container(self, name: str) -> Optional[Container]:
        for c in self.containers:
            if c.name == name:
                return c
        return None

    def append_volume_if_missing(self, volume: Volume) -> None:
        if all(v.name != volume.name for v in self.volumes):
            self.volumes.append(volume.model_copy(deep=True))

    def append_pull_secret_if_missing(self, name: str) -> None:
        if not name:
            return
        if all(s.name != name for s in self.image_pull_secrets):
            self.image_pull_secrets.append(LocalObjectReference(name=name))

    def add_init_container(self, container: Container) -> None:
        self.init_containers = [c for c in self.init_containers if c.name != container.name]
        self.init_containers.append(container)

    def add_container(self, container: Container) -> None:
        self.containers = [c for c in self.containers if c.name != container.name]
        self.containers.append(container)
