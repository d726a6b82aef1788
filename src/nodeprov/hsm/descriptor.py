"""HSM descriptor: the operator-authored YAML describing how to reach an HSM.

The descriptor is read-only here. Every derived object is a fresh copy so
repeated projections of the same descriptor produce identical output.
"""
from __future__ import annotations

import os
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import HSM_LIBRARY_DIR, load_config
from ..errors import HSMConfigError
from .resources import (
    EnvVar,
    KeyToPath,
    LocalObjectReference,
    ResourceRequirements,
    SecretVolumeSource,
    SecurityContext,
    Volume,
    VolumeMount,
    VolumeSource,
)


class _Descriptor(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Auth(_Descriptor):
    image_pull_secret: str = Field("", alias="imagePullSecret")

    def build_pull_secret(self) -> LocalObjectReference:
        return LocalObjectReference(name=self.image_pull_secret)


class Library(_Descriptor):
    file_path: str = Field(alias="filepath")
    image: str
    auto_update_disabled: bool = Field(False, alias="autoUpdateDisabled")
    auth: Optional[Auth] = None


class KeyPath(_Descriptor):
    key: str
    path: str


class MountPath(_Descriptor):
    name: str
    secret: str = ""
    mount_path: str = Field(alias="mountpath")
    use_pvc: bool = Field(False, alias="usePVC")
    sub_path: str = Field("", alias="subpath")
    paths: List[KeyPath] = Field(default_factory=list)
    volume_source: Optional[VolumeSource] = Field(None, alias="volumeSource")

    def build_volume(self) -> Volume:
        if self.volume_source is None:
            source = VolumeSource(secret=SecretVolumeSource(secret_name=self.secret))
        else:
            source = self.volume_source.model_copy(deep=True)
        if self.paths:
            if source.secret is None:
                raise HSMConfigError(
                    f"mount path '{self.name}' declares key/path mappings but its volume source is not a secret")
            source.secret.items.extend(KeyToPath(key=p.key, path=p.path) for p in self.paths)
        return Volume(name=self.name, volume_source=source)

    def build_volume_mount(self) -> VolumeMount:
        return VolumeMount(name=self.name, mount_path=self.mount_path, sub_path=self.sub_path)


class Daemon(_Descriptor):
    image: str
    envs: List[EnvVar] = Field(default_factory=list)
    auth: Optional[Auth] = None
    security_context: Optional[SecurityContext] = Field(None, alias="securityContext")
    resources: Optional[ResourceRequirements] = None

    def build_pull_secret(self) -> LocalObjectReference:
        return self.auth.build_pull_secret() if self.auth is not None else LocalObjectReference()


class HSMConfig(_Descriptor):
    type: str = ""
    version: str = ""
    library: Library
    mount_paths: List[MountPath] = Field(default_factory=list, alias="mountpaths")
    envs: List[EnvVar] = Field(default_factory=list)
    daemon: Optional[Daemon] = None

    def build_pull_secret(self) -> LocalObjectReference:
        if self.library.auth is not None:
            return self.library.auth.build_pull_secret()
        return LocalObjectReference()

    def get_volumes(self) -> List[Volume]:
        return [m.build_volume() for m in self.mount_paths if not m.use_pvc]

    def get_volume_mounts(self) -> List[VolumeMount]:
        return [m.build_volume_mount() for m in self.mount_paths if not m.use_pvc]

    def get_envs(self) -> List[EnvVar]:
        return [e.model_copy() for e in self.envs]

    def pvc_mount_path(self) -> Optional[str]:
        """Mount path of the last PVC-backed entry, if any."""
        path = None
        for m in self.mount_paths:
            if m.use_pvc:
                path = m.mount_path
        return path

    def hsm_library_path(self) -> str:
        return f"{HSM_LIBRARY_DIR}/{os.path.basename(self.library.file_path)}"


def read_hsm_config(data: bytes | str) -> HSMConfig:
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise HSMConfigError(f"failed to parse hsm config: {e}") from e
    if not isinstance(raw, dict):
        raise HSMConfigError("failed to parse hsm config: document is empty or not a mapping")
    try:
        return HSMConfig.model_validate(raw)
    except ValidationError as e:
        raise HSMConfigError(f"invalid hsm config: {e}") from e


def load_hsm_config(path: Optional[str] = None) -> HSMConfig:
    path = path or load_config().hsm_config_path
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise HSMConfigError(f"failed to get hsm config '{path}': {e}") from e
    return read_hsm_config(data)
