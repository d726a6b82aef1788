"""Project an HSM descriptor onto a node workload.

Two modes. Proxy mode only points the node at a remote PKCS11 socket.
Local mode copies the vendor client library into a shared in-memory volume
with an init step, mounts it under /hsm/lib, and, when the descriptor has
a daemon block, runs the daemon as a privileged sidecar. The main process
waits for the daemon's sentinel file before starting.
"""
from __future__ import annotations

import logging
import os
from typing import List, Optional

from ..config import HSM_LIBRARY_DIR, SHARED_MOUNT_PATH, load_config
from ..errors import HSMConfigError
from ..utils.logging import get_logger
from .descriptor import HSMConfig
from .resources import (
    Container,
    EmptyDirVolumeSource,
    EnvVar,
    PVCVolumeSource,
    ResourceRequirements,
    SecurityContext,
    Volume,
    VolumeMount,
    VolumeSource,
)

HSM_CLIENT = "hsm-client"
HSM_DAEMON = "hsm-daemon"
SHARED_VOLUME = "shared"
# no timeout: liveness/readiness probes of the caller are the backstop
DAEMON_CHECK_CMD = f"while true; do if [ -f {SHARED_MOUNT_PATH}/daemon-launched ]; then break; fi; done"

_INIT_RESOURCES = ResourceRequirements(
    requests={"cpu": "0.1", "memory": "100Mi"},
    limits={"cpu": "2", "memory": "4Gi"},
)


def shared_volume() -> Volume:
    return Volume(name=SHARED_VOLUME, volume_source=VolumeSource(empty_dir=EmptyDirVolumeSource(medium="Memory")))


class HSMProjector:
    def __init__(self, hsm: HSMConfig, logger: Optional[logging.Logger] = None):
        self.hsm = hsm
        self.log = logger or get_logger("hsm")

    def init_container(self, image: Optional[str] = None) -> Container:
        """Init step copying the client library into the shared volume."""
        lib_path = self.hsm.library.file_path
        lib_name = os.path.basename(lib_path)
        copy = (
            f'mkdir -p {SHARED_MOUNT_PATH}/hsm && dst="{SHARED_MOUNT_PATH}/hsm/{lib_name}" && '
            f'echo "Copying {lib_path} to ${{dst}}" && mkdir -p $(dirname $dst) && cp -r {lib_path} $dst'
        )
        return Container(
            name=HSM_CLIENT,
            image=image or self.hsm.library.image,
            image_pull_policy="Always",
            command=["sh", "-c", copy],
            security_context=SecurityContext(run_as_user=0, run_as_non_root=False),
            volume_mounts=[VolumeMount(name=SHARED_VOLUME, mount_path=SHARED_MOUNT_PATH)],
            resources=_INIT_RESOURCES.model_copy(deep=True),
        )

    def daemon_container(self, resources: Optional[ResourceRequirements] = None,
                         pvc_mount: Optional[VolumeMount] = None) -> Container:
        daemon = self.hsm.daemon
        if daemon is None:
            raise HSMConfigError("hsm config has no daemon block")
        # the daemon refuses to start unless it is root
        sc = SecurityContext(run_as_user=0, run_as_non_root=False, privileged=True, allow_privilege_escalation=True)
        if daemon.security_context is not None:
            for field in ("privileged", "run_as_non_root", "run_as_user", "allow_privilege_escalation"):
                value = getattr(daemon.security_context, field)
                if value is not None:
                    setattr(sc, field, value)
        mounts: List[VolumeMount] = [VolumeMount(name=SHARED_VOLUME, mount_path=SHARED_MOUNT_PATH)]
        mounts.extend(self.hsm.get_volume_mounts())
        if pvc_mount is not None:
            mounts.append(pvc_mount.model_copy())
        if daemon.resources is not None:
            res = daemon.resources.model_copy(deep=True)
        else:
            res = (resources or ResourceRequirements()).model_copy(deep=True)
        return Container(
            name=HSM_DAEMON,
            image=daemon.image,
            image_pull_policy="Always",
            security_context=sc,
            resources=res,
            volume_mounts=mounts,
            env=[e.model_copy() for e in daemon.envs],
        )

    def pvc_mount(self, volume_name: Optional[str] = None) -> Optional[VolumeMount]:
        path = self.hsm.pvc_mount_path()
        if path is None:
            return None
        return VolumeMount(name=volume_name or load_config().pvc_volume_name, mount_path=path)

    def apply(self, workload, container_name: str, start_command: str, *,
              using_hsm_proxy: bool = False, pkcs11_endpoint: str = "",
              init_image: Optional[str] = None,
              daemon_resources: Optional[ResourceRequirements] = None,
              pvc_volume_name: Optional[str] = None,
              pvc_claim_name: Optional[str] = None) -> Optional[VolumeMount]:
        """Wire the HSM into ``workload`` in place.

        Returns the PVC mount shared by the node and daemon containers, or
        None when the descriptor declares no PVC-backed path.
        """
        main = workload.get_container(container_name)
        if main is None:
            raise HSMConfigError(f"workload has no container named '{container_name}'")

        if using_hsm_proxy:
            main.append_env_if_missing(EnvVar(name="PKCS11_PROXY_SOCKET", value=pkcs11_endpoint))
            return None

        workload.append_volume_if_missing(shared_volume())
        for v in self.hsm.get_volumes():
            workload.append_volume_if_missing(v)
        for vm in self.hsm.get_volume_mounts():
            main.append_volume_mount_if_missing(vm)
        for env in self.hsm.get_envs():
            main.append_env_if_missing(env)
        main.append_volume_mount_if_missing(VolumeMount(name=SHARED_VOLUME, mount_path=HSM_LIBRARY_DIR, sub_path="hsm"))
        if self.hsm.library.auth is not None:
            workload.append_pull_secret_if_missing(self.hsm.build_pull_secret().name)
        workload.add_init_container(self.init_container(init_image))
        self.log.info("hsm library %s mounted for container '%s'", self.hsm.hsm_library_path(), container_name)

        if self.hsm.daemon is None:
            return None
        return self._apply_daemon(workload, main, start_command, daemon_resources, pvc_volume_name, pvc_claim_name)

    def _apply_daemon(self, workload, main: Container, start_command: str,
                      daemon_resources: Optional[ResourceRequirements],
                      pvc_volume_name: Optional[str], pvc_claim_name: Optional[str]) -> Optional[VolumeMount]:
        if main.security_context is None:
            main.security_context = SecurityContext()
        main.security_context.privileged = True
        main.security_context.allow_privilege_escalation = True
        main.command = ["sh", "-c", f"{DAEMON_CHECK_CMD} && {start_command}"]
        main.append_volume_mount_if_missing(VolumeMount(name=SHARED_VOLUME, mount_path=SHARED_MOUNT_PATH))

        pvc_mount = self.pvc_mount(pvc_volume_name)
        if self.hsm.daemon.auth is not None:
            workload.append_pull_secret_if_missing(self.hsm.daemon.build_pull_secret().name)
        workload.add_container(self.daemon_container(daemon_resources, pvc_mount))
        if pvc_mount is not None:
            main.append_volume_mount_if_missing(pvc_mount)
            if pvc_claim_name:
                workload.append_volume_if_missing(Volume(
                    name=pvc_mount.name,
                    volume_source=VolumeSource(persistent_volume_claim=PVCVolumeSource(claim_name=pvc_claim_name)),
                ))
        self.log.info("hsm daemon sidecar added; '%s' waits for %s/daemon-launched",
                      main.name, SHARED_MOUNT_PATH)
        return pvc_mount
