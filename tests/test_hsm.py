import pytest

from nodeprov.errors import HSMConfigError
from nodeprov.hsm.descriptor import load_hsm_config, read_hsm_config
from nodeprov.hsm.projector import DAEMON_CHECK_CMD, HSM_CLIENT, HSM_DAEMON, SHARED_VOLUME, HSMProjector
from nodeprov.hsm.resources import Container, ResourceRequirements, Workload

DESCRIPTOR = """
type: hsm
version: v1
library:
  filepath: /usr/safenet/lunaclient/libs/64/libCryptoki2.so
  image: registry.example.com/hsm-client:10.4
  auth:
    imagePullSecret: hsm-pull
envs:
  - name: ChrystokiConfigurationPath
    value: /hsm
mountpaths:
  - name: hsmcrypto
    secret: hsmcrypto
    mountpath: /hsm/certs
    paths:
      - key: cafile.pem
        path: cafile.pem
      - key: cert.pem
        path: cert.pem
  - name: hsmconfig
    secret: hsmcrypto
    mountpath: /hsm/Chrystoki.conf
    subpath: Chrystoki.conf
    paths:
      - key: Chrystoki.conf
        path: Chrystoki.conf
  - name: hsmdata
    mountpath: /var/hsm/data
    usePVC: true
"""

DAEMON = """
daemon:
  image: registry.example.com/hsm-daemon:1.0
  auth:
    imagePullSecret: daemon-pull
  envs:
    - name: DAEMON_LOG
      value: debug
  resources:
    requests:
      cpu: "0.5"
      memory: 200Mi
"""

START = "peer node start"


def workload():
    return Workload(containers=[Container(name="peer", image="peer:2.5", command=["peer", "node", "start"])])


def test_descriptor_views():
    hsm = read_hsm_config(DESCRIPTOR)
    assert hsm.hsm_library_path() == "/hsm/lib/libCryptoki2.so"
    assert hsm.build_pull_secret().name == "hsm-pull"
    assert [e.name for e in hsm.get_envs()] == ["ChrystokiConfigurationPath"]
    assert hsm.pvc_mount_path() == "/var/hsm/data"

    volumes = hsm.get_volumes()
    assert [v.name for v in volumes] == ["hsmcrypto", "hsmconfig"]
    secret = volumes[0].volume_source.secret
    assert secret.secret_name == "hsmcrypto"
    assert [(i.key, i.path) for i in secret.items] == [("cafile.pem", "cafile.pem"), ("cert.pem", "cert.pem")]

    mounts = hsm.get_volume_mounts()
    assert [(m.name, m.mount_path, m.sub_path) for m in mounts] == [
        ("hsmcrypto", "/hsm/certs", ""),
        ("hsmconfig", "/hsm/Chrystoki.conf", "Chrystoki.conf"),
    ]


def test_descriptor_is_not_mutated():
    hsm = read_hsm_config(DESCRIPTOR)
    first = hsm.get_volumes()
    assert hsm.get_volumes() == first
    assert hsm.mount_paths[0].volume_source is None
    assert len(first[0].volume_source.secret.items) == 2


def test_paths_on_non_secret_source():
    hsm = read_hsm_config(DESCRIPTOR.replace(
        "    secret: hsmcrypto\n    mountpath: /hsm/certs\n",
        "    mountpath: /hsm/certs\n    volumeSource:\n      configMap:\n        name: hsm-certs\n",
    ))
    with pytest.raises(HSMConfigError, match="not a secret"):
        hsm.get_volumes()


def test_bad_descriptors(tmp_path):
    with pytest.raises(HSMConfigError, match="invalid hsm config"):
        read_hsm_config("type: hsm\n")
    with pytest.raises(HSMConfigError):
        read_hsm_config("")
    with pytest.raises(HSMConfigError, match="failed to get hsm config"):
        load_hsm_config(str(tmp_path / "missing.yaml"))
    path = tmp_path / "hsm.yaml"
    path.write_text(DESCRIPTOR)
    assert load_hsm_config(str(path)).library.image == "registry.example.com/hsm-client:10.4"


def test_proxy_mode_only_sets_socket():
    w = workload()
    pvc = HSMProjector(read_hsm_config(DESCRIPTOR)).apply(
        w, "peer", START, using_hsm_proxy=True, pkcs11_endpoint="tcp://pkcs11-proxy:2345")
    assert pvc is None
    peer = w.get_container("peer")
    assert [(e.name, e.value) for e in peer.env] == [("PKCS11_PROXY_SOCKET", "tcp://pkcs11-proxy:2345")]
    assert w.volumes == []
    assert w.init_containers == []


def test_local_mode_without_daemon():
    w = workload()
    pvc = HSMProjector(read_hsm_config(DESCRIPTOR)).apply(w, "peer", START)
    assert pvc is None
    peer = w.get_container("peer")
    assert peer.command == ["peer", "node", "start"]
    assert [v.name for v in w.volumes] == [SHARED_VOLUME, "hsmcrypto", "hsmconfig"]
    assert w.volumes[0].volume_source.empty_dir.medium == "Memory"
    lib_mount = [m for m in peer.volume_mounts if m.mount_path == "/hsm/lib"]
    assert lib_mount[0].name == SHARED_VOLUME and lib_mount[0].sub_path == "hsm"
    assert [s.name for s in w.image_pull_secrets] == ["hsm-pull"]
    assert [e.name for e in peer.env] == ["ChrystokiConfigurationPath"]

    (init,) = w.init_containers
    assert init.name == HSM_CLIENT
    assert init.image == "registry.example.com/hsm-client:10.4"
    assert "cp -r /usr/safenet/lunaclient/libs/64/libCryptoki2.so" in init.command[2]
    assert init.security_context.run_as_user == 0
    assert init.resources.limits == {"cpu": "2", "memory": "4Gi"}
    assert all(c.name != HSM_DAEMON for c in w.containers)


def test_init_image_override():
    w = workload()
    HSMProjector(read_hsm_config(DESCRIPTOR)).apply(w, "peer", START, init_image="mirror/hsm-client:10.4")
    assert w.init_containers[0].image == "mirror/hsm-client:10.4"


def test_daemon_sidecar_and_barrier():
    w = workload()
    pvc = HSMProjector(read_hsm_config(DESCRIPTOR + DAEMON)).apply(
        w, "peer", START, pvc_volume_name="fabric-peer-0", pvc_claim_name="peer1-pvc")

    peer = w.get_container("peer")
    assert peer.security_context.privileged is True
    assert peer.command == ["sh", "-c", f"{DAEMON_CHECK_CMD} && {START}"]
    assert "[ -f /shared/daemon-launched ]" in DAEMON_CHECK_CMD
    assert any(m.mount_path == "/shared" for m in peer.volume_mounts)
    assert pvc.name == "fabric-peer-0" and pvc.mount_path == "/var/hsm/data"
    assert any(m.mount_path == "/var/hsm/data" for m in peer.volume_mounts)

    daemon = w.get_container(HSM_DAEMON)
    assert daemon.image == "registry.example.com/hsm-daemon:1.0"
    assert daemon.security_context.privileged is True
    assert daemon.security_context.run_as_user == 0
    assert daemon.security_context.allow_privilege_escalation is True
    assert [m.mount_path for m in daemon.volume_mounts] == [
        "/shared", "/hsm/certs", "/hsm/Chrystoki.conf", "/var/hsm/data"]
    assert daemon.resources.requests == {"cpu": "0.5", "memory": "200Mi"}
    assert [e.name for e in daemon.env] == ["DAEMON_LOG"]

    assert [s.name for s in w.image_pull_secrets] == ["hsm-pull", "daemon-pull"]
    claim = [v for v in w.volumes if v.name == "fabric-peer-0"]
    assert claim[0].volume_source.persistent_volume_claim.claim_name == "peer1-pvc"


def test_daemon_resources_fallback():
    hsm = read_hsm_config(DESCRIPTOR + DAEMON.replace("  resources:\n    requests:\n      cpu: \"0.5\"\n      memory: 200Mi\n", ""))
    res = ResourceRequirements(limits={"cpu": "1"})
    assert HSMProjector(hsm).daemon_container(res).resources.limits == {"cpu": "1"}


def test_apply_is_repeatable():
    hsm = read_hsm_config(DESCRIPTOR + DAEMON)
    once = workload()
    HSMProjector(hsm).apply(once, "peer", START, pvc_volume_name="fabric-peer-0")
    twice = workload()
    HSMProjector(hsm).apply(twice, "peer", START, pvc_volume_name="fabric-peer-0")
    HSMProjector(hsm).apply(twice, "peer", START, pvc_volume_name="fabric-peer-0")
    assert twice == once


def test_errors_for_missing_pieces():
    hsm = read_hsm_config(DESCRIPTOR)
    with pytest.raises(HSMConfigError, match="no daemon"):
        HSMProjector(hsm).daemon_container()
    with pytest.raises(HSMConfigError, match="no container named 'orderer'"):
        HSMProjector(hsm).apply(workload(), "orderer", START)


@pytest.mark.parametrize("override, privileged, escalation", [
    ("privileged: false", False, True),
    ("allowPrivilegeEscalation: false", True, False),
])
def test_daemon_security_context_overrides(override, privileged, escalation):
    hsm = read_hsm_config(DESCRIPTOR + DAEMON + f"  securityContext:\n    {override}\n")
    sc = HSMProjector(hsm).daemon_container().security_context
    assert sc.privileged is privileged
    assert sc.allow_privilege_escalation is escalation
    assert sc.run_as_user == 0
