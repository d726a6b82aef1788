from nodeprov.config import load_config


def test_config_file_then_env(tmp_path, monkeypatch):
    cfg_file = tmp_path / "nodeprov.yml"
    cfg_file.write_text("ca_ping_timeout_sec: 12\nnamespace: org1\nunknown: ignored\n")
    monkeypatch.delenv("NODEPROV_NAMESPACE", raising=False)
    monkeypatch.delenv("NODEPROV_CA_PING_TIMEOUT_SEC", raising=False)

    cfg = load_config(str(cfg_file))
    assert cfg.ca_ping_timeout_sec == 12.0
    assert cfg.namespace == "org1"

    monkeypatch.setenv("NODEPROV_CA_PING_TIMEOUT_SEC", "3.5")
    cfg = load_config(str(cfg_file))
    assert cfg.ca_ping_timeout_sec == 3.5
    assert cfg.namespace == "org1"


def test_cached_config_follows_env(monkeypatch):
    monkeypatch.setenv("NODEPROV_PVC_VOLUME_NAME", "fabric-orderer-0")
    assert load_config().pvc_volume_name == "fabric-orderer-0"
    monkeypatch.setenv("NODEPROV_PVC_VOLUME_NAME", "fabric-peer-0")
    assert load_config().pvc_volume_name == "fabric-peer-0"


def test_bad_env_value_is_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("NODEPROV_CA_PING_TIMEOUT_SEC", "soon")
    assert load_config(str(tmp_path / "absent.yml")).ca_ping_timeout_sec == 30.0
