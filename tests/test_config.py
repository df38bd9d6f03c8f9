import json

from core.config import load_env_config, load_file_config, merge_config


def test_env_config(monkeypatch):
    monkeypatch.setenv("MAILPOSTURE_VERBOSE", "yes")
    monkeypatch.setenv("MAILPOSTURE_FORMAT", "Markdown")
    monkeypatch.setenv("MAILPOSTURE_NAMESERVERS", "9.9.9.9, 149.112.112.112")
    monkeypatch.setenv("MAILPOSTURE_DNS_TIMEOUT", "not-a-number")
    cfg = load_env_config()
    assert cfg["verbose"] is True
    assert cfg["output_format"] == "markdown"
    assert cfg["nameservers"] == ["9.9.9.9", "149.112.112.112"]
    assert cfg["dns_timeout"] is None


def test_env_defaults(monkeypatch):
    for name in ("MAILPOSTURE_FORMAT", "MAILPOSTURE_NAMESERVERS", "MAILPOSTURE_DKIM_SELECTOR"):
        monkeypatch.delenv(name, raising=False)
    cfg = load_env_config()
    assert cfg["output_format"] == "json"
    assert cfg["nameservers"] is None
    assert cfg["dkim_selector"] is None


def test_file_config_maps_aliases(tmp_path):
    path = tmp_path / "mailposture.json"
    path.write_text(json.dumps({
        "format": "all",
        "timeout": "30",
        "dns_servers": ["1.1.1.1"],
        "selector": "google",
        "output_directory": "out",
    }))
    cfg = load_file_config(str(path))
    assert cfg == {
        "output_format": "all",
        "scan_timeout_seconds": 30.0,
        "nameservers": ["1.1.1.1"],
        "dkim_selector": "google",
        "output_dir": "out",
    }


def test_file_config_skips_invalid_values(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"format": "html", "dns_timeout": "soon"}))
    assert load_file_config(str(path)) == {}


def test_file_config_missing_or_broken(tmp_path):
    assert load_file_config(str(tmp_path / "absent.json")) == {}
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    assert load_file_config(str(broken)) == {}


def test_merge_precedence():
    merged = merge_config(
        {"output_format": "json", "verbose": False, "dkim_selector": None},
        {"output_format": "markdown", "dkim_selector": "google"},
        {"output_format": "all"},
    )
    assert merged == {"output_format": "all", "verbose": False, "dkim_selector": "google"}
