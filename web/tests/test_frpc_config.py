import os
from datetime import datetime, timedelta, timezone

import pytest

toml = pytest.importorskip("toml")

from services.errors import ConfigReadError, ConfigWriteError  # noqa: E402
from services.frpc_config import (  # noqa: E402
    FrpcConfigStore,
    backup_timestamp,
    dumps,
    format_key,
    format_value,
    loads,
)


SAMPLE = """\
serverAddr = "frp.example.com"
serverPort = 7000

[auth]
method = "token"
token = "s3cret"

[web]
type = "http"
localIP = "127.0.0.1"
localPort = 80
customDomains = ["www.example.com", "example.com"]

[ssh]
type = "tcp"
local_ip = "127.0.0.1"
local_port = 22
remote_port = 6000
"""


def _stepping_clock(start=datetime(2026, 1, 1, tzinfo=timezone.utc)):
    state = {"n": 0}

    def clock():
        t = start + timedelta(seconds=state["n"])
        state["n"] += 1
        return t

    return clock


def test_dumps_emits_scalars_before_sections():
    doc = {
        "serverAddr": "x",
        "serverPort": 7000,
        "web": {"type": "tcp", "localPort": 80, "remotePort": 8080},
    }
    assert dumps(doc) == (
        'serverAddr = "x"\n'
        "serverPort = 7000\n"
        "\n"
        "[web]\n"
        'type = "tcp"\n'
        "localPort = 80\n"
        "remotePort = 8080\n"
    )


def test_dumps_hoists_scalars_that_follow_a_section():
    doc = {"web": {"type": "tcp"}, "serverPort": 7000}
    out = dumps(doc)
    assert out.index("serverPort = 7000") < out.index("[web]")
    assert loads(out) == doc


def test_format_value_literals():
    assert format_value(True) == "true"
    assert format_value(False) == "false"
    assert format_value(0) == "0"
    assert format_value(1.5) == "1.5"
    assert format_value('say "hi"') == '"say \\"hi\\""'
    assert format_value(["a", 1]) == '["a", 1]'
    assert format_value({"enable": True}) == "{ enable = true }"
    assert format_value({}) == "{}"


def test_format_value_coerces_unknown_types_to_strings():
    class Thing:
        def __str__(self):
            return "thing"

    assert format_value(Thing()) == '"thing"'


def test_format_key_quotes_non_bare_keys():
    assert format_key("local_port") == "local_port"
    assert format_key("my-proxy") == "my-proxy"
    assert format_key("has space") == '"has space"'


def test_dumps_skips_none_values():
    out = dumps({"a": None, "web": {"type": "tcp", "remotePort": None}})
    assert "a =" not in out
    assert "remotePort" not in out
    assert loads(out) == {"web": {"type": "tcp"}}


def test_round_trip_preserves_values():
    doc = loads(SAMPLE)
    assert loads(dumps(doc)) == doc


def test_round_trip_preserves_escapes_and_nested_tables():
    doc = {
        "user": 'path C:\\frp "quoted"\nnext',
        "transport": {"protocol": "tcp", "tls": {"enable": True}},
        "ratio": 0.25,
        "loginFailExit": False,
    }
    assert loads(dumps(doc)) == doc


def test_read_parses_document(tmp_path):
    path = tmp_path / "frpc.toml"
    path.write_text(SAMPLE, encoding="utf-8")

    doc = FrpcConfigStore(str(path)).read()
    assert list(doc) == ["serverAddr", "serverPort", "auth", "web", "ssh"]
    assert doc["web"]["customDomains"] == ["www.example.com", "example.com"]


def test_read_missing_file_raises_config_read_error(tmp_path):
    store = FrpcConfigStore(str(tmp_path / "missing.toml"))
    with pytest.raises(ConfigReadError) as ei:
        store.read()
    assert "Error reading FRPC config" in str(ei.value)
    assert isinstance(ei.value.cause, FileNotFoundError)


def test_read_malformed_file_raises_config_read_error(tmp_path):
    path = tmp_path / "frpc.toml"
    path.write_text("this is not toml\n", encoding="utf-8")
    with pytest.raises(ConfigReadError):
        FrpcConfigStore(str(path)).read()


def test_write_without_backups_creates_no_backup(tmp_path):
    path = tmp_path / "frpc.toml"
    path.write_text(SAMPLE, encoding="utf-8")
    store = FrpcConfigStore(str(path), enable_backups=False)

    store.write({"serverPort": 7001})

    assert loads(path.read_text(encoding="utf-8")) == {"serverPort": 7001}
    assert store.list_backups() == []
    assert sorted(os.listdir(tmp_path)) == ["frpc.toml"]


def test_write_backs_up_the_on_disk_content_first(tmp_path):
    path = tmp_path / "frpc.toml"
    path.write_text(SAMPLE, encoding="utf-8")
    backup_dir = tmp_path / "backups" / "nested"
    store = FrpcConfigStore(str(path), enable_backups=True, backup_dir=str(backup_dir))

    store.write({"serverPort": 7001})

    backups = store.list_backups()
    assert len(backups) == 1
    assert backups[0].startswith("frpc.toml.")
    assert backups[0].endswith(".backup")
    assert (backup_dir / backups[0]).read_text(encoding="utf-8") == SAMPLE


def test_backups_default_to_config_directory(tmp_path):
    path = tmp_path / "frpc.toml"
    path.write_text(SAMPLE, encoding="utf-8")
    store = FrpcConfigStore(str(path), enable_backups=True)

    store.write(loads(SAMPLE))

    assert len([n for n in os.listdir(tmp_path) if n.endswith(".backup")]) == 1


def test_backup_rotation_keeps_ten_newest(tmp_path):
    path = tmp_path / "frpc.toml"
    path.write_text(SAMPLE, encoding="utf-8")
    clock = _stepping_clock()
    store = FrpcConfigStore(str(path), enable_backups=True, backup_dir=str(tmp_path / "b"), clock=clock)

    for i in range(13):
        store.write({"serverPort": 7000 + i})

    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    expected = [
        f"frpc.toml.{backup_timestamp(start + timedelta(seconds=i))}.backup" for i in range(12, 2, -1)
    ]
    assert store.list_backups() == expected
    assert sorted(os.listdir(tmp_path / "b"), reverse=True) == expected


def test_rotation_ignores_unrelated_files(tmp_path):
    path = tmp_path / "frpc.toml"
    path.write_text(SAMPLE, encoding="utf-8")
    (tmp_path / "notes.txt").write_text("keep", encoding="utf-8")
    (tmp_path / "other.toml.2020.backup").write_text("keep", encoding="utf-8")
    store = FrpcConfigStore(str(path), enable_backups=True, clock=_stepping_clock())

    for _ in range(12):
        store.write({"serverPort": 1})

    assert (tmp_path / "notes.txt").exists()
    assert (tmp_path / "other.toml.2020.backup").exists()
    assert len(store.list_backups()) == 10


def test_backup_timestamp_is_filename_safe_and_sortable():
    a = backup_timestamp(datetime(2026, 1, 1, 9, 5, 3, tzinfo=timezone.utc))
    b = backup_timestamp(datetime(2026, 1, 1, 9, 5, 3, 500, tzinfo=timezone.utc))
    assert a == "2026-01-01T09-05-03-000000+00-00"
    assert ":" not in b and "." not in b
    assert a < b


def test_write_failure_raises_config_write_error(tmp_path):
    # Backups enabled but the config file does not exist yet: nothing to copy.
    store = FrpcConfigStore(str(tmp_path / "frpc.toml"), enable_backups=True)
    with pytest.raises(ConfigWriteError) as ei:
        store.write({"serverPort": 7000})
    assert "Error writing FRPC config" in str(ei.value)
    assert not (tmp_path / "frpc.toml").exists()


def test_write_leaves_no_temp_files(tmp_path):
    path = tmp_path / "frpc.toml"
    path.write_text(SAMPLE, encoding="utf-8")

    FrpcConfigStore(str(path)).write(loads(SAMPLE))

    assert [n for n in os.listdir(tmp_path) if n.startswith(".tmp-")] == []


def test_relative_config_path(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "frpc.toml").write_text(SAMPLE, encoding="utf-8")
    store = FrpcConfigStore("frpc.toml", enable_backups=True, clock=_stepping_clock())

    store.write(store.read())

    assert len(store.list_backups()) == 1
    assert loads((tmp_path / "frpc.toml").read_text(encoding="utf-8")) == loads(SAMPLE)
