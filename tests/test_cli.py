import pytest

from conftest import FakeTag
from ntag424_guard import cli, config
from ntag424_guard.checksum import seal
from ntag424_guard.cli import main
from ntag424_guard.constants import NDEF_FILE_NUMBER
from ntag424_guard.key_manager import password_to_key
from ntag424_guard.provisioning import calculate_offsets

SDM_URL = "https://example.com/tap?u=0464171A282290&c=0000CE&m=608EC96738E66669"


@pytest.fixture
def tag(monkeypatch):
    fake = FakeTag(key=password_to_key("pw"))
    monkeypatch.setattr(cli, "_open_tag", lambda: fake)
    return fake


def test_seal_prints_checksum(capsys):
    assert main(["seal", "g1", "r1"]) == 0
    assert capsys.readouterr().out.strip() == seal("g1", "r1", config.CHECKSUM_KEY)


def test_seal_url_and_verify_with_store(capsys, tmp_path):
    store = str(tmp_path / "store.json")
    assert main(["seal", "g1", "r1", "--base-url", "https://example.com/box", "--store", store]) == 0
    url = capsys.readouterr().out.strip()
    assert url.startswith("https://example.com/box?gid=g1&rule=r1&chksum=")

    assert main(["verify-url", url, "--store", store]) == 0
    assert "valid" in capsys.readouterr().out

    assert main(["verify-url", url.replace("rule=r1", "rule=r9"), "--store", store]) == 1


def test_open(capsys):
    checksum = seal("g1", "r1", "k")
    assert main(["open", checksum, "--key", "k"]) == 0
    assert capsys.readouterr().out.strip() == "g1:r1"
    assert main(["open", "ABCD", "--key", "k"]) == 1


def test_verify_sdm(capsys):
    assert main(["verify-sdm", SDM_URL, "--master-key", "00" * 16]) == 0
    assert "ctr=206" in capsys.readouterr().out
    assert main(["verify-sdm", SDM_URL.replace("m=60", "m=00"), "--master-key", "00" * 16]) == 1


def test_sdm_template(capsys):
    assert main(["sdm-template", "https://example.com/tap"]) == 0
    out = capsys.readouterr().out
    assert "UID=33, CTR=50, MAC=59" in out
    assert "ChangeFileSettings(Hex): 4000E0C1F0E0" in out


def test_sdm_template_apply_writes_template(capsys, tag):
    assert main(["sdm-template", "https://example.com/tap", "--apply", "pw"]) == 0
    template = calculate_offsets("https://example.com/tap")
    data = tag.files[NDEF_FILE_NUMBER]
    assert data[template.uid_offset:template.uid_offset + 14] == b"0" * 14
    assert data[template.counter_offset:template.counter_offset + 6] == b"0" * 6
    assert data[template.mac_offset:template.mac_offset + 16] == b"0" * 16
    assert tag.settings[NDEF_FILE_NUMBER].policy.sdm.mac_offset == template.mac_offset
    assert tag.disconnected


def test_sdm_template_apply_reports_write_failure(capsys, tag):
    tag.fail_writes = True
    assert main(["sdm-template", "https://example.com/tap", "--apply", "pw"]) == 1
    assert "NDEF" in capsys.readouterr().out


def test_write_then_read_data(capsys, tag):
    assert main(["write-data", "pw", "https://example.com/box?gid=g1"]) == 0
    capsys.readouterr()
    assert main(["read-data"]) == 0
    assert capsys.readouterr().out.strip().endswith("https://example.com/box?gid=g1")
    assert tag.auth_attempts == [password_to_key("pw")]


def test_write_data_wrong_password(capsys, tag):
    assert main(["write-data", "nope", "hello"]) == 1
    assert NDEF_FILE_NUMBER not in tag.files


def test_write_hex_and_read_raw(capsys, tag):
    assert main(["write-data", "pw", "0005D1010154", "--hex"]) == 0
    capsys.readouterr()
    assert main(["read-data", "pw", "--raw"]) == 0
    assert capsys.readouterr().out.strip() == "0005D1010154"


def test_write_data_rejects_bad_hex(capsys, tag):
    assert main(["write-data", "pw", "zz", "--hex"]) == 1
    assert tag.writes == []


def test_bad_master_key_only_breaks_sdm_commands(capsys, monkeypatch):
    monkeypatch.setattr(config, "MASTER_KEY_HEX", "zz")
    assert main(["seal", "g1", "r1"]) == 0
    capsys.readouterr()
    assert main(["verify-sdm", SDM_URL]) == 1
    assert "hex" in capsys.readouterr().out
    assert main(["verify-sdm", SDM_URL, "--master-key", "00" * 16]) == 0
