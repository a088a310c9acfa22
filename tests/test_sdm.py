import pytest
from Crypto.Cipher import AES
from Crypto.Hash import CMAC

from ntag424_guard.sdm import (
    ReplayGuard, compute_code, derive_session_key, parse_sdm_url, verify_code, verify_sdm_url,
)

ZERO_KEY = bytes(16)

# 공장 키, 평문 미러링
UID = bytes.fromhex("0464171A282290")
CTR = bytes.fromhex("0000CE")
SESSION_KEY = bytes.fromhex("FC19713DAC8EC5BF7186986ED4CFE41B")
CODE = "608EC96738E66669"

# NXP AN12196, SUN message with plain UID / counter
AN_UID = bytes.fromhex("04DE5F1EACC040")
AN_CTR = bytes.fromhex("00003D")
AN_SESSION_KEY = bytes.fromhex("3FB5F6E3A807A03D5E3570ACE393776F")
AN_CODE = "94EED9EE65337086"


def _flip(data, bit):
    out = bytearray(data)
    out[bit // 8] ^= 0x80 >> (bit % 8)
    return bytes(out)


def test_known_tag_vector():
    session_key = derive_session_key(ZERO_KEY, UID, CTR)
    assert session_key == SESSION_KEY
    assert compute_code(session_key) == CODE


def test_known_tag_vector_matches_pycryptodome():
    sv2 = bytes.fromhex("3CC300010080") + UID + bytes(reversed(CTR))
    assert derive_session_key(ZERO_KEY, UID, CTR) == CMAC.new(ZERO_KEY, msg=sv2, ciphermod=AES).digest()


def test_an12196_session_key():
    assert derive_session_key(ZERO_KEY, AN_UID, AN_CTR) == AN_SESSION_KEY
    assert compute_code(AN_SESSION_KEY) == AN_CODE


def test_integer_counter_matches_url_bytes():
    assert derive_session_key(ZERO_KEY, AN_UID, 61) == AN_SESSION_KEY


def test_code_format():
    code = compute_code(derive_session_key(ZERO_KEY, UID, CTR))
    assert len(code) == 16
    assert code == code.upper()


def test_every_counter_bit_changes_code():
    base = compute_code(derive_session_key(ZERO_KEY, UID, CTR))
    for bit in range(len(CTR) * 8):
        assert compute_code(derive_session_key(ZERO_KEY, UID, _flip(CTR, bit))) != base, bit


def test_every_uid_bit_changes_code():
    base = compute_code(derive_session_key(ZERO_KEY, UID, CTR))
    for bit in range(len(UID) * 8):
        assert compute_code(derive_session_key(ZERO_KEY, _flip(UID, bit), CTR)) != base, bit


def test_key_change_changes_code():
    base = compute_code(derive_session_key(ZERO_KEY, UID, CTR))
    assert compute_code(derive_session_key(bytes([1]) + bytes(15), UID, CTR)) != base


def test_mac_input_is_authenticated():
    session_key = derive_session_key(ZERO_KEY, UID, CTR)
    assert compute_code(session_key, b"extra") != compute_code(session_key)
    assert verify_code(ZERO_KEY, UID, CTR, compute_code(session_key, b"extra"), b"extra")


def test_verify_code_is_case_insensitive():
    assert verify_code(ZERO_KEY, UID, CTR, CODE.lower())


def test_rejects_bad_counter_length():
    with pytest.raises(ValueError):
        derive_session_key(ZERO_KEY, UID, b"\x00\x01")


def test_parse_url():
    msg = parse_sdm_url(f"https://example.com/tap?u={UID.hex()}&c=0000CE&m={CODE.lower()}")
    assert msg.uid == UID
    assert msg.counter == CTR
    assert msg.read_counter == 0xCE
    assert msg.mac == CODE


@pytest.mark.parametrize("query", [
    "c=0000CE&m=608EC96738E66669",
    "u=0464171A282290&m=608EC96738E66669",
    "u=0464171A282290&c=0000CE",
    "u=ZZ64171A282290&c=0000CE&m=608EC96738E66669",
    "u=0464171A2822&c=0000CE&m=608EC96738E66669",
    "u=0464171A282290&c=00CE&m=608EC96738E66669",
    "u=0464171A282290&c=0000CE&m=EDEC8186",
])
def test_parse_url_rejects_malformed(query):
    with pytest.raises(ValueError):
        parse_sdm_url(f"https://example.com/tap?{query}")


def test_verify_url_valid():
    result = verify_sdm_url(f"https://example.com/tap?u=0464171A282290&c=0000CE&m={CODE}", ZERO_KEY)
    assert result.valid
    assert result.uid == UID
    assert result.read_counter == 0xCE


def test_verify_url_wrong_mac():
    result = verify_sdm_url("https://example.com/tap?u=0464171A282290&c=0000CE&m=0000000000000000", ZERO_KEY)
    assert not result.valid
    assert result.uid == UID
    assert "signature" in result.reason


def test_verify_url_malformed_does_not_raise():
    result = verify_sdm_url("https://example.com/tap?u=04", ZERO_KEY)
    assert not result.valid
    assert result.uid is None


def test_replay_guard():
    guard = ReplayGuard()
    assert guard.accept(UID, 5)
    assert not guard.accept(UID, 5)
    assert not guard.accept(UID, 4)
    assert guard.accept(UID, 6)
    assert guard.accept(AN_UID, 1)


def test_verify_url_rejects_replay():
    guard = ReplayGuard()
    url = f"https://example.com/tap?u=0464171A282290&c=0000CE&m={CODE}"
    assert verify_sdm_url(url, ZERO_KEY, replay_guard=guard).valid
    replay = verify_sdm_url(url, ZERO_KEY, replay_guard=guard)
    assert not replay.valid
    assert "replay" in replay.reason
