import binascii
import os

from .exceptions import ConfigurationError

# SDM 검증용 마스터 키 HEX (기본값: 공장 키 -> 데모 모드). 사용할 때 파싱합니다.
MASTER_KEY_HEX = os.environ.get("NTAG_MASTER_KEY", "00000000000000000000000000000000")

# 체크섬 서명 키 (문자열, 16바이트로 패딩/절단됨)
# WHEN PROD, the key should be kept in secure storage, one key per box.
CHECKSUM_KEY = os.environ.get("NTAG_CHECKSUM_KEY", "1234567890123456")
CHECKSUM_STORE = os.environ.get("NTAG_CHECKSUM_STORE", "checksums.json")
CHECKSUM_PREFIX_LEN = 10

# for SDM plaintext mirroring
UID_PARAM = os.environ.get("UID_PARAM", "u")
CTR_PARAM = os.environ.get("CTR_PARAM", "c")
SDMMAC_PARAM = os.environ.get("SDMMAC_PARAM", "m")

# for checksum URLs
GID_PARAM = os.environ.get("GID_PARAM", "gid")
RULE_PARAM = os.environ.get("RULE_PARAM", "rule")
CHKSUM_PARAM = os.environ.get("CHKSUM_PARAM", "chksum")

LOG_LEVEL = os.environ.get("NTAG_LOG_LEVEL", "INFO")


def parse_key_hex(text: str) -> bytes:
    try:
        key = binascii.unhexlify(text.strip())
    except binascii.Error:
        raise ConfigurationError("Master key must be hex encoded") from None
    if len(key) != 16:
        raise ConfigurationError(f"Master key must be 16 bytes, got {len(key)}")
    return key


def master_key() -> bytes:
    return parse_key_hex(MASTER_KEY_HEX)


def demo_mode() -> bool:
    return master_key() == b"\x00" * 16
