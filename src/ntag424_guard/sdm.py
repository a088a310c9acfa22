"""SUN (Secure Unique NFC) message validation for plaintext UID/counter mirroring.

The tag mirrors its UID, read counter and a truncated MAC into the URL:

    https://example.com/tap?u=0464171A282290&c=0000CE&m=608EC96738E66669

The verifier derives a per-scan session key from the master key and checks
the MAC. Reference: NXP AN12196, section "SUN message".
"""

import binascii
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union
from urllib.parse import parse_qs, urlsplit

from . import config
from .cmac import authenticate, truncate
from .constants import COUNTER_SIZE, SV_SDM_MAC_LABEL, UID_SIZE

logger = logging.getLogger(__name__)

Counter = Union[bytes, int]


def _counter_le(counter: Counter) -> bytes:
    if isinstance(counter, int):
        return counter.to_bytes(COUNTER_SIZE, "little")
    if len(counter) != COUNTER_SIZE:
        raise ValueError(f"Counter must be {COUNTER_SIZE} bytes, got {len(counter)}")
    # URL 표기는 빅엔디안, 파생 입력은 리틀엔디안
    return bytes(reversed(counter))


def derive_session_key(master_key: bytes, uid: bytes, counter: Counter) -> bytes:
    """KSesSDMFileReadMAC = CMAC(K, 3CC300010080 || UID || SDMReadCtr).

    Args:
        master_key: 16바이트 SDM 파일 읽기 키
        uid: 7바이트 태그 UID
        counter: URL에 표시된 3바이트 카운터 (빅엔디안) 또는 정수

    Returns:
        16바이트 세션 키. 카운터마다 새로 계산해야 하며 캐시하지 않습니다.
    """
    sv2 = SV_SDM_MAC_LABEL + uid + _counter_le(counter)
    return authenticate(master_key, sv2)


def compute_code(session_key: bytes, mac_input: bytes = b"") -> str:
    """세션 키로 CMAC을 계산하고 홀수 바이트만 남긴 8바이트 코드를 대문자 HEX로 반환합니다."""
    return truncate(authenticate(session_key, mac_input)).hex().upper()


def verify_code(master_key: bytes, uid: bytes, counter: Counter, presented: str,
                mac_input: bytes = b"") -> bool:
    session_key = derive_session_key(master_key, uid, counter)
    return compute_code(session_key, mac_input) == presented.upper()


@dataclass(frozen=True)
class SdmMessage:
    uid: bytes
    counter: bytes
    mac: str

    @property
    def read_counter(self) -> int:
        return int.from_bytes(self.counter, "big")


@dataclass(frozen=True)
class SdmResult:
    valid: bool
    uid: Optional[bytes] = None
    read_counter: Optional[int] = None
    reason: str = ""


def parse_sdm_url(url: str) -> SdmMessage:
    """URL의 u / c / m 파라미터를 파싱합니다.

    Raises:
        ValueError: 파라미터가 없거나 HEX 디코딩에 실패한 경우
    """
    args = parse_qs(urlsplit(url).query)
    try:
        uid_hex = args[config.UID_PARAM][0]
        ctr_hex = args[config.CTR_PARAM][0]
        mac_hex = args[config.SDMMAC_PARAM][0]
    except KeyError as e:
        raise ValueError(f"Parameter {e.args[0]} is required") from None

    try:
        uid = binascii.unhexlify(uid_hex)
        counter = binascii.unhexlify(ctr_hex)
        binascii.unhexlify(mac_hex)
    except binascii.Error:
        raise ValueError("Failed to decode parameters.") from None

    if len(uid) != UID_SIZE:
        raise ValueError(f"UID must be {UID_SIZE} bytes, got {len(uid)}")
    if len(counter) != COUNTER_SIZE:
        raise ValueError(f"Counter must be {COUNTER_SIZE} bytes, got {len(counter)}")
    if len(mac_hex) != 16:
        raise ValueError("SDMMAC must be 8 bytes")

    return SdmMessage(uid=uid, counter=counter, mac=mac_hex.upper())


def verify_sdm_url(url: str, master_key: bytes, mac_input: bytes = b"",
                   replay_guard: Optional["ReplayGuard"] = None) -> SdmResult:
    """스캔된 URL을 검증합니다. 실패는 예외가 아니라 결과 값으로 반환됩니다."""
    try:
        msg = parse_sdm_url(url)
    except ValueError as e:
        logger.info("Malformed SDM URL: %s", e)
        return SdmResult(valid=False, reason=str(e))

    if not verify_code(master_key, msg.uid, msg.counter, msg.mac, mac_input):
        logger.info("SDM MAC mismatch for UID %s (ctr=%d)", msg.uid.hex().upper(), msg.read_counter)
        return SdmResult(valid=False, uid=msg.uid, read_counter=msg.read_counter,
                         reason="Invalid message (most probably wrong signature).")

    if replay_guard is not None and not replay_guard.accept(msg.uid, msg.read_counter):
        return SdmResult(valid=False, uid=msg.uid, read_counter=msg.read_counter,
                         reason="Read counter did not increase (replayed scan).")

    return SdmResult(valid=True, uid=msg.uid, read_counter=msg.read_counter)


class ReplayGuard:
    """Tracks the highest read counter seen per UID."""

    def __init__(self) -> None:
        self._last_seen: Dict[bytes, int] = {}

    def accept(self, uid: bytes, read_counter: int) -> bool:
        last = self._last_seen.get(uid)
        if last is not None and read_counter <= last:
            logger.warning("Replay detected for UID %s: ctr %d <= %d",
                           uid.hex().upper(), read_counter, last)
            return False
        self._last_seen[uid] = read_counter
        return True
