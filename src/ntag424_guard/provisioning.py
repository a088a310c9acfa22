import logging
from dataclasses import dataclass
from typing import Optional

from . import config
from .constants import (
    CC_FILE_CONTENT, CC_FILE_NUMBER, NDEF_FILE_HEADER_LEN, NDEF_FILE_NUMBER, NDEF_FILE_SIZE,
    WRITE_CHUNK_SIZE,
)
from .exceptions import CommandError
from .key_manager import password_to_key
from .policy import Access, AccessPolicy, CommMode, FileSettings, SdmPolicy
from .transport import Transport

logger = logging.getLogger(__name__)

UID_HEX_LEN = 14
CTR_HEX_LEN = 6
MAC_HEX_LEN = 16


@dataclass(frozen=True)
class SdmTemplate:
    url: str
    uid_offset: int
    counter_offset: int
    mac_offset: int


def calculate_offsets(base_url: str, header_len: int = NDEF_FILE_HEADER_LEN) -> SdmTemplate:
    """
    URL 길이와 NDEF 헤더를 고려하여 미러링 데이터가 들어갈 위치(Offset)를 계산합니다.

    [File Length (2bytes)] + [NDEF Header (5bytes)] 뒤에 URL이 시작되므로
    기본적으로 파일의 7번째 바이트부터가 URL 데이터입니다.
    """
    # 1. 구분자 결정 (? 또는 &)
    separator = "&" if "?" in base_url else "?"

    uid_param = f"{config.UID_PARAM}="
    ctr_param = f"&{config.CTR_PARAM}="
    mac_param = f"&{config.SDMMAC_PARAM}="

    # 2. 각 필드 오프셋
    uid_offset = header_len + len(base_url) + len(separator) + len(uid_param)
    counter_offset = uid_offset + UID_HEX_LEN + len(ctr_param)
    mac_offset = counter_offset + CTR_HEX_LEN + len(mac_param)

    # 3. 최종 URL 템플릿 생성
    url = (
        f"{base_url}{separator}{uid_param}{'0' * UID_HEX_LEN}"
        f"{ctr_param}{'0' * CTR_HEX_LEN}{mac_param}{'0' * MAC_HEX_LEN}"
    )
    return SdmTemplate(url, uid_offset, counter_offset, mac_offset)


def sdm_policy(template: SdmTemplate, file_read: Access = Access.KEY_0,
               counter_retrieval: Access = Access.KEY_0) -> AccessPolicy:
    """평문 UID / 카운터 미러링 + SDMMAC 설정.

    MAC 입력 오프셋 = MAC 오프셋이므로 추가로 인증되는 바이트는 없습니다.
    """
    return AccessPolicy(
        read=Access.FREE,
        write=Access.KEY_0,
        read_write=Access.KEY_0,
        change=Access.KEY_0,
        comm_mode=CommMode.PLAIN,
        sdm=SdmPolicy(
            uid_mirror=True,
            counter_mirror=True,
            ascii_encoding=True,
            meta_read=Access.FREE,
            file_read=file_read,
            counter_retrieval=counter_retrieval,
            uid_offset=template.uid_offset,
            counter_offset=template.counter_offset,
            mac_input_offset=template.mac_offset,
            mac_offset=template.mac_offset,
        ),
    )


def locked_ndef_policy() -> AccessPolicy:
    """Read: Free, Write/RW/Change: Key 0, Plain, SDM 없음."""
    return AccessPolicy(
        read=Access.FREE,
        write=Access.KEY_0,
        read_write=Access.KEY_0,
        change=Access.KEY_0,
        comm_mode=CommMode.PLAIN,
    )


def configure_file_access(transport: Transport, policy: AccessPolicy,
                          file_no: int = NDEF_FILE_NUMBER, key_no: int = 0) -> FileSettings:
    """현재 파일 설정을 확인한 뒤 새 접근 권한을 적용하고, 다시 읽어 반환합니다.

    인증은 호출 전에 끝나 있어야 합니다.

    Raises:
        CommandError: 현재 Change 권한으로는 설정을 바꿀 수 없거나 태그가 명령을 거부한 경우
    """
    current = transport.get_file_settings(file_no)
    change = current.policy.change
    if change != Access.FREE and change != key_no:
        raise CommandError(
            f"Cannot change file {file_no:#04x} settings: change access {int(change):#x} does not allow it"
        )

    if not transport.change_file_settings(file_no, policy):
        raise CommandError(f"ChangeFileSettings failed for file {file_no:#04x}")

    verified = transport.get_file_settings(file_no)
    if verified.policy.write != policy.write:
        logger.warning("Write access reads back as %s, expected %s",
                       verified.policy.write, policy.write)
    logger.info("File %#04x access configured", file_no)
    return verified


def configure_cc_file(transport: Transport) -> bool:
    """iOS 백그라운드 감지를 위한 CC 파일(0x01) 내용을 기록합니다."""
    ok = transport.write_file(CC_FILE_NUMBER, 0, CC_FILE_CONTENT)
    if ok:
        logger.info("CC file written")
    else:
        logger.warning("CC file write failed")
    return ok


# NDEF short record (MB | ME | SR | TNF=Well-Known)
NDEF_RECORD_HEADER = 0xD1
NDEF_TYPE_URI = 0x55
NDEF_TYPE_TEXT = 0x54

URI_PREFIXES = {
    0x00: "",
    0x01: "http://www.",
    0x02: "https://www.",
    0x03: "http://",
    0x04: "https://",
}


def build_ndef_file(content: str, uri: Optional[bool] = None) -> bytes:
    """
    NDEF 파일(0x02)에 기록할 데이터를 생성합니다.

    구조: [NLEN (2bytes, Big Endian)] + [D1 01 PayloadLen Type] + Payload

    URI 레코드는 접두어 코드 0x00을 사용하므로 URL 전체가 파일의 7번째 바이트부터
    그대로 놓입니다 (calculate_offsets와 같은 배치). 그 외 문자열은 Text 레코드('en')로 기록합니다.

    Raises:
        ValueError: 레코드가 short record 또는 파일 크기를 넘는 경우
    """
    if uri is None:
        uri = "://" in content
    data = content.encode("utf-8")
    if uri:
        record_type, payload = NDEF_TYPE_URI, b"\x00" + data
    else:
        record_type, payload = NDEF_TYPE_TEXT, b"\x02en" + data
    if len(payload) > 0xFF:
        raise ValueError(f"NDEF payload too long for a short record: {len(payload)} bytes")

    message = bytes([NDEF_RECORD_HEADER, 0x01, len(payload), record_type]) + payload
    file_data = len(message).to_bytes(2, "big") + message
    if len(file_data) > NDEF_FILE_SIZE:
        raise ValueError(f"NDEF file data exceeds {NDEF_FILE_SIZE} bytes")
    return file_data


def parse_ndef_file(data: bytes) -> str:
    """NDEF 파일 내용에서 첫 URI / Text 레코드를 꺼냅니다. 해석할 수 없으면 빈 문자열."""
    if len(data) < 2:
        return ""
    nlen = int.from_bytes(data[:2], "big")
    message = data[2:2 + nlen]
    if nlen == 0 or len(message) < 3:
        return ""

    header, type_len, payload_len = message[0], message[1], message[2]
    # short record, ID 필드 없음만 지원
    if not header & 0x10 or header & 0x08:
        return ""
    record_type = message[3:3 + type_len]
    payload = message[3 + type_len:3 + type_len + payload_len]
    if not payload:
        return ""

    try:
        if record_type == b"U":
            prefix = URI_PREFIXES.get(payload[0])
            if prefix is None:
                return ""
            return prefix + payload[1:].decode("utf-8")
        if record_type == b"T":
            status = payload[0]
            text = payload[1 + (status & 0x3F):]
            return text.decode("utf-16" if status & 0x80 else "utf-8")
    except UnicodeDecodeError:
        return ""
    return ""


def write_file_data(transport: Transport, file_no: int, data: bytes, offset: int = 0) -> bool:
    """WRITE_CHUNK_SIZE 단위로 나누어 WriteData를 전송합니다."""
    for start in range(0, len(data), WRITE_CHUNK_SIZE):
        chunk = data[start:start + WRITE_CHUNK_SIZE]
        if not transport.write_file(file_no, offset + start, chunk):
            logger.warning("WriteData failed at offset %d of file %#04x", offset + start, file_no)
            return False
    return True


def write_ndef(transport: Transport, content: str, uri: Optional[bool] = None) -> bool:
    file_data = build_ndef_file(content, uri)
    if not write_file_data(transport, NDEF_FILE_NUMBER, file_data):
        return False
    readback = transport.read_file(NDEF_FILE_NUMBER, 0, len(file_data))
    if readback != file_data:
        logger.warning("NDEF read-back does not match the written data")
        return False
    logger.info("NDEF message written (%d bytes)", len(file_data))
    return True


def write_sdm_template(transport: Transport, template: SdmTemplate) -> bool:
    """calculate_offsets의 오프셋이 가리키는 URL 템플릿을 NDEF 파일에 기록합니다."""
    return write_ndef(transport, template.url, uri=True)


def read_ndef(transport: Transport) -> str:
    data = transport.read_file(NDEF_FILE_NUMBER, 0, NDEF_FILE_SIZE)
    logger.info("Read %d bytes from NDEF file", len(data))
    return parse_ndef_file(data)


def authenticate_with_password(transport: Transport, password: str, key_no: int = 0) -> bool:
    """비밀번호가 있으면 Key 인증을 수행합니다. 빈 비밀번호는 인증 없이 진행합니다."""
    if not password:
        return True
    return bool(transport.authenticate(key_no, password_to_key(password)))
