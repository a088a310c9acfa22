"""ChangeFileSettings 명령어 데이터 인코더 / GetFileSettings 응답 디코더.

CmdData 구조 (NT4H2421Gx, ChangeFileSettings):

    FileOption(1) + AccessRights(2) [+ SDMOptions(1) + SDMAccessRights(2) + Offsets(3 each)]

SDM이 꺼져 있으면 SDM 필드는 하나도 붙이지 않습니다. 0으로 채워 보내면
태그가 길이 오류(0x7E)로 거부합니다.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Tuple

from .exceptions import IrreversiblePolicy

logger = logging.getLogger(__name__)


class Access(IntEnum):
    """Access rights nibble. 0x0-0xD select a key slot."""
    KEY_0 = 0x0
    KEY_1 = 0x1
    KEY_2 = 0x2
    KEY_3 = 0x3
    KEY_4 = 0x4
    FREE = 0xE
    NEVER = 0xF

    @classmethod
    def key(cls, n: int):
        """키 슬롯 n (0x0-0xD) 접근 권한. KEY_0..KEY_4 밖의 슬롯은 정수 그대로 반환합니다."""
        if not 0x0 <= n <= 0xD:
            raise ValueError(f"Key slot out of range: {n:#x}")
        return _access(n)


class CommMode(IntEnum):
    PLAIN = 0x00
    MAC = 0x01
    FULL = 0x03


FILE_OPTION_SDM = 0x40
FILE_OPTION_COMM_MASK = 0x03

SDM_OPT_UID = 0x80
SDM_OPT_READ_CTR = 0x40
SDM_OPT_READ_CTR_LIMIT = 0x20
SDM_OPT_ENC_FILE_DATA = 0x10
SDM_OPT_ASCII = 0x01


def _nibble(value) -> int:
    value = int(value)
    if not 0x0 <= value <= 0xF:
        raise ValueError(f"Access rights nibble out of range: {value:#x}")
    return value


def _is_key(value) -> bool:
    return int(value) <= 0xD


def _access(value: int):
    try:
        return Access(value)
    except ValueError:
        return value


@dataclass
class SdmPolicy:
    uid_mirror: bool = False
    counter_mirror: bool = False
    ascii_encoding: bool = True
    enc_file_data: bool = False
    counter_limit: Optional[int] = None
    meta_read: Access = Access.FREE
    file_read: Access = Access.NEVER
    counter_retrieval: Access = Access.NEVER
    uid_offset: Optional[int] = None
    counter_offset: Optional[int] = None
    picc_data_offset: Optional[int] = None
    mac_input_offset: Optional[int] = None
    enc_offset: Optional[int] = None
    enc_length: Optional[int] = None
    mac_offset: Optional[int] = None

    @property
    def options(self) -> int:
        opts = 0
        if self.uid_mirror:
            opts |= SDM_OPT_UID
        if self.counter_mirror:
            opts |= SDM_OPT_READ_CTR
        if self.counter_limit is not None:
            opts |= SDM_OPT_READ_CTR_LIMIT
        if self.enc_file_data:
            opts |= SDM_OPT_ENC_FILE_DATA
        if self.ascii_encoding:
            opts |= SDM_OPT_ASCII
        return opts

    @property
    def access_rights(self) -> int:
        # MetaRead | FileRead | RFU(F) | CtrRet
        return (
            (_nibble(self.meta_read) << 12)
            | (_nibble(self.file_read) << 8)
            | (0xF << 4)
            | _nibble(self.counter_retrieval)
        )

    def offset_fields(self) -> List[Tuple[str, Optional[int]]]:
        """이 설정에서 태그가 기대하는 오프셋 필드 목록 (전송 순서대로)."""
        fields = []
        if self.meta_read == Access.FREE:
            if self.uid_mirror:
                fields.append(("uid_offset", self.uid_offset))
            if self.counter_mirror:
                fields.append(("counter_offset", self.counter_offset))
        elif _is_key(self.meta_read):
            fields.append(("picc_data_offset", self.picc_data_offset))

        if self.file_read != Access.NEVER:
            fields.append(("mac_input_offset", self.mac_input_offset))
            if self.enc_file_data:
                fields.append(("enc_offset", self.enc_offset))
                fields.append(("enc_length", self.enc_length))
            fields.append(("mac_offset", self.mac_offset))

        if self.counter_limit is not None:
            fields.append(("counter_limit", self.counter_limit))
        return fields


@dataclass
class AccessPolicy:
    read: Access = Access.FREE
    write: Access = Access.KEY_0
    read_write: Access = Access.KEY_0
    change: Access = Access.KEY_0
    comm_mode: CommMode = CommMode.PLAIN
    sdm: Optional[SdmPolicy] = None

    @property
    def access_rights(self) -> bytes:
        # LSB first: [(RW << 4) | Change, (Read << 4) | Write]
        return bytes([
            (_nibble(self.read_write) << 4) | _nibble(self.change),
            (_nibble(self.read) << 4) | _nibble(self.write),
        ])


@dataclass
class FileSettings:
    file_type: int
    file_size: int
    policy: AccessPolicy = field(default_factory=AccessPolicy)


def encode(policy: AccessPolicy) -> bytes:
    """AccessPolicy를 ChangeFileSettings CmdData 바이트로 인코딩합니다.

    Raises:
        IrreversiblePolicy: change 권한이 NEVER인 경우 (설정 변경이 영구히 불가능해짐)
        ValueError: SDM 설정에 필요한 오프셋이 지정되지 않은 경우
    """
    if policy.change == Access.NEVER:
        raise IrreversiblePolicy("Change access NEVER would lock the file settings permanently")

    file_option = int(policy.comm_mode) & FILE_OPTION_COMM_MASK
    if policy.sdm is not None:
        file_option |= FILE_OPTION_SDM

    data = bytes([file_option]) + policy.access_rights
    if policy.sdm is None:
        return data

    sdm = policy.sdm
    data += bytes([sdm.options]) + sdm.access_rights.to_bytes(2, "little")
    for name, value in sdm.offset_fields():
        if value is None:
            raise ValueError(f"SDM field {name} is required by this configuration")
        data += value.to_bytes(3, "little")

    logger.debug("Encoded file settings: %s", data.hex().upper())
    return data


def decode_file_settings(response: bytes) -> FileSettings:
    """GetFileSettings 응답을 파싱합니다.

    구조: FileType(1) + FileOption(1) + AccessRights(2) + FileSize(3) [+ SDM 필드]
    """
    if len(response) < 7:
        raise ValueError(f"File settings response too short: {len(response)} bytes")

    file_type = response[0]
    file_option = response[1]
    ar0, ar1 = response[2], response[3]
    file_size = int.from_bytes(response[4:7], "little")
    # 10b도 Plain으로 취급됨
    comm = file_option & FILE_OPTION_COMM_MASK

    policy = AccessPolicy(
        read=_access(ar1 >> 4),
        write=_access(ar1 & 0x0F),
        read_write=_access(ar0 >> 4),
        change=_access(ar0 & 0x0F),
        comm_mode=CommMode.PLAIN if comm == 0x02 else CommMode(comm),
    )

    if file_option & FILE_OPTION_SDM:
        if len(response) < 10:
            raise ValueError("SDM settings truncated")
        opts = response[7]
        sdm_ar = int.from_bytes(response[8:10], "little")
        sdm = SdmPolicy(
            uid_mirror=bool(opts & SDM_OPT_UID),
            counter_mirror=bool(opts & SDM_OPT_READ_CTR),
            ascii_encoding=bool(opts & SDM_OPT_ASCII),
            enc_file_data=bool(opts & SDM_OPT_ENC_FILE_DATA),
            counter_limit=0 if opts & SDM_OPT_READ_CTR_LIMIT else None,
            meta_read=_access((sdm_ar >> 12) & 0xF),
            file_read=_access((sdm_ar >> 8) & 0xF),
            counter_retrieval=_access(sdm_ar & 0xF),
        )
        pos = 10
        for name, _ in sdm.offset_fields():
            chunk = response[pos:pos + 3]
            if len(chunk) != 3:
                raise ValueError(f"SDM field {name} truncated")
            setattr(sdm, name, int.from_bytes(chunk, "little"))
            pos += 3
        policy.sdm = sdm

    return FileSettings(file_type=file_type, file_size=file_size, policy=policy)
