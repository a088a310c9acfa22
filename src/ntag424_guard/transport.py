from typing import Optional, Protocol, Tuple

from .constants import SW_ADDITIONAL_FRAME, STATUS_MESSAGES
from .policy import AccessPolicy, FileSettings


class Transport(Protocol):
    """태그 통신 계층이 제공해야 하는 인터페이스.

    인증 실패, 키 변경 거부 등 예상 가능한 결과는 bool로 반환하고,
    통신 장애만 예외(TagConnectionError, CommandError)로 알립니다.
    """

    uid: Optional[bytes]

    def authenticate(self, key_no: int, key: bytes) -> bool:
        ...

    def change_key(self, key_no: int, old_key: bytes, new_key: bytes, version: int = 0) -> bool:
        ...

    def read_file(self, file_no: int, offset: int, length: int) -> bytes:
        ...

    def write_file(self, file_no: int, offset: int, data: bytes) -> bool:
        ...

    def get_file_settings(self, file_no: int) -> FileSettings:
        ...

    def change_file_settings(self, file_no: int, policy: AccessPolicy) -> bool:
        ...

    def send_encrypted_command(self, opcode: int, header: bytes, payload: bytes) -> Tuple[int, int, bytes]:
        ...


def describe_status(sw1: int, sw2: int) -> str:
    text = f"SW={sw1:02X}{sw2:02X}"
    if sw1 == SW_ADDITIONAL_FRAME and sw2 in STATUS_MESSAGES:
        text += f" ({STATUS_MESSAGES[sw2]})"
    return text
