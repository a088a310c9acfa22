from typing import Union

from .cmac import authenticate
from .constants import KEY_SIZE, UID_SIZE


def password_to_key(password: Union[str, bytes]) -> bytes:
    """
    사용자가 입력한 비밀번호를 16바이트 AES-128 키로 변환합니다.

    UTF-8로 인코딩한 뒤 16바이트보다 짧으면 0x00으로 채우고, 길면 잘라냅니다.
    """
    key = password.encode("utf-8") if isinstance(password, str) else bytes(password)
    if len(key) < KEY_SIZE:
        key += bytes(KEY_SIZE - len(key))
    return key[:KEY_SIZE]


def derive_tag_key(master_key: bytes, uid: bytes) -> bytes:
    """
    UID를 기반으로 태그 고유의 키를 파생(Diversification)합니다.

    알고리즘: AES-CMAC(MasterKey, UID)
    이 방식을 사용하면 태그마다 서로 다른 키를 가지게 되어,
    하나의 태그 키가 탈취되더라도 전체 시스템의 보안이 위협받지 않습니다.

    Args:
        master_key (bytes): 16바이트 마스터 키
        uid (bytes): 태그의 고유 ID (7 bytes)

    Returns:
        bytes: 파생된 16바이트 키
    """
    if len(uid) != UID_SIZE:
        raise ValueError(f"UID must be {UID_SIZE} bytes, got {len(uid)}")
    return authenticate(master_key, uid)
