"""AES-128 CMAC (NIST SP 800-38B).

서브키 K1/K2는 E(K, 0^16)을 GF(2^128)에서 두 번 배가(doubling)하여 얻습니다.
마지막 블록이 16바이트로 꽉 차면 K1, 아니면 0x80 패딩 후 K2와 XOR합니다.
"""

from .cipher import encrypt_block
from .constants import BLOCK_SIZE

_Rb = 0x87


def _xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def _left_shift(data: bytes) -> bytearray:
    out = bytearray(BLOCK_SIZE)
    for i in range(BLOCK_SIZE - 1):
        out[i] = ((data[i] << 1) | (data[i + 1] >> 7)) & 0xFF
    out[BLOCK_SIZE - 1] = (data[BLOCK_SIZE - 1] << 1) & 0xFF
    return out


def _double(block: bytes) -> bytes:
    shifted = _left_shift(block)
    if block[0] & 0x80:
        shifted[-1] ^= _Rb
    return bytes(shifted)


def generate_subkeys(key: bytes) -> tuple[bytes, bytes]:
    """CMAC 서브키 (K1, K2)를 생성합니다."""
    k0 = encrypt_block(key, bytes(BLOCK_SIZE))
    k1 = _double(k0)
    k2 = _double(k1)
    return k1, k2


def authenticate(key: bytes, message: bytes = b"") -> bytes:
    """메시지에 대한 16바이트 CMAC 태그를 계산합니다.

    Args:
        key: 16바이트 AES-128 키
        message: 임의 길이의 메시지 (빈 메시지 허용)

    Returns:
        16바이트 인증 태그
    """
    k1, k2 = generate_subkeys(key)

    n = max(1, -(-len(message) // BLOCK_SIZE))
    last = message[(n - 1) * BLOCK_SIZE:]
    if len(last) == BLOCK_SIZE:
        last = _xor(last, k1)
    else:
        padded = last + b"\x80" + bytes(BLOCK_SIZE - len(last) - 1)
        last = _xor(padded, k2)

    x = bytes(BLOCK_SIZE)
    for i in range(n - 1):
        x = encrypt_block(key, _xor(x, message[i * BLOCK_SIZE:(i + 1) * BLOCK_SIZE]))
    return encrypt_block(key, _xor(x, last))


def truncate(mac: bytes) -> bytes:
    """홀수 인덱스 바이트(1, 3, ..., 15)만 추출하여 8바이트로 단축합니다."""
    return mac[1::2]


def authenticate_truncated(key: bytes, message: bytes = b"") -> bytes:
    return truncate(authenticate(key, message))
