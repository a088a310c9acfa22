"""AES-128 단일 블록 암호화 프리미티브.

CMAC 엔진과 체크섬 서브시스템이 모두 이 모듈 위에서 동작합니다.
"""

from Crypto.Cipher import AES

from .constants import BLOCK_SIZE, KEY_SIZE
from .exceptions import InvalidBlockSize


def _check(key: bytes, block: bytes):
    if len(key) != KEY_SIZE:
        raise InvalidBlockSize(f"AES-128 key must be {KEY_SIZE} bytes, got {len(key)}")
    if len(block) != BLOCK_SIZE:
        raise InvalidBlockSize(f"Block must be {BLOCK_SIZE} bytes, got {len(block)}")


def encrypt_block(key: bytes, block: bytes) -> bytes:
    """16바이트 블록 하나를 AES-128로 암호화합니다."""
    _check(key, block)
    return AES.new(key, AES.MODE_ECB).encrypt(block)


def decrypt_block(key: bytes, block: bytes) -> bytes:
    """16바이트 블록 하나를 AES-128로 복호화합니다."""
    _check(key, block)
    return AES.new(key, AES.MODE_ECB).decrypt(block)


def _blocks(data: bytes):
    if len(data) % BLOCK_SIZE:
        raise InvalidBlockSize(f"Data length {len(data)} is not a multiple of {BLOCK_SIZE}")
    for i in range(0, len(data), BLOCK_SIZE):
        yield data[i:i + BLOCK_SIZE]


def ecb_encrypt(key: bytes, data: bytes) -> bytes:
    """블록 단위로 독립 암호화합니다 (체이닝 없음)."""
    return b"".join(encrypt_block(key, block) for block in _blocks(data))


def ecb_decrypt(key: bytes, data: bytes) -> bytes:
    return b"".join(decrypt_block(key, block) for block in _blocks(data))
