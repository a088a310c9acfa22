import pytest

from ntag424_guard.cipher import decrypt_block, ecb_decrypt, ecb_encrypt, encrypt_block
from ntag424_guard.exceptions import InvalidBlockSize

# FIPS-197 Appendix C.1
KEY = bytes.fromhex("000102030405060708090a0b0c0d0e0f")
PLAIN = bytes.fromhex("00112233445566778899aabbccddeeff")
CIPHER = bytes.fromhex("69c4e0d86a7b0430d8cdb78070b4c55a")


def test_fips197_vector():
    assert encrypt_block(KEY, PLAIN) == CIPHER
    assert decrypt_block(KEY, CIPHER) == PLAIN


@pytest.mark.parametrize("length", [0, 15, 17, 32])
def test_rejects_wrong_block_size(length):
    with pytest.raises(InvalidBlockSize):
        encrypt_block(KEY, bytes(length))
    with pytest.raises(InvalidBlockSize):
        decrypt_block(KEY, bytes(length))


def test_rejects_wrong_key_size():
    with pytest.raises(InvalidBlockSize):
        encrypt_block(bytes(24), PLAIN)


def test_invalid_block_size_is_value_error():
    with pytest.raises(ValueError):
        encrypt_block(KEY, b"short")


def test_ecb_blocks_are_independent():
    data = PLAIN * 2
    enc = ecb_encrypt(KEY, data)
    assert enc == CIPHER * 2
    assert ecb_decrypt(KEY, enc) == data


def test_ecb_requires_whole_blocks():
    with pytest.raises(InvalidBlockSize):
        ecb_encrypt(KEY, bytes(20))
