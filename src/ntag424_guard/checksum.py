"""Deterministic checksum binding a group id and a rule id.

    checksum = HEX(AES-128-ECB(key, pad_iso7816(gid + ":" + rid)))

Only the first ``CHECKSUM_PREFIX_LEN`` hex characters travel in the tag URL
(``?gid=...&rule=...&chksum=<prefix>``); the full checksum is kept in a
key-value store indexed by that prefix.
"""

import binascii
import json
import logging
import os
from enum import Enum
from typing import Dict, Optional, Protocol, Union
from urllib.parse import parse_qs, urlencode, urlsplit

from Crypto.Util.Padding import pad, unpad

from . import config
from .cipher import ecb_decrypt, ecb_encrypt
from .constants import BLOCK_SIZE
from .key_manager import password_to_key

logger = logging.getLogger(__name__)

Key = Union[str, bytes]

STORE_KEY_PREFIX = "chksum_"


def normalize_key(key: Key) -> bytes:
    """체크섬 키를 16바이트 AES-128 키로 맞춥니다 (UTF-8, 0x00 패딩 또는 절단)."""
    return password_to_key(key)


def seal(gid: str, rid: str, key: Key) -> str:
    data = f"{gid}:{rid}".encode("utf-8")
    encrypted = ecb_encrypt(normalize_key(key), pad(data, BLOCK_SIZE, style="iso7816"))
    checksum = encrypted.hex().upper()
    logger.debug("Sealed gid=%s rid=%s -> %s", gid, rid, checksum)
    return checksum


def verify(checksum: str, gid: str, rid: str, key: Key) -> bool:
    """Compare only the transmitted prefix of the checksum."""
    n = config.CHECKSUM_PREFIX_LEN
    expected = seal(gid, rid, key)
    return checksum[:n].upper() == expected[:n]


def open_checksum(checksum: str, key: Key) -> str:
    """Decrypt a full checksum back to ``"gid:rid"``; empty string on any corruption."""
    if len(checksum) % 2:
        checksum = "0" + checksum
    try:
        data = binascii.unhexlify(checksum)
        plain = unpad(ecb_decrypt(normalize_key(key), data), BLOCK_SIZE, style="iso7816")
        return plain.decode("utf-8")
    except (binascii.Error, ValueError):
        return ""


class ChecksumStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def put(self, key: str, value: str) -> None:
        ...


class MemoryChecksumStore:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonChecksumStore:
    """Checksum store persisted as a flat JSON object."""

    def __init__(self, path: str) -> None:
        self.path = path

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def put(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, self.path)


def store_checksum(store: ChecksumStore, checksum: str) -> Optional[str]:
    """Index the full checksum by its own prefix. Returns the prefix, or None if too short."""
    n = config.CHECKSUM_PREFIX_LEN
    if len(checksum) < n:
        logger.warning("Checksum too short to save (need at least %d characters)", n)
        return None
    prefix = checksum[:n].upper()
    store.put(STORE_KEY_PREFIX + prefix, checksum.upper())
    logger.info("Saved checksum with key: %s%s", STORE_KEY_PREFIX, prefix)
    return prefix


def retrieve_checksum(store: ChecksumStore, prefix: str) -> Optional[str]:
    n = config.CHECKSUM_PREFIX_LEN
    if len(prefix) < n:
        logger.warning("Checksum prefix too short (need at least %d characters)", n)
        return None
    key = STORE_KEY_PREFIX + prefix[:n].upper()
    checksum = store.get(key)
    if checksum is None:
        logger.info("No checksum found for key: %s", key)
    return checksum


class ChecksumVerdict(Enum):
    VALID = "valid"
    MISMATCH = "mismatch"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"


def build_checksum_url(base_url: str, gid: str, rid: str, key: Key,
                       store: Optional[ChecksumStore] = None) -> str:
    checksum = seal(gid, rid, key)
    if store is not None:
        store_checksum(store, checksum)
    query = urlencode({
        config.GID_PARAM: gid,
        config.RULE_PARAM: rid,
        config.CHKSUM_PARAM: checksum[:config.CHECKSUM_PREFIX_LEN],
    })
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{query}"


def verify_checksum_url(url: str, key: Key,
                        store: Optional[ChecksumStore] = None) -> ChecksumVerdict:
    """Check a scanned ``gid``/``rule``/``chksum`` URL.

    With a store, the prefix is first expanded to the full checksum; a prefix
    the store has never seen is ``NOT_FOUND``, which is reported separately
    from a ``MISMATCH``.
    """
    args = parse_qs(urlsplit(url).query, keep_blank_values=True)
    try:
        gid = args[config.GID_PARAM][0]
        rid = args[config.RULE_PARAM][0]
        chksum = args[config.CHKSUM_PARAM][0]
    except KeyError:
        return ChecksumVerdict.MALFORMED

    if len(chksum) < config.CHECKSUM_PREFIX_LEN:
        return ChecksumVerdict.MALFORMED

    if store is not None:
        full = retrieve_checksum(store, chksum)
        if full is None:
            return ChecksumVerdict.NOT_FOUND
        chksum = full

    if verify(chksum, gid, rid, key):
        return ChecksumVerdict.VALID
    logger.info("Checksum mismatch for gid=%s rule=%s", gid, rid)
    return ChecksumVerdict.MISMATCH
