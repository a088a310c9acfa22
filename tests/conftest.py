import sys
import os

import pytest

# src 경로 설정
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from ntag424_guard.constants import DEFAULT_KEY_BYTES
from ntag424_guard.policy import AccessPolicy, FileSettings, encode, decode_file_settings


class FakeTag:
    """메모리 상의 가상 태그 (Transport 프로토콜 구현)."""

    def __init__(self, key=DEFAULT_KEY_BYTES, uid=bytes.fromhex("0464171A282290")):
        self.uid = uid
        self.key = key
        self.auth_attempts = []
        self.change_calls = []
        self.reject_change = False
        self.lose_change = False
        self.files = {}
        self.writes = []
        self.fail_writes = False
        self.disconnected = False
        self.settings = {2: FileSettings(file_type=0x00, file_size=256, policy=AccessPolicy(change=0xE))}
        self._authenticated = False

    def authenticate(self, key_no, key):
        self.auth_attempts.append(key)
        self._authenticated = key == self.key
        return self._authenticated

    def change_key(self, key_no, old_key, new_key, version=0):
        self.change_calls.append((key_no, version))
        if self.reject_change or not self._authenticated or old_key != self.key:
            return False
        if not self.lose_change:
            self.key = new_key
        self._authenticated = False
        return True

    def read_file(self, file_no, offset, length):
        return self.files.get(file_no, b"")[offset:offset + length]

    def write_file(self, file_no, offset, data):
        self.writes.append((file_no, offset, len(data)))
        if self.fail_writes:
            return False
        buf = bytearray(self.files.get(file_no, b""))
        buf[offset:offset + len(data)] = data
        self.files[file_no] = bytes(buf)
        return True

    def get_file_settings(self, file_no):
        return self.settings[file_no]

    def change_file_settings(self, file_no, policy):
        data = encode(policy)
        current = self.settings[file_no]
        response = bytes([current.file_type]) + data[:3] + current.file_size.to_bytes(3, "little") + data[3:]
        self.settings[file_no] = decode_file_settings(response)
        return True

    def send_encrypted_command(self, opcode, header, payload):
        return 0x91, 0x00, b""

    def disconnect(self):
        self.disconnected = True


@pytest.fixture
def factory_tag():
    return FakeTag()
