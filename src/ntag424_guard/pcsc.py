"""PC/SC 리더기를 통한 NTAG 424 DNA Transport 구현 (pyscard)."""

import logging
import os
import zlib
from typing import List, Optional, Tuple

from Crypto.Cipher import AES
from Crypto.Util.Padding import pad
from smartcard.CardConnection import CardConnection
from smartcard.Exceptions import CardConnectionException, NoCardException
from smartcard.System import readers

from .cipher import encrypt_block
from .cmac import authenticate as cmac_authenticate, authenticate_truncated
from .constants import (
    NTAG424_AID, DEFAULT_KEY_BYTES, KEY_SIZE,
    CMD_AUTH_EV2_FIRST_PART1, CMD_AUTH_EV2_FIRST_PART2,
    CMD_CHANGE_KEY, CMD_CHANGE_FILE_SETTINGS, CMD_GET_FILE_SETTINGS,
    CMD_READ_DATA, CMD_WRITE_DATA,
    SW_SUCCESS, SW_ADDITIONAL_FRAME, SW2_OK, SW2_MORE,
    SV_ENC_LABEL, SV_MAC_LABEL,
)
from .exceptions import TagConnectionError, AuthenticationError, CommandError
from .policy import AccessPolicy, FileSettings, decode_file_settings, encode
from .transport import describe_status

logger = logging.getLogger(__name__)


def _rotate_left(data: bytes) -> bytes:
    return data[1:] + data[:1]


def _jamcrc32(data: bytes) -> bytes:
    return ((~zlib.crc32(data)) & 0xFFFFFFFF).to_bytes(4, "little")


class PcscTransport:
    """
    NTAG 424 DNA 태그를 제어하기 위한 PC/SC 기반 Transport 구현.
    ISO7816 통신 및 EV2 보안 메시징을 처리합니다.
    """

    def __init__(self, connection: Optional[CardConnection] = None):
        self.connection = connection
        self.reader = None
        self.uid: Optional[bytes] = None
        self.session_enc_key: Optional[bytes] = None
        self.session_mac_key: Optional[bytes] = None
        self.ti: Optional[bytes] = None  # 트랜잭션 식별자 (Transaction Identifier)
        self.cmd_ctr: int = 0
        self.auth_key_no: Optional[int] = None

    def connect(self) -> bool:
        """사용 가능한 첫 번째 스마트 카드 리더기에 연결합니다."""
        try:
            r_list = readers()
            if not r_list:
                return False
            self.reader = r_list[0]
            self.connection = self.reader.createConnection()
            self.connection.connect()
        except (CardConnectionException, NoCardException) as e:
            logger.debug("Connect failed: %s", e)
            return False
        logger.info("Connected to reader %s", self.reader)
        return True

    def disconnect(self):
        """카드와의 연결을 종료합니다."""
        if self.connection:
            try:
                self.connection.disconnect()
            except CardConnectionException as e:
                logger.debug("Disconnect failed: %s", e)
        self._reset_session()

    def _reset_session(self):
        self.session_enc_key = None
        self.session_mac_key = None
        self.ti = None
        self.cmd_ctr = 0
        self.auth_key_no = None

    def _transmit(self, apdu: List[int]) -> Tuple[bytes, int, int]:
        if not self.connection:
            raise TagConnectionError("연결되지 않았습니다.")
        resp, sw1, sw2 = self.connection.transmit(apdu)
        return bytes(resp), sw1, sw2

    def read_uid(self) -> bytes:
        """GET DATA (FF CA) 의사 APDU로 UID를 읽습니다."""
        resp, sw1, sw2 = self._transmit([0xFF, 0xCA, 0x00, 0x00, 0x00])
        if sw1 != SW_SUCCESS or sw2 != SW2_OK:
            raise CommandError(f"UID read failed: {describe_status(sw1, sw2)}", sw1, sw2)
        self.uid = resp
        return resp

    def select_app(self) -> bool:
        """NTAG 424 DNA 애플리케이션을 선택합니다."""
        # 00 A4 04 00 07 [AID] 00
        apdu = [0x00, 0xA4, 0x04, 0x00, 0x07] + NTAG424_AID + [0x00]
        resp, sw1, sw2 = self._transmit(apdu)
        return sw1 == SW_SUCCESS and sw2 == SW2_OK

    def authenticate(self, key_no: int = 0, key: bytes = DEFAULT_KEY_BYTES) -> bool:
        """
        'AuthenticateEV2First' 핸드셰이크를 수행합니다.
        성공 시 세션 키(Enc, Mac)를 파생합니다.
        """
        self._reset_session()

        # 1단계: 태그로부터 RndB 수신
        apdu_part1 = [0x90, CMD_AUTH_EV2_FIRST_PART1, 0x00, 0x00, 0x02, key_no, 0x00, 0x00]
        resp1, sw1, sw2 = self._transmit(apdu_part1)

        if sw1 != SW_ADDITIONAL_FRAME or sw2 != SW2_MORE:
            logger.debug("EV2First part 1 rejected: %s", describe_status(sw1, sw2))
            return False

        enc_rnd_b = resp1[:16]
        rnd_b = AES.new(key, AES.MODE_CBC, bytes(16)).decrypt(enc_rnd_b)

        # 2단계: RndA 생성 및 (RndA + RndB') 전송
        rnd_a = os.urandom(16)
        token = rnd_a + _rotate_left(rnd_b)
        enc_token = AES.new(key, AES.MODE_CBC, bytes(16)).encrypt(token)

        apdu_part2 = [0x90, CMD_AUTH_EV2_FIRST_PART2, 0x00, 0x00, 0x20] + list(enc_token) + [0x00]
        resp2, sw1, sw2 = self._transmit(apdu_part2)

        if sw1 != SW_ADDITIONAL_FRAME or sw2 != SW2_OK:
            logger.debug("EV2First part 2 rejected: %s", describe_status(sw1, sw2))
            return False

        # 3단계: 태그 응답 검증 (TI || RndA' || PDcap2 || PCDcap2)
        dec_data = AES.new(key, AES.MODE_CBC, bytes(16)).decrypt(resp2[:32])
        if dec_data[4:20] != _rotate_left(rnd_a):
            logger.warning("EV2First: RndA' mismatch, tag response not trusted")
            return False

        self.ti = dec_data[0:4]
        self.cmd_ctr = 0
        self.auth_key_no = key_no

        # 세션 키 파생
        xor_part = bytes([a ^ b for a, b in zip(rnd_a[2:8], rnd_b[0:6])])
        context = rnd_a[0:2] + xor_part + rnd_b[6:16] + rnd_a[8:16]
        self.session_enc_key = cmac_authenticate(key, SV_ENC_LABEL + context)
        self.session_mac_key = cmac_authenticate(key, SV_MAC_LABEL + context)
        logger.info("Authenticated with key %d (TI=%s)", key_no, self.ti.hex().upper())
        return True

    def _require_session(self):
        if not self.session_enc_key:
            raise AuthenticationError("세션이 인증되지 않았습니다.")

    def _encrypt_packet(self, cmd_header: bytes, data: bytes) -> bytes:
        """EV2 보안 메시징을 위해 명령어 데이터를 암호화합니다."""
        iv_input = bytes.fromhex("A55A") + self.ti + self.cmd_ctr.to_bytes(2, 'little') + bytes(8)
        iv = encrypt_block(self.session_enc_key, iv_input)

        cipher_data = AES.new(self.session_enc_key, AES.MODE_CBC, iv)
        return cipher_data.encrypt(pad(data, 16, style='iso7816'))

    def _calc_mac(self, cmd_code: int, cmd_header: bytes, enc_data: bytes) -> bytes:
        """명령어에 대한 CMAC을 계산합니다 (8바이트로 자름)."""
        mac_input = bytes([cmd_code]) + self.cmd_ctr.to_bytes(2, 'little') + self.ti + cmd_header + enc_data
        return authenticate_truncated(self.session_mac_key, mac_input)

    def _send_native(self, cmd_code: int, data: bytes) -> Tuple[bytes, int, int]:
        apdu = [0x90, cmd_code, 0x00, 0x00, len(data)] + list(data) + [0x00]
        return self._transmit(apdu)

    def send_encrypted_command(self, opcode: int, header: bytes, payload: bytes) -> Tuple[int, int, bytes]:
        """CommMode.Full 명령어를 전송합니다 (암호화 + MAC). 반환: (SW1, SW2, 응답 데이터)"""
        self._require_session()

        enc_data = self._encrypt_packet(header, payload) if payload else b""
        mac = self._calc_mac(opcode, header, enc_data)
        resp, sw1, sw2 = self._send_native(opcode, header + enc_data + mac)
        if sw1 != SW_ADDITIONAL_FRAME or sw2 != SW2_OK:
            logger.warning("Command %02X failed: %s", opcode, describe_status(sw1, sw2))
            return sw1, sw2, resp

        self.cmd_ctr += 1
        # 응답의 마지막 8바이트는 ResponseMAC
        body = resp[:-8] if len(resp) >= 8 else b""
        return sw1, sw2, body

    def _send_mac_command(self, opcode: int, header: bytes, data: bytes = b"") -> bytes:
        """CommMode.MAC 명령어 전송."""
        self._require_session()
        mac = self._calc_mac(opcode, header, data)
        resp, sw1, sw2 = self._send_native(opcode, header + data + mac)
        if sw1 != SW_ADDITIONAL_FRAME or sw2 != SW2_OK:
            raise CommandError(f"Command {opcode:02X} failed: {describe_status(sw1, sw2)}", sw1, sw2)
        self.cmd_ctr += 1
        return resp[:-8] if len(resp) >= 8 else b""

    def change_key(self, key_no: int, old_key: bytes, new_key: bytes, version: int = 0) -> bool:
        """
        ChangeKey 명령어를 전송하여 특정 키를 변경합니다 (EV2 암호화).

        Args:
            key_no (int): 변경할 키 번호 (0~4)
            old_key (bytes): 기존 키 (16 bytes)
            new_key (bytes): 새로운 키 (16 bytes)
            version (int): 새 키 버전
        """
        self._require_session()
        if len(new_key) != KEY_SIZE or len(old_key) != KEY_SIZE:
            raise ValueError("Keys must be 16 bytes")

        if key_no == self.auth_key_no:
            # 인증에 사용한 키 자체를 변경: NewKey || KeyVer
            plain_data = new_key + bytes([version])
        else:
            # 다른 키 변경: (NewKey XOR OldKey) || KeyVer || CRC32(NewKey)
            xored = bytes(a ^ b for a, b in zip(new_key, old_key))
            plain_data = xored + bytes([version]) + _jamcrc32(new_key)

        sw1, sw2, _ = self.send_encrypted_command(CMD_CHANGE_KEY, bytes([key_no]), plain_data)
        if sw1 != SW_ADDITIONAL_FRAME or sw2 != SW2_OK:
            return False

        logger.info("Key %d changed (version %d)", key_no, version)
        if key_no == self.auth_key_no:
            # 인증 키가 바뀌면 세션이 무효화됨
            self._reset_session()
        return True

    def read_file(self, file_no: int, offset: int = 0, length: int = 0) -> bytes:
        """ReadData 명령어 (Plain 모드)."""
        cmd_header = bytes([file_no]) + offset.to_bytes(3, 'little') + length.to_bytes(3, 'little')
        resp, sw1, sw2 = self._send_native(CMD_READ_DATA, cmd_header)
        if sw1 != SW_ADDITIONAL_FRAME or sw2 != SW2_OK:
            raise CommandError(f"ReadData failed: {describe_status(sw1, sw2)}", sw1, sw2)
        if self.session_enc_key:
            self.cmd_ctr += 1
        return resp

    def write_file(self, file_no: int, offset: int, data: bytes) -> bool:
        """WriteData 명령어를 전송합니다 (Plain 모드)."""
        cmd_header = bytes([file_no]) + offset.to_bytes(3, 'little') + len(data).to_bytes(3, 'little')
        resp, sw1, sw2 = self._send_native(CMD_WRITE_DATA, cmd_header + data)
        if sw1 != SW_ADDITIONAL_FRAME or sw2 != SW2_OK:
            logger.warning("WriteData failed: %s", describe_status(sw1, sw2))
            return False
        if self.session_enc_key:
            self.cmd_ctr += 1
        return True

    def get_file_settings(self, file_no: int) -> FileSettings:
        """GetFileSettings 명령어 (인증 세션이 있으면 MAC 모드)."""
        header = bytes([file_no])
        if self.session_enc_key:
            resp = self._send_mac_command(CMD_GET_FILE_SETTINGS, header)
        else:
            resp, sw1, sw2 = self._send_native(CMD_GET_FILE_SETTINGS, header)
            if sw1 != SW_ADDITIONAL_FRAME or sw2 != SW2_OK:
                raise CommandError(f"GetFileSettings failed: {describe_status(sw1, sw2)}", sw1, sw2)
        return decode_file_settings(resp)

    def change_file_settings(self, file_no: int, policy: AccessPolicy) -> bool:
        """ChangeFileSettings 명령어를 전송합니다 (암호화 + MAC 적용)."""
        cmd_data = encode(policy)
        sw1, sw2, _ = self.send_encrypted_command(CMD_CHANGE_FILE_SETTINGS, bytes([file_no]), cmd_data)
        return sw1 == SW_ADDITIONAL_FRAME and sw2 == SW2_OK
