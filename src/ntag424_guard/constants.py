"""NTAG 424 DNA protocol constants."""

NTAG424_AID = [0xD2, 0x76, 0x00, 0x00, 0x85, 0x01, 0x01]

# 공장 초기 키 (Factory default)
DEFAULT_KEY_BYTES = bytes(16)
KEY_SIZE = 16
BLOCK_SIZE = 16
UID_SIZE = 7
COUNTER_SIZE = 3

# 파일 번호
CC_FILE_NUMBER = 0x01
NDEF_FILE_NUMBER = 0x02

# Native 명령어 코드
CMD_AUTH_EV2_FIRST_PART1 = 0x71
CMD_AUTH_EV2_FIRST_PART2 = 0xAF
CMD_CHANGE_KEY = 0xC4
CMD_CHANGE_FILE_SETTINGS = 0x5F
CMD_GET_FILE_SETTINGS = 0xF5
CMD_READ_DATA = 0xAD
CMD_WRITE_DATA = 0x8D

# 상태 워드 (SW1 / SW2)
SW_SUCCESS = 0x90
SW_ADDITIONAL_FRAME = 0x91
SW2_OK = 0x00
SW2_MORE = 0xAF

STATUS_MESSAGES = {
    0x1C: "Illegal command code",
    0x1E: "Integrity error (CRC or MAC mismatch)",
    0x40: "No such key",
    0x7E: "Length of command string invalid",
    0x9D: "Permission denied",
    0x9E: "Parameter value not allowed",
    0xAD: "Authentication delay",
    0xAE: "Authentication error",
    0xBE: "Boundary error",
    0xEE: "Memory error",
    0xF0: "File not found",
}

# Session vector labels (AN12196)
SV_ENC_LABEL = bytes.fromhex("A55A00010080")
SV_MAC_LABEL = bytes.fromhex("5AA500010080")
SV_SDM_MAC_LABEL = bytes.fromhex("3CC300010080")

# Type 4 Tag CC file content (CCLEN 0x17, mapping version 2.0)
CC_FILE_CONTENT = bytes.fromhex(
    "001720010000FF0406E104010000000506E10500808283000000000000000000"
)

# [File Length (2)] + [NDEF Header (5)] 뒤에 URL 데이터가 시작됨
NDEF_FILE_HEADER_LEN = 7

# NDEF 파일 크기, WriteData 한 프레임 최대 길이 (tearing protection)
NDEF_FILE_SIZE = 256
WRITE_CHUNK_SIZE = 128
