"""ntag424-guard command line tool.

Usage:
    ntag424-guard set-password <password>
    ntag424-guard change-password <current> <new>
    ntag424-guard configure-access <password> [--cc]
    ntag424-guard sdm-template <base_url> [--apply <password>]
    ntag424-guard read-data [<password>] [--raw]
    ntag424-guard write-data <password> <data> [--hex]
    ntag424-guard verify-sdm <url> [--master-key <hex>]
    ntag424-guard seal <gid> <rule> [--base-url <url>] [--store [<path>]]
    ntag424-guard verify-url <url> [--store [<path>]]
    ntag424-guard open <checksum>
"""

import argparse
import logging
import sys

from . import config
from .checksum import (
    ChecksumVerdict, JsonChecksumStore, build_checksum_url, open_checksum, seal,
    store_checksum, verify_checksum_url,
)
from .exceptions import NtagError
from .key_manager import derive_tag_key, password_to_key
from .lifecycle import KeyLifecycle, Outcome
from .constants import NDEF_FILE_NUMBER, NDEF_FILE_SIZE
from .policy import encode
from .provisioning import (
    authenticate_with_password, build_ndef_file, calculate_offsets, configure_cc_file, configure_file_access,
    locked_ndef_policy, parse_ndef_file, sdm_policy, write_file_data, write_ndef, write_sdm_template,
)
from .sdm import verify_sdm_url

logger = logging.getLogger(__name__)


def _open_tag():
    from .pcsc import PcscTransport

    tag = PcscTransport()
    if not tag.connect():
        raise NtagError("리더기 또는 태그를 찾을 수 없습니다.")
    if not tag.select_app():
        tag.disconnect()
        raise NtagError("NTAG 424 DNA 애플리케이션 선택 실패")
    tag.read_uid()
    print(f"⚡ 태그 감지됨! UID: {tag.uid.hex().upper()}")
    return tag


def _tag_key(args, tag, password: str) -> bytes:
    if args.diversify:
        return derive_tag_key(config.master_key(), tag.uid)
    return password_to_key(password)


def _print_result(result) -> int:
    for record in result.steps:
        print(f"   {'✅' if record.success else '❌'} {record.step.value}")
    if result.ok:
        print(f"✅ {result.message}" if result.outcome == Outcome.VERIFIED else f"⚠️ {result.message}")
        return 0
    print(f"❌ {result.message} (step: {result.failed_step.value if result.failed_step else '-'})")
    return 1


def cmd_set_password(args) -> int:
    tag = _open_tag()
    try:
        lifecycle = KeyLifecycle(tag, key_no=args.key_no, key_version=args.key_version)
        return _print_result(lifecycle.set_password(_tag_key(args, tag, args.password)))
    finally:
        tag.disconnect()


def cmd_change_password(args) -> int:
    tag = _open_tag()
    try:
        lifecycle = KeyLifecycle(tag, key_no=args.key_no, key_version=args.key_version)
        result = lifecycle.change_password(password_to_key(args.current), password_to_key(args.new))
        return _print_result(result)
    finally:
        tag.disconnect()


def cmd_configure_access(args) -> int:
    tag = _open_tag()
    try:
        if not tag.authenticate(0, password_to_key(args.password)):
            print("❌ 인증 실패 (Key 0 불일치)")
            return 1
        settings = configure_file_access(tag, locked_ndef_policy())
        print(f"✅ NDEF 파일 권한: Read={settings.policy.read!r} Write={settings.policy.write!r}")
        if args.cc and not configure_cc_file(tag):
            print("❌ CC 파일 쓰기 실패")
            return 1
        return 0
    finally:
        tag.disconnect()


def cmd_sdm_template(args) -> int:
    template = calculate_offsets(args.base_url)
    policy = sdm_policy(template)
    print(f"   ℹ️ 목표 URL: {template.url}")
    print(f"   📍 오프셋: UID={template.uid_offset}, CTR={template.counter_offset}, MAC={template.mac_offset}")
    print(f"   🚀 ChangeFileSettings(Hex): {encode(policy).hex().upper()}")
    if not args.apply:
        return 0

    tag = _open_tag()
    try:
        if not tag.authenticate(0, password_to_key(args.apply)):
            print("❌ 인증 실패 (Key 0 불일치)")
            return 1
        configure_file_access(tag, policy)
        if not write_sdm_template(tag, template):
            print("❌ NDEF 템플릿 쓰기 실패")
            return 1
        print("✅ SDM 설정 및 NDEF 템플릿 쓰기 완료")
        return 0
    finally:
        tag.disconnect()


def cmd_read_data(args) -> int:
    tag = _open_tag()
    try:
        if not authenticate_with_password(tag, args.password):
            print("❌ 인증 실패 (Key 0 불일치)")
            return 1
        data = tag.read_file(NDEF_FILE_NUMBER, 0, NDEF_FILE_SIZE)
        if args.raw:
            print(data.hex().upper())
            return 0
        text = parse_ndef_file(data)
        if not text:
            print("⚠️ NDEF 메시지가 비어 있거나 해석할 수 없습니다.")
            return 1
        print(text)
        return 0
    finally:
        tag.disconnect()


def cmd_write_data(args) -> int:
    tag = _open_tag()
    try:
        if not authenticate_with_password(tag, args.password):
            print("❌ 인증 실패 (Key 0 불일치)")
            return 1
        try:
            data = bytes.fromhex(args.data) if args.hex else build_ndef_file(args.data)
        except ValueError as e:
            print(f"❌ {e}")
            return 1
        if args.hex:
            ok = write_file_data(tag, NDEF_FILE_NUMBER, data)
            ok = ok and tag.read_file(NDEF_FILE_NUMBER, 0, len(data)) == data
        else:
            ok = write_ndef(tag, args.data)
        if not ok:
            print("❌ 데이터 쓰기 또는 검증 실패")
            return 1
        print("✅ 데이터 쓰기 및 검증 완료")
        return 0
    finally:
        tag.disconnect()


def cmd_verify_sdm(args) -> int:
    master_key = config.parse_key_hex(args.master_key) if args.master_key else config.master_key()
    if not args.master_key and config.demo_mode():
        logger.warning("Using the factory default key (demo mode)")
    result = verify_sdm_url(args.url, master_key)
    if result.valid:
        print(f"✅ UID={result.uid.hex().upper()} ctr={result.read_counter}")
        return 0
    print(f"❌ {result.reason}")
    return 1


def cmd_seal(args) -> int:
    store = JsonChecksumStore(args.store) if args.store else None
    if args.base_url:
        print(build_checksum_url(args.base_url, args.gid, args.rule, args.key, store))
    else:
        checksum = seal(args.gid, args.rule, args.key)
        if store is not None:
            store_checksum(store, checksum)
        print(checksum)
    return 0


def cmd_verify_url(args) -> int:
    store = JsonChecksumStore(args.store) if args.store else None
    verdict = verify_checksum_url(args.url, args.key, store)
    messages = {
        ChecksumVerdict.VALID: "✅ Checksum valid",
        ChecksumVerdict.MISMATCH: "❌ Checksum does not match gid/rule",
        ChecksumVerdict.NOT_FOUND: "❌ Checksum not found in store",
        ChecksumVerdict.MALFORMED: "❌ URL is missing gid, rule or chksum",
    }
    print(messages[verdict])
    return 0 if verdict == ChecksumVerdict.VALID else 1


def cmd_open(args) -> int:
    text = open_checksum(args.checksum, args.key)
    if not text:
        print("❌ Failed to decrypt checksum")
        return 1
    print(text)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ntag424-guard", description="NTAG 424 DNA key and checksum tool")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("set-password", help="provision or re-assert the tag key")
    p.add_argument("password")
    p.add_argument("--key-no", type=int, default=0)
    p.add_argument("--key-version", type=int, default=0)
    p.add_argument("--diversify", action="store_true",
                   help="use CMAC(master key, UID) instead of the password")
    p.set_defaults(func=cmd_set_password)

    p = sub.add_parser("change-password", help="rotate the tag key")
    p.add_argument("current")
    p.add_argument("new")
    p.add_argument("--key-no", type=int, default=0)
    p.add_argument("--key-version", type=int, default=0)
    p.set_defaults(func=cmd_change_password)

    p = sub.add_parser("configure-access", help="lock NDEF writes behind key 0")
    p.add_argument("password")
    p.add_argument("--cc", action="store_true", help="also write the CC file")
    p.set_defaults(func=cmd_configure_access)

    p = sub.add_parser("sdm-template", help="compute SDM mirror offsets for a base URL")
    p.add_argument("base_url")
    p.add_argument("--apply", metavar="PASSWORD", help="apply the SDM settings to the tag")
    p.set_defaults(func=cmd_sdm_template)

    p = sub.add_parser("read-data", help="read and decode the NDEF file")
    p.add_argument("password", nargs="?", default="", help="key 0 password (omit for free read)")
    p.add_argument("--raw", action="store_true", help="print the file as hex")
    p.set_defaults(func=cmd_read_data)

    p = sub.add_parser("write-data", help="write a URI or text record to the NDEF file")
    p.add_argument("password")
    p.add_argument("data")
    p.add_argument("--hex", action="store_true", help="write raw hex bytes instead of an NDEF record")
    p.set_defaults(func=cmd_write_data)

    p = sub.add_parser("verify-sdm", help="verify a scanned u/c/m URL")
    p.add_argument("url")
    p.add_argument("--master-key", help="hex master key (default: NTAG_MASTER_KEY)")
    p.set_defaults(func=cmd_verify_sdm)

    p = sub.add_parser("seal", help="compute the checksum of a gid/rule pair")
    p.add_argument("gid")
    p.add_argument("rule")
    p.add_argument("--base-url", help="print a full gid/rule/chksum URL instead")
    p.add_argument("--key", default=config.CHECKSUM_KEY)
    p.add_argument("--store", nargs="?", const=config.CHECKSUM_STORE,
                   help="JSON checksum store path (default: NTAG_CHECKSUM_STORE)")
    p.set_defaults(func=cmd_seal)

    p = sub.add_parser("verify-url", help="verify a gid/rule/chksum URL")
    p.add_argument("url")
    p.add_argument("--key", default=config.CHECKSUM_KEY)
    p.add_argument("--store", nargs="?", const=config.CHECKSUM_STORE,
                   help="JSON checksum store path (default: NTAG_CHECKSUM_STORE)")
    p.set_defaults(func=cmd_verify_url)

    p = sub.add_parser("open", help="decrypt a full checksum")
    p.add_argument("checksum")
    p.add_argument("--key", default=config.CHECKSUM_KEY)
    p.set_defaults(func=cmd_open)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except NtagError as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
