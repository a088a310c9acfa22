import threading

import pytest

from ntag424_guard.constants import DEFAULT_KEY_BYTES
from ntag424_guard.exceptions import TagBusy, TagConnectionError
from ntag424_guard.key_manager import derive_tag_key, password_to_key
from ntag424_guard.lifecycle import (
    KeyLifecycle, KeyState, LifecycleStep, Outcome, StepRecord, TagLock,
)

from conftest import FakeTag

FIRST = password_to_key("first-password")
SECOND = password_to_key("second-password")
STRANGER = password_to_key("somebody-else")


def _lifecycle(tag):
    return KeyLifecycle(tag, locks=TagLock())


def test_factory_tag_is_provisioned(factory_tag):
    result = _lifecycle(factory_tag).set_password(FIRST)
    assert result.outcome == Outcome.VERIFIED
    assert result.state == KeyState.VERIFIED
    assert result.ok
    assert factory_tag.key == FIRST
    assert [r.step for r in result.steps] == [
        LifecycleStep.DEFAULT_KEY_AUTH,
        LifecycleStep.CHANGE_KEY,
        LifecycleStep.CONFIRM_NEW_KEY,
        LifecycleStep.DEFAULT_KEY_CHECK,
    ]


def test_second_run_reasserts_key_via_candidate(factory_tag):
    lifecycle = _lifecycle(factory_tag)
    lifecycle.set_password(FIRST)
    result = lifecycle.set_password(FIRST)
    assert result.outcome == Outcome.VERIFIED
    assert result.steps[0] == StepRecord(LifecycleStep.DEFAULT_KEY_AUTH, False)
    assert result.steps[1].step == LifecycleStep.CANDIDATE_KEY_AUTH
    assert result.steps[1].success
    assert factory_tag.key == FIRST


def test_change_password_rotates_key(factory_tag):
    lifecycle = _lifecycle(factory_tag)
    lifecycle.set_password(FIRST)
    result = lifecycle.change_password(FIRST, SECOND)
    assert result.outcome == Outcome.VERIFIED
    assert factory_tag.key == SECOND


def test_unknown_key_is_denied_after_two_attempts():
    tag = FakeTag(key=STRANGER)
    result = _lifecycle(tag).set_password(FIRST)
    assert result.outcome == Outcome.AUTHENTICATION_DENIED
    assert result.state == KeyState.UNKNOWN
    assert not result.ok
    assert tag.auth_attempts == [DEFAULT_KEY_BYTES, FIRST]
    assert tag.change_calls == []
    assert tag.key == STRANGER
    assert result.failed_step == LifecycleStep.CANDIDATE_KEY_AUTH


def test_change_password_with_wrong_current_key(factory_tag):
    result = _lifecycle(factory_tag).change_password(FIRST, SECOND)
    assert result.outcome == Outcome.AUTHENTICATION_DENIED
    assert factory_tag.change_calls == []


def test_change_rejected(factory_tag):
    factory_tag.reject_change = True
    result = _lifecycle(factory_tag).set_password(FIRST)
    assert result.outcome == Outcome.CHANGE_KEY_FAILED
    assert result.state == KeyState.UNPROVISIONED
    assert result.failed_step == LifecycleStep.CHANGE_KEY
    assert factory_tag.key == DEFAULT_KEY_BYTES


def test_lost_change_is_not_retried(factory_tag):
    factory_tag.lose_change = True
    result = _lifecycle(factory_tag).set_password(FIRST)
    assert result.outcome == Outcome.VERIFICATION_FAILED
    assert result.failed_step == LifecycleStep.CONFIRM_NEW_KEY
    assert len(factory_tag.change_calls) == 1
    assert factory_tag.auth_attempts == [DEFAULT_KEY_BYTES, FIRST]


def test_empty_password_keeps_default_key(factory_tag):
    result = _lifecycle(factory_tag).set_password(password_to_key(""))
    assert result.outcome == Outcome.DEFAULT_KEY_STILL_ACCEPTED
    assert result.ok
    assert result.state == KeyState.PROVISIONED


def test_key_version_is_passed_through(factory_tag):
    KeyLifecycle(factory_tag, key_no=0, key_version=3, locks=TagLock()).set_password(FIRST)
    assert factory_tag.change_calls == [(0, 3)]


def test_rejects_short_key(factory_tag):
    with pytest.raises(ValueError):
        _lifecycle(factory_tag).set_password(b"short")


def test_inspect_state(factory_tag):
    lifecycle = _lifecycle(factory_tag)
    assert lifecycle.inspect_state() == KeyState.UNPROVISIONED
    lifecycle.set_password(FIRST)
    assert lifecycle.inspect_state(FIRST) == KeyState.PROVISIONED
    assert lifecycle.inspect_state(SECOND) == KeyState.UNKNOWN
    assert lifecycle.inspect_state() == KeyState.UNKNOWN


def test_concurrent_run_on_same_tag_is_busy(factory_tag):
    locks = TagLock()
    with locks.hold(factory_tag.uid):
        with pytest.raises(TagBusy):
            KeyLifecycle(factory_tag, locks=locks).set_password(FIRST)
    assert factory_tag.auth_attempts == []


def test_lock_released_after_run(factory_tag):
    locks = TagLock()
    KeyLifecycle(factory_tag, locks=locks).set_password(FIRST)
    with locks.hold(factory_tag.uid):
        pass


def test_different_tags_do_not_block():
    locks = TagLock()
    other = FakeTag(uid=bytes.fromhex("04DE5F1EACC040"))
    errors = []

    def run():
        try:
            KeyLifecycle(other, locks=locks).set_password(FIRST)
        except TagBusy as e:
            errors.append(e)

    with locks.hold(bytes.fromhex("0464171A282290")):
        t = threading.Thread(target=run)
        t.start()
        t.join()
    assert errors == []
    assert other.key == FIRST


def test_password_to_key():
    assert password_to_key("abc") == b"abc" + bytes(13)
    assert password_to_key("0123456789abcdefXYZ") == b"0123456789abcdef"
    assert password_to_key("") == DEFAULT_KEY_BYTES
    assert len(password_to_key("비밀번호")) == 16


def test_derive_tag_key_differs_per_uid():
    master = bytes(range(16))
    a = derive_tag_key(master, bytes.fromhex("0464171A282290"))
    b = derive_tag_key(master, bytes.fromhex("04DE5F1EACC040"))
    assert len(a) == 16
    assert a != b
    with pytest.raises(ValueError):
        derive_tag_key(master, b"\x04\x01")


def test_unknown_uid_is_refused():
    tag = FakeTag(uid=None)
    with pytest.raises(TagConnectionError):
        _lifecycle(tag).set_password(FIRST)
    with pytest.raises(TagConnectionError):
        _lifecycle(tag).inspect_state()
    assert tag.auth_attempts == []
