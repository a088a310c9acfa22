"""Key lifecycle for the tag's application master key.

A single "set password" run walks a fixed sequence of steps::

    1. authenticate(DEFAULT_KEY)        ok -> change DEFAULT_KEY -> candidate
    2. authenticate(candidate)          ok -> change candidate -> candidate
       (both failed)                    -> AUTHENTICATION_DENIED, tag untouched
    3. change_key(...)                  rejected -> CHANGE_KEY_FAILED
    4. authenticate(candidate)          failed -> VERIFICATION_FAILED
    5. authenticate(DEFAULT_KEY)        ok -> DEFAULT_KEY_STILL_ACCEPTED (warning)
                                        rejected -> VERIFIED

Only two keys are ever guessed before giving up. Nothing is retried; a failed
confirmation is reported as-is.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Set

from .constants import DEFAULT_KEY_BYTES, KEY_SIZE
from .exceptions import TagBusy, TagConnectionError
from .transport import Transport

logger = logging.getLogger(__name__)


class KeyState(Enum):
    UNKNOWN = "unknown"
    UNPROVISIONED = "unprovisioned"
    PROVISIONED = "provisioned"
    VERIFIED = "verified"


class LifecycleStep(Enum):
    DEFAULT_KEY_AUTH = "authenticate with default key"
    CANDIDATE_KEY_AUTH = "authenticate with entered key"
    CURRENT_KEY_AUTH = "authenticate with current key"
    CHANGE_KEY = "change key"
    CONFIRM_NEW_KEY = "re-authenticate with new key"
    DEFAULT_KEY_CHECK = "check default key is rejected"


class Outcome(Enum):
    VERIFIED = "verified"
    DEFAULT_KEY_STILL_ACCEPTED = "default_key_still_accepted"
    AUTHENTICATION_DENIED = "authentication_denied"
    CHANGE_KEY_FAILED = "change_key_failed"
    VERIFICATION_FAILED = "verification_failed"


@dataclass
class StepRecord:
    step: LifecycleStep
    success: bool


@dataclass
class LifecycleResult:
    outcome: Outcome
    state: KeyState
    steps: List[StepRecord] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.VERIFIED, Outcome.DEFAULT_KEY_STILL_ACCEPTED)

    @property
    def failed_step(self) -> Optional[LifecycleStep]:
        if self.ok:
            return None
        failed = [r.step for r in self.steps if not r.success]
        return failed[-1] if failed else None


class TagLock:
    """Allows one in-flight lifecycle run per physical tag."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._busy: Set[bytes] = set()

    @contextmanager
    def hold(self, tag_id: bytes) -> Iterator[None]:
        with self._guard:
            if tag_id in self._busy:
                raise TagBusy(f"Tag {tag_id.hex().upper()} already has an operation in progress")
            self._busy.add(tag_id)
        try:
            yield
        finally:
            with self._guard:
                self._busy.discard(tag_id)


TAG_LOCKS = TagLock()


class KeyLifecycle:
    def __init__(self, transport: Transport, key_no: int = 0, key_version: int = 0,
                 locks: TagLock = TAG_LOCKS) -> None:
        self.transport = transport
        self.key_no = key_no
        self.key_version = key_version
        self._locks = locks
        self._steps: List[StepRecord] = []

    def _tag_id(self) -> bytes:
        uid = self.transport.uid
        if not uid:
            raise TagConnectionError("Tag UID is unknown; read it before running a key operation")
        return uid

    def _auth(self, step: LifecycleStep, key: bytes) -> bool:
        ok = bool(self.transport.authenticate(self.key_no, key))
        self._steps.append(StepRecord(step, ok))
        logger.info("%s (key %d): %s", step.value, self.key_no, "ok" if ok else "rejected")
        return ok

    def _result(self, outcome: Outcome, state: KeyState, message: str) -> LifecycleResult:
        if outcome == Outcome.VERIFIED:
            logger.info(message)
        else:
            logger.warning(message)
        return LifecycleResult(outcome, state, list(self._steps), message)

    def inspect_state(self, candidate: Optional[bytes] = None) -> KeyState:
        """Figure out which key the tag currently accepts, without changing anything."""
        self._steps = []
        with self._locks.hold(self._tag_id()):
            if self._auth(LifecycleStep.DEFAULT_KEY_AUTH, DEFAULT_KEY_BYTES):
                return KeyState.UNPROVISIONED
            if candidate is not None and self._auth(LifecycleStep.CANDIDATE_KEY_AUTH, candidate):
                return KeyState.PROVISIONED
            return KeyState.UNKNOWN

    def set_password(self, candidate: bytes) -> LifecycleResult:
        """Provision ``candidate`` on a factory tag, or re-assert it on a tag that already uses it."""
        _check_key(candidate)
        self._steps = []
        with self._locks.hold(self._tag_id()):
            if self._auth(LifecycleStep.DEFAULT_KEY_AUTH, DEFAULT_KEY_BYTES):
                old_key = DEFAULT_KEY_BYTES
            elif self._auth(LifecycleStep.CANDIDATE_KEY_AUTH, candidate):
                old_key = candidate
            else:
                return self._result(
                    Outcome.AUTHENTICATION_DENIED, KeyState.UNKNOWN,
                    "Authentication failed with both the default key and the entered key; "
                    "the current key is required to change it",
                )
            return self._change_and_verify(old_key, candidate)

    def change_password(self, current: bytes, new: bytes) -> LifecycleResult:
        """Rotate from a known ``current`` key to ``new``."""
        _check_key(current)
        _check_key(new)
        self._steps = []
        with self._locks.hold(self._tag_id()):
            if not self._auth(LifecycleStep.CURRENT_KEY_AUTH, current):
                return self._result(
                    Outcome.AUTHENTICATION_DENIED, KeyState.UNKNOWN,
                    "Authentication with the current key failed",
                )
            return self._change_and_verify(current, new)

    def _change_and_verify(self, old_key: bytes, new_key: bytes) -> LifecycleResult:
        prior = KeyState.UNPROVISIONED if old_key == DEFAULT_KEY_BYTES else KeyState.PROVISIONED

        changed = bool(self.transport.change_key(self.key_no, old_key, new_key, self.key_version))
        self._steps.append(StepRecord(LifecycleStep.CHANGE_KEY, changed))
        if not changed:
            return self._result(Outcome.CHANGE_KEY_FAILED, prior, "Change key was rejected by the tag")

        if not self._auth(LifecycleStep.CONFIRM_NEW_KEY, new_key):
            return self._result(
                Outcome.VERIFICATION_FAILED, KeyState.UNKNOWN,
                "Key change was accepted but the new key could not be confirmed; "
                "the tag may be in an inconsistent state",
            )

        if self._auth(LifecycleStep.DEFAULT_KEY_CHECK, DEFAULT_KEY_BYTES):
            return self._result(
                Outcome.DEFAULT_KEY_STILL_ACCEPTED, KeyState.PROVISIONED,
                "Key set, but the default key still authenticates",
            )
        return self._result(Outcome.VERIFIED, KeyState.VERIFIED, "Key set and verified")


def _check_key(key: bytes):
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
