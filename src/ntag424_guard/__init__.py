"""NTAG 424 DNA key lifecycle, SDM verification and checksum tooling."""

from .checksum import ChecksumVerdict, open_checksum, seal, verify
from .cmac import authenticate
from .exceptions import (
    AuthenticationError, CommandError, InvalidBlockSize, IrreversiblePolicy,
    NtagError, TagBusy, TagConnectionError,
)
from .lifecycle import KeyLifecycle, KeyState, LifecycleResult, Outcome
from .policy import Access, AccessPolicy, CommMode, SdmPolicy, encode
from .sdm import compute_code, derive_session_key, verify_code, verify_sdm_url

__version__ = "0.1.0"
