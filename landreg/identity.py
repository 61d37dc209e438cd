"""Account identity and message signature verification.

Accounts are Ethereum-style addresses of secp256k1 keys and requests are
signed the way browser wallets sign (EIP-191 ``personal_sign``):

    account   = "0x" + hex(keccak256(uncompressed_public_key)[-20:])
    signature = "0x" + hex(r || s || v)                       65 bytes

The signer account is *recovered* from ``(message, signature)`` alone and
compared, case-insensitively, with the account the caller claims.

Wallets and transports commonly alter line endings or surrounding whitespace
of the message they sign. When recovery against the message as received
fails, the verifier retries against a fixed, ordered list of
canonicalizations and accepts the first that matches.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Tuple

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_utils import ValidationError as KeyValidationError

from landreg.observability import EngineLayer, get_logger

log = get_logger("verifier", EngineLayer.IDENTITY)

_ACCOUNT_RE = re.compile(r"^0[xX][0-9a-fA-F]{40}$")
_WHITESPACE_RUN_RE = re.compile(r"\s+")

PRIVATE_KEY_BYTES = 32
PUBLIC_KEY_BYTES = 64
SIGNATURE_BYTES = 65

# Order of the secp256k1 group; valid private keys lie in [1, n).
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def account_from_public_key(pub: bytes) -> str:
    if len(pub) != PUBLIC_KEY_BYTES:
        raise ValueError(f"secp256k1 public key must be {PUBLIC_KEY_BYTES} bytes, got {len(pub)}")
    return keys.PublicKey(pub).to_address().lower()


def is_account(value: str) -> bool:
    return isinstance(value, str) and bool(_ACCOUNT_RE.match(value))


def normalize_account(value: str) -> str:
    """Lowercase an account identifier after checking its shape."""
    if not is_account(value):
        raise ValueError(f"Not an account identifier: {value!r}")
    return value.lower()


def _decode_hex(value: str) -> bytes:
    if not isinstance(value, str):
        raise ValueError("expected a hex string")
    return bytes.fromhex(value[2:] if value[:2].lower() == "0x" else value)


def _decode_signature(signature: str) -> bytes:
    if not isinstance(signature, str) or signature[:2].lower() != "0x":
        raise ValueError("signature must be a 0x-prefixed hex string")
    raw = bytes.fromhex(signature[2:])
    if len(raw) != SIGNATURE_BYTES:
        raise ValueError(f"signature must be {SIGNATURE_BYTES} bytes, got {len(raw)}")
    if raw[-1] not in (0, 1, 27, 28):
        raise ValueError(f"unsupported recovery id {raw[-1]}")
    return raw


def recover_signer(message: str, signature: str) -> Optional[str]:
    """Return the account recovered from ``signature`` over ``message``, or None if malformed.

    Recovery over the wrong message yields some unrelated account, not None;
    callers compare the result with the account they expect.
    """
    try:
        raw = _decode_signature(signature)
        recovered = Account.recover_message(encode_defunct(text=message), signature=raw)
    except (ValueError, TypeError, BadSignature, KeyValidationError):
        return None
    return recovered.lower()


# ---------------------------------------------------------------------------
# Message canonicalizations, tried in this order after the raw message
# ---------------------------------------------------------------------------

CANONICALIZATIONS: List[Tuple[str, Callable[[str], str]]] = [
    ("crlf_to_lf", lambda m: m.replace("\r\n", "\n")),
    ("lf_to_crlf", lambda m: m.replace("\r\n", "\n").replace("\n", "\r\n")),
    ("trim", lambda m: m.strip()),
    ("collapse_whitespace", lambda m: _WHITESPACE_RUN_RE.sub(" ", m)),
    ("crlf_to_lf_trim", lambda m: m.replace("\r\n", "\n").strip()),
]


def message_variants(message: str) -> Iterator[Tuple[str, str]]:
    """Yield ``(name, candidate)`` pairs: the raw message, then each distinct canonicalization."""
    seen = {message}
    yield "raw", message
    for name, transform in CANONICALIZATIONS:
        candidate = transform(message)
        if candidate in seen:
            continue
        seen.add(candidate)
        yield name, candidate


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    recovered: Optional[str] = None
    variant: Optional[str] = None


class IdentityVerifier:
    """Confirms that a message was signed by the account it claims.

    Never raises for bad input: malformed signatures, unknown encodings and
    mismatches all come back as a failed result. Roles are not consulted here.
    """

    def verify(self, message: str, signature: str, claimed_account: str) -> bool:
        return self.check(message, signature, claimed_account).ok

    def check(self, message: str, signature: str, claimed_account: str) -> VerificationResult:
        if not isinstance(message, str) or not is_account(claimed_account):
            log.warning("Rejected malformed verification request", operation="verify")
            return VerificationResult(ok=False)

        claimed = claimed_account.lower()
        last_recovered: Optional[str] = None
        for name, candidate in message_variants(message):
            recovered = recover_signer(candidate, signature)
            if recovered is None:
                continue
            last_recovered = recovered
            if recovered == claimed:
                if name != "raw":
                    log.debug("Signature matched canonicalized message", variant=name, account=claimed)
                return VerificationResult(ok=True, recovered=recovered, variant=name)

        log.info(
            "Signature verification failed",
            operation="verify",
            claimed=claimed,
            recovered=last_recovered,
        )
        return VerificationResult(ok=False, recovered=last_recovered)


@dataclass(frozen=True)
class Credentials:
    """What a caller presents with every workflow operation."""
    account: str
    message: str
    signature: str


class Wallet:
    """A secp256k1 keypair able to sign registry messages like a browser wallet."""

    def __init__(self, private_key: bytes):
        if len(private_key) != PRIVATE_KEY_BYTES:
            raise ValueError(f"private key must be {PRIVATE_KEY_BYTES} bytes, got {len(private_key)}")
        if not 0 < int.from_bytes(private_key, "big") < SECP256K1_N:
            raise ValueError("private key is outside the secp256k1 range")
        self._private_key = private_key
        self._public_bytes = keys.PrivateKey(private_key).public_key.to_bytes()
        self.account = Account.from_key(private_key).address.lower()

    @classmethod
    def generate(cls) -> "Wallet":
        return cls(bytes(Account.create().key))

    @classmethod
    def from_private_hex(cls, private_hex: str) -> "Wallet":
        return cls(_decode_hex(private_hex))

    @property
    def private_key_hex(self) -> str:
        return "0x" + self._private_key.hex()

    @property
    def public_key_hex(self) -> str:
        return "0x" + self._public_bytes.hex()

    def sign(self, message: str) -> str:
        signed = Account.sign_message(encode_defunct(text=message), private_key=self._private_key)
        return "0x" + bytes(signed.signature).hex()

    def credentials(self, message: str) -> Credentials:
        return Credentials(account=self.account, message=message, signature=self.sign(message))

    def __repr__(self) -> str:
        return f"Wallet(account={self.account!r})"
