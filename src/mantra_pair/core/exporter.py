"""Turns raw credential bytes into transport-safe tokens.

Plain tokens are ``Mantra~<base64>``. Encrypted tokens are
``MantraEnc~<urlsafe-base64(nonce || tag || ciphertext)>`` where the
ciphertext is AES-256-GCM over ``{"v":1,"creds":<base64>,"ts":<ms>}`` and the
key is scrypt(secret, "mantra-pair").
"""

from __future__ import annotations

import base64
import binascii
import json
import os
import time
import typing as t

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from mantra_pair.errors import ConfigError, TokenError

PLAIN_PREFIX = "Mantra~"
ENCRYPTED_PREFIX = "MantraEnc~"
ENVELOPE_VERSION = 1

KDF_SALT = b"mantra-pair"
NONCE_SIZE = 12
TAG_SIZE = 16


def derive_key(secret: str) -> bytes:
    # Same parameters as Node's crypto.scryptSync defaults
    kdf = Scrypt(salt=KDF_SALT, length=32, n=2**14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise TokenError(f"Token is not valid base64url: {exc}") from None


class CredentialExporter:
    def __init__(self, *, encrypted: bool = False, secret: t.Optional[str] = None) -> None:
        self._encrypted = encrypted
        self._key: t.Optional[bytes] = None
        if encrypted:
            if not secret:
                raise ConfigError("SESSION_SECRET is required for encrypted exports")
            self._key = derive_key(secret)

    @property
    def encrypted(self) -> bool:
        return self._encrypted

    def export(self, creds: bytes) -> t.List[str]:
        base64_creds = base64.b64encode(creds).decode("ascii")
        if not self._encrypted:
            return [f"{PLAIN_PREFIX}{base64_creds}"]

        assert self._key is not None
        envelope = {"v": ENVELOPE_VERSION, "creds": base64_creds, "ts": int(time.time() * 1000)}
        plaintext = json.dumps(envelope, separators=(",", ":")).encode("utf-8")
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(self._key).encrypt(nonce, plaintext, None)
        # AESGCM appends the tag; the token layout puts it before the ciphertext
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return [f"{ENCRYPTED_PREFIX}{_b64url_encode(nonce + tag + ciphertext)}"]


def decrypt_token(token: str, secret: str) -> bytes:
    """Recover the original credential bytes from an encrypted token."""
    if not token or not token.startswith(ENCRYPTED_PREFIX):
        raise TokenError(f"Token must start with {ENCRYPTED_PREFIX}")

    packed = _b64url_decode(token[len(ENCRYPTED_PREFIX) :])
    if len(packed) < NONCE_SIZE + TAG_SIZE + 1:
        raise TokenError("Token too short")

    nonce = packed[:NONCE_SIZE]
    tag = packed[NONCE_SIZE : NONCE_SIZE + TAG_SIZE]
    ciphertext = packed[NONCE_SIZE + TAG_SIZE :]

    try:
        plaintext = AESGCM(derive_key(secret)).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag:
        raise TokenError("Decrypt failed: unsupported state or unable to authenticate data") from None

    try:
        envelope = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise TokenError(f"Invalid payload JSON: {exc}") from None

    if not isinstance(envelope, dict) or envelope.get("v") != ENVELOPE_VERSION or not isinstance(
        envelope.get("creds"), str
    ):
        raise TokenError("Unexpected payload format")

    try:
        return base64.b64decode(envelope["creds"], validate=True)
    except binascii.Error as exc:
        raise TokenError(f"Invalid credential encoding: {exc}") from None
