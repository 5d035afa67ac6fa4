"""
Field-level encryption for sensitive health data.

Each sensitive value is JSON-serialized and sealed with XSalsa20-Poly1305
(PyNaCl SecretBox) under a fresh random nonce. The key is derived once, at
construction, from the configured secret with Argon2id and only ever lives
inside the SecretBox.

Encrypted fields travel inside records as tagged envelopes:

    {"__encrypted": true, "ciphertext": <b64>, "iv": <b64>, "encrypted_at": <ms>}

so decrypt_record() can tell them apart from plaintext columns written
before encryption was switched on.
"""

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import nacl.exceptions
import nacl.pwhash
import nacl.secret
import nacl.utils

from GutSafe_Sync.gs_shared import config
from GutSafe_Sync.gs_shared.errors import ConfigurationError, DecryptionError, EncryptionError

logger = logging.getLogger(__name__)

# ─── Sizes (bytes) ───

KEY_SIZE = nacl.secret.SecretBox.KEY_SIZE        # 32
NONCE_SIZE = nacl.secret.SecretBox.NONCE_SIZE    # 24
SALT_SIZE = nacl.pwhash.argon2id.SALTBYTES       # 16


def _now_ms() -> int:
    return int(time.time() * 1000)


def is_encrypted(value: Any) -> bool:
    """True when value is an encrypted-field envelope."""
    return isinstance(value, dict) and value.get(config.ENCRYPTED_MARKER) is True


def encryption_info(value: Any) -> dict:
    if is_encrypted(value):
        return {"is_encrypted": True, "encrypted_at": value.get("encrypted_at")}
    return {"is_encrypted": False}


@dataclass
class EncryptedField:
    """Ciphertext plus the nonce it was sealed with.

    Buffers are bytearrays so secure_wipe() can zero them in place.
    """
    ciphertext:   bytearray
    iv:           bytearray
    encrypted_at: int

    def to_envelope(self) -> dict:
        return {
            config.ENCRYPTED_MARKER: True,
            "ciphertext": base64.b64encode(bytes(self.ciphertext)).decode("ascii"),
            "iv": base64.b64encode(bytes(self.iv)).decode("ascii"),
            "encrypted_at": self.encrypted_at,
        }

    @classmethod
    def from_envelope(cls, envelope: dict) -> "EncryptedField":
        if not is_encrypted(envelope):
            raise DecryptionError("value is not an encrypted envelope")
        try:
            ciphertext = base64.b64decode(envelope["ciphertext"], validate=True)
            iv = base64.b64decode(envelope["iv"], validate=True)
            encrypted_at = int(envelope.get("encrypted_at", 0))
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise DecryptionError(f"malformed envelope ({e.__class__.__name__})") from e
        return cls(bytearray(ciphertext), bytearray(iv), encrypted_at)

    def wipe(self) -> None:
        self.ciphertext[:] = bytes(len(self.ciphertext))
        self.iv[:] = bytes(len(self.iv))

    def __repr__(self) -> str:
        return f"EncryptedField(<{len(self.ciphertext)} bytes>, encrypted_at={self.encrypted_at})"


class FieldEncryptor:
    """Encrypts and decrypts individual fields of a record."""

    def __init__(
        self,
        secret: str | bytes,
        salt: str | bytes = config.ENCRYPTION_SALT,
        *,
        opslimit: int = nacl.pwhash.argon2id.OPSLIMIT_INTERACTIVE,
        memlimit: int = nacl.pwhash.argon2id.MEMLIMIT_INTERACTIVE,
    ):
        if not secret:
            raise ConfigurationError("encryption_secret")

        secret_bytes = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)
        salt_bytes = salt.encode("utf-8") if isinstance(salt, str) else bytes(salt)
        if len(salt_bytes) != SALT_SIZE:
            raise ConfigurationError("encryption_salt")

        key = nacl.pwhash.argon2id.kdf(
            KEY_SIZE, secret_bytes, salt_bytes, opslimit=opslimit, memlimit=memlimit,
        )
        self._box = nacl.secret.SecretBox(key)
        del key, secret_bytes
        logger.debug("Field encryption key derived")

    @classmethod
    def from_settings(cls, settings, **kdf_limits) -> "FieldEncryptor":
        if settings.encryption_secret is None:
            raise ConfigurationError("encryption_secret")
        return cls(settings.encryption_secret.get_secret_value(), settings.encryption_salt, **kdf_limits)

    def __repr__(self) -> str:
        return "FieldEncryptor(<key hidden>)"

    # ─── Single values ───

    def encrypt(self, value: Any) -> EncryptedField:
        try:
            plaintext = json.dumps(value, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"value of type {type(value).__name__} is not JSON serializable") from e

        nonce = nacl.utils.random(NONCE_SIZE)
        sealed = self._box.encrypt(plaintext, nonce)
        return EncryptedField(
            ciphertext=bytearray(sealed.ciphertext),
            iv=bytearray(nonce),
            encrypted_at=_now_ms(),
        )

    def decrypt(self, field: EncryptedField) -> Any:
        if len(field.iv) != NONCE_SIZE:
            raise DecryptionError(f"iv must be {NONCE_SIZE} bytes, got {len(field.iv)}")

        try:
            plaintext = self._box.decrypt(bytes(field.ciphertext), bytes(field.iv))
        except nacl.exceptions.CryptoError as e:
            raise DecryptionError("ciphertext failed authentication (corrupt data or wrong key)") from e
        except (ValueError, TypeError) as e:
            raise DecryptionError(f"malformed ciphertext ({e.__class__.__name__})") from e

        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecryptionError("decrypted payload is not valid JSON") from e

    # ─── Records ───

    def encrypt_record(self, record: dict, sensitive_field_names: Optional[Iterable[str]] = None) -> dict:
        """Return a copy of record with each named field replaced by an envelope.

        Missing fields, None values and already-encrypted fields are left alone.
        """
        names = config.DEFAULT_SENSITIVE_FIELDS if sensitive_field_names is None else sensitive_field_names
        out = dict(record)
        for name in names:
            value = out.get(name)
            if value is None or is_encrypted(value):
                continue
            out[name] = self.encrypt(value).to_envelope()
        return out

    def decrypt_record(self, record: dict) -> dict:
        """Inverse of encrypt_record(). Fields without the marker pass through."""
        out = dict(record)
        for name, value in record.items():
            if not is_encrypted(value):
                continue
            try:
                out[name] = self.decrypt(EncryptedField.from_envelope(value))
            except DecryptionError as e:
                logger.error("Failed to decrypt field %s: %s", name, e.reason)
                raise DecryptionError(e.reason, field=name) from e
        return out

    def secure_wipe(self, record: dict, sensitive_field_names: Optional[Iterable[str]] = None) -> None:
        """Overwrite sensitive buffers of a record slated for deletion, in place."""
        names = set(config.DEFAULT_SENSITIVE_FIELDS if sensitive_field_names is None else sensitive_field_names)
        names.update(k for k, v in record.items() if is_encrypted(v) or isinstance(v, EncryptedField))

        for name in names:
            if name not in record:
                continue
            value = record[name]
            if isinstance(value, EncryptedField):
                value.wipe()
            elif isinstance(value, bytearray):
                value[:] = bytes(len(value))
            elif isinstance(value, (dict, list)):
                value.clear()
            record[name] = None
