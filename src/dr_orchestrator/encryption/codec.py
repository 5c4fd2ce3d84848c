"""Password-based AES-256-GCM encryption for backup artifacts.

Encrypted files use a fixed envelope::

    [salt: 32 bytes][nonce: 12 bytes][ciphertext + 16-byte GCM tag]

The key is derived from the password with PBKDF2-HMAC-SHA256 using the
per-file salt, so only the salt (never the key or password) is persisted.
Salt and nonce are freshly generated for every call.

The whole file is read into memory.  Inputs are already-compressed
archives, so memory is bounded by artifact size; very large artifacts
would need a chunked AEAD construction instead.

Usage:
    from dr_orchestrator.encryption.codec import decrypt_file, encrypt_file

    encrypted = encrypt_file("backup.tar.gz", password)   # backup.tar.gz.encrypted
    plain = decrypt_file(encrypted, password)             # backup.tar.gz
"""

import base64
import binascii
import logging
import os
import secrets
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from dr_orchestrator.errors import (
    ArtifactIOError,
    AuthenticationError,
    FormatError,
    ValidationError,
)

logger = logging.getLogger(__name__)

KEY_SIZE = 32
SALT_SIZE = 32
NONCE_SIZE = 12
ITERATIONS = 100_000
ENCRYPTED_SUFFIX = ".encrypted"
DECRYPTED_SUFFIX = ".decrypted"


def _derive_key(password: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def _write_private(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` with mode 0600, removing it on failure."""
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
    except OSError as e:
        path.unlink(missing_ok=True)
        raise ArtifactIOError(f"Failed to write {path}: {e}") from e


def is_encrypted(path: str | os.PathLike) -> bool:
    """Return whether a file name carries the ``.encrypted`` marker."""
    name = os.path.basename(os.fspath(path))
    return len(name) > len(ENCRYPTED_SUFFIX) and name.endswith(ENCRYPTED_SUFFIX)


def encrypt_file(
    plain_path: str | os.PathLike,
    password: str,
    output_path: str | os.PathLike | None = None,
) -> Path:
    """Encrypt a file into an AES-256-GCM envelope.

    Key derivation and sealing happen before the output file is created,
    so a failure there never leaves a truncated output behind.

    Args:
        plain_path: File to encrypt.
        password: Password or generated key (see ``generate_key``).
        output_path: Destination.  Defaults to ``<plain_path>.encrypted``.

    Returns:
        Path of the encrypted file.

    Raises:
        ValidationError: If the password is empty.
        ArtifactIOError: If the input cannot be read or the output written.
    """
    if not password:
        raise ValidationError("Encryption password must not be empty")

    source = Path(plain_path)
    target = Path(output_path) if output_path else Path(f"{source}{ENCRYPTED_SUFFIX}")

    try:
        plaintext = source.read_bytes()
    except OSError as e:
        raise ArtifactIOError(f"Failed to read {source}: {e}") from e

    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(_derive_key(password, salt)).encrypt(nonce, plaintext, None)

    _write_private(target, salt + nonce + ciphertext)
    logger.debug(f"Encrypted {source} -> {target}")
    return target


def decrypt_file(
    encrypted_path: str | os.PathLike,
    password: str,
    output_path: str | os.PathLike | None = None,
) -> Path:
    """Decrypt a file produced by ``encrypt_file``.

    Args:
        encrypted_path: Envelope file.
        password: Password or key used for encryption.
        output_path: Destination.  Defaults to the input path with the
            ``.encrypted`` suffix stripped, or ``<input>.decrypted`` when
            the suffix is absent.

    Returns:
        Path of the decrypted file.

    Raises:
        FormatError: If the file is too short to hold salt and nonce.
        AuthenticationError: If the password is wrong or the file is
            corrupted.  The GCM tag check cannot tell the two apart.
        ArtifactIOError: If the input cannot be read or the output written.
    """
    source = Path(encrypted_path)
    if output_path:
        target = Path(output_path)
    elif is_encrypted(source):
        target = Path(os.fspath(source)[: -len(ENCRYPTED_SUFFIX)])
    else:
        target = Path(f"{source}{DECRYPTED_SUFFIX}")

    try:
        envelope = source.read_bytes()
    except OSError as e:
        raise ArtifactIOError(f"Failed to read {source}: {e}") from e

    if len(envelope) < SALT_SIZE + NONCE_SIZE:
        raise FormatError(f"Invalid encrypted file (too short): {source}")

    salt = envelope[:SALT_SIZE]
    nonce = envelope[SALT_SIZE : SALT_SIZE + NONCE_SIZE]
    ciphertext = envelope[SALT_SIZE + NONCE_SIZE :]

    try:
        plaintext = AESGCM(_derive_key(password, salt)).decrypt(nonce, ciphertext, None)
    except InvalidTag:
        raise AuthenticationError(
            "Failed to decrypt: wrong password or corrupted file"
        ) from None

    _write_private(target, plaintext)
    logger.debug(f"Decrypted {source} -> {target}")
    return target


def generate_key() -> str:
    """Generate a random 256-bit key, base64-encoded for config files.

    Example:
        >>> len(base64.b64decode(generate_key()))
        32
    """
    return base64.b64encode(secrets.token_bytes(KEY_SIZE)).decode("ascii")


def key_to_password(b64_key: str) -> str:
    """Validate a generated key and return it for use as a password.

    Generated keys go through the same PBKDF2 path as memorable
    passwords, so the returned value is the key string unchanged.

    Raises:
        ValidationError: If the key is not base64 or not 32 bytes long.
    """
    key = b64_key.strip()
    try:
        raw = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 key: {e}") from e
    if len(raw) != KEY_SIZE:
        raise ValidationError(
            f"Invalid key size: expected {KEY_SIZE} bytes, got {len(raw)}"
        )
    return key
