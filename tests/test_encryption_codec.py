"""Tests for the AES-256-GCM file envelope and key helpers."""

import base64
import os
import stat

import pytest

from dr_orchestrator.encryption.codec import (
    ENCRYPTED_SUFFIX,
    NONCE_SIZE,
    SALT_SIZE,
    decrypt_file,
    encrypt_file,
    generate_key,
    is_encrypted,
    key_to_password,
)
from dr_orchestrator.errors import AuthenticationError, FormatError, ValidationError


@pytest.fixture
def plain_file(tmp_path):
    path = tmp_path / "backup-20251209.tar.gz"
    path.write_bytes(b"\x1f\x8b" + os.urandom(4096))
    return path


# ------------------------------------------------------------------
# Encrypt / decrypt
# ------------------------------------------------------------------


class TestEncryptDecrypt:
    """Round trips and envelope layout."""

    def test_round_trip(self, plain_file, tmp_path):
        original = plain_file.read_bytes()

        encrypted = encrypt_file(plain_file, "correct horse battery staple")
        restored = decrypt_file(
            encrypted, "correct horse battery staple", tmp_path / "restored.tar.gz"
        )

        assert restored.read_bytes() == original

    def test_default_output_appends_suffix(self, plain_file):
        encrypted = encrypt_file(plain_file, "pw")

        assert encrypted.name == plain_file.name + ENCRYPTED_SUFFIX
        assert plain_file.exists()

    def test_envelope_layout(self, plain_file):
        plaintext_len = plain_file.stat().st_size

        encrypted = encrypt_file(plain_file, "pw")

        # salt + nonce + ciphertext + 16-byte GCM tag
        assert encrypted.stat().st_size == SALT_SIZE + NONCE_SIZE + plaintext_len + 16

    def test_fresh_salt_and_nonce_per_call(self, plain_file, tmp_path):
        first = encrypt_file(plain_file, "pw", tmp_path / "one.encrypted").read_bytes()
        second = encrypt_file(plain_file, "pw", tmp_path / "two.encrypted").read_bytes()

        assert first[:SALT_SIZE] != second[:SALT_SIZE]
        assert first != second

    def test_output_is_owner_only(self, plain_file):
        encrypted = encrypt_file(plain_file, "pw")

        assert stat.S_IMODE(encrypted.stat().st_mode) == 0o600

    def test_decrypt_strips_suffix_by_default(self, plain_file):
        original = plain_file.read_bytes()
        encrypted = encrypt_file(plain_file, "pw")
        plain_file.unlink()

        restored = decrypt_file(encrypted, "pw")

        assert restored == plain_file
        assert restored.read_bytes() == original

    def test_decrypt_without_suffix_appends_decrypted(self, plain_file, tmp_path):
        encrypted = encrypt_file(plain_file, "pw", tmp_path / "blob")

        restored = decrypt_file(encrypted, "pw")

        assert restored.name == "blob.decrypted"

    def test_empty_plaintext(self, tmp_path):
        empty = tmp_path / "empty.sql"
        empty.write_bytes(b"")

        encrypted = encrypt_file(empty, "pw")
        restored = decrypt_file(encrypted, "pw", tmp_path / "out.sql")

        assert restored.read_bytes() == b""

    def test_generated_key_round_trip(self, plain_file, tmp_path):
        key = key_to_password(generate_key())
        original = plain_file.read_bytes()

        encrypted = encrypt_file(plain_file, key)
        restored = decrypt_file(encrypted, key, tmp_path / "out.tar.gz")

        assert restored.read_bytes() == original


class TestDecryptFailures:
    """Wrong keys and malformed envelopes."""

    def test_wrong_password(self, plain_file, tmp_path):
        encrypted = encrypt_file(plain_file, "right")

        with pytest.raises(AuthenticationError):
            decrypt_file(encrypted, "wrong", tmp_path / "out")

        assert not (tmp_path / "out").exists()

    def test_tampered_ciphertext(self, plain_file, tmp_path):
        encrypted = encrypt_file(plain_file, "pw")
        data = bytearray(encrypted.read_bytes())
        data[-1] ^= 0x01
        encrypted.write_bytes(bytes(data))

        with pytest.raises(AuthenticationError):
            decrypt_file(encrypted, "pw", tmp_path / "out")

    def test_too_short(self, tmp_path):
        short = tmp_path / "short.encrypted"
        short.write_bytes(b"\x00" * (SALT_SIZE + NONCE_SIZE - 1))

        with pytest.raises(FormatError):
            decrypt_file(short, "pw", tmp_path / "out")

    def test_header_only_fails_authentication(self, tmp_path):
        header_only = tmp_path / "header.encrypted"
        header_only.write_bytes(b"\x00" * (SALT_SIZE + NONCE_SIZE))

        with pytest.raises(AuthenticationError):
            decrypt_file(header_only, "pw", tmp_path / "out")

    def test_empty_password_rejected(self, plain_file):
        with pytest.raises(ValidationError):
            encrypt_file(plain_file, "")


# ------------------------------------------------------------------
# Keys and naming
# ------------------------------------------------------------------


class TestKeys:
    def test_generate_key_is_32_bytes_base64(self):
        key = generate_key()

        assert len(base64.b64decode(key, validate=True)) == 32

    def test_generate_key_is_random(self):
        assert generate_key() != generate_key()

    def test_key_to_password_strips_whitespace(self):
        key = generate_key()

        assert key_to_password(f"  {key}\n") == key

    def test_key_to_password_rejects_bad_base64(self):
        with pytest.raises(ValidationError, match="base64"):
            key_to_password("not*base64!")

    def test_key_to_password_rejects_wrong_length(self):
        with pytest.raises(ValidationError, match="expected 32 bytes"):
            key_to_password(base64.b64encode(b"short").decode())


class TestIsEncrypted:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("backup.tar.gz.encrypted", True),
            ("/var/backups/backup.tar.gz.encrypted", True),
            ("backup.tar.gz", False),
            (".encrypted", False),
            ("backup.encrypted.tar.gz", False),
        ],
    )
    def test_suffix_detection(self, name, expected):
        assert is_encrypted(name) is expected
