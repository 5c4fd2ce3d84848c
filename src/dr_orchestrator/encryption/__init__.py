"""Password-based AES-256-GCM envelope encryption.

Usage:
    from dr_orchestrator.encryption import decrypt_file, encrypt_file, generate_key
"""

from dr_orchestrator.encryption.codec import (
    ENCRYPTED_SUFFIX,
    decrypt_file,
    encrypt_file,
    generate_key,
    is_encrypted,
    key_to_password,
)

__all__ = [
    "ENCRYPTED_SUFFIX",
    "decrypt_file",
    "encrypt_file",
    "generate_key",
    "is_encrypted",
    "key_to_password",
]
