"""
Sealing of credentials at rest with an SSH private key.

A sealed value looks like ``__encrypted__:<base64(nonce + ciphertext)>``. The AES-256
key is derived from the raw bytes of the SSH private key file with HKDF-SHA256, so the
same key file always opens what it sealed.
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import SealingError

SEALED_PREFIX = "__encrypted__:"

NONCE_SIZE = 12
# nonce + 1 byte of ciphertext + 16 byte GCM tag
MIN_SEALED_SIZE = NONCE_SIZE + 1 + 16


def get_ssh_key_path(environ=None):
    """Get the SSH private key used for sealing (``AWS_REKEY_SSH_KEY`` overrides)."""
    environ = os.environ if environ is None else environ
    override = environ.get("AWS_REKEY_SSH_KEY")
    if override:
        return override
    return os.path.expanduser("~/.ssh/id_ed25519")


def is_sealed(value):
    """Check if a stored credential value is sealed."""
    return isinstance(value, str) and value.startswith(SEALED_PREFIX)


def derive_sealing_key(ssh_key_path):
    """
    Derive a 32-byte AES key from an SSH private key file.

    Raises:
        SealingError: If the key file cannot be read
    """
    try:
        with open(ssh_key_path, "rb") as f:
            key_material = f.read()
    except FileNotFoundError:
        raise SealingError(
            f"SSH key not found at {ssh_key_path} "
            f"(set AWS_REKEY_SSH_KEY or pass --ssh-key)"
        )
    except OSError as e:
        raise SealingError(f"Cannot read SSH key at {ssh_key_path}: {e}")

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"aws-rekey-v1-salt",
        info=b"aws-rekey-sealing",
    )
    return hkdf.derive(key_material)


def seal_value(value, ssh_key_path):
    """Seal a plaintext credential value with the given SSH key."""
    key = derive_sealing_key(ssh_key_path)
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, value.encode(), None)
    return SEALED_PREFIX + base64.b64encode(nonce + ciphertext).decode()


def unseal_value(value, ssh_key_path):
    """
    Open a sealed credential value.

    Plain values are returned unchanged so callers need not check first.

    Raises:
        SealingError: If the value is corrupted or was sealed with another key
    """
    if not is_sealed(value):
        return value

    try:
        blob = base64.b64decode(value[len(SEALED_PREFIX):], validate=True)
    except (binascii.Error, ValueError):
        raise SealingError("Sealed credential is corrupted (invalid base64)")

    if len(blob) < MIN_SEALED_SIZE:
        raise SealingError(
            f"Sealed credential is too short ({len(blob)} bytes, "
            f"expected at least {MIN_SEALED_SIZE})"
        )

    key = derive_sealing_key(ssh_key_path)
    try:
        plaintext = AESGCM(key).decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], None)
    except InvalidTag:
        raise SealingError(
            f"Cannot open sealed credential with {ssh_key_path}: "
            f"wrong key or tampered data"
        )
    return plaintext.decode()
