"""
Encryption service for OAuth tokens.
Uses Fernet symmetric encryption for secure token storage.
"""

from cryptography.fernet import Fernet, InvalidToken

from mailsync.config import settings
from mailsync.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class EncryptionError(Exception):
    """Custom exception for encryption/decryption errors."""

    pass


def _get_fernet() -> Fernet:
    """
    Get Fernet instance with encryption key from environment.

    Raises:
        EncryptionError: If encryption key is missing or malformed
    """
    if not settings.ENCRYPTION_KEY:
        raise EncryptionError("ENCRYPTION_KEY not configured in environment")

    try:
        return Fernet(settings.ENCRYPTION_KEY.encode("utf-8"))
    except (ValueError, TypeError) as e:
        logger.error("Failed to initialize Fernet cipher", error=str(e))
        raise EncryptionError(f"Invalid encryption key: {e}") from e


def encrypt_token(token: str) -> bytes:
    """
    Encrypt a token string for database storage.

    Args:
        token: Plain text token to encrypt

    Returns:
        bytes: Encrypted token (ready for BYTEA storage)

    Raises:
        EncryptionError: If the token is empty or encryption fails
    """
    if not token or not isinstance(token, str):
        raise EncryptionError("Token must be a non-empty string")

    encrypted_bytes = _get_fernet().encrypt(token.encode("utf-8"))
    logger.debug("Token encrypted", encrypted_length=len(encrypted_bytes))
    return encrypted_bytes


def decrypt_token(encrypted_token: bytes | memoryview) -> str:
    """
    Decrypt a token from database storage.

    Raises:
        EncryptionError: If decryption fails or token is invalid
    """
    if isinstance(encrypted_token, memoryview):
        encrypted_token = encrypted_token.tobytes()
    if not encrypted_token or not isinstance(encrypted_token, bytes):
        raise EncryptionError("Encrypted token must be non-empty bytes")

    try:
        return _get_fernet().decrypt(encrypted_token).decode("utf-8")
    except InvalidToken as e:
        logger.error("Token decryption failed - invalid token")
        raise EncryptionError("Invalid or corrupted token") from e


def validate_encryption_config() -> bool:
    """Round-trip a dummy value to check the configured key; used by /readyz."""
    try:
        test_data = "test_encryption_12345"
        is_valid = decrypt_token(encrypt_token(test_data)) == test_data
    except EncryptionError as e:
        logger.error("Encryption configuration validation failed", error=str(e))
        return False

    if not is_valid:
        logger.error("Encryption validation failed - data mismatch")
    return is_valid
