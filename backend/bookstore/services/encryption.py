"""
Encryption helpers for carrier credentials

Carrier passwords, license keys and persisted session tokens are stored as
Fernet tokens. Each Fernet token carries its own random IV next to the
ciphertext, so encrypting the same secret twice yields different values.
The key is derived from SECRET_KEY; rotating SECRET_KEY makes stored secrets
unreadable and profiles must be re-saved.
"""
import base64
import logging
import re
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from bookstore.core.config import settings

logger = logging.getLogger(__name__)

_ENCRYPTION_SALT = b"bookstore_carrier_credentials_v1"

_fernet: Optional[Fernet] = None


def _get_fernet() -> Fernet:
    """Get or create Fernet instance with derived key."""
    global _fernet

    if _fernet is None:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_ENCRYPTION_SALT,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(settings.SECRET_KEY.encode()))
        _fernet = Fernet(key)

    return _fernet


def encrypt_secret(plaintext: Optional[str]) -> str:
    """
    Encrypt a credential for storage.

    Empty input stays empty so optional secrets round-trip as "".
    """
    if not plaintext:
        return ""

    try:
        return _get_fernet().encrypt(plaintext.encode()).decode()
    except Exception as e:
        logger.error(f"Encryption failed: {e}")
        raise ValueError("Failed to encrypt secret")


def decrypt_secret(ciphertext: Optional[str]) -> str:
    """Decrypt a stored credential. Raises ValueError on a bad token."""
    if not ciphertext:
        return ""

    try:
        return _get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.error("Decryption failed: invalid token (wrong key or corrupted data)")
        raise ValueError("Failed to decrypt secret - invalid token")


def mask_secret(secret: Optional[str], visible: int = 4) -> str:
    """Show only the last few characters of a secret (e.g. ****ab12)."""
    if not secret:
        return ""
    if len(secret) <= visible:
        return "*" * len(secret)
    return "*" * 4 + secret[-visible:]


def mask_email(email: str) -> str:
    """Mask an email for display (e.g., j***@example.com)."""
    if not email or "@" not in email:
        return "***"

    local, domain = email.rsplit("@", 1)

    if len(local) <= 1:
        masked_local = "*"
    elif len(local) <= 3:
        masked_local = local[0] + "*" * (len(local) - 1)
    else:
        masked_local = local[0] + "***"

    return f"{masked_local}@{domain}"


_LOG_PATTERNS = [
    (r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b', '[EMAIL]'),
    # Indian mobiles, with or without +91 / 0 prefix
    (r'(?:\+?91[-\s]?|\b0)?\b[6-9]\d{9}\b', '[PHONE]'),
    (r'\b\d{6}\b', '[PINCODE]'),
    (r'"(?:password|token|JWTToken|LicenceKey|clientSecret)"\s*:\s*"[^"]*"', '"[REDACTED]"'),
]


def sanitize_for_logging(text: str, max_length: int = 500) -> str:
    """Remove PII and credentials from text for safe logging."""
    if not text:
        return ""

    sanitized = text[:max_length]
    for pattern, replacement in _LOG_PATTERNS:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    return sanitized
