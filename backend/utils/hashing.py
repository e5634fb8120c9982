"""Password hashing, strength policy and secure random generation (bcrypt)."""
# backend/utils/hashing.py
import hashlib
import secrets
import string
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import bcrypt

UPPERCASE = string.ascii_uppercase
LOWERCASE = string.ascii_lowercase
DIGITS = string.digits
# Symbols used when generating; any punctuation counts when validating
SYMBOLS = "!@#$%&*"
ALPHABET = UPPERCASE + LOWERCASE + DIGITS + SYMBOLS


class HashingError(Exception):
    """The underlying bcrypt call failed."""


@dataclass
class PasswordStrength:
    valid: bool
    score: int
    requirements: Dict[str, bool]
    unmet: List[str] = field(default_factory=list)
    strength: str = "Weak"

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "score": self.score,
            "requirements": self.requirements,
            "unmetRequirements": self.unmet,
            "strength": self.strength,
        }


class CredentialVault:
    """Hashes and verifies passwords and generates secrets.

    Examples
    --------
    >>> vault = CredentialVault(rounds=4)
    >>> password_hash, salt = vault.hash("Abc123!@")
    >>> vault.verify("Abc123!@", password_hash)
    True
    """

    MIN_LENGTH = 8
    # bcrypt ignores (newer releases reject) input past 72 bytes
    MAX_BYTES = 72
    GENERATED_MIN_LENGTH = 10
    GENERATED_MAX_LENGTH = 12

    _MESSAGES = {
        "min_length": "Password must be at least 8 characters long",
        "has_uppercase": "Include at least one uppercase letter",
        "has_lowercase": "Include at least one lowercase letter",
        "has_number": "Include at least one number",
        "has_special_char": "Include at least one special character",
    }

    def __init__(self, rounds: int = 12):
        self._rounds = rounds

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, password: str) -> Tuple[str, str]:
        """Hash a plaintext password.

        Returns
        -------
        ``(hash, salt)``. The salt is also embedded in the bcrypt hash; it
        is returned separately because the accounts table stores both.

        Raises
        ------
        HashingError
            If bcrypt itself fails (for example on over-long input).
        """
        try:
            salt = bcrypt.gensalt(rounds=self._rounds)
            hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        except (ValueError, TypeError) as exc:
            raise HashingError(f"Password hashing failed: {exc}") from exc
        return hashed.decode("utf-8"), salt.decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        """Return True if the password matches; False on mismatch or a malformed hash."""
        if not password or not password_hash:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def validate_strength(self, password: str) -> PasswordStrength:
        """Check a password against the policy and itemize what is missing.

        A password is valid when it has at least 8 characters and contains a
        lowercase letter, an uppercase letter, a digit and a symbol.
        """
        password = password or ""
        requirements = {
            "min_length": len(password) >= self.MIN_LENGTH,
            "has_uppercase": any(c in UPPERCASE for c in password),
            "has_lowercase": any(c in LOWERCASE for c in password),
            "has_number": any(c in DIGITS for c in password),
            "has_special_char": any(c in string.punctuation for c in password),
        }
        score = sum(1 for met in requirements.values() if met)
        unmet = [self._MESSAGES[key] for key, met in requirements.items() if not met]

        classes_met = score - (1 if requirements["min_length"] else 0)
        if classes_met < 4:
            unmet.append(f"Use all four character types (found {classes_met} of 4)")

        if len(password.encode("utf-8")) > self.MAX_BYTES:
            unmet.append(f"Password cannot exceed {self.MAX_BYTES} bytes")

        valid = not unmet
        if score < 3:
            strength = "Weak"
        elif score < 4:
            strength = "Fair"
        elif score == 4:
            strength = "Good"
        else:
            strength = "Strong"

        return PasswordStrength(valid=valid, score=score, requirements=requirements, unmet=unmet, strength=strength)

    def generate_secure_password(self, length: int = 12) -> str:
        # One character from each class, the rest from the full alphabet, then shuffle
        length = max(self.GENERATED_MIN_LENGTH, min(self.GENERATED_MAX_LENGTH, length))
        chars = [
            secrets.choice(UPPERCASE),
            secrets.choice(LOWERCASE),
            secrets.choice(DIGITS),
            secrets.choice(SYMBOLS),
        ]
        chars.extend(secrets.choice(ALPHABET) for _ in range(length - len(chars)))
        secrets.SystemRandom().shuffle(chars)
        return "".join(chars)

    @staticmethod
    def generate_token(nbytes: int = 32) -> str:
        return secrets.token_urlsafe(nbytes)

    @staticmethod
    def token_digest(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()
