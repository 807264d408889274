"""
Access code generation.
Codes come from the OS CSPRNG (secrets) over an alphabet without look-alike
characters (no 0/O, 1/I/L), so they survive being read out over WhatsApp.
"""
import logging
import secrets
from typing import Callable

from app.core.config import CODE_LENGTH, CODE_MAX_ATTEMPTS
from app.core.errors import CredentialGenerationError

logger = logging.getLogger(__name__)

CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def generate(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_unique(
    is_taken: Callable[[str], bool],
    max_attempts: int = CODE_MAX_ATTEMPTS,
    length: int = CODE_LENGTH,
) -> str:
    """
    Generate a code that is_taken() reports as free.
    Raises CredentialGenerationError after max_attempts collisions.
    """
    for attempt in range(max_attempts):
        code = generate(length)
        if not is_taken(code):
            return code
        logger.warning("[Codes] Collision on attempt %s/%s, retrying", attempt + 1, max_attempts)
    raise CredentialGenerationError(
        f"Could not generate a unique access code after {max_attempts} attempts"
    )
