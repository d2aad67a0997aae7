"""Instance secret generation."""

import math
import secrets
import string

ALPHABET = string.ascii_letters + string.digits


def entropy_bits(length: int, alphabet_size: int = len(ALPHABET)) -> float:
    """Entropy of a uniformly random string."""
    return length * math.log2(alphabet_size)


def generate_secret(length: int = 12, min_entropy_bits: float = 60.0) -> str:
    """Generate an alphanumeric secret from the OS CSPRNG.

    Raises:
        ValueError: If length cannot reach min_entropy_bits.
    """
    if entropy_bits(length) < min_entropy_bits:
        raise ValueError(
            f"Secret length {length} gives {entropy_bits(length):.1f} bits, "
            f"below the {min_entropy_bits:.0f}-bit floor"
        )
    return "".join(secrets.choice(ALPHABET) for _ in range(length))
