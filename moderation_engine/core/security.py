"""Security utilities: staff capabilities and content hashing."""

from dataclasses import dataclass
from enum import IntEnum
from uuid import UUID
import hashlib


class StaffLevel(IntEnum):
    """Staff tiers, ordered so that a higher tier implies every lower one."""

    USER = 0
    TRIAL_MOD = 1
    MODERATOR = 2
    HEAD_MOD = 3
    ADMIN = 4


@dataclass(frozen=True)
class Actor:
    """The staff member performing an operation, as verified by the caller."""

    id: UUID
    level: StaffLevel = StaffLevel.USER

    def has_level(self, required: StaffLevel) -> bool:
        return self.level >= required


# Content hashing for integrity


def hash_content(content: str) -> str:
    """Create SHA-256 hash of content for integrity verification."""
    return hashlib.sha256(content.encode()).hexdigest()


def verify_content_hash(content: str, expected_hash: str) -> bool:
    """Verify content matches its hash."""
    return hash_content(content) == expected_hash
