"""LinkUp chat kernel utilities."""

from .ids import generate_uuid
from .roles import MEMBER, OWNER, role_for

__all__ = [
    "MEMBER",
    "OWNER",
    "generate_uuid",
    "role_for",
]
