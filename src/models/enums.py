"""
Enumerations for batch and session statuses
"""

from enum import Enum


class BatchStatus(str, Enum):
    """Reward batch lifecycle status"""

    PENDING = "pending"
    SENDING = "sending"
    VALIDATED = "validated"
    REJECTED = "rejected"
    ERROR = "error"

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Check if the batch has left the pipeline for good.

        Terminal statuses:
        - VALIDATED: Server credited (all or part of) the batch
        - REJECTED: Server conclusively refused the batch
        - ERROR: Written off after exhausting retries
        """
        return status in [cls.VALIDATED, cls.REJECTED, cls.ERROR]


class SessionState(str, Enum):
    """Client-side session lifecycle"""

    INACTIVE = "inactive"
    ACTIVE = "active"
    EXPIRED = "expired"
