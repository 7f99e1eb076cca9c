from enum import Enum


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    CFI = "CFI"
    SCHOOL_ADMIN = "SCHOOL_ADMIN"

    @classmethod
    def parse(cls, value):
        """Return the matching role or None for unknown/empty values."""
        if isinstance(value, cls):
            return value
        if not value:
            return None
        try:
            return cls(str(value).upper())
        except ValueError:
            return None


class ProgramType(str, Enum):
    PART_61 = "PART_61"
    PART_141 = "PART_141"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if not value:
            return None
        try:
            return cls(str(value).upper())
        except ValueError:
            return None


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAST_DUE = "past_due"
    TRIALING = "trialing"
    UNPAID = "unpaid"
