from cfipros.models.enums import ProgramType, SubscriptionStatus, UserRole
from cfipros.models.profile import Profile
from cfipros.models.school import School
from cfipros.models.subscription import Subscription

__all__ = [
    "Profile",
    "School",
    "Subscription",
    "UserRole",
    "ProgramType",
    "SubscriptionStatus",
]
