"""
Subscription model mirroring the payments backend's subscription object.

A subscription belongs to a user or to a school, never both. Rows are only
soft deleted.
"""
import uuid

from cfipros.database import db
from cfipros.models.base import TimestampMixin, isoformat, utcnow
from cfipros.models.enums import SubscriptionStatus


class Subscription(TimestampMixin, db.Model):
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.CheckConstraint(
            "(user_id IS NULL) <> (school_id IS NULL)",
            name="ck_subscriptions_single_owner",
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=True, index=True)
    school_id = db.Column(db.String(36), db.ForeignKey("schools.id"), nullable=True, index=True)

    stripe_customer_id = db.Column(db.String(255), nullable=False, index=True)
    stripe_subscription_id = db.Column(db.String(255), nullable=False, unique=True)
    status = db.Column(db.String(32), nullable=False, default=SubscriptionStatus.INCOMPLETE.value)
    price_id = db.Column(db.String(255), nullable=True)

    current_period_start = db.Column(db.DateTime, nullable=True)
    current_period_end = db.Column(db.DateTime, nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<Subscription {self.stripe_subscription_id} ({self.status})>"

    @property
    def is_active(self) -> bool:
        """Active status with a billing period that has not yet ended."""
        if self.deleted_at is not None or self.status != SubscriptionStatus.ACTIVE.value:
            return False
        return self.current_period_end is not None and self.current_period_end > utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "school_id": self.school_id,
            "stripe_customer_id": self.stripe_customer_id,
            "stripe_subscription_id": self.stripe_subscription_id,
            "status": self.status,
            "price_id": self.price_id,
            "current_period_start": isoformat(self.current_period_start),
            "current_period_end": isoformat(self.current_period_end),
            "cancel_at_period_end": self.cancel_at_period_end,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "deleted_at": isoformat(self.deleted_at),
        }
