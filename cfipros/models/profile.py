"""
Profile model: first-party user metadata keyed by the auth backend's user id.
"""
from cfipros.database import db
from cfipros.models.base import TimestampMixin, isoformat
from cfipros.models.enums import UserRole


class Profile(TimestampMixin, db.Model):
    __tablename__ = "profiles"

    # auth backend user id (UUID string); exactly one row per user
    id = db.Column(db.String(36), primary_key=True)
    full_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default=UserRole.STUDENT.value)
    part_61_or_141_type = db.Column(db.String(20), nullable=True)
    preferences = db.Column(db.JSON, nullable=True)

    school = db.relationship("School", back_populates="admin", uselist=False)

    def __repr__(self):
        return f"<Profile {self.id} ({self.role})>"

    @property
    def user_role(self):
        return UserRole.parse(self.role)

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "part_61_or_141_type": self.part_61_or_141_type,
            "preferences": self.preferences or {},
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "deleted_at": isoformat(self.deleted_at),
        }
