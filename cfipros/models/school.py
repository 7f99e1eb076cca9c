"""
School model: an organization owned by one SCHOOL_ADMIN profile.
"""
import uuid

from cfipros.database import db
from cfipros.models.base import TimestampMixin, isoformat


class School(TimestampMixin, db.Model):
    __tablename__ = "schools"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(255), nullable=False)
    # one school per admin; the row-level policy that the admin holds the
    # SCHOOL_ADMIN role is enforced by the storage backend
    admin_user_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False, unique=True)
    part_61_or_141_type = db.Column(db.String(20), nullable=False)

    description = db.Column(db.Text, nullable=True)
    website_url = db.Column(db.String(500), nullable=True)
    logo_url = db.Column(db.String(500), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    phone_number = db.Column(db.String(50), nullable=True)
    address_line1 = db.Column(db.String(255), nullable=True)
    address_line2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    state_province = db.Column(db.String(120), nullable=True)
    postal_code = db.Column(db.String(20), nullable=True)
    country = db.Column(db.String(120), nullable=True)

    admin = db.relationship("Profile", back_populates="school")

    def __repr__(self):
        return f"<School {self.name} (admin={self.admin_user_id})>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "admin_user_id": self.admin_user_id,
            "part_61_or_141_type": self.part_61_or_141_type,
            "description": self.description,
            "website_url": self.website_url,
            "logo_url": self.logo_url,
            "contact_email": self.contact_email,
            "phone_number": self.phone_number,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "state_province": self.state_province,
            "postal_code": self.postal_code,
            "country": self.country,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
