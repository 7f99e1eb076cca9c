# -*- coding: utf-8 -*-
"""
Profile provisioning.

``ensure_profile`` guarantees a profile row exists for an authenticated user.
It reads first and never writes when the row is already there. When the row
is missing it upserts a default row with conflict target ``id``; a racing
insert only bumps ``updated_at`` on the winner, existing values are never
overwritten. Concurrent first visits rely on the database's unique key.
"""
import uuid
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from cfipros.database import db
from cfipros.errors import ProfileProvisioningError
from cfipros.models import Profile, ProgramType, School, UserRole
from cfipros.models.base import utcnow
from cfipros.services.metrics import get_metrics_service
from cfipros.services.structured_logging import get_logger
from cfipros.services.supabase_auth import AuthUser

logger = get_logger('cfipros.profiles')

DEFAULT_SCHOOL_NAME = "Your Flight School"
EDITABLE_FIELDS = ('full_name', 'part_61_or_141_type', 'preferences')


def _insert(model):
    dialect = db.session.get_bind().dialect.name
    if dialect == 'postgresql':
        return postgresql.insert(model.__table__)
    return sqlite.insert(model.__table__)


def _upsert(model, values: Dict[str, Any], conflict: Iterable[str], update: Optional[Dict[str, Any]] = None):
    """INSERT ... ON CONFLICT; ``update=None`` means DO NOTHING."""
    stmt = _insert(model).values(**values)
    if update:
        stmt = stmt.on_conflict_do_update(index_elements=list(conflict), set_=update)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict))
    db.session.execute(stmt)


def get_profile(user_id: str) -> Optional[Profile]:
    return db.session.get(Profile, user_id)


def get_school_for_admin(user_id: str) -> Optional[School]:
    return School.query.filter_by(admin_user_id=user_id, deleted_at=None).first()


def resolve_role(user: Optional[AuthUser], profile: Optional[Profile], fallback: Optional[UserRole] = None) -> Optional[UserRole]:
    """Profile role, then session metadata role, then ``fallback``."""
    if profile is not None and profile.user_role is not None:
        return profile.user_role
    if user is not None:
        role = UserRole.parse(user.metadata_role)
        if role is not None:
            return role
    return fallback


def _record_provisioning(outcome: str):
    metrics_service = get_metrics_service()
    if metrics_service:
        metrics_service.record_profile_provisioning(outcome)


def ensure_profile(user: AuthUser, expected_role: Optional[UserRole] = None) -> Profile:
    """Return the user's profile, creating a default one if it is missing."""
    try:
        profile = get_profile(user.id)
        if profile is None:
            role = UserRole.parse(user.metadata_role) or expected_role or UserRole.STUDENT
            now = utcnow()
            _upsert(
                Profile,
                {
                    'id': user.id,
                    'email': user.email or '',
                    'full_name': user.full_name,
                    'role': role.value,
                    'preferences': {},
                    'created_at': now,
                    'updated_at': now,
                },
                conflict=['id'],
                update={'updated_at': now},
            )
            db.session.commit()
            profile = get_profile(user.id)
            _record_provisioning('created')
            logger.info("Profile provisioned", user_id=user.id, role=profile.role)
        else:
            _record_provisioning('existing')

        if profile.user_role is UserRole.SCHOOL_ADMIN:
            ensure_school(profile, user)
        return profile
    except SQLAlchemyError as e:
        db.session.rollback()
        _record_provisioning('error')
        logger.exception("Profile provisioning failed", user_id=user.id)
        raise ProfileProvisioningError(f"Could not provision profile for {user.id}") from e


def ensure_school(profile: Profile, user: Optional[AuthUser] = None, name: Optional[str] = None) -> School:
    """One school per admin; an existing school is left untouched."""
    school = get_school_for_admin(profile.id)
    if school is not None:
        return school

    metadata = user.user_metadata if user is not None else {}
    program = (
        ProgramType.parse(metadata.get('part_61_or_141_type'))
        or ProgramType.parse(profile.part_61_or_141_type)
        or ProgramType.PART_61
    )
    now = utcnow()
    _upsert(
        School,
        {
            'id': str(uuid.uuid4()),
            'name': name or metadata.get('school_name') or DEFAULT_SCHOOL_NAME,
            'admin_user_id': profile.id,
            'part_61_or_141_type': program.value,
            'created_at': now,
            'updated_at': now,
        },
        conflict=['admin_user_id'],
    )
    db.session.commit()
    logger.info("School provisioned", user_id=profile.id)
    return get_school_for_admin(profile.id)


def create_profile_for_role(
    user: AuthUser,
    role: UserRole,
    full_name: Optional[str] = None,
    part_61_or_141_type: Optional[ProgramType] = None,
    school_name: Optional[str] = None,
) -> Profile:
    """Profile setup form: the user picks their role explicitly."""
    now = utcnow()
    values = {
        'full_name': full_name or user.full_name,
        'role': role.value,
        'part_61_or_141_type': part_61_or_141_type.value if part_61_or_141_type else None,
        'updated_at': now,
    }
    try:
        _upsert(
            Profile,
            dict(values, id=user.id, email=user.email or '', preferences={}, created_at=now),
            conflict=['id'],
            update=values,
        )
        db.session.commit()
        db.session.expire_all()
        profile = get_profile(user.id)
        if role is UserRole.SCHOOL_ADMIN:
            ensure_school(profile, user, name=school_name)
        return profile
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception("Profile setup failed", user_id=user.id)
        raise ProfileProvisioningError(f"Could not set up profile for {user.id}") from e


def update_profile(user_id: str, changes: Dict[str, Any]) -> Optional[Profile]:
    """Apply owner-editable fields; unknown keys are ignored."""
    profile = get_profile(user_id)
    if profile is None:
        return None
    for key in EDITABLE_FIELDS:
        if key in changes:
            value = changes[key]
            if key == 'part_61_or_141_type' and value is not None:
                value = ProgramType(value).value
            setattr(profile, key, value)
    db.session.commit()
    return profile
