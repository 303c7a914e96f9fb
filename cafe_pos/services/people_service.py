from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from cafe_pos.models import Profile, ProfileRole, ProfileStatus, utcnow
from cafe_pos.security.passwords import hash_password, rehash_if_needed, verify_password

MIN_PASSWORD_LENGTH = 6


def _parse_role(raw) -> ProfileRole:
    if isinstance(raw, ProfileRole):
        return raw
    try:
        return ProfileRole(str(raw or '').strip().lower())
    except ValueError as exc:
        raise ValueError(f'Unknown role: {raw}') from exc


def _get_profile(db: Session, profile_id: int) -> Profile:
    profile = db.execute(select(Profile).where(Profile.id == profile_id)).scalar_one_or_none()
    if not profile:
        raise ValueError('User not found')
    return profile


def _profile_row(profile: Profile) -> dict:
    return {
        'id': profile.id,
        'email': profile.email,
        'full_name': profile.full_name,
        'role': profile.role.value,
        'status': profile.status.value,
        'created_at': profile.created_at,
    }


def list_profiles(db: Session, *, search: str | None = None) -> list[dict]:
    rows = db.execute(select(Profile).order_by(Profile.created_at.desc(), Profile.id.desc())).scalars().all()
    needle = (search or '').strip().lower()
    return [
        _profile_row(row)
        for row in rows
        if not needle or needle in row.email.lower() or needle in (row.full_name or '').lower()
    ]


def create_profile(
    db: Session,
    *,
    email: str,
    full_name: str | None,
    role,
    password: str,
) -> Profile:
    clean_email = (email or '').strip().lower()
    if not clean_email or '@' not in clean_email:
        raise ValueError('A valid email is required')
    if not password or len(password.strip()) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must have at least {MIN_PASSWORD_LENGTH} characters')

    existing = db.execute(select(Profile.id).where(Profile.email == clean_email)).scalar_one_or_none()
    if existing is not None:
        raise ValueError('Email is already in use by another account')

    profile = Profile(
        email=clean_email,
        full_name=(full_name or '').strip() or None,
        role=_parse_role(role),
        status=ProfileStatus.ACTIVE,
        password_hash=hash_password(password.strip()),
    )
    db.add(profile)
    db.flush()
    return profile


def update_profile(db: Session, *, profile_id: int, full_name: str | None, role) -> Profile:
    profile = _get_profile(db, profile_id)
    profile.full_name = (full_name or '').strip() or None
    profile.role = _parse_role(role)
    profile.updated_at = utcnow()
    db.flush()
    return profile


def toggle_profile_status(db: Session, *, profile_id: int, actor_profile_id: int) -> Profile:
    profile = _get_profile(db, profile_id)
    if profile.id == actor_profile_id:
        raise PermissionError('You cannot deactivate your own account')
    profile.status = ProfileStatus.INACTIVE if profile.status == ProfileStatus.ACTIVE else ProfileStatus.ACTIVE
    profile.updated_at = utcnow()
    db.flush()
    return profile


def authenticate(db: Session, *, email: str, password: str) -> tuple[Profile | None, str | None]:
    """Return the matched profile (if any) and a failure reason, ``None`` on success."""
    clean_email = (email or '').strip().lower()
    profile = db.execute(select(Profile).where(Profile.email == clean_email)).scalar_one_or_none()
    if not profile:
        return None, 'UNKNOWN_EMAIL'
    if profile.status != ProfileStatus.ACTIVE:
        return profile, 'INACTIVE_PROFILE'
    if not verify_password(password, profile.password_hash):
        return profile, 'BAD_PASSWORD'
    updated_hash = rehash_if_needed(password, profile.password_hash)
    if updated_hash:
        profile.password_hash = updated_hash
    return profile, None
