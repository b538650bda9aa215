import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from college_katta.auth.passwords import hash_password
from college_katta.core import config
from college_katta.models.user import ROLE_ADMIN, STATUS_ACTIVE, User

logger = logging.getLogger(__name__)

SEED_BRANCH = "Computer Science"
SEED_YEAR = "Fourth Year"


def seed_admin_user(db: Session) -> User | None:
    """Create the configured admin account when no admin exists yet.

    Returns the created user, or None when nothing was seeded. Existing
    accounts are never modified.
    """
    existing_admin = db.query(User).filter(User.role == ROLE_ADMIN).first()
    if existing_admin is not None:
        logger.info("Admin user already exists: %s", existing_admin.username)
        return None

    if not config.ADMIN_PASSWORD:
        logger.warning("No admin user exists and ADMIN_PASSWORD is not set; skipping admin seeding.")
        return None

    email = config.ADMIN_EMAIL.strip().lower()
    clash = db.query(User).filter(
        or_(User.username == config.ADMIN_USERNAME, func.lower(User.email) == email)
    ).first()
    if clash is not None:
        logger.warning("Cannot seed admin: username or email already belongs to user %s", clash.id)
        return None

    admin = User(
        username=config.ADMIN_USERNAME,
        email=email,
        hashed_password=hash_password(config.ADMIN_PASSWORD),
        full_name=config.ADMIN_FULL_NAME,
        branch=SEED_BRANCH,
        year=SEED_YEAR,
        bio="System administrator",
        role=ROLE_ADMIN,
        status=STATUS_ACTIVE,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info("Seeded admin user %s (%s)", admin.username, admin.email)
    return admin
