"""Seed the fixed role set."""

import logging

from sqlalchemy.orm import Session

from userauth.models.role import ROLE_IDS, Role

logger = logging.getLogger("userauth")


def seed_roles(db: Session) -> None:
    """Insert the default roles if they don't already exist."""
    created = 0
    for name, role_id in ROLE_IDS.items():
        if db.get(Role, role_id) is None:
            db.add(Role(id=role_id, name=name.value))
            created += 1
    db.commit()
    if created:
        logger.info("Seeded %d role(s)", created)
