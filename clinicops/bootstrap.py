# This script initializes the root administrator on startup.
import logging

from .database import SessionLocal
from .config import get_settings
from . import models


def create_or_update_root_admin():
    """
    Ensures the protected root administrator exists.
    Imports are done LOCALLY inside the function to prevent circular dependencies.
    """
    from .security import get_passcode_hash, verify_passcode

    logger = logging.getLogger(__name__)
    settings = get_settings()
    db = SessionLocal()
    try:
        admin = (
            db.query(models.Identity)
            .filter(models.Identity.display_id == settings.root_admin_display_id)
            .first()
        )
        if admin is None:
            admin = db.query(models.Identity).filter(models.Identity.is_super_admin.is_(True)).first()
        if admin:
            admin.role = models.IdentityRole.ADMIN
            admin.is_super_admin = True
            if settings.root_admin_passcode and not verify_passcode(settings.root_admin_passcode, admin.passcode_hash):
                admin.passcode_hash = get_passcode_hash(settings.root_admin_passcode)
                logger.info("Root admin passcode updated to match environment.")
            db.commit()
            logger.info("Root admin verified.")
            return admin.id

        if not settings.root_admin_passcode:
            logger.warning("ROOT_ADMIN_PASSCODE not set. Root admin not created.")
            return None

        admin = models.Identity(
            name=settings.root_admin_name,
            role=models.IdentityRole.ADMIN,
            display_id=settings.root_admin_display_id,
            passcode_hash=get_passcode_hash(settings.root_admin_passcode),
            is_super_admin=True,
        )
        db.add(admin)
        db.commit()
        logger.info("Root admin created.")
        return admin.id
    except Exception as e:
        db.rollback()
        logger.error(f"CRITICAL: Error during root admin initialization: {e}")
        raise
    finally:
        db.close()
