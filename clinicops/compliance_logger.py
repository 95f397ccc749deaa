from datetime import datetime, timezone
from typing import Optional, Any
import logging
from sqlalchemy.exc import SQLAlchemyError
from clinicops import database, models


class ComplianceLogger:
	"""Stores compliance events in the AuditLog table through a dedicated session."""

	def __init__(self, institution_id: str = 'CLINICOPS'):
		self.institution_id = institution_id
		self.logger = logging.getLogger('clinicops.compliance')

	def log_event(
		self,
		actor_id: Optional[int],
		action: str,
		category: str,
		details: Optional[str] = None,
		severity: str = 'INFO',
		resource_type: Optional[str] = None,
		resource_id: Optional[int] = None,
		actor_role: Optional[str] = None,
		**_: Any
	) -> None:
		"""Writes one audit row. Failures are logged, never raised."""
		db = database.SessionLocal()
		try:
			db_log = models.AuditLog(
				actor_id=actor_id,
				actor_role=getattr(actor_role, 'value', actor_role),
				action=(action or 'UNKNOWN').upper(),
				category=category or 'GENERAL',
				severity=severity or 'INFO',
				resource_type=resource_type,
				resource_id=resource_id,
				details=details,
				timestamp=datetime.now(timezone.utc),
			)
			db.add(db_log)
			db.commit()
		except SQLAlchemyError as e:
			db.rollback()
			self.logger.error(f"Failed to save compliance log to DB: {e}")
		finally:
			db.close()


# Singleton instance for global import
compliance_logger = ComplianceLogger()
