"""
Best-effort audit trail of reminder delivery attempts.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.domain.email_log import READING_REMINDER_TYPE, AuditStatus, EmailLog
from app.infrastructure.database import DatabaseSession

logger = logging.getLogger(__name__)


class AuditLogWriter:
    """Appends rows to email_logs; a failed write never reaches the caller."""

    def __init__(self, session_factory: async_sessionmaker, log_type: str = READING_REMINDER_TYPE):
        self.session_factory = session_factory
        self.log_type = log_type

    async def record(
        self,
        email: str,
        status: AuditStatus,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Write one audit record.

        Args:
            email: Recipient address, may be empty
            status: Outcome of the attempt
            error: Error text for failed attempts
            metadata: Extra structured context

        Returns:
            True if the record was stored
        """
        try:
            async with DatabaseSession(self.session_factory) as session:
                session.add(EmailLog(
                    email=email or "",
                    type=self.log_type,
                    status=status.value,
                    error=error,
                    context=metadata,
                ))
                await session.commit()
            return True
        except Exception as e:
            logger.warning(f"Failed to write audit log for {email or '<no email>'}: {e}")
            return False
