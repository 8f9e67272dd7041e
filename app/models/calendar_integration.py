from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base
from app.core.security import EncryptedText


class CalendarIntegration(Base):
    """Per-tenant OAuth credentials for the external calendar provider."""

    __tablename__ = "calendar_integrations"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(
        Integer, ForeignKey("tenants.id"), nullable=False, unique=True, index=True
    )
    provider = Column(String(20), nullable=False, default="google")
    account_email = Column(String, nullable=True)

    # Fernet-encrypted at rest
    access_token = Column(EncryptedText, nullable=True)
    refresh_token = Column(EncryptedText, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    is_connected = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return (
            f"<CalendarIntegration(tenant_id={self.tenant_id}, "
            f"provider='{self.provider}', connected={self.is_connected})>"
        )
