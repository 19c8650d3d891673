from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from portal_auth.database import Base


class VerificationCodeEntry(Base):
    __tablename__ = "verification_codes"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    channel = Column(String(16), nullable=False)
    purpose = Column(String(32), nullable=False)
    code = Column(String(10), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index(
            "ix_verification_codes_lookup",
            "user_id",
            "channel",
            "purpose",
            "created_at",
        ),
    )
