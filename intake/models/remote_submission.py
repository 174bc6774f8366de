from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from intake.db.base import Base


class RemoteSubmission(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        Index("ix_submissions_created_at", "created_at"),
        Index("ix_submissions_phone", "phone"),
    )

    id = Column(String(64), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    full_name = Column(String(200), nullable=False, default="")
    phone = Column(String(32), nullable=False, default="")
    email = Column(String(320), nullable=True)
    wilaya = Column(String(100), nullable=False, default="")
    profession = Column(String(200), nullable=True)
    custom_profession = Column(String(200), nullable=True)
    monthly_income_range = Column(String(100), nullable=True)
    salary_receive_method = Column(String(50), nullable=False, default="")
    financing_type = Column(String(100), nullable=False, default="")
    requested_amount = Column(BigInteger, nullable=False, default=0)
    is_existing_customer = Column(String(20), nullable=True)
    preferred_contact_time = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="synced")
    retry_count = Column(Integer, nullable=False, default=0)
    source = Column(String(50), nullable=False, default="intake")
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
