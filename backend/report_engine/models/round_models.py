"""
Report Engine - Dispute Round ORM Models

A round is soft-deleted; its child rows are hard-deleted.
Every child table references the round through credit_round_id,
except tradeline history which hangs off round_tradelines.
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, DateTime, JSON, ForeignKey, Enum as SQLEnum, UniqueConstraint,
)
from ..database import Base


class RoundStatus(str, Enum):
    """Lifecycle of a dispute round."""
    DRAFT = "draft"
    SAVED = "saved"
    SENT = "sent"
    DELETED = "deleted"


class CreditRoundDB(Base):
    """A dispute round for one case (customer)."""
    __tablename__ = "credit_rounds"

    id = Column(String(36), primary_key=True)  # UUID
    customer_id = Column(String(36), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)  # 1-12, sequential per customer
    status = Column(SQLEnum(RoundStatus), nullable=False, default=RoundStatus.DRAFT)
    source = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    sent_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)


class RawPayloadDB(Base):
    """Raw payload a round was built from."""
    __tablename__ = "raw_payloads"

    id = Column(String(36), primary_key=True)
    credit_round_id = Column(String(36), ForeignKey("credit_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    bureau = Column(String(50), nullable=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class RoundPersonalIdentifierDB(Base):
    __tablename__ = "round_personal_identifiers"

    id = Column(String(36), primary_key=True)
    credit_round_id = Column(String(36), ForeignKey("credit_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    bureau = Column(String(50), nullable=True)
    full_name = Column(String(255), nullable=True)
    ssn_mask = Column(String(20), nullable=True)
    date_of_birth = Column(String(10), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class RoundAddressDB(Base):
    __tablename__ = "round_addresses"

    id = Column(String(36), primary_key=True)
    credit_round_id = Column(String(36), ForeignKey("credit_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    bureau = Column(String(50), nullable=True)
    street = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(50), nullable=True)
    postal_code = Column(String(20), nullable=True)
    date_reported = Column(String(10), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class RoundEmployerDB(Base):
    __tablename__ = "round_employers"

    id = Column(String(36), primary_key=True)
    credit_round_id = Column(String(36), ForeignKey("credit_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    bureau = Column(String(50), nullable=True)
    employer_name = Column(String(255), nullable=True)
    occupation = Column(String(255), nullable=True)
    date_reported = Column(String(10), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class RoundScoreDB(Base):
    __tablename__ = "round_scores"

    id = Column(String(36), primary_key=True)
    credit_round_id = Column(String(36), ForeignKey("credit_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    bureau = Column(String(50), nullable=False)
    model = Column(String(100), nullable=True)
    score = Column(Integer, nullable=True)
    date = Column(String(10), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class RoundTradelineDB(Base):
    __tablename__ = "round_tradelines"
    __table_args__ = (
        UniqueConstraint("credit_round_id", "bureau", "account_uid", name="uq_round_tradeline"),
    )

    id = Column(String(36), primary_key=True)
    credit_round_id = Column(String(36), ForeignKey("credit_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    bureau = Column(String(50), nullable=True)
    account_uid = Column(String(255), nullable=False)
    creditor = Column(String(255), nullable=True)
    account_type = Column(String(100), nullable=True)
    open_date = Column(String(10), nullable=True)
    credit_limit = Column(JSON, nullable=True)
    balance = Column(JSON, nullable=True)
    status = Column(String(100), nullable=True)
    payment_status = Column(String(255), nullable=True)
    remarks = Column(JSON, nullable=True)
    past_due = Column(JSON, nullable=True)
    date_reported = Column(String(10), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class RoundTradelineHistoryDB(Base):
    """Monthly history for a round tradeline. References the tradeline, not the round."""
    __tablename__ = "round_tradeline_history"

    id = Column(String(36), primary_key=True)
    tradeline_id = Column(String(36), ForeignKey("round_tradelines.id", ondelete="CASCADE"), nullable=False, index=True)
    month = Column(String(10), nullable=True)
    status_code = Column(String(20), nullable=True)
    balance = Column(JSON, nullable=True)
    credit_limit = Column(JSON, nullable=True)
    payment = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class RoundCollectionDB(Base):
    __tablename__ = "round_collections"

    id = Column(String(36), primary_key=True)
    credit_round_id = Column(String(36), ForeignKey("credit_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    bureau = Column(String(50), nullable=True)
    collection_agency = Column(String(255), nullable=True)
    original_creditor = Column(String(255), nullable=True)
    amount = Column(JSON, nullable=True)
    date_assigned = Column(String(10), nullable=True)
    status = Column(String(100), nullable=True)
    account_number = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class RoundPublicRecordDB(Base):
    __tablename__ = "round_public_records"

    id = Column(String(36), primary_key=True)
    credit_round_id = Column(String(36), ForeignKey("credit_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    bureau = Column(String(50), nullable=True)
    record_type = Column(String(100), nullable=True)
    amount = Column(JSON, nullable=True)
    filing_date = Column(String(10), nullable=True)
    status = Column(String(100), nullable=True)
    reference_number = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class RoundInquiryDB(Base):
    __tablename__ = "round_inquiries"

    id = Column(String(36), primary_key=True)
    credit_round_id = Column(String(36), ForeignKey("credit_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    bureau = Column(String(50), nullable=True)
    inquiry_date = Column(String(10), nullable=True)
    subscriber = Column(String(255), nullable=True)
    purpose = Column(String(255), nullable=True)
    business_type = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
