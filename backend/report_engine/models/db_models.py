"""
Report Engine - SQLAlchemy ORM Models
Persistent storage for extraction attempts, raw scrapes and the normalized report graph
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, Boolean, Index, UniqueConstraint,
)
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class AccountCategory(str, Enum):
    """Tradeline bucket an account was found in."""
    REAL_ESTATE = "realEstate"
    REVOLVING = "revolving"
    OTHER = "other"


class ConsolidationStatus(str, Enum):
    """Consolidation state written onto a credit report."""
    PENDING = "pending"
    COMPLETED = "completed"


class ConsolidationStrategy(str, Enum):
    """Strategies available when re-consolidating extraction results."""
    HIGHEST_CONFIDENCE = "highest_confidence"
    MAJORITY_VOTE = "majority_vote"
    MANUAL_REVIEW = "manual_review"


# =============================================================================
# EXTRACTION / CONSOLIDATION
# =============================================================================

class CreditReportDB(Base):
    """Uploaded source document that extraction attempts are made against."""
    __tablename__ = "credit_reports"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), nullable=True, index=True)
    file_name = Column(String(500), nullable=True)

    # Consolidated output of the extraction attempts
    raw_text = Column(Text, nullable=True)
    consolidation_status = Column(String(20), default=ConsolidationStatus.PENDING.value)
    consolidation_confidence = Column(Float, nullable=True)
    primary_extraction_method = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ExtractionResultDB(Base):
    """
    One extraction attempt for a source document.
    Written by the external extraction subsystem, read-only to the engine.
    """
    __tablename__ = "pdf_extraction_results"

    id = Column(String(36), primary_key=True)  # UUID
    report_id = Column(String(36), nullable=False, index=True)
    extraction_method = Column(String(100), nullable=False)
    extracted_text = Column(Text, nullable=False, default="")
    confidence_score = Column(Float, nullable=False, default=0.0)  # 0-1

    processing_time_ms = Column(Integer, nullable=True)
    character_count = Column(Integer, nullable=True)
    word_count = Column(Integer, nullable=True)
    has_structured_data = Column(Boolean, default=False)
    extraction_metadata = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)


class ConsolidationMetadataDB(Base):
    """Audit record of the last re-consolidation of a report."""
    __tablename__ = "consolidation_metadata"

    id = Column(String(36), primary_key=True)  # UUID
    report_id = Column(String(36), nullable=False, unique=True)

    primary_source = Column(String(100), nullable=True)
    consolidation_strategy = Column(String(50), nullable=False)
    confidence_level = Column(Float, nullable=False, default=0.0)
    field_sources = Column(JSON, nullable=True)  # {"strategy_used": ..., "total_sources": n, "methods_available": [...]}
    conflict_count = Column(Integer, default=0)
    requires_human_review = Column(Boolean, default=False)
    consolidation_notes = Column(Text, nullable=True)

    processed_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# SCRAPED REPORTS (RAW + NORMALIZED)
# =============================================================================

class RawCreditReportDB(Base):
    """Raw scraper payload, one row per run."""
    __tablename__ = "credit_reports_raw"

    id = Column(String(36), primary_key=True)  # UUID
    run_id = Column(String(255), nullable=False, unique=True)
    user_id = Column(String(36), nullable=False, index=True)
    collected_at = Column(DateTime, nullable=False)
    raw_json = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class NormalizedCreditReportDB(Base):
    """Header of the canonical report graph, one row per run."""
    __tablename__ = "normalized_credit_reports"

    id = Column(String(36), primary_key=True)  # UUID
    run_id = Column(String(255), nullable=False, unique=True)
    user_id = Column(String(36), nullable=False, index=True)
    collected_at = Column(DateTime, nullable=False, index=True)
    version = Column(String(20), nullable=False, default="v1")

    # Full canonical graph for reads that want everything in one go
    report_json = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class NormalizedCreditScoreDB(Base):
    """One bureau score within one run."""
    __tablename__ = "normalized_credit_scores"
    __table_args__ = (
        UniqueConstraint("user_id", "run_id", "bureau", "position", name="uq_normalized_scores_key"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), nullable=False, index=True)
    run_id = Column(String(255), nullable=False, index=True)
    bureau = Column(String(50), nullable=False)
    score = Column(Integer, nullable=True)
    status = Column(String(100), nullable=True)
    position = Column(Integer, nullable=False)  # Ordinal within bureau+run
    collected_at = Column(DateTime, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class NormalizedCreditAccountDB(Base):
    """
    One tradeline as reported by one bureau within one run.
    All three account buckets are flattened into this table.
    """
    __tablename__ = "normalized_credit_accounts"
    __table_args__ = (
        Index("ix_normalized_accounts_category_collected", "category", "collected_at"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), nullable=False, index=True)
    run_id = Column(String(255), nullable=False, index=True)

    # Conflict target: hash of (user_id, bureau, creditor, account_number_mask, opened_on)
    account_fingerprint = Column(String(64), nullable=False, unique=True)

    category = Column(String(20), nullable=True)  # realEstate | revolving | other
    bureau = Column(String(50), nullable=True)
    creditor = Column(String(255), nullable=True)
    account_number_mask = Column(String(100), nullable=True)

    # Dates are kept as the truncated YYYY-MM-DD text the scraper sent
    opened_on = Column(String(10), nullable=True)
    reported_on = Column(String(10), nullable=True)
    last_activity_on = Column(String(10), nullable=True)
    closed_on = Column(String(10), nullable=True)
    last_payment_on = Column(String(10), nullable=True)

    # Numerics pass through unconverted, so JSON rather than NUMERIC
    balance = Column(JSON, nullable=True)
    high_balance = Column(JSON, nullable=True)
    credit_limit = Column(JSON, nullable=True)
    past_due = Column(JSON, nullable=True)
    payment_amount = Column(JSON, nullable=True)
    term_length_months = Column(JSON, nullable=True)

    account_type = Column(String(100), nullable=True)
    payment_frequency = Column(String(100), nullable=True)
    account_rating = Column(String(100), nullable=True)
    account_status = Column(String(100), nullable=True)
    payment_status = Column(String(255), nullable=True)
    dispute_status = Column(String(255), nullable=True)
    status = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)

    remarks = Column(JSON, nullable=False, default=list)
    two_year_history = Column(JSON, nullable=False, default=dict)
    days_late_7y = Column(JSON, nullable=False, default=dict)  # {"30": n, "60": n, "90": n}

    position = Column(Integer, nullable=True)
    collected_at = Column(DateTime, nullable=False, index=True)
    payload = Column(JSON, nullable=True)  # Source item as scraped

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
