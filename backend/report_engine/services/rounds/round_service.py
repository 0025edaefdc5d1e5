"""
Round Lifecycle Service

Create, advance, load and delete dispute rounds.

Deleting a round is a soft delete of the round plus a hard delete of its
child rows. Only the status update is required to succeed; each child
category is purged on its own and a failure there is logged, not raised.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4
import logging

from dateutil import parser as date_parser
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...exceptions import PayloadValidationError, RoundLimitError, RoundTransitionError, StoreError
from ...models.round_models import (
    CreditRoundDB, RawPayloadDB, RoundAddressDB, RoundCollectionDB, RoundEmployerDB,
    RoundInquiryDB, RoundPersonalIdentifierDB, RoundPublicRecordDB, RoundScoreDB,
    RoundStatus, RoundTradelineDB, RoundTradelineHistoryDB,
)
from ..normalization.payload import PayloadNode, coerce_score
from .state_machine import RoundStateMachine


logger = logging.getLogger(__name__)

MAX_ROUNDS_PER_CUSTOMER = 12
DEFAULT_SOURCE = "browse_ai"
ALL_BUREAUS = ("equifax", "experian", "transunion")

# Purged by credit_round_id, in this order, after tradeline history
CHILD_CATEGORIES = (
    ("round_tradelines", RoundTradelineDB),
    ("round_personal_identifiers", RoundPersonalIdentifierDB),
    ("round_addresses", RoundAddressDB),
    ("round_employers", RoundEmployerDB),
    ("round_scores", RoundScoreDB),
    ("round_collections", RoundCollectionDB),
    ("round_public_records", RoundPublicRecordDB),
    ("round_inquiries", RoundInquiryDB),
)


def _to_date(value: Any) -> Optional[str]:
    """YYYY-MM-DD for anything parseable, else None."""
    if not value:
        return None
    try:
        return date_parser.parse(str(value)).date().isoformat()
    except (ValueError, OverflowError):
        return None


def round_response(round_: CreditRoundDB) -> Dict[str, Any]:
    return {
        "id": round_.id,
        "customer_id": round_.customer_id,
        "round_number": round_.round_number,
        "status": RoundStatus(round_.status).value,
        "source": round_.source,
        "created_at": round_.created_at.isoformat() if round_.created_at else None,
        "sent_at": round_.sent_at.isoformat() if round_.sent_at else None,
        "deleted_at": round_.deleted_at.isoformat() if round_.deleted_at else None,
    }


class RoundService:
    """
    Dispute round lifecycle.

    Usage:
        service = RoundService(db)
        round_ = service.create_round(customer_id)
        service.load_snapshot(round_.id, normalized, raw)
        service.save_round(round_.id)
        service.mark_sent(round_.id)
        service.delete_round(round_.id, remove_raw=True)
    """

    def __init__(self, db: Session):
        self.db = db
        self.state_machine = RoundStateMachine()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def create_round(self, customer_id: str, source: Optional[str] = None) -> CreditRoundDB:
        """
        Open the next round for a customer.

        Round numbers are sequential over the customer's rounds that are not
        deleted, 1 through MAX_ROUNDS_PER_CUSTOMER.
        """
        if not customer_id:
            raise PayloadValidationError("customer_id is required")

        try:
            current = self.db.query(func.max(CreditRoundDB.round_number)).filter(
                CreditRoundDB.customer_id == customer_id,
                CreditRoundDB.status != RoundStatus.DELETED,
            ).scalar() or 0
        except SQLAlchemyError as e:
            logger.error(f"Failed to read rounds for customer {customer_id}: {e}")
            raise StoreError.from_sqlalchemy(e, operation="select_rounds", code="E_DB_SELECT")

        round_number = current + 1
        if round_number > MAX_ROUNDS_PER_CUSTOMER:
            raise RoundLimitError(
                f"Customer {customer_id} already has {MAX_ROUNDS_PER_CUSTOMER} rounds"
            )

        round_ = CreditRoundDB(
            id=str(uuid4()),
            customer_id=customer_id,
            round_number=round_number,
            status=RoundStatus.DRAFT,
            source=source or DEFAULT_SOURCE,
        )
        self._commit(lambda: self.db.add(round_), operation="create_round")
        logger.info(f"Created round {round_number} ({round_.id}) for customer {customer_id}")
        return round_

    def get_round(self, round_id: str) -> Optional[CreditRoundDB]:
        try:
            return self.db.query(CreditRoundDB).filter(CreditRoundDB.id == round_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read round {round_id}: {e}")
            raise StoreError.from_sqlalchemy(e, operation="select_round", code="E_DB_SELECT")

    def save_round(self, round_id: str) -> Optional[CreditRoundDB]:
        return self._advance(round_id, "save")

    def mark_sent(self, round_id: str) -> Optional[CreditRoundDB]:
        return self._advance(round_id, "send")

    def _advance(self, round_id: str, action: str) -> Optional[CreditRoundDB]:
        round_ = self.get_round(round_id)
        if round_ is None:
            return None

        new_state = self.state_machine.transition(round_.status, action)

        def apply():
            round_.status = new_state
            round_.updated_at = datetime.utcnow()
            if new_state == RoundStatus.SENT:
                round_.sent_at = datetime.utcnow()

        self._commit(apply, operation=f"{action}_round")
        logger.info(f"Round {round_id} → {new_state.value}")
        return round_

    # =========================================================================
    # SNAPSHOT
    # =========================================================================

    def load_snapshot(
        self,
        round_id: str,
        normalized: Dict[str, Any],
        raw: Any = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Replace the round's child rows with a normalized snapshot.

        Clean slate: every child category is emptied, then refilled from
        the snapshot, in one commit. Sent rounds are still accepted; deleted
        rounds are not. When raw is given it is stored as an additional raw
        payload.

        Returns:
            Rows inserted per category and the bureaus missing from the
            snapshot, or None when the round does not exist.
        """
        round_ = self.get_round(round_id)
        if round_ is None:
            return None
        if RoundStatus(round_.status) == RoundStatus.DELETED:
            raise RoundTransitionError(f"Round {round_id} is deleted")
        if normalized is not None and not isinstance(normalized, dict):
            raise PayloadValidationError("normalized snapshot must be an object")

        snapshot = PayloadNode(normalized or {})
        counts: Dict[str, int] = {}
        bureaus_seen = set()

        try:
            self._purge_tradeline_history(round_id)
            for _, model in CHILD_CATEGORIES:
                self.db.query(model).filter(model.credit_round_id == round_id).delete(synchronize_session=False)

            if raw is not None:
                self.db.add(RawPayloadDB(id=str(uuid4()), credit_round_id=round_id, payload=raw))

            counts["round_personal_identifiers"] = self._add_rows(
                round_id, RoundPersonalIdentifierDB, _as_items(snapshot.child("personal_identifiers")),
                lambda x: {
                    "full_name": x.text(("full_name", "name")),
                    "ssn_mask": x.text(("ssn_mask", "ssn")),
                    "date_of_birth": _to_date(x.first(("date_of_birth", "dob"))),
                },
            )
            counts["round_addresses"] = self._add_rows(
                round_id, RoundAddressDB, snapshot.child("addresses").items(),
                lambda x: {
                    "street": x.text(("street", "address_line1", "address")),
                    "city": x.text(("city",)),
                    "state": x.text(("state",)),
                    "postal_code": x.text(("postal_code", "zip")),
                    "date_reported": _to_date(x.first(("date_reported",))),
                },
            )
            counts["round_employers"] = self._add_rows(
                round_id, RoundEmployerDB, snapshot.child("employers").items(),
                lambda x: {
                    "employer_name": x.text(("employer_name", "name")),
                    "occupation": x.text(("occupation",)),
                    "date_reported": _to_date(x.first(("date_reported",))),
                },
            )
            scores = [s for s in snapshot.child("scores").items() if s.text(("bureau",))]
            counts["round_scores"] = self._add_rows(
                round_id, RoundScoreDB, scores,
                lambda x: {
                    "model": x.text(("model",)),
                    "score": coerce_score(x.first(("score",))),
                    "date": _to_date(x.first(("date",))),
                },
            )
            counts["round_tradelines"], counts["round_tradeline_history"] = self._add_tradelines(
                round_id, snapshot.child("tradelines").items()
            )
            counts["round_collections"] = self._add_rows(
                round_id, RoundCollectionDB, snapshot.child("collections").items(),
                lambda x: {
                    "collection_agency": x.text(("collection_agency", "agency")),
                    "original_creditor": x.text(("original_creditor",)),
                    "amount": x.first(("amount",)),
                    "date_assigned": _to_date(x.first(("date_assigned",))),
                    "status": x.text(("status",)),
                    "account_number": x.text(("account_number",)),
                },
            )
            counts["round_public_records"] = self._add_rows(
                round_id, RoundPublicRecordDB, snapshot.child("public_records").items(),
                lambda x: {
                    "record_type": x.text(("type", "record_type")),
                    "amount": x.first(("amount",)),
                    "filing_date": _to_date(x.first(("filing_date",))),
                    "status": x.text(("status",)),
                    "reference_number": x.text(("reference_number",)),
                },
            )
            counts["round_inquiries"] = self._add_rows(
                round_id, RoundInquiryDB, snapshot.child("inquiries").items(),
                lambda x: {
                    "inquiry_date": _to_date(x.first(("date", "inquiry_date"))),
                    "subscriber": x.text(("subscriber", "requestor")),
                    "purpose": x.text(("purpose",)),
                    "business_type": x.text(("business_type",)),
                },
            )

            for item in [*snapshot.child("tradelines").items(), *scores]:
                bureau = item.text(("bureau",))
                if bureau:
                    bureaus_seen.add(bureau.lower())

            round_.updated_at = datetime.utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load snapshot into round {round_id}: {e}")
            raise StoreError.from_sqlalchemy(e, operation="load_snapshot")

        missing = [b for b in ALL_BUREAUS if b not in bureaus_seen]
        logger.info(f"Loaded snapshot into round {round_id}: {counts}")
        return {"round_id": round_id, "counts": counts, "missing_bureaus": missing}

    def _add_rows(self, round_id: str, model, items: List[PayloadNode], build) -> int:
        added = 0
        for item in items:
            if not item.is_object:
                continue
            self.db.add(model(
                id=str(uuid4()),
                credit_round_id=round_id,
                bureau=item.text(("bureau",)),
                **build(item),
            ))
            added += 1
        return added

    def _add_tradelines(self, round_id: str, items: List[PayloadNode]):
        tradelines = 0
        history = 0
        seen = set()
        for item in items:
            account_uid = item.text(("account_uid",))
            if not item.is_object or not account_uid:
                logger.warning(f"Skipping tradeline without account_uid in round {round_id}")
                continue
            bureau = item.text(("bureau",))
            if (bureau, account_uid) in seen:
                logger.warning(f"Skipping duplicate tradeline {bureau}/{account_uid} in round {round_id}")
                continue
            seen.add((bureau, account_uid))

            tradeline_id = str(uuid4())
            remarks = item.first(("remarks",))
            self.db.add(RoundTradelineDB(
                id=tradeline_id,
                credit_round_id=round_id,
                bureau=bureau,
                account_uid=account_uid,
                creditor=item.text(("creditor", "issuer")),
                account_type=item.text(("account_type",)),
                open_date=_to_date(item.first(("open_date",))),
                credit_limit=item.first(("limit", "credit_limit")),
                balance=item.first(("balance",)),
                status=item.text(("status",)),
                payment_status=item.text(("payment_status",)),
                remarks=remarks if isinstance(remarks, list) else None,
                past_due=item.first(("past_due",)),
                date_reported=_to_date(item.first(("date_reported",))),
            ))
            tradelines += 1

            for entry in item.child("history").items():
                if not entry.is_object:
                    continue
                self.db.add(RoundTradelineHistoryDB(
                    id=str(uuid4()),
                    tradeline_id=tradeline_id,
                    month=_to_date(entry.first(("month",))),
                    status_code=entry.text(("status_code", "status")),
                    balance=entry.first(("balance",)),
                    credit_limit=entry.first(("limit", "credit_limit")),
                    payment=entry.first(("payment",)),
                ))
                history += 1
        return tradelines, history

    # =========================================================================
    # DELETE
    # =========================================================================

    def delete_round(self, round_id: str, remove_raw: bool = False) -> Optional[Dict[str, Any]]:
        """
        Soft-delete a round and purge its child rows.

        Deletion order:
        1. Mark the round deleted (status + deleted_at). Failure raises.
        2. Delete tradeline history for the round's tradelines
        3. Delete each child category by credit_round_id
        4. Delete raw payloads when remove_raw is set

        Steps 2-4 are independent: a failing category is logged and listed
        in "failed", the rest still run. Deleting an already deleted round
        keeps its deleted_at and re-runs the purge.

        Returns cascade counts, or None when the round does not exist.
        """
        round_ = self.get_round(round_id)
        if round_ is None:
            return None

        # Step 1: soft delete
        if round_.status != RoundStatus.DELETED:
            new_state = self.state_machine.transition(round_.status, "delete")

            def mark():
                round_.status = new_state
                round_.deleted_at = datetime.utcnow()

            self._commit(mark, operation="mark_round_deleted")

        cascade: Dict[str, int] = {}
        failed: List[str] = []

        # Step 2: tradeline history hangs off tradelines, not the round
        self._delete_category(
            "round_tradeline_history", lambda: self._purge_tradeline_history(round_id), cascade, failed
        )

        # Step 3: child categories
        for name, model in CHILD_CATEGORIES:
            self._delete_category(
                name,
                lambda model=model: self.db.query(model).filter(
                    model.credit_round_id == round_id
                ).delete(synchronize_session=False),
                cascade,
                failed,
            )

        # Step 4: raw payloads
        if remove_raw:
            self._delete_category(
                "raw_payloads",
                lambda: self.db.query(RawPayloadDB).filter(
                    RawPayloadDB.credit_round_id == round_id
                ).delete(synchronize_session=False),
                cascade,
                failed,
            )

        logger.info(f"Soft-deleted round {round_id}: {cascade}" + (f", failed: {failed}" if failed else ""))

        return {
            "ok": True,
            "round_id": round_id,
            "status": RoundStatus.DELETED.value,
            "deleted_at": round_.deleted_at.isoformat() if round_.deleted_at else None,
            "cascade": cascade,
            "failed": failed,
        }

    def _purge_tradeline_history(self, round_id: str) -> int:
        tradeline_ids = [
            t.id for t in
            self.db.query(RoundTradelineDB.id).filter(RoundTradelineDB.credit_round_id == round_id).all()
        ]
        if not tradeline_ids:
            return 0
        return self.db.query(RoundTradelineHistoryDB).filter(
            RoundTradelineHistoryDB.tradeline_id.in_(tradeline_ids)
        ).delete(synchronize_session=False)

    def _delete_category(self, name: str, delete, cascade: Dict[str, int], failed: List[str]) -> None:
        try:
            cascade[name] = delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Round delete: failed to delete {name}: {e}")
            failed.append(name)

    def _commit(self, apply, operation: str) -> None:
        try:
            apply()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"{operation} failed: {e}")
            raise StoreError.from_sqlalchemy(e, operation=operation)


def _as_items(node: PayloadNode) -> List[PayloadNode]:
    """A single object or a list of objects, as a list."""
    if node.is_object:
        return [node]
    return node.items()
