"""Disbursement collaborator.

Money movement is owned by an external payment rail. The engine decides
whether a member may receive an advance and at what rate, then hands the
transfer to a Disbursement implementation.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class AdvanceReceipt(BaseModel):
    """Confirmation returned by the payment rail."""

    model_config = ConfigDict(frozen=True)

    advance_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    member_id: str
    amount: float = Field(..., gt=0.0)
    apr_pct: float = Field(..., ge=0.0)
    disbursed_at: datetime


@runtime_checkable
class Disbursement(Protocol):
    def disburse_advance(
        self, member_id: str, amount: float, apr_pct: float, now: datetime
    ) -> AdvanceReceipt: ...


class InMemoryDisbursement:
    """Records advances without moving money."""

    def __init__(self) -> None:
        self._receipts: list[AdvanceReceipt] = []
        self._lock = threading.Lock()

    def disburse_advance(
        self, member_id: str, amount: float, apr_pct: float, now: datetime
    ) -> AdvanceReceipt:
        receipt = AdvanceReceipt(
            member_id=member_id, amount=amount, apr_pct=apr_pct, disbursed_at=now
        )
        with self._lock:
            self._receipts.append(receipt)
        logger.info(
            "Advance disbursed",
            extra={"advance_id": receipt.advance_id, "member_id": member_id, "amount": amount},
        )
        return receipt

    @property
    def receipts(self) -> list[AdvanceReceipt]:
        with self._lock:
            return list(self._receipts)
