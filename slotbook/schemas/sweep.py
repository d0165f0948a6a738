# slotbook/schemas/sweep.py
from pydantic import BaseModel, Field
from typing import List


class SweepSummary(BaseModel):
    """Per-run summary of a background sweep; errors never abort the batch."""
    processed: int = 0
    succeeded: int = 0
    errors: List[str] = Field(default_factory=list)


class ExpirySummary(SweepSummary):
    expired_count: int = 0
    promoted_count: int = 0


class PromotionSweepSummary(SweepSummary):
    promoted: int = 0


class RefundSummary(SweepSummary):
    refunded: int = 0
    skipped: int = 0


class OutboxRelaySummary(SweepSummary):
    sent: int = 0
    failed: int = 0
