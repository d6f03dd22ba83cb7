from __future__ import annotations

from datetime import date as date_type
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from daily_rollup.utils.time import truncate_to_date

QUALIFYING_STATUSES: tuple[str, ...] = ("completed", "refunded")

RunOutcome = Literal["running", "success", "failure"]


class RawRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    seq: int
    id: int
    customer_id: str | None = None
    product_id: str
    quantity: int = Field(ge=0)
    timestamp: datetime
    status: str

    def to_filtered(self) -> dict[str, Any]:
        return FilteredRecord(
            id=self.id,
            product_id=self.product_id,
            quantity=self.quantity,
            date=truncate_to_date(self.timestamp),
            status=self.status,
        ).model_dump()


class FilteredRecord(BaseModel):
    id: int
    product_id: str
    quantity: int
    date: date_type
    status: str


class AggregateRecord(BaseModel):
    date: date_type
    total_quantity: int
    completed_count: int
    refunded_count: int


class RunRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    run_id: int
    stage_id: str
    scheduled_time: datetime
    start_time: datetime
    end_time: datetime | None = None
    outcome: RunOutcome
    rows_affected: int = 0
    error_message: str | None = None
