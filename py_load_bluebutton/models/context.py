# Copyright 2025 Gowtham Rao <rao@ohdsi.org>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Immutable values that describe a single fetch invocation."""

from datetime import datetime, timezone
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .fhir import ResourceType


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TimeWindow(BaseModel):
    """The ``_lastUpdated`` range used for every request of an export job.

    The FHIR bulk data spec makes ``since`` exclusive and the transaction time
    inclusive. BFD also returns resources that have no ``lastUpdated`` when
    the range is not closed on both sides.
    """

    model_config = ConfigDict(frozen=True)

    lower_exclusive: datetime | None = None
    upper_inclusive: datetime

    @classmethod
    def build(cls, since: datetime | None, transaction_time: datetime) -> "TimeWindow":
        return cls(
            lower_exclusive=as_utc(since) if since is not None else None,
            upper_inclusive=as_utc(transaction_time),
        )

    def to_params(self) -> list[tuple[str, str]]:
        """Render the window as FHIR search parameters."""
        params = [("_lastUpdated", f"le{self.upper_inclusive.isoformat()}")]
        if self.lower_exclusive is not None:
            params.append(("_lastUpdated", f"gt{self.lower_exclusive.isoformat()}"))
        return params


class RetryPolicy(BaseModel):
    """How many times the first page of a fetch may be attempted."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    wait_seconds: float = Field(default=0.0, ge=0.0)


class FetchContext(BaseModel):
    """Everything a fetcher needs to know about the job it works for."""

    model_config = ConfigDict(frozen=True)

    job_id: UUID
    batch_id: UUID
    resource_type: ResourceType
    since: datetime | None = None
    transaction_time: datetime

    @field_validator("since", "transaction_time")
    @classmethod
    def _normalise_timezone(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _since_before_transaction_time(self) -> "FetchContext":
        if self.since is not None and self.since >= self.transaction_time:
            raise ValueError("since must be earlier than transaction_time")
        return self

    @property
    def time_window(self) -> TimeWindow:
        return TimeWindow.build(self.since, self.transaction_time)
