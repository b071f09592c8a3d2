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
"""The result of fetching one resource type for one patient."""

from collections.abc import Iterator

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .fhir import OperationOutcome, Resource, ResourceType


class FetchResult(BaseModel):
    """Either the complete list of resources or a single outcome, never both.

    A fetch never partially succeeds: when the first page cannot be fetched,
    the outcome replaces everything else that would have been returned.
    """

    model_config = ConfigDict(frozen=True)

    resource_type: ResourceType
    patient_id: str
    resources: list[Resource] = Field(default_factory=list)
    outcome: OperationOutcome | None = None

    @model_validator(mode="after")
    def _one_or_the_other(self) -> "FetchResult":
        if self.outcome is not None and self.resources:
            raise ValueError("A failed fetch cannot also carry resources")
        return self

    @classmethod
    def success(
        cls, resource_type: ResourceType, patient_id: str, resources: list[Resource]
    ) -> "FetchResult":
        return cls(resource_type=resource_type, patient_id=patient_id, resources=resources)

    @classmethod
    def failure(
        cls, resource_type: ResourceType, patient_id: str, outcome: OperationOutcome
    ) -> "FetchResult":
        return cls(resource_type=resource_type, patient_id=patient_id, outcome=outcome)

    @property
    def is_outcome(self) -> bool:
        return self.outcome is not None

    def records(self) -> Iterator[Resource]:
        if self.outcome is not None:
            yield self.outcome
        else:
            yield from self.resources
