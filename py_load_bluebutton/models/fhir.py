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
"""Pydantic models for the small slice of FHIR that Blue Button returns.

Only the fields the fetch engine inspects are declared. Everything else is
kept verbatim through ``extra="allow"`` so that a resource can be written
back out exactly as it was received.
"""

from collections.abc import Iterator
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Identifier systems used by BFD on Patient resources.
BENE_ID_SYSTEM = "https://bluebutton.cms.gov/resources/variables/bene_id"
MBI_SYSTEM = "http://hl7.org/fhir/sid/us-mbi"

LINK_NEXT = "next"


class ResourceType(str, Enum):
    """FHIR resource types known to the exporter."""

    PATIENT = "Patient"
    EXPLANATION_OF_BENEFIT = "ExplanationOfBenefit"
    COVERAGE = "Coverage"
    OPERATION_OUTCOME = "OperationOutcome"


class FhirModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_fhir(self) -> dict[str, Any]:
        """Serialize back to FHIR JSON, using the wire field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Identifier(FhirModel):
    system: str | None = None
    value: str | None = None


class Meta(FhirModel):
    last_updated: datetime | None = Field(default=None, alias="lastUpdated")


class Resource(FhirModel):
    """A single FHIR resource of any type."""

    resource_type: str = Field(..., alias="resourceType")
    id: str | None = None
    meta: Meta | None = None
    identifier: list[Identifier] = Field(default_factory=list)

    def identifier_value(self, system: str) -> str | None:
        """Return the value of the first identifier in ``system``, if any."""
        for ident in self.identifier:
            if ident.system == system:
                return ident.value
        return None


class BundleLink(FhirModel):
    relation: str
    url: str


class BundleEntry(FhirModel):
    full_url: str | None = Field(default=None, alias="fullUrl")
    resource: Resource


class Bundle(FhirModel):
    """One page of a FHIR searchset."""

    resource_type: str = Field(default="Bundle", alias="resourceType")
    id: str | None = None
    meta: Meta | None = None
    total: int | None = None
    link: list[BundleLink] = Field(default_factory=list)
    entry: list[BundleEntry] = Field(default_factory=list)

    def get_link(self, relation: str) -> str | None:
        for link in self.link:
            if link.relation == relation:
                return link.url
        return None

    @property
    def next_link(self) -> str | None:
        return self.get_link(LINK_NEXT)

    @property
    def last_updated(self) -> datetime | None:
        return self.meta.last_updated if self.meta else None

    def resources(self) -> Iterator[Resource]:
        for entry in self.entry:
            yield entry.resource


class CodeableConcept(FhirModel):
    text: str | None = None


class OperationOutcomeIssue(FhirModel):
    severity: str = "error"
    code: str = "exception"
    details: CodeableConcept | None = None
    location: list[str] = Field(default_factory=list)


class OperationOutcome(Resource):
    """A structured stand-in for a patient whose resources could not be fetched."""

    resource_type: str = Field(
        default=ResourceType.OPERATION_OUTCOME.value, alias="resourceType"
    )
    issue: list[OperationOutcomeIssue] = Field(default_factory=list)
