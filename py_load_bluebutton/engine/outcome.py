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
"""Turns a failed first-page fetch into an OperationOutcome."""

from py_load_bluebutton.exceptions import (
    JobQueueFailure,
    ResourceNotFoundError,
    UpstreamServerError,
)
from py_load_bluebutton.models.fhir import (
    CodeableConcept,
    OperationOutcome,
    OperationOutcomeIssue,
    ResourceType,
)


def should_propagate(error: BaseException) -> bool:
    """Job-layer failures are internal errors and must reach the caller."""
    return isinstance(error, JobQueueFailure)


def describe_error(resource_type: ResourceType, patient_id: str, error: BaseException) -> str:
    if isinstance(error, ResourceNotFoundError):
        return (
            f"{resource_type.value} resource not found in Blue Button "
            f"for id: {patient_id}"
        )
    if isinstance(error, UpstreamServerError):
        return (
            f"Blue Button error fetching {resource_type.value} resource. "
            f"HTTP return code: {error.status_code}"
        )
    return f"Internal error: {error}"


def form_operation_outcome(
    resource_type: ResourceType, patient_id: str, error: BaseException
) -> OperationOutcome:
    """Create an OperationOutcome that records why a patient has no resources.

    Args:
        resource_type: The type that was being fetched.
        patient_id: The identifier the caller asked for.
        error: The failure left over once all retries were used up.

    Returns:
        An outcome with one ``error``/``exception`` issue located at
        ``Patient.id``.
    """
    issue = OperationOutcomeIssue(
        severity="error",
        code="exception",
        details=CodeableConcept(text=describe_error(resource_type, patient_id, error)),
        location=["Patient", "id", patient_id],
    )
    return OperationOutcome(issue=[issue])
