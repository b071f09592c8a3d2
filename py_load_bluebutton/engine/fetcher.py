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
"""Fetches every resource of one type for one patient from Blue Button."""

import logging
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from uuid import UUID

from py_load_bluebutton.client.base import BlueButtonClient
from py_load_bluebutton.config import Settings
from py_load_bluebutton.engine.outcome import form_operation_outcome, should_propagate
from py_load_bluebutton.engine.pages import PageWalker
from py_load_bluebutton.engine.retry import Retry
from py_load_bluebutton.exceptions import (
    ClientTransportError,
    ConfigurationError,
    DataConsistencyError,
    JobQueueFailure,
)
from py_load_bluebutton.models.context import FetchContext, TimeWindow
from py_load_bluebutton.models.fhir import BENE_ID_SYSTEM, Bundle, Resource, ResourceType
from py_load_bluebutton.models.result import FetchResult

logger = logging.getLogger(__name__)

FirstPageRequest = Callable[[str, TimeWindow], Awaitable[Bundle]]


class ResourceFetcher:
    """Fetches resources of a single type for an export job.

    One fetcher is created per (job, batch, resource type). It keeps no state
    between calls, so ``fetch`` may be awaited for many patients at once.
    """

    RETRY_NAME = "bb-resource-fetcher"

    def __init__(
        self,
        client: BlueButtonClient,
        job_id: UUID,
        batch_id: UUID,
        resource_type: ResourceType,
        since: datetime | None,
        transaction_time: datetime,
        settings: Settings,
    ) -> None:
        """Create a context for fetching FHIR resources.

        Args:
            client: The Blue Button client to use.
            job_id: The export job, for logging and error attribution.
            batch_id: The job batch, for logging and error attribution.
            resource_type: The resource type to fetch.
            since: Only fetch resources updated after this instant.
            transaction_time: The fixed snapshot instant of the export job.
            settings: Supplies the retry policy.
        """
        self.client = client
        self.context = FetchContext(
            job_id=job_id,
            batch_id=batch_id,
            resource_type=resource_type,
            since=since,
            transaction_time=transaction_time,
        )
        self.retry_policy = settings.retry_policy

    async def fetch(self, mbi: str) -> FetchResult:
        """Fetch all the resources for a specific patient.

        If the first page cannot be fetched from Blue Button, even after
        retrying, the result carries a single OperationOutcome instead.

        Raises:
            JobQueueFailure: if the patient cannot be resolved or the
                resource type cannot be requested.
            DataFormatError: if a page contains a resource of the wrong type.
            TransactionTimeRegression: if a page predates the transaction time.
        """
        if not mbi:
            raise ValueError("An MBI is required")

        resource_type = self.context.resource_type
        fetch_id = str(uuid.uuid4())
        bene_id = await self.resolve_bene_id(mbi)
        last_updated = self.context.time_window
        request_first = self._first_page_request()

        logger.debug(
            "Fetching first %s from BlueButton for %s", resource_type.value, fetch_id
        )
        retry = Retry(self.RETRY_NAME, self.retry_policy)
        try:
            first_bundle = await retry.call(request_first, bene_id, last_updated)
        except Exception as error:
            if should_propagate(error):
                raise
            logger.error(
                "Turning error into OperationOutcome. Error is: %s", error, exc_info=True
            )
            outcome = form_operation_outcome(resource_type, mbi, error)
            return FetchResult.failure(resource_type, mbi, outcome)

        walker = PageWalker(self.client, self.context, fetch_id)
        resources = await walker.collect(first_bundle)
        return FetchResult.success(resource_type, mbi, resources)

    async def fetch_resources(self, mbi: str) -> AsyncGenerator[Resource, None]:
        """Yield the resources for a patient, or a single OperationOutcome."""
        result = await self.fetch(mbi)
        for record in result.records():
            yield record

    def _first_page_request(self) -> FirstPageRequest:
        requests: dict[ResourceType, FirstPageRequest] = {
            ResourceType.PATIENT: self.client.request_patient_from_server,
            ResourceType.EXPLANATION_OF_BENEFIT: self.client.request_eob_from_server,
            ResourceType.COVERAGE: self.client.request_coverage_from_server,
        }
        try:
            return requests[self.context.resource_type]
        except KeyError:
            raise ConfigurationError(
                self.context.job_id,
                self.context.batch_id,
                f"Unexpected resource type: {self.context.resource_type.value}",
            ) from None

    async def resolve_bene_id(self, mbi: str) -> str:
        """Look up the bene_id BFD uses for the patient with this MBI."""
        try:
            patients = await self.client.request_patient_from_server_by_mbi(mbi)
        except ClientTransportError as e:
            raise JobQueueFailure(
                self.context.job_id, self.context.batch_id, "Failed to retrieve Patient"
            ) from e

        count = patients.total if patients.total is not None else len(patients.entry)
        if count == 1 and patients.entry:
            return self.get_bene_id_from_patient(patients.entry[0].resource)

        raise DataConsistencyError(
            self.context.job_id,
            self.context.batch_id,
            f"Expected 1 Patient to match MBI but found {count}",
        )

    def get_bene_id_from_patient(self, patient: Resource) -> str:
        bene_id = patient.identifier_value(BENE_ID_SYSTEM)
        if bene_id is None:
            raise DataConsistencyError(
                self.context.job_id,
                self.context.batch_id,
                "No bene_id found in Patient resource",
            )
        return bene_id
