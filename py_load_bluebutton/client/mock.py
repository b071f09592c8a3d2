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
"""An in-memory Blue Button client serving synthetic sample data.

Useful for local runs of the CLI and for exercising the fetch engine without
a BFD sandbox account. Only the patients in ``TEST_PATIENTS`` exist.
"""

from datetime import datetime, timezone
from typing import Any

import httpx

from py_load_bluebutton.client.base import BlueButtonClient
from py_load_bluebutton.exceptions import ResourceNotFoundError
from py_load_bluebutton.models.context import TimeWindow
from py_load_bluebutton.models.fhir import (
    BENE_ID_SYSTEM,
    LINK_NEXT,
    MBI_SYSTEM,
    Bundle,
    ResourceType,
)

# MBI -> bene_id
TEST_PATIENTS = {
    "1SQ3F00AA00": "-20140000008325",
    "5S58A00AA00": "-20140000009893",
}

MOCK_BASE_URL = "https://mock.bluebutton.local/v1/fhir"


class MockBlueButtonClient(BlueButtonClient):
    """Serves a fixed number of resources per type for each test patient."""

    def __init__(
        self,
        page_size: int = 20,
        eob_count: int = 45,
        coverage_count: int = 3,
        snapshot_time: datetime | None = None,
    ) -> None:
        self.page_size = page_size
        self.counts = {
            ResourceType.PATIENT: 1,
            ResourceType.EXPLANATION_OF_BENEFIT: eob_count,
            ResourceType.COVERAGE: coverage_count,
        }
        # Every bundle is stamped with this, like BFD stamps its last data load.
        self.snapshot_time = snapshot_time or datetime.now(timezone.utc)

    def _patient(self, mbi: str, bene_id: str) -> dict[str, Any]:
        return {
            "resourceType": "Patient",
            "id": bene_id,
            "identifier": [
                {"system": BENE_ID_SYSTEM, "value": bene_id},
                {"system": MBI_SYSTEM, "value": mbi},
            ],
        }

    def _resource(self, resource_type: ResourceType, bene_id: str, index: int) -> dict[str, Any]:
        if resource_type == ResourceType.PATIENT:
            mbi = next(m for m, b in TEST_PATIENTS.items() if b == bene_id)
            return self._patient(mbi, bene_id)
        return {
            "resourceType": resource_type.value,
            "id": f"{resource_type.value.lower()}-{bene_id}-{index}",
            "patient": {"reference": f"Patient/{bene_id}"},
        }

    def _page(self, resource_type: ResourceType, bene_id: str, start: int) -> Bundle:
        if bene_id not in TEST_PATIENTS.values():
            raise ResourceNotFoundError(f"No patient found with ID: {bene_id}")

        total = self.counts[resource_type]
        stop = min(start + self.page_size, total)
        data: dict[str, Any] = {
            "resourceType": "Bundle",
            "total": total,
            "entry": [
                {"resource": self._resource(resource_type, bene_id, i)}
                for i in range(start, stop)
            ],
            "link": [],
        }
        if stop < total:
            next_url = httpx.URL(
                f"{MOCK_BASE_URL}/{resource_type.value}",
                params={"patient": bene_id, "startIndex": str(stop)},
            )
            data["link"].append({"relation": LINK_NEXT, "url": str(next_url)})
        data["meta"] = {"lastUpdated": self.snapshot_time.isoformat()}
        return Bundle.model_validate(data)

    async def request_patient_from_server_by_mbi(self, mbi: str) -> Bundle:
        entries = []
        if mbi in TEST_PATIENTS:
            entries.append({"resource": self._patient(mbi, TEST_PATIENTS[mbi])})
        return Bundle.model_validate(
            {"resourceType": "Bundle", "total": len(entries), "entry": entries}
        )

    async def request_patient_from_server(
        self, bene_id: str, last_updated: TimeWindow
    ) -> Bundle:
        return self._page(ResourceType.PATIENT, bene_id, 0)

    async def request_eob_from_server(
        self, bene_id: str, last_updated: TimeWindow
    ) -> Bundle:
        return self._page(ResourceType.EXPLANATION_OF_BENEFIT, bene_id, 0)

    async def request_coverage_from_server(
        self, bene_id: str, last_updated: TimeWindow
    ) -> Bundle:
        return self._page(ResourceType.COVERAGE, bene_id, 0)

    async def request_next_bundle_from_server(self, bundle: Bundle) -> Bundle:
        if not bundle.next_link:
            raise ValueError("Bundle has no next link to follow")
        url = httpx.URL(bundle.next_link)
        resource_type = ResourceType(url.path.rsplit("/", 1)[-1])
        return self._page(
            resource_type, url.params["patient"], int(url.params["startIndex"])
        )

    async def request_transaction_time(self) -> datetime | None:
        return self.snapshot_time

    async def request_capability_statement(self) -> dict[str, Any]:
        return {
            "resourceType": "CapabilityStatement",
            "status": "active",
            "fhirVersion": "3.0.2",
        }
