from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import pytest

from py_load_bluebutton.client.base import BlueButtonClient
from py_load_bluebutton.config import Settings
from py_load_bluebutton.models.context import FetchContext, TimeWindow
from py_load_bluebutton.models.fhir import BENE_ID_SYSTEM, MBI_SYSTEM, Bundle, ResourceType

TRANSACTION_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
PAGE_URL = "https://bb.test/v1/fhir/page/{index}"


def _make_pages(
    sizes: list[int],
    resource_type: str = "ExplanationOfBenefit",
    last_updated: list[datetime | None] | None = None,
) -> list[Bundle]:
    """Build a chain of bundles where every page but the last links to the next."""
    pages = []
    for index, size in enumerate(sizes):
        data: dict[str, Any] = {
            "resourceType": "Bundle",
            "entry": [
                {"resource": {"resourceType": resource_type, "id": f"{index}-{i}"}}
                for i in range(size)
            ],
            "link": [{"relation": "self", "url": PAGE_URL.format(index=index)}],
        }
        if index + 1 < len(sizes):
            data["link"].append(
                {"relation": "next", "url": PAGE_URL.format(index=index + 1)}
            )
        if last_updated and last_updated[index] is not None:
            data["meta"] = {"lastUpdated": last_updated[index].isoformat()}
        pages.append(Bundle.model_validate(data))
    return pages


def _patient_search_bundle(count: int = 1, bene_id: str = "bene-1") -> Bundle:
    return Bundle.model_validate(
        {
            "resourceType": "Bundle",
            "total": count,
            "entry": [
                {
                    "resource": {
                        "resourceType": "Patient",
                        "id": f"{bene_id}-{i}",
                        "identifier": [
                            {"system": BENE_ID_SYSTEM, "value": bene_id if i == 0 else f"{bene_id}-{i}"},
                            {"system": MBI_SYSTEM, "value": "MBI123"},
                        ],
                    }
                }
                for i in range(count)
            ],
        }
    )


class FakeBlueButtonClient(BlueButtonClient):
    """Serves prepared pages and records every call made to it."""

    def __init__(
        self,
        pages: list[Bundle] | None = None,
        patients: Bundle | None = None,
        first_page_errors: list[Exception] | None = None,
        next_page_errors: dict[int, Exception] | None = None,
        lookup_error: Exception | None = None,
        snapshot_time: datetime | None = None,
    ) -> None:
        self.pages = pages if pages is not None else _make_pages([1])
        self.patients = patients if patients is not None else _patient_search_bundle()
        self.first_page_errors = list(first_page_errors or [])
        self.next_page_errors = next_page_errors or {}
        self.lookup_error = lookup_error
        self.snapshot_time = snapshot_time
        self.calls: dict[str, list[Any]] = {}

    def _record(self, name: str, *args: Any) -> None:
        self.calls.setdefault(name, []).append(args)

    def call_count(self, name: str) -> int:
        return len(self.calls.get(name, []))

    async def _first_page(self, name: str, bene_id: str, last_updated: TimeWindow) -> Bundle:
        self._record(name, bene_id, last_updated)
        if self.first_page_errors:
            raise self.first_page_errors.pop(0)
        return self.pages[0]

    async def request_patient_from_server_by_mbi(self, mbi: str) -> Bundle:
        self._record("lookup", mbi)
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.patients

    async def request_patient_from_server(self, bene_id, last_updated):
        return await self._first_page("patient", bene_id, last_updated)

    async def request_eob_from_server(self, bene_id, last_updated):
        return await self._first_page("eob", bene_id, last_updated)

    async def request_coverage_from_server(self, bene_id, last_updated):
        return await self._first_page("coverage", bene_id, last_updated)

    async def request_next_bundle_from_server(self, bundle: Bundle) -> Bundle:
        self._record("next", bundle.next_link)
        index = int(bundle.next_link.rsplit("/", 1)[-1])
        if index in self.next_page_errors:
            raise self.next_page_errors[index]
        return self.pages[index]

    async def request_transaction_time(self) -> datetime | None:
        return self.snapshot_time

    async def request_capability_statement(self) -> dict[str, Any]:
        return {"resourceType": "CapabilityStatement"}


@pytest.fixture
def transaction_time() -> datetime:
    return TRANSACTION_TIME


@pytest.fixture
def make_pages():
    """Factory for chains of linked bundles."""
    return _make_pages


@pytest.fixture
def patient_search_bundle():
    """Factory for MBI search results with a given match count."""
    return _patient_search_bundle


@pytest.fixture
def fake_client():
    """The fake client class; call it with the pages and errors a test needs."""
    return FakeBlueButtonClient


@pytest.fixture
def settings() -> Settings:
    return Settings(retry_count=3)


@pytest.fixture
def eob_context() -> FetchContext:
    return FetchContext(
        job_id=uuid4(),
        batch_id=uuid4(),
        resource_type=ResourceType.EXPLANATION_OF_BENEFIT,
        transaction_time=TRANSACTION_TIME,
    )
