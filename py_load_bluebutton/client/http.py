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
"""Provides a Blue Button client that talks to a BFD server over HTTP."""

import logging
import ssl
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from py_load_bluebutton.client.base import BlueButtonClient
from py_load_bluebutton.config import Settings
from py_load_bluebutton.exceptions import (
    ClientSecurityError,
    ClientTransportError,
    DataFormatError,
    ResourceNotFoundError,
    UpstreamServerError,
)
from py_load_bluebutton.models.context import TimeWindow
from py_load_bluebutton.models.fhir import MBI_SYSTEM, Bundle

logger = logging.getLogger(__name__)


def _is_tls_failure(error: BaseException) -> bool:
    """Walk the exception chain looking for an SSL error."""
    seen = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        if isinstance(current, ssl.SSLError):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


class HttpBlueButtonClient(BlueButtonClient):
    """Client for the BFD FHIR API built on httpx."""

    def __init__(
        self, settings: Settings, client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client with settings and an optional HTTP client."""
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            follow_redirects=True,
            timeout=settings.request_timeout,
        )
        self.client.headers["User-Agent"] = settings.user_agent
        self.client.headers["Accept"] = "application/fhir+json"

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _get(self, url: str, params: Any = None) -> httpx.Response:
        response = await self.client.get(url, params=params)
        if response.status_code == httpx.codes.NOT_FOUND:
            raise ResourceNotFoundError(f"No resource found at {response.url}")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("Blue Button request to %s failed: %s", response.url, e)
            raise UpstreamServerError(response.status_code, str(e)) from e
        return response

    async def _get_bundle(self, url: str, params: Any = None) -> Bundle:
        response = await self._get(url, params=params)
        try:
            data = response.json()
        except ValueError as e:
            raise DataFormatError(f"Response from {response.url} is not JSON") from e

        if not isinstance(data, dict) or data.get("resourceType") != "Bundle":
            raise DataFormatError(f"Expected a Bundle from {response.url}")
        try:
            return Bundle.model_validate(data)
        except ValidationError as e:
            raise DataFormatError(f"Malformed Bundle from {response.url}: {e}") from e

    def _search_params(
        self, last_updated: TimeWindow, **params: str
    ) -> list[tuple[str, str]]:
        query = [(key, value) for key, value in params.items()]
        query.append(("_count", str(self.settings.page_size)))
        query.extend(last_updated.to_params())
        return query

    async def request_patient_from_server_by_mbi(self, mbi: str) -> Bundle:
        try:
            return await self._get_bundle(
                f"{self.base_url}/Patient",
                params={"identifier": f"{MBI_SYSTEM}|{mbi}"},
            )
        except httpx.TransportError as e:
            if _is_tls_failure(e):
                raise ClientSecurityError(f"TLS failure during Patient lookup: {e}") from e
            raise ClientTransportError(f"Patient lookup failed: {e!r}") from e

    async def request_transaction_time(self) -> datetime | None:
        # An empty count-only search carries the snapshot time in its meta.
        bundle = await self._get_bundle(
            f"{self.base_url}/Patient", params={"_summary": "count"}
        )
        return bundle.last_updated

    async def request_patient_from_server(
        self, bene_id: str, last_updated: TimeWindow
    ) -> Bundle:
        return await self._get_bundle(
            f"{self.base_url}/Patient",
            params=self._search_params(last_updated, _id=bene_id),
        )

    async def request_eob_from_server(
        self, bene_id: str, last_updated: TimeWindow
    ) -> Bundle:
        return await self._get_bundle(
            f"{self.base_url}/ExplanationOfBenefit",
            params=self._search_params(
                last_updated, patient=bene_id, excludeSAMHSA="true"
            ),
        )

    async def request_coverage_from_server(
        self, bene_id: str, last_updated: TimeWindow
    ) -> Bundle:
        return await self._get_bundle(
            f"{self.base_url}/Coverage",
            params=self._search_params(last_updated, beneficiary=f"Patient/{bene_id}"),
        )

    async def request_next_bundle_from_server(self, bundle: Bundle) -> Bundle:
        next_url = bundle.next_link
        if not next_url:
            raise ValueError("Bundle has no next link to follow")
        return await self._get_bundle(next_url)

    async def request_capability_statement(self) -> dict[str, Any]:
        response = await self._get(f"{self.base_url}/metadata")
        return response.json()
