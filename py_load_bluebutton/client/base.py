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
"""Defines the abstract base class for Blue Button clients."""

import abc
from datetime import datetime
from typing import Any

from py_load_bluebutton.models.context import TimeWindow
from py_load_bluebutton.models.fhir import Bundle


class BlueButtonClient(abc.ABC):
    """Abstract Base Class for all Blue Button clients.

    A client issues the actual requests against a BFD server and returns
    parsed bundles. It is the only place that knows about the transport;
    the fetch engine only sees bundles and the exceptions in
    ``py_load_bluebutton.exceptions``.

    Implementations must raise ``ResourceNotFoundError`` for a 404,
    ``UpstreamServerError`` for any other error status, and
    ``ClientTransportError`` (``ClientSecurityError`` for TLS problems) when
    the Patient lookup gets no answer at all.
    """

    @abc.abstractmethod
    async def request_patient_from_server_by_mbi(self, mbi: str) -> Bundle:
        """Search for the Patient resources that carry the given MBI.

        Args:
            mbi: The Medicare Beneficiary Identifier to look up.

        Returns:
            A searchset bundle. Callers check ``total`` for the match count.

        """
        raise NotImplementedError

    @abc.abstractmethod
    async def request_patient_from_server(
        self, bene_id: str, last_updated: TimeWindow
    ) -> Bundle:
        """Fetch the first page of Patient resources for a beneficiary."""
        raise NotImplementedError

    @abc.abstractmethod
    async def request_eob_from_server(
        self, bene_id: str, last_updated: TimeWindow
    ) -> Bundle:
        """Fetch the first page of ExplanationOfBenefit resources for a beneficiary."""
        raise NotImplementedError

    @abc.abstractmethod
    async def request_coverage_from_server(
        self, bene_id: str, last_updated: TimeWindow
    ) -> Bundle:
        """Fetch the first page of Coverage resources for a beneficiary."""
        raise NotImplementedError

    @abc.abstractmethod
    async def request_next_bundle_from_server(self, bundle: Bundle) -> Bundle:
        """Follow the ``next`` link of a bundle.

        Args:
            bundle: A bundle whose ``next_link`` is set.

        Returns:
            The next page of the same search.

        """
        raise NotImplementedError

    @abc.abstractmethod
    async def request_transaction_time(self) -> datetime | None:
        """Return the instant of the server's current data snapshot.

        An export job fixes this once, before any fetch, and every page it
        receives afterwards must be at least as fresh.

        Returns:
            The ``meta.lastUpdated`` the server reports, or None if it
            reports none.

        """
        raise NotImplementedError

    @abc.abstractmethod
    async def request_capability_statement(self) -> dict[str, Any]:
        """Fetch the server's CapabilityStatement, used as a health check."""
        raise NotImplementedError
