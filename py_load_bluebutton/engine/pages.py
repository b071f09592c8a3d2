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
"""Follows ``next`` links from a first bundle until the search is exhausted."""

import logging

from py_load_bluebutton.client.base import BlueButtonClient
from py_load_bluebutton.exceptions import DataFormatError, TransactionTimeRegression
from py_load_bluebutton.models.context import FetchContext, as_utc
from py_load_bluebutton.models.fhir import Bundle, Resource

logger = logging.getLogger(__name__)


class PageWalker:
    """Collects every resource reachable from a first bundle.

    Pages are requested strictly one after another because each ``next``
    link is only known once its predecessor has been parsed. Failures on
    continuation pages are not retried.
    """

    def __init__(
        self, client: BlueButtonClient, context: FetchContext, fetch_id: str
    ) -> None:
        self.client = client
        self.context = context
        self.fetch_id = fetch_id

    async def collect(self, first_bundle: Bundle) -> list[Resource]:
        """Return the resources of the first bundle and all next bundles, in order.

        Raises:
            TransactionTimeRegression: if any page predates the job's
                transaction time.
            DataFormatError: if any page holds a resource of the wrong type.
        """
        resource_type = self.context.resource_type.value
        resources: list[Resource] = []
        self.check_bundle_transaction_time(first_bundle)
        self.add_resources(resources, first_bundle)

        bundle = first_bundle
        while bundle.next_link is not None:
            logger.debug(
                "Fetching next bundle %s from BlueButton for %s",
                resource_type,
                self.fetch_id,
            )
            bundle = await self.client.request_next_bundle_from_server(bundle)
            self.check_bundle_transaction_time(bundle)
            self.add_resources(resources, bundle)

        logger.debug("Done fetching bundles %s for %s", resource_type, self.fetch_id)
        return resources

    def add_resources(self, resources: list[Resource], bundle: Bundle) -> None:
        expected = self.context.resource_type.value
        for resource in bundle.resources():
            if resource.resource_type != expected:
                raise DataFormatError(
                    f"Unexpected resource type: got {resource.resource_type} "
                    f"expected: {expected}"
                )
            resources.append(resource)

    def check_bundle_transaction_time(self, bundle: Bundle) -> None:
        """Reject a bundle whose snapshot is older than the job's transaction time.

        Bundles without ``meta.lastUpdated`` are accepted; BFD leaves it out
        for incomplete ranges.
        """
        if bundle.last_updated is None:
            return
        bundle_time = as_utc(bundle.last_updated)
        if bundle_time < self.context.transaction_time:
            logger.info(
                "About to throw a BFD transaction time regression: bundle %s, job %s",
                bundle_time,
                self.context.transaction_time,
            )
            raise TransactionTimeRegression(bundle_time, self.context.transaction_time)
