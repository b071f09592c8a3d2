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
"""Exception hierarchy shared by the Blue Button clients and the fetch engine.

Errors fall into two families. Failures that belong to the surrounding job
(``JobQueueFailure`` and its subclasses) are always propagated to the caller.
Failures reported by the remote source (``ClientError`` subclasses) are
eligible to be turned into an ``OperationOutcome`` when they happen on the
first-page fetch.
"""

from uuid import UUID


class BlueButtonError(Exception):
    """Base class for all errors raised by this package."""


class JobQueueFailure(BlueButtonError):
    """An internal failure attributed to a specific export job and batch."""

    def __init__(self, job_id: UUID, batch_id: UUID, message: str) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.batch_id = batch_id
        self.message = message

    def __str__(self) -> str:
        return f"[job {self.job_id} batch {self.batch_id}] {self.message}"


class DataConsistencyError(JobQueueFailure):
    """The MBI lookup did not resolve to exactly one usable Patient."""


class ConfigurationError(JobQueueFailure):
    """The fetcher was configured with a resource type it cannot request."""


class DataFormatError(BlueButtonError):
    """A page contained something other than what was asked for."""


class TransactionTimeRegression(BlueButtonError):
    """A page claims a snapshot time earlier than the job's transaction time.

    BFD can briefly serve from a replica that lags behind the one that
    answered earlier requests. Retrying the whole job after a delay usually
    clears it; the engine itself does not retry.
    """

    def __init__(self, bundle_time, transaction_time) -> None:
        super().__init__("BFD's transaction time regression")
        self.bundle_time = bundle_time
        self.transaction_time = transaction_time


class ClientError(BlueButtonError):
    """Base class for failures reported by a Blue Button client."""


class ResourceNotFoundError(ClientError):
    """The server answered 404 for the requested resource."""


class UpstreamServerError(ClientError):
    """The server answered with an error status other than 404."""

    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(message or f"Blue Button returned HTTP {status_code}")
        self.status_code = status_code


class ClientTransportError(ClientError):
    """The request never got an answer: connection, read or protocol failure."""


class ClientSecurityError(ClientTransportError):
    """The client could not establish a secure channel to the server."""
