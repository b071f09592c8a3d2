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
"""A bounded-attempt retry for a single async operation."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from py_load_bluebutton.models.context import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Retry:
    """Retries an operation on any exception, up to ``policy.max_attempts`` calls.

    The retry does not look at what went wrong; deciding which failures are
    worth reporting is left to the caller. Create one instance per fetch.
    """

    def __init__(self, name: str, policy: RetryPolicy) -> None:
        self.name = name
        self.policy = policy
        self.attempts = 0

    async def call(
        self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Await ``operation(*args, **kwargs)``, retrying until it succeeds.

        Raises:
            Exception: whatever the last attempt raised, once all attempts
                are used up.
        """
        max_attempts = self.policy.max_attempts
        while True:
            self.attempts += 1
            try:
                return await operation(*args, **kwargs)
            except Exception as e:
                if self.attempts >= max_attempts:
                    logger.error(
                        "All %d attempts of %s failed.", max_attempts, self.name
                    )
                    raise
                logger.warning(
                    "%s failed on attempt %d/%d: %s",
                    self.name,
                    self.attempts,
                    max_attempts,
                    e,
                )
                if self.policy.wait_seconds:
                    await asyncio.sleep(self.policy.wait_seconds)
