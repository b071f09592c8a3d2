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
"""Manages the application's configuration using Pydantic."""

import logging
from typing import Any

import yaml
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.context import RetryPolicy

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Manages configuration for the application.

    Reads settings from environment variables with the prefix 'BLUEBUTTON_'.
    """

    model_config = SettingsConfigDict(env_prefix="BLUEBUTTON_")

    # Blue Button (BFD) server settings
    base_url: str = "https://sandbox.bluebutton.cms.gov/v1/fhir"
    user_agent: str = "OHDSI/py-load-bluebutton (v0.1.0; mailto:rao@ohdsi.org)"
    request_timeout: float = Field(default=30.0, gt=0)
    page_size: int = Field(default=50, ge=1)

    # Number of attempts for the first page of every fetch, including the first.
    retry_count: int = Field(default=3, ge=1)
    retry_wait_seconds: float = Field(default=0.0, ge=0.0)

    @computed_field
    @property
    def retry_policy(self) -> RetryPolicy:
        """Build the retry policy used for first-page fetches."""
        return RetryPolicy(
            max_attempts=self.retry_count, wait_seconds=self.retry_wait_seconds
        )


def load_config(config_file: str | None) -> dict[str, Any]:
    """Loads configuration overrides from a YAML file."""
    if config_file:
        try:
            with open(config_file, "r") as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Config file not found: %s", config_file)
    return {}


# Instantiate the settings so it can be imported directly
settings = Settings()
