import asyncio
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import IO, List, Optional

import httpx
import typer

from py_load_bluebutton.client.base import BlueButtonClient
from py_load_bluebutton.client.http import HttpBlueButtonClient
from py_load_bluebutton.client.mock import MockBlueButtonClient
from py_load_bluebutton.config import Settings, load_config
from py_load_bluebutton.engine.fetcher import ResourceFetcher
from py_load_bluebutton.models.fhir import ResourceType

# Basic structured logging setup
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = typer.Typer(help="Export per-patient FHIR resources from Blue Button.")


class ExportType(str, Enum):
    PATIENT = ResourceType.PATIENT.value
    EXPLANATION_OF_BENEFIT = ResourceType.EXPLANATION_OF_BENEFIT.value
    COVERAGE = ResourceType.COVERAGE.value


def _parse_since(since: str | None) -> datetime | None:
    if not since:
        return None
    try:
        return datetime.fromisoformat(since)
    except ValueError:
        raise typer.BadParameter(
            f"Not an ISO 8601 datetime: {since}", param_hint="--since"
        ) from None


async def arun_export(
    mbis: List[str],
    resource_types: List[ResourceType],
    out: IO[str],
    settings: Settings,
    client: BlueButtonClient,
    since: datetime | None = None,
) -> dict[str, int]:
    """Fetch every requested resource type for every patient and write NDJSON.

    Patients are fetched one after another; each (patient, type) pair is an
    independent fetch.

    Returns:
        Counts of written resources and outcomes.
    """
    start_time = datetime.now(timezone.utc)
    job_id = uuid.uuid4()
    batch_id = uuid.uuid4()
    logger.info("Starting export job %s (batch %s)", job_id, batch_id)

    summary = {"resources": 0, "outcomes": 0}
    try:
        # The job is pinned to the server's snapshot, not to the local clock.
        transaction_time = await client.request_transaction_time()
        if transaction_time is None:
            logger.warning("Server reported no snapshot time, using the local clock.")
            transaction_time = start_time
        logger.info("Export job %s transaction time is %s", job_id, transaction_time)

        fetchers = [
            ResourceFetcher(
                client=client,
                job_id=job_id,
                batch_id=batch_id,
                resource_type=resource_type,
                since=since,
                transaction_time=transaction_time,
                settings=settings,
            )
            for resource_type in resource_types
        ]

        for mbi in mbis:
            for fetcher in fetchers:
                result = await fetcher.fetch(mbi)
                for record in result.records():
                    out.write(json.dumps(record.to_fhir()) + "\n")
                if result.is_outcome:
                    summary["outcomes"] += 1
                    logger.warning(
                        "No %s for %s, recorded an OperationOutcome instead.",
                        result.resource_type.value,
                        mbi,
                    )
                else:
                    summary["resources"] += len(result.resources)
                    logger.info(
                        "Fetched %d %s resources for %s.",
                        len(result.resources),
                        result.resource_type.value,
                        mbi,
                    )
    except Exception as e:
        logger.error("Export failed: %s", e, exc_info=True)
        raise
    finally:
        duration = datetime.now(timezone.utc) - start_time
        logger.info("Export job %s finished in %s.", job_id, duration)

    return summary


async def _run(
    mbis: List[str],
    resource_types: List[ResourceType],
    out: IO[str],
    settings: Settings,
    since: datetime | None,
    mock: bool,
) -> dict[str, int]:
    if mock:
        mock_client = MockBlueButtonClient(page_size=settings.page_size)
        return await arun_export(mbis, resource_types, out, settings, mock_client, since)

    async with httpx.AsyncClient(
        timeout=settings.request_timeout, follow_redirects=True
    ) as http_client:
        client = HttpBlueButtonClient(settings, client=http_client)
        return await arun_export(mbis, resource_types, out, settings, client, since)


@app.command()
def fetch(
    mbi: List[str] = typer.Option(..., "--mbi", help="Patient MBI. May be repeated."),
    resource_type: Optional[List[ExportType]] = typer.Option(
        None, "--resource-type", help="Resource type to fetch. Defaults to all."
    ),
    since: str = typer.Option(None, help="Only resources updated after this ISO datetime."),
    output: str = typer.Option(None, help="NDJSON output file. Defaults to stdout."),
    config_file: str = typer.Option(None, help="Path to YAML config file."),
    mock: bool = typer.Option(False, help="Use the built-in mock Blue Button client."),
):
    """Fetch resources for one or more patients and write them as NDJSON."""
    settings = Settings(**load_config(config_file))
    types = [ResourceType(t.value) for t in (resource_type or list(ExportType))]
    since_dt = _parse_since(since)

    if output:
        with open(output, "w") as out:
            summary = asyncio.run(_run(mbi, types, out, settings, since_dt, mock))
    else:
        summary = asyncio.run(_run(mbi, types, sys.stdout, settings, since_dt, mock))

    logger.info(
        "Wrote %d resources and %d outcomes.", summary["resources"], summary["outcomes"]
    )


@app.command()
def check(
    config_file: str = typer.Option(None, help="Path to YAML config file."),
):
    """Check connectivity and report the server's FHIR version and snapshot time."""
    settings = Settings(**load_config(config_file))

    async def _check() -> tuple[dict, datetime | None]:
        client = HttpBlueButtonClient(settings)
        try:
            statement = await client.request_capability_statement()
            return statement, await client.request_transaction_time()
        finally:
            await client.aclose()

    statement, snapshot = asyncio.run(_check())
    typer.echo(f"{settings.base_url}: FHIR {statement.get('fhirVersion', 'unknown')}")
    typer.echo(f"Snapshot time: {snapshot.isoformat() if snapshot else 'not reported'}")


def main():
    app()


if __name__ == "__main__":
    main()
