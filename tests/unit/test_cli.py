import io
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from typer.testing import CliRunner

from py_load_bluebutton.cli import _parse_since, app, arun_export
from py_load_bluebutton.client.http import HttpBlueButtonClient
from py_load_bluebutton.client.mock import TEST_PATIENTS
from py_load_bluebutton.config import Settings
from py_load_bluebutton.exceptions import DataConsistencyError, UpstreamServerError
from py_load_bluebutton.models.fhir import BENE_ID_SYSTEM, MBI_SYSTEM, ResourceType

pytestmark = pytest.mark.unit

runner = CliRunner()
MBI = "1SQ3F00AA00"


def test_fetch_with_mock_client_writes_ndjson(tmp_path):
    output = tmp_path / "export.ndjson"

    result = runner.invoke(
        app,
        ["fetch", "--mbi", MBI, "--resource-type", "Coverage", "--mock", "--output", str(output)],
    )

    assert result.exit_code == 0, result.output
    lines = [json.loads(line) for line in output.read_text().splitlines()]
    assert len(lines) == 3
    assert {line["resourceType"] for line in lines} == {"Coverage"}


def test_fetch_defaults_to_all_resource_types(tmp_path):
    output = tmp_path / "export.ndjson"

    result = runner.invoke(app, ["fetch", "--mbi", MBI, "--mock", "--output", str(output)])

    assert result.exit_code == 0, result.output
    types = [json.loads(line)["resourceType"] for line in output.read_text().splitlines()]
    assert types.count("Patient") == 1
    assert types.count("ExplanationOfBenefit") == 45
    assert types.count("Coverage") == 3


def test_fetch_writes_to_stdout():
    result = runner.invoke(
        app, ["fetch", "--mbi", MBI, "--resource-type", "Patient", "--mock"]
    )

    assert result.exit_code == 0
    [line] = [l for l in result.stdout.splitlines() if l.startswith("{")]
    assert json.loads(line)["id"] == TEST_PATIENTS[MBI]


def test_fetch_unknown_patient_fails():
    result = runner.invoke(app, ["fetch", "--mbi", "UNKNOWN", "--mock"])

    assert result.exit_code != 0
    assert isinstance(result.exception, DataConsistencyError)


def test_fetch_with_mock_client_opens_no_http_connection(mocker):
    async_client = mocker.patch("httpx.AsyncClient")

    result = runner.invoke(
        app, ["fetch", "--mbi", MBI, "--resource-type", "Patient", "--mock"]
    )

    assert result.exit_code == 0, result.output
    async_client.assert_not_called()


def test_fetch_rejects_bad_since():
    result = runner.invoke(app, ["fetch", "--mbi", MBI, "--mock", "--since", "yesterday"])
    assert result.exit_code == 2


def test_parse_since():
    assert _parse_since(None) is None
    assert _parse_since("2024-01-01T00:00:00+00:00").year == 2024


@pytest.mark.asyncio
async def test_arun_export_writes_outcome_for_failed_patient(fake_client, make_pages):
    client = fake_client(
        pages=make_pages([2], resource_type="Coverage"),
        first_page_errors=[UpstreamServerError(502)] * 3,
    )
    out = io.StringIO()

    summary = await arun_export(
        ["MBI123", "MBI456"], [ResourceType.COVERAGE], out, Settings(retry_count=3), client
    )

    records = [json.loads(line) for line in out.getvalue().splitlines()]
    assert summary == {"resources": 2, "outcomes": 1}
    assert records[0]["resourceType"] == "OperationOutcome"
    assert records[0]["issue"][0]["location"] == ["Patient", "id", "MBI123"]
    assert [r["resourceType"] for r in records[1:]] == ["Coverage", "Coverage"]


@pytest.mark.asyncio
async def test_arun_export_pins_job_to_server_snapshot(fake_client, make_pages, transaction_time):
    client = fake_client(
        pages=make_pages([1], resource_type="Coverage"), snapshot_time=transaction_time
    )

    await arun_export(["MBI123"], [ResourceType.COVERAGE], io.StringIO(), Settings(), client)

    [(_, window)] = client.calls["coverage"]
    assert window.upper_inclusive == transaction_time


@pytest.mark.asyncio
async def test_arun_export_falls_back_to_local_clock(fake_client, make_pages):
    client = fake_client(pages=make_pages([1], resource_type="Coverage"), snapshot_time=None)
    before = datetime.now(timezone.utc)

    await arun_export(["MBI123"], [ResourceType.COVERAGE], io.StringIO(), Settings(), client)

    [(_, window)] = client.calls["coverage"]
    assert before <= window.upper_inclusive <= datetime.now(timezone.utc)


@pytest.mark.asyncio
async def test_arun_export_against_server_behind_local_clock():
    """A server whose last data load is hours old still exports cleanly over HTTP."""
    base_url = "https://bb.test/v1/fhir"
    snapshot = (datetime.now(timezone.utc) - timedelta(hours=6)).isoformat()
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        meta = {"lastUpdated": snapshot}
        if request.url.path.endswith("/Patient"):
            if request.url.params.get("_summary") == "count":
                return httpx.Response(
                    200, json={"resourceType": "Bundle", "total": 1, "meta": meta}
                )
            patient = {
                "resourceType": "Patient",
                "id": "bene-1",
                "identifier": [
                    {"system": BENE_ID_SYSTEM, "value": "bene-1"},
                    {"system": MBI_SYSTEM, "value": "MBI123"},
                ],
            }
            return httpx.Response(
                200,
                json={
                    "resourceType": "Bundle",
                    "total": 1,
                    "meta": meta,
                    "entry": [{"resource": patient}],
                },
            )
        return httpx.Response(
            200,
            json={
                "resourceType": "Bundle",
                "total": 2,
                "meta": meta,
                "entry": [
                    {"resource": {"resourceType": "Coverage", "id": f"part-{part}"}}
                    for part in ("a", "b")
                ],
            },
        )

    settings = Settings(base_url=base_url)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = HttpBlueButtonClient(settings, client=http_client)
    out = io.StringIO()

    try:
        summary = await arun_export(["MBI123"], [ResourceType.COVERAGE], out, settings, client)
    finally:
        await client.aclose()

    assert summary == {"resources": 2, "outcomes": 0}
    [coverage_request] = [r for r in seen if r.url.path.endswith("/Coverage")]
    assert ("_lastUpdated", f"le{snapshot}") in coverage_request.url.params.multi_items()
