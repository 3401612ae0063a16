"""Tests for the FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from unittest.mock import patch

import httpx
import pytest
from fastapi import status

from ratebook_import.api import create_app
from ratebook_import.services.import_store import get_import_store
from tests.fixtures import (
    MIRRORED_ROWS,
    MIRRORED_SHEET,
    NOTES_ROWS,
    NOTES_SHEET,
    SECTIONED_ROWS,
    SECTIONED_SHEET,
    SPLIT_ROWS,
    SPLIT_SHEET,
    TABULAR_ROWS,
    TABULAR_SHEET,
    TUCSON_ROWS,
    TUCSON_SHEET,
    build_csv,
    build_xlsx,
)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@asynccontextmanager
async def create_test_client(
    patches: dict[str, Any] | None = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Create an async test client with proper lifespan handling.

    Args:
        patches: Optional dictionary of patch targets and values.
    """
    started = [patch(target, value) for target, value in (patches or {}).items()]
    for patcher in started:
        patcher.start()
    try:
        app = create_app()
        async with (
            app.router.lifespan_context(app),
            httpx.AsyncClient(
                transport=httpx.ASGITransport(app=app),
                base_url="http://test",
            ) as client,
        ):
            yield client
    finally:
        for patcher in started:
            patcher.stop()


@pytest.fixture
async def client() -> AsyncIterator[httpx.AsyncClient]:
    """Create an async test client for the FastAPI app."""
    async with create_test_client() as test_client:
        yield test_client


@pytest.fixture(scope="module")
def matrix_content() -> bytes:
    """A workbook with every matrix layout."""
    return build_xlsx(
        {
            TUCSON_SHEET: TUCSON_ROWS,
            SPLIT_SHEET: SPLIT_ROWS,
            SECTIONED_SHEET: SECTIONED_ROWS,
            MIRRORED_SHEET: MIRRORED_ROWS,
        }
    )


@pytest.fixture(scope="module")
def tabular_content() -> bytes:
    """A workbook with one tabular sheet."""
    return build_xlsx({TABULAR_SHEET: TABULAR_ROWS})


async def _import(
    client: httpx.AsyncClient,
    content: bytes,
    file_name: str = "lex.xlsx",
    **fields: str,
) -> httpx.Response:
    data = {"provider_code": "lex", **fields}
    return await client.post(
        "/ratebooks/import",
        files={"file": (file_name, content, XLSX_MIME)},
        data=data,
    )


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    async def test_health_check_returns_200(self, client: httpx.AsyncClient) -> None:
        """Test that health check returns 200 OK."""
        response = await client.get("/health")

        assert response.status_code == status.HTTP_200_OK

    async def test_health_check_response(self, client: httpx.AsyncClient) -> None:
        """Test the health check body."""
        data = (await client.get("/health")).json()

        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        datetime.fromisoformat(data["timestamp"])

    async def test_request_id_header(self, client: httpx.AsyncClient) -> None:
        """A caller's request ID is echoed, otherwise one is generated."""
        echoed = await client.get("/health", headers={"X-Request-ID": "req-42"})
        generated = await client.get("/health")

        assert echoed.headers["X-Request-ID"] == "req-42"
        assert generated.headers["X-Request-ID"]


class TestOpenAPIDocumentation:
    """Tests for OpenAPI documentation endpoints."""

    async def test_docs_endpoint_available(self, client: httpx.AsyncClient) -> None:
        """Test that Swagger UI docs are available."""
        response = await client.get("/docs")
        assert response.status_code == status.HTTP_200_OK

    async def test_openapi_json_available(self, client: httpx.AsyncClient) -> None:
        """Test that the OpenAPI schema lists the ratebook endpoints."""
        response = await client.get("/openapi.json")

        assert response.status_code == status.HTTP_200_OK
        schema = response.json()
        assert schema["info"]["title"] == "Ratebook Smart Import API"
        assert "/ratebooks/import" in schema["paths"]
        assert "/ratebooks/imports/{import_id}" in schema["paths"]


class TestFormatsEndpoint:
    """Tests for GET /ratebooks/formats."""

    async def test_formats(self, client: httpx.AsyncClient) -> None:
        """The importer's vocabulary is listed."""
        response = await client.get("/ratebooks/formats")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["formats"] == ["tabular", "matrix"]
        assert data["providers"][0] == {"code": "lex", "name": "Lex Autolease"}
        assert len(data["providers"]) == 10
        assert data["contract_types"] == [
            "BCH",
            "PCH",
            "CH",
            "CHNM",
            "PCHNM",
            "BSSNL",
            "HCH",
        ]
        assert "cap code" in data["header_patterns"]["cap_code"]
        assert "1+35" in data["payment_profiles"]
        assert 10000 in data["mileage_bands"]


class TestAnalyzeEndpoint:
    """Tests for POST /ratebooks/analyze."""

    async def test_analyze_matrix_workbook(
        self, client: httpx.AsyncClient, matrix_content: bytes
    ) -> None:
        """Each sheet's analysis and a capped preview are returned."""
        response = await client.post(
            "/ratebooks/analyze",
            files={"file": ("lex.xlsx", matrix_content, XLSX_MIME)},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["format"] == "matrix"
        assert data["confidence"] == 90
        assert [sheet["name"] for sheet in data["sheets"]] == [
            TUCSON_SHEET,
            SPLIT_SHEET,
            SECTIONED_SHEET,
            MIRRORED_SHEET,
        ]
        assert all(sheet["format"] == "matrix" for sheet in data["sheets"])
        assert len(data["preview"]) == 20
        assert data["total_preview_rates"] == 36

    async def test_analyze_writes_nothing(
        self, client: httpx.AsyncClient, tabular_content: bytes
    ) -> None:
        """Analysis does not create import batches."""
        await client.post(
            "/ratebooks/analyze",
            files={"file": ("rates.xlsx", tabular_content, XLSX_MIME)},
        )

        assert get_import_store().list_imports() == []

    async def test_analyze_contract_type(
        self, client: httpx.AsyncClient, tabular_content: bytes
    ) -> None:
        """The preview uses the submitted contract type."""
        response = await client.post(
            "/ratebooks/analyze",
            files={"file": ("rates.xlsx", tabular_content, XLSX_MIME)},
            data={"contract_type": "PCH"},
        )

        data = response.json()
        assert data["format"] == "tabular"
        assert {rate["contract_type"] for rate in data["preview"]} == {"PCH"}

    async def test_analyze_csv(self, client: httpx.AsyncClient) -> None:
        """CSV ratebooks are analyzed as a single sheet."""
        response = await client.post(
            "/ratebooks/analyze",
            files={"file": ("rates.csv", build_csv(TABULAR_ROWS), "text/csv")},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["format"] == "tabular"
        assert data["sheets"][0]["name"] == "rates"

    async def test_analyze_rejects_pdf(self, client: httpx.AsyncClient) -> None:
        """Documents that are not spreadsheets are refused."""
        response = await client.post(
            "/ratebooks/analyze",
            files={"file": ("rates.pdf", b"%PDF-1.4\n%%EOF\n", "application/pdf")},
        )

        assert response.status_code == status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
        assert response.json()["error_code"] == "E1003"

    async def test_analyze_rejects_empty_file(self, client: httpx.AsyncClient) -> None:
        """An empty upload is a bad request."""
        response = await client.post(
            "/ratebooks/analyze",
            files={"file": ("rates.xlsx", b"", XLSX_MIME)},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "The uploaded file is empty"


class TestImportEndpoint:
    """Tests for POST /ratebooks/import."""

    async def test_import_matrix_workbook(
        self, client: httpx.AsyncClient, matrix_content: bytes
    ) -> None:
        """A successful import reports counts, ids and sample rates."""
        response = await _import(client, matrix_content)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is True
        assert data["dry_run"] is False
        assert data["format"] == "matrix"
        assert data["total_sheets"] == 4
        assert data["processed_sheets"] == 4
        assert data["total_rates"] == 36
        assert data["success_rates"] == 36
        assert len(data["sample_rates"]) == 10
        assert data["sample_rates"][0]["payment_plan"] == "monthly_in_advance"
        assert data["batch_id"].startswith("smart_lex_")
        assert data["error_code"] is None
        assert get_import_store().get_import(data["import_id"]).is_latest

    async def test_provider_code_is_normalized(
        self, client: httpx.AsyncClient, tabular_content: bytes
    ) -> None:
        """Provider codes are trimmed and lower-cased."""
        response = await _import(client, tabular_content, provider_code="  Ogilvie ")

        data = response.json()
        batch = get_import_store().get_import(data["import_id"])
        assert batch.provider_code == "ogilvie"

    async def test_dry_run(
        self, client: httpx.AsyncClient, matrix_content: bytes
    ) -> None:
        """A dry run returns rates without storing a batch."""
        response = await _import(client, matrix_content, dry_run="true")

        data = response.json()
        assert data["success"] is True
        assert data["dry_run"] is True
        assert data["total_rates"] == 36
        assert data["import_id"] is None
        assert get_import_store().list_imports() == []

    async def test_duplicate_is_reported_in_body(
        self, client: httpx.AsyncClient, tabular_content: bytes
    ) -> None:
        """Re-importing a file is a failed result, not an HTTP error."""
        first = (await _import(client, tabular_content)).json()
        response = await _import(client, tabular_content, "copy.xlsx")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is False
        assert data["error_code"] == "E3003"
        assert data["file_hash"] == first["file_hash"]
        assert data["errors"][0].startswith("Duplicate file")

    async def test_force_reimport(
        self, client: httpx.AsyncClient, tabular_content: bytes
    ) -> None:
        """Forcing a re-import supersedes the earlier batch."""
        first = (await _import(client, tabular_content)).json()
        second = (
            await _import(client, tabular_content, force_reimport="true")
        ).json()

        assert second["success"] is True
        store = get_import_store()
        assert not store.get_import(first["import_id"]).is_latest
        assert store.get_import(second["import_id"]).superseded_import_id == (
            first["import_id"]
        )

    async def test_undetermined_format(self, client: httpx.AsyncClient) -> None:
        """A workbook with no recognisable sheet fails in the body."""
        content = build_xlsx({NOTES_SHEET: NOTES_ROWS})
        response = await _import(client, content)

        data = response.json()
        assert response.status_code == status.HTTP_200_OK
        assert data["success"] is False
        assert data["error_code"] == "E2001"
        assert data["format"] == "unknown"

    async def test_blank_provider_code(
        self, client: httpx.AsyncClient, tabular_content: bytes
    ) -> None:
        """A blank provider code is rejected."""
        response = await _import(client, tabular_content, provider_code="   ")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "E9003"

    async def test_missing_provider_code(
        self, client: httpx.AsyncClient, tabular_content: bytes
    ) -> None:
        """The provider code is a required form field."""
        response = await client.post(
            "/ratebooks/import",
            files={"file": ("rates.xlsx", tabular_content, XLSX_MIME)},
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT

    async def test_empty_file(self, client: httpx.AsyncClient) -> None:
        """An empty upload is a bad request."""
        response = await _import(client, b"")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "The uploaded file is empty"

    async def test_file_too_large(self, tabular_content: bytes) -> None:
        """Uploads over the configured limit get 413."""
        mock_settings = type(
            "MockSettings",
            (),
            {"max_file_size_bytes": 500, "max_file_size_mb": 0},
        )()

        async with create_test_client() as client:
            with patch("ratebook_import.api.settings", mock_settings):
                response = await _import(client, tabular_content)

        assert response.status_code == status.HTTP_413_CONTENT_TOO_LARGE
        data = response.json()
        assert data["error_code"] == "E1002"
        assert "size" in data["detail"].lower()
        assert data["request_id"]


class TestImportQueries:
    """Tests for listing and fetching import batches."""

    async def test_list_imports(
        self,
        client: httpx.AsyncClient,
        tabular_content: bytes,
        matrix_content: bytes,
    ) -> None:
        """Imports are listed and can be filtered by provider."""
        lex = (await _import(client, tabular_content)).json()
        ogilvie = (
            await _import(client, matrix_content, provider_code="ogilvie")
        ).json()

        everything = (await client.get("/ratebooks/imports")).json()
        filtered = (
            await client.get("/ratebooks/imports", params={"provider_code": "OGILVIE"})
        ).json()

        assert {item["import_id"] for item in everything} == {
            lex["import_id"],
            ogilvie["import_id"],
        }
        assert [item["import_id"] for item in filtered] == [ogilvie["import_id"]]
        assert filtered[0]["status"] == "completed"
        assert filtered[0]["success_rows"] == 36

    async def test_get_import(
        self, client: httpx.AsyncClient, tabular_content: bytes
    ) -> None:
        """One import is fetched by id."""
        created = (await _import(client, tabular_content)).json()

        response = await client.get(f"/ratebooks/imports/{created['import_id']}")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["import_id"] == created["import_id"]
        assert data["provider_code"] == "lex"
        assert data["contract_type"] == "BCH"
        assert data["is_latest"] is True

    async def test_get_unknown_import(self, client: httpx.AsyncClient) -> None:
        """Unknown ids are 404 with an error code."""
        response = await client.get("/ratebooks/imports/missing")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        data = response.json()
        assert data["error_code"] == "E3001"
        assert data["detail"] == "Import not found: missing"
