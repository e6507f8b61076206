"""
Unit tests for the Omie API extractor
"""

import json
import pytest
import httpx
from core.exceptions import APIExtractionError, ErrorKind, RetryExhaustedError
from ingestion.extractors.api_extractor import OmieAPIExtractor
from ingestion.retry import RetryPolicy

BASE_URL = "https://app.omie.com.br/api/v1"


def movimentos_page(page: int, total_pages: int, size: int = 2):
    return {
        "nPagina": page,
        "nTotPaginas": total_pages,
        "nRegistros": size,
        "nTotRegistros": total_pages * size,
        "movimentos": [
            {"detalhes": {"nCodTitulo": page * 100 + i}} for i in range(size)
        ]
    }


def make_extractor(handler, entity="movimentos_financeiros", max_attempts=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OmieAPIExtractor(
        entity=entity,
        base_url=BASE_URL,
        app_key="key",
        app_secret="secret",
        records_per_page=2,
        retry_policy=RetryPolicy(max_attempts=max_attempts, initial_delay=0),
        client=client
    )


class TestOmieAPIExtractor:
    """Test pagination and failure classification"""

    @pytest.mark.asyncio
    async def test_fetch_all_follows_pages(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            requests.append(body)
            page = body["param"][0]["nPagina"]
            return httpx.Response(200, json=movimentos_page(page, total_pages=3))

        extractor = make_extractor(handler)
        records = await extractor.fetch_all()

        assert len(records) == 6
        assert [r["detalhes"]["nCodTitulo"] for r in records][:2] == [100, 101]
        assert [b["param"][0]["nPagina"] for b in requests] == [1, 2, 3]
        assert requests[0]["call"] == "ListarMovimentos"
        assert requests[0]["app_key"] == "key"
        assert requests[0]["app_secret"] == "secret"
        assert requests[0]["param"][0]["nRegPorPagina"] == 2

    @pytest.mark.asyncio
    async def test_posts_to_entity_path(self):
        urls = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            return httpx.Response(200, json={
                "pagina": 1,
                "total_de_paginas": 1,
                "categoria_cadastro": [{"codigo": "1.01.01", "descricao": "Vendas"}]
            })

        extractor = make_extractor(handler, entity="categorias")
        page = await extractor.fetch_page(1)

        assert urls == [f"{BASE_URL}/geral/categorias/"]
        assert page.items == [{"codigo": "1.01.01", "descricao": "Vendas"}]
        assert page.done

    @pytest.mark.asyncio
    async def test_empty_page_ends_pagination(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"nPagina": 1, "nTotPaginas": 5, "movimentos": []})

        extractor = make_extractor(handler)
        page = await extractor.fetch_page(1)

        assert page.items == []
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            if calls["count"] == 1:
                return httpx.Response(503, text="Service Unavailable")
            return httpx.Response(200, json=movimentos_page(1, total_pages=1))

        extractor = make_extractor(handler)
        page = await extractor.fetch_page(1)

        assert calls["count"] == 2
        assert len(page.items) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_transport_retries(self):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(429, text="Too Many Requests")

        extractor = make_extractor(handler, max_attempts=2)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await extractor.fetch_page(1)

        assert calls["count"] == 2
        assert exc_info.value.attempts == 2
        assert exc_info.value.last_error.kind == ErrorKind.TRANSIENT

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            if calls["count"] < 3:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json=movimentos_page(1, total_pages=1))

        extractor = make_extractor(handler)
        page = await extractor.fetch_page(1)

        assert calls["count"] == 3
        assert len(page.items) == 2

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        extractor = make_extractor(handler, max_attempts=1)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await extractor.fetch_page(1)

        assert isinstance(exc_info.value.last_error, APIExtractionError)
        assert exc_info.value.last_error.message == "Network error"

    @pytest.mark.asyncio
    async def test_client_error_is_permanent(self):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(400, json={"faultstring": "ERROR: Tag [nPagina] invalida"})

        extractor = make_extractor(handler)

        with pytest.raises(APIExtractionError) as exc_info:
            await extractor.fetch_page(1)

        assert calls["count"] == 1
        assert exc_info.value.kind == ErrorKind.PERMANENT
        assert exc_info.value.context["status_code"] == 400

    @pytest.mark.asyncio
    async def test_xml_body_is_permanent(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                text='<?xml version="1.0"?><SOAP-ENV:Fault>invalid app_key</SOAP-ENV:Fault>'
            )

        extractor = make_extractor(handler)

        with pytest.raises(APIExtractionError) as exc_info:
            await extractor.fetch_page(1)

        assert exc_info.value.kind == ErrorKind.PERMANENT
        assert "XML" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_invalid_json_is_permanent(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        extractor = make_extractor(handler)

        with pytest.raises(APIExtractionError) as exc_info:
            await extractor.fetch_page(1)

        assert exc_info.value.kind == ErrorKind.PERMANENT

    @pytest.mark.asyncio
    async def test_close_keeps_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
        extractor = OmieAPIExtractor(client=client)

        await extractor.close()

        assert not client.is_closed
        await client.aclose()

    def test_unknown_entity(self):
        with pytest.raises(ValueError):
            OmieAPIExtractor(entity="pedidos")
