"""
Unit tests for the Meilisearch protocol client.
"""

import json

import httpx
import pytest

from embedsearch.engine.config import InstanceConfig
from embedsearch.errors import EncodingError, EngineError, EngineTimeoutError, ErrorCategory, TransportError
from embedsearch.protocol.filters import Equal, SortBy
from embedsearch.protocol.meilisearch import MeiliSearchClient
from embedsearch.protocol.models import IndexSettings, Query, TaskStatus
from fake_engine import FakeProcess

ENGINE_ADDR = "127.0.0.1:7700"
ENGINE_URL = f"http://{ENGINE_ADDR}"


@pytest.fixture
def engine(cluster, test_data_dir):
    return cluster.serve(ENGINE_ADDR, InstanceConfig(data_directory=test_data_dir), FakeProcess())


@pytest.fixture
async def client(cluster, engine):
    client = MeiliSearchClient(ENGINE_URL, transport=cluster.transport, task_timeout=0.5, task_interval=0.01)
    await client.connect()
    yield client
    await client.close()


async def _wait(client, task):
    return await client.wait_for_task(task.uid)


@pytest.mark.asyncio
async def test_health_check(client, engine):
    assert await client.health_check() is True

    engine.healthy = False
    assert await client.health_check() is False


@pytest.mark.asyncio
async def test_create_and_get_index(client):
    task = await client.create_index("movies", primary_key="id")
    done = await _wait(client, task)

    assert done.status == TaskStatus.SUCCEEDED
    info = await client.get_index("movies")
    assert info.uid == "movies"
    assert info.primary_key == "id"
    assert [i.uid for i in await client.list_indexes()] == ["movies"]


@pytest.mark.asyncio
async def test_create_existing_index_fails_task(client):
    await _wait(client, await client.create_index("movies"))

    done = await _wait(client, await client.create_index("movies"))

    assert done.status == TaskStatus.FAILED
    assert done.engine_error.code == "index_already_exists"
    assert done.engine_error.category == ErrorCategory.CONFLICT


@pytest.mark.asyncio
async def test_documents_are_sent_as_encoded_json(client, engine):
    docs = [{"id": 1, "title": "Alien", "released": True}]

    await client.add_or_replace_documents("movies", docs, primary_key="id")

    request = [r for r in engine.requests if r.method == "POST"][-1]
    assert request.url.path == "/indexes/movies/documents"
    assert request.url.params["primaryKey"] == "id"
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content) == docs


@pytest.mark.asyncio
async def test_encoding_error_sends_nothing(client, engine):
    sent = len(engine.requests)

    with pytest.raises(EncodingError) as exc_info:
        await client.add_or_replace_documents("movies", [{"id": 1, "score": float("nan")}])

    assert exc_info.value.path == "$[0].score"
    assert len(engine.requests) == sent


@pytest.mark.asyncio
async def test_replace_and_update_semantics(client):
    await _wait(client, await client.add_or_replace_documents("movies", [{"id": 1, "title": "Alien", "year": 1979}]))

    await _wait(client, await client.add_or_update_documents("movies", [{"id": 1, "rating": 8.5}]))
    assert await client.get_document("movies", 1) == {"id": 1, "title": "Alien", "year": 1979, "rating": 8.5}

    await _wait(client, await client.add_or_replace_documents("movies", [{"id": 1, "title": "Aliens"}]))
    assert await client.get_document("movies", 1) == {"id": 1, "title": "Aliens"}


@pytest.mark.asyncio
async def test_get_document_fields(client):
    await _wait(client, await client.add_or_replace_documents("movies", [{"id": 1, "title": "Alien", "year": 1979}]))

    assert await client.get_document("movies", 1, fields=["title"]) == {"title": "Alien"}


@pytest.mark.asyncio
async def test_missing_document_raises_not_found(client):
    await _wait(client, await client.create_index("movies"))

    with pytest.raises(EngineError) as exc_info:
        await client.get_document("movies", "nope")

    assert exc_info.value.code == "document_not_found"
    assert exc_info.value.status_code == 404
    assert exc_info.value.is_not_found


@pytest.mark.asyncio
async def test_missing_index_raises_not_found(client):
    with pytest.raises(EngineError) as exc_info:
        await client.get_index("ghost")

    assert exc_info.value.code == "index_not_found"


@pytest.mark.asyncio
async def test_delete_documents(client):
    docs = [{"id": i, "title": f"movie {i}"} for i in range(5)]
    await _wait(client, await client.add_or_replace_documents("movies", docs))

    await _wait(client, await client.delete_documents("movies", [0, 1]))
    await _wait(client, await client.delete_document("movies", 2))
    page = await client.get_documents("movies")
    assert [d["id"] for d in page.results] == [3, 4]
    assert page.total == 2

    await _wait(client, await client.delete_all_documents("movies"))
    assert (await client.get_stats("movies")).number_of_documents == 0


@pytest.mark.asyncio
async def test_search_payload_and_result(client, engine):
    docs = [
        {"id": 1, "title": "Alien", "genre": "horror"},
        {"id": 2, "title": "Aliens", "genre": "action"},
        {"id": 3, "title": "Heat", "genre": "crime"},
    ]
    await _wait(client, await client.add_or_replace_documents("movies", docs))

    query = Query(q="alien", filter=Equal("genre", "horror"), sort=[SortBy.desc("year")])
    result = await client.search("movies", query)

    assert engine.last_search == {
        "q": "alien",
        "offset": 0,
        "filter": 'genre = "horror"',
        "sort": ["year:desc"],
        "showRankingScore": True,
    }
    # The fake engine does not evaluate filters
    assert [h.document["id"] for h in result.hits] == [1, 2]
    assert result.hits[0].ranking_score == 1.0
    assert "_rankingScore" not in result.hits[0].document
    assert result.estimated_total_hits == 2


@pytest.mark.asyncio
async def test_settings_roundtrip(client):
    await _wait(client, await client.create_index("movies"))

    settings = IndexSettings(filterable_attributes=["genre"], sortable_attributes=["year"])
    await _wait(client, await client.update_settings("movies", settings))

    current = await client.get_settings("movies")
    assert current.filterable_attributes == ["genre"]
    assert current.sortable_attributes == ["year"]
    assert current.searchable_attributes == ["*"]

    await _wait(client, await client.reset_settings("movies"))
    assert (await client.get_settings("movies")).filterable_attributes == []


@pytest.mark.asyncio
async def test_wait_for_task_times_out(client, engine):
    engine.paused = True
    task = await client.create_index("movies")

    with pytest.raises(EngineTimeoutError) as exc_info:
        await client.wait_for_task(task.uid, timeout=0.05)

    assert exc_info.value.timeout == 0.05
    assert isinstance(exc_info.value, TimeoutError)


@pytest.mark.asyncio
async def test_wait_for_task_returns_failed_task(client):
    task = await client.add_or_replace_documents("movies", [{"title": "No id"}])

    done = await client.wait_for_task(task.uid)

    assert done.status == TaskStatus.FAILED
    with pytest.raises(EngineError):
        done.raise_for_status()


@pytest.mark.asyncio
async def test_unreachable_engine_raises_transport_error(cluster):
    client = MeiliSearchClient("http://127.0.0.1:9", transport=cluster.transport)

    with pytest.raises(TransportError) as exc_info:
        await client.get_index("movies")

    assert exc_info.value.url == "http://127.0.0.1:9"
    assert await client.health_check() is False
    await client.close()


@pytest.mark.asyncio
async def test_auth_with_master_key(cluster, test_data_dir):
    config = InstanceConfig(data_directory=test_data_dir, master_key="secret")
    cluster.serve("127.0.0.1:7701", config, FakeProcess())

    anonymous = MeiliSearchClient("http://127.0.0.1:7701", transport=cluster.transport)
    with pytest.raises(EngineError) as exc_info:
        await anonymous.list_indexes()
    assert exc_info.value.category == ErrorCategory.AUTH

    authorized = MeiliSearchClient("http://127.0.0.1:7701", api_key="secret", transport=cluster.transport)
    assert await authorized.list_indexes() == []

    await anonymous.close()
    await authorized.close()


@pytest.mark.asyncio
async def test_client_reconnects_after_close(client):
    await client.close()
    assert client.client is None

    assert await client.health_check() is True
    assert isinstance(client.client, httpx.AsyncClient)


@pytest.mark.asyncio
async def test_index_uid_is_path_quoted(client, engine):
    await client.create_index("my index")
    await client.get_stats("my index")

    assert engine.requests[-1].url.raw_path == b"/indexes/my%20index/stats"


@pytest.mark.asyncio
async def test_swap_indexes_exchanges_contents(client, engine):
    await _wait(client, await client.add_or_replace_documents("movies", [{"id": 1, "title": "Alien"}]))
    await _wait(client, await client.add_or_replace_documents("staging", [{"id": 2, "title": "Heat"}]))

    done = await _wait(client, await client.swap_indexes([("movies", "staging")]))

    assert done.succeeded
    assert json.loads(engine.requests[-2].content) == [{"indexes": ["movies", "staging"]}]
    assert (await client.get_document("movies", 2)) == {"id": 2, "title": "Heat"}
    assert (await client.get_document("staging", 1)) == {"id": 1, "title": "Alien"}


@pytest.mark.asyncio
async def test_settings_skip_unmodeled_engine_keys(client):
    await _wait(client, await client.create_index("movies"))

    settings = await client.get_settings("movies")

    assert settings.searchable_attributes == ["*"]
    assert settings.typo_tolerance.min_word_size_for_typos.one_typo == 5
    assert "pagination" not in settings.to_payload()


def _serving(body: bytes, status: int = 200) -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(status, content=body))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [b"<html>gateway</html>", b'{"unexpected": true}', b"[1, 2]"],
)
async def test_malformed_success_body_raises_engine_error(body):
    client = MeiliSearchClient(ENGINE_URL, transport=_serving(body, status=202))

    with pytest.raises(EngineError) as exc_info:
        await client.create_index("movies")

    assert exc_info.value.code == "malformed_response"
    assert exc_info.value.status_code == 202
    assert exc_info.value.category == ErrorCategory.INTERNAL
    await client.close()


@pytest.mark.asyncio
async def test_malformed_read_bodies_raise_engine_error():
    client = MeiliSearchClient(ENGINE_URL, transport=_serving(b'{"hits": 3}'))

    with pytest.raises(EngineError):
        await client.search("movies", Query(q="alien"))
    with pytest.raises(EngineError):
        await client.get_task(1)
    with pytest.raises(EngineError):
        await client.get_index("movies")
    await client.close()
