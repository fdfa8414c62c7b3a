"""
Integration tests against a real Meilisearch binary.

Skipped unless ``meilisearch`` is on PATH.
"""

import asyncio
import shutil

import pytest

from embedsearch.errors import InstanceNotFoundError, InstanceStartupError
from embedsearch.instances.manager import InstanceManager
from embedsearch.protocol.filters import Equal, SortBy

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("meilisearch") is None, reason="meilisearch binary not on PATH"),
]

MOVIES = [
    {"id": 1, "title": "Jurassic Park", "genre": "adventure", "year": 1993},
    {"id": 2, "title": "Alien", "genre": "horror", "year": 1979},
    {"id": 3, "title": "Aliens", "genre": "action", "year": 1986},
    {"id": 4, "title": "The Thing", "genre": "horror", "year": 1982},
]


@pytest.fixture
async def manager(tmp_path):
    manager = InstanceManager(data_root=tmp_path / "instances")
    yield manager
    await manager.shutdown()


async def _ready(index, task):
    return (await index.wait_for_task(task, timeout=30)).raise_for_status()


@pytest.mark.asyncio
async def test_typo_tolerant_search(manager):
    instance = await manager.default_instance()
    movies = instance.index("movies")

    await _ready(movies, await movies.add_documents(MOVIES))
    result = await movies.search("jarissic park")

    assert result.hits
    assert result.hits[0].document["title"] == "Jurassic Park"


@pytest.mark.asyncio
async def test_filter_and_sort(manager):
    movies = (await manager.get_or_create_instance("catalog")).index("movies")
    await _ready(
        movies,
        await movies.update_settings({"filterable_attributes": ["genre"], "sortable_attributes": ["year"]}),
    )
    await _ready(movies, await movies.add_documents(MOVIES))

    result = await movies.search(filter=Equal("genre", "horror"), sort=[SortBy.desc("year")])

    assert [d["title"] for d in result.documents] == ["The Thing", "Alien"]


@pytest.mark.asyncio
async def test_data_survives_restart(manager):
    movies = (await manager.get_or_create_instance("persist")).index("movies")
    await _ready(movies, await movies.add_documents(MOVIES))

    await manager.destroy_instance("persist")
    with pytest.raises(InstanceNotFoundError):
        await movies.stats()

    await manager.get_or_create_instance("persist")
    assert await movies.number_of_documents() == len(MOVIES)


@pytest.mark.asyncio
async def test_directory_is_exclusive(manager, tmp_path):
    directory = tmp_path / "shared"
    await manager.get_or_create_instance("first", directory)

    with pytest.raises(InstanceStartupError) as exc_info:
        await manager.get_or_create_instance("second", directory)

    assert exc_info.value.reason == InstanceStartupError.DIRECTORY_LOCKED


@pytest.mark.asyncio
async def test_concurrent_instances(manager):
    books, movies = await asyncio.gather(
        manager.get_or_create_instance("books"),
        manager.get_or_create_instance("films"),
    )

    assert books.url != movies.url
    assert await books.health_check()
    assert await movies.health_check()
