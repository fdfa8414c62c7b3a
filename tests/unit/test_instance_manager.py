"""
Unit tests for the instance registry.
"""

import asyncio

import pytest

from embedsearch.errors import InstanceNotFoundError, InstanceStartupError, TransportError
from embedsearch.instances import manager as manager_module
from embedsearch.instances.manager import DEFAULT_INSTANCE


@pytest.mark.asyncio
async def test_get_or_create_starts_engine_in_default_directory(manager, launcher, tmp_path):
    instance = await manager.get_or_create_instance("books")

    assert instance.name == "books"
    assert instance.data_directory == tmp_path / "instances" / "books"
    assert instance.is_live
    assert await instance.health_check()
    assert manager.list_instances() == {"books"}
    assert len(launcher.launches) == 1


@pytest.mark.asyncio
async def test_lookup_returns_same_instance(manager, launcher):
    first = await manager.get_or_create_instance("books")
    second = await manager.get_or_create_instance("books")

    assert first is second
    assert manager.get_instance("books") is first
    assert len(launcher.launches) == 1


@pytest.mark.asyncio
async def test_concurrent_creation_shares_one_startup(manager, launcher):
    launcher.delay = 0.05

    instances = await asyncio.gather(*(manager.get_or_create_instance("shared") for _ in range(5)))

    assert all(i is instances[0] for i in instances)
    assert len(launcher.launches) == 1


@pytest.mark.asyncio
async def test_names_are_independent(manager, launcher):
    books, movies = await asyncio.gather(
        manager.get_or_create_instance("books"),
        manager.get_or_create_instance("movies"),
    )

    assert books.url != movies.url
    assert books.data_directory != movies.data_directory
    assert len(launcher.launches) == 2


@pytest.mark.asyncio
async def test_explicit_data_directory(manager, tmp_path):
    directory = tmp_path / "custom"

    instance = await manager.get_or_create_instance("books", directory)

    assert instance.data_directory == directory
    assert (directory / "engine.lock").exists()


@pytest.mark.asyncio
async def test_same_name_different_directory_conflicts(manager, tmp_path):
    await manager.get_or_create_instance("books", tmp_path / "a")

    with pytest.raises(InstanceStartupError) as exc_info:
        await manager.get_or_create_instance("books", tmp_path / "b")

    assert exc_info.value.reason == InstanceStartupError.NAME_CONFLICT


@pytest.mark.asyncio
async def test_two_names_cannot_share_a_directory(manager, launcher, tmp_path):
    directory = tmp_path / "shared"
    await manager.get_or_create_instance("books", directory)

    with pytest.raises(InstanceStartupError) as exc_info:
        await manager.get_or_create_instance("movies", directory)

    assert exc_info.value.reason == InstanceStartupError.DIRECTORY_LOCKED
    assert manager.get_instance("movies") is None
    assert len(launcher.launches) == 1


@pytest.mark.asyncio
async def test_failed_startup_is_not_registered_and_can_retry(manager, launcher):
    launcher.error = InstanceStartupError(InstanceStartupError.BINARY_NOT_FOUND, "missing")

    with pytest.raises(InstanceStartupError):
        await manager.get_or_create_instance("books")
    assert manager.list_instances() == set()

    launcher.error = None
    instance = await manager.get_or_create_instance("books")
    assert instance.is_live


@pytest.mark.asyncio
async def test_destroy_invalidates_handles(manager, launcher):
    instance = await manager.get_or_create_instance("books")
    handle = instance.index("novels")

    await manager.destroy_instance("books")

    assert manager.get_instance("books") is None
    assert not instance.is_live
    assert launcher.processes[0].terminated
    with pytest.raises(InstanceNotFoundError):
        await handle.search("anything")
    with pytest.raises(InstanceNotFoundError):
        manager.require_instance("books")


@pytest.mark.asyncio
async def test_destroy_unknown_name_is_noop(manager):
    await manager.destroy_instance("ghost")
    await manager.destroy_instance("ghost")
    assert manager.list_instances() == set()


@pytest.mark.asyncio
async def test_name_locks_do_not_outlive_their_users(manager, launcher):
    await asyncio.gather(*(manager.get_or_create_instance(f"tenant-{i}") for i in range(3)))
    await asyncio.gather(*(manager.get_or_create_instance("tenant-0") for _ in range(3)))

    for i in range(3):
        await manager.destroy_instance(f"tenant-{i}")
    await manager.destroy_instance("ghost")

    assert manager._locks == {}
    assert manager._lock_users == {}
    assert len(launcher.launches) == 3


@pytest.mark.asyncio
async def test_recreate_after_destroy_keeps_data(manager, launcher):
    instance = await manager.get_or_create_instance("books")
    novels = instance.index("novels")
    await novels.wait_for_task(await novels.add_documents([{"id": 1, "title": "Dune"}]))
    await manager.destroy_instance("books")

    reopened = await manager.get_or_create_instance("books")

    assert reopened is not instance
    assert len(launcher.launches) == 2
    assert await reopened.index("novels").get_document(1) == {"id": 1, "title": "Dune"}


@pytest.mark.asyncio
async def test_handle_from_before_destroy_reaches_new_instance(manager):
    handle = manager.get_index("novels", "books")
    await manager.get_or_create_instance("books")

    task = await handle.add_documents([{"id": 1}])

    assert (await handle.wait_for_task(task)).succeeded


@pytest.mark.asyncio
async def test_crashed_engine_surfaces_transport_error_then_restarts(manager, launcher):
    instance = await manager.get_or_create_instance("books")
    launcher.processes[0].exit(137)

    assert not instance.is_live
    with pytest.raises(TransportError):
        await instance.index("novels").stats()

    replacement = await manager.get_or_create_instance("books")
    assert replacement is not instance
    assert replacement.is_live
    assert len(launcher.launches) == 2


@pytest.mark.asyncio
async def test_shutdown_destroys_everything(manager, launcher, tmp_path):
    books = await manager.get_or_create_instance("books")
    movies = await manager.get_or_create_instance("movies")

    await manager.shutdown()

    assert manager.list_instances() == set()
    assert not books.is_live and not movies.is_live
    assert not (books.data_directory / "engine.lock").exists()
    assert not (movies.data_directory / "engine.lock").exists()
    assert all(p.terminated for p in launcher.processes)


@pytest.mark.asyncio
async def test_default_instance(manager):
    instance = await manager.default_instance()
    assert instance.name == DEFAULT_INSTANCE
    assert await manager.default_instance() is instance


@pytest.mark.asyncio
async def test_module_level_registry(manager, monkeypatch):
    monkeypatch.setattr(manager_module, "_manager", manager)

    instance = await manager_module.get_or_create_instance("books")
    assert manager_module.get_instance("books") is instance
    assert manager_module.list_instances() == {"books"}
    assert manager_module.get_index("novels", "books").instance_name == "books"
    assert (await manager_module.default_instance()).name == DEFAULT_INSTANCE

    await manager_module.destroy_instance("books")
    assert manager_module.get_instance("books") is None

    await manager_module.shutdown_all()
    assert manager_module._manager is None
    assert manager.list_instances() == set()


def test_get_instance_manager_is_lazy(monkeypatch):
    monkeypatch.setattr(manager_module, "_manager", None)

    created = manager_module.get_instance_manager()

    assert manager_module.get_instance_manager() is created
    assert created.list_instances() == set()
