# === NAVMAP v1 ===
# {
#   "module": "tests.model_library.test_library",
#   "purpose": "Integration tests for the ModelLibrary facade",
#   "sections": [
#     {"id": "startup", "name": "Startup Scan", "anchor": "STA", "kind": "tests"},
#     {"id": "install", "name": "Installation", "anchor": "INS", "kind": "tests"},
#     {"id": "removal", "name": "Removal", "anchor": "REM", "kind": "tests"},
#     {"id": "catalog", "name": "Catalog Reconciliation", "anchor": "CAT", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Integration tests for :class:`LocalMT.ModelLibrary.library.ModelLibrary`.

The facade never raises library errors; every failure below is asserted via
the return value plus the ``error`` event it publishes.
"""

from __future__ import annotations

import asyncio
import io
from pathlib import Path

import pytest

from LocalMT.ModelLibrary import events
from LocalMT.ModelLibrary import library as library_mod
from LocalMT.ModelLibrary.errors import ConfigurationError
from LocalMT.ModelLibrary.library import ModelLibrary, RemovalState
from LocalMT.ModelLibrary.testing import (
    CatalogServer,
    build_package_archive,
    catalog_document,
    catalog_entry,
    make_settings,
    manifest_payload,
    write_package_archive,
    write_package_dir,
)


@pytest.fixture
def server() -> CatalogServer:
    return CatalogServer(
        document=catalog_document(
            [
                catalog_entry("ende", "en", "de", version=1.3),
                catalog_entry("deen", "de", "en", version=1.0),
            ]
        )
    )


@pytest.fixture
def lib(settings, bus, server) -> ModelLibrary:
    return ModelLibrary(settings, bus=bus, fetch=server.fetcher(settings.catalog))


def _refresh(lib: ModelLibrary) -> None:
    async def scenario() -> None:
        await lib.refresh_catalog_and_wait()
        await lib.fetcher.fetch.aclose()

    asyncio.run(scenario())


# --- Startup Scan -------------------------------------------------------------


def test_startup_load_scans_managed_and_search_dirs(lib, settings) -> None:
    write_package_dir(settings.managed_dir, "ende-1", manifest_payload("ende", "en", "de"))
    write_package_archive(settings.managed_dir / "en-es.tar.gz", manifest_payload("enes", "en", "es"))
    write_package_dir(settings.search_dir, "deen-1", manifest_payload("deen", "de", "en"))
    write_package_archive(settings.search_dir / "es-en.tar.gz", manifest_payload("esen", "es", "en"))

    results = lib.startup_load()

    assert len(results) == 2
    assert [r.short_name for r in lib.installed_packages] == ["deen", "ende"]
    assert lib.pending_archives == ("en-es.tar.gz",)


def test_startup_load_survives_corrupt_packages(lib, settings, bus) -> None:
    write_package_dir(settings.managed_dir, "broken", "{nope")
    write_package_dir(settings.managed_dir, "ende-1", manifest_payload())

    lib.startup_load()

    assert [r.short_name for r in lib.installed_packages] == ["ende"]
    assert bus.of_type(events.ERROR)[0].category == "CorruptManifestError"


def test_rescan_does_not_duplicate_archives(lib, settings) -> None:
    write_package_archive(settings.managed_dir / "en-de.tar.gz", manifest_payload())

    lib.startup_load()
    lib.startup_load()

    assert lib.pending_archives == ("en-de.tar.gz",)


def test_managed_dir_blocked_by_file(tmp_path: Path) -> None:
    (tmp_path / "models").write_text("", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ModelLibrary(make_settings(tmp_path))


# --- Installation -------------------------------------------------------------


def test_install_file_from_managed_dir_clears_pending_archive(lib, settings) -> None:
    archive = write_package_archive(settings.managed_dir / "en-de.tar.gz", manifest_payload())
    lib.startup_load()

    record = lib.install_file(archive)

    assert record is not None
    assert lib.pending_archives == ()
    assert lib.installed_packages == (record,)


def test_failed_install_returns_none_and_emits_error(lib, bus) -> None:
    payload = build_package_archive(None, files={})

    assert lib.install(io.BytesIO(payload), "empty.tar.gz") is None

    errors = bus.of_type(events.ERROR)
    assert len(errors) == 1
    assert errors[0].category == "InstallError"
    assert "Did not extract any files" in errors[0].message
    assert errors[0].payload["archive"] == "empty.tar.gz"
    assert lib.installed_packages == ()


def test_install_missing_file_returns_none(lib, tmp_path, bus) -> None:
    assert lib.install_file(tmp_path / "missing.tar.gz") is None
    assert bus.of_type(events.ERROR)[0].category == "ExtractionError"


# --- Removal ------------------------------------------------------------------


def test_remove_managed_package(lib, settings, bus) -> None:
    record = lib.install(io.BytesIO(build_package_archive(manifest_payload())), "en-de.tar.gz")
    bus.events.clear()

    assert lib.remove(record) is True

    assert not Path(record.install_path).exists()
    assert lib.installed_packages == ()
    done = bus.of_type(events.REMOVE_DONE)
    assert done[0].payload["state"] == RemovalState.FULLY_DELETED.value
    assert bus.of_type(events.ERROR) == []


def test_remove_refuses_packages_outside_managed_dir(lib, settings, bus) -> None:
    outside = write_package_dir(settings.search_dir, "deen-1", manifest_payload("deen", "de", "en"))
    lib.startup_load()
    record = lib.registry.find(("deen", "de", "en"))

    assert lib.is_managed(record) is False
    assert lib.remove(record) is False

    assert (outside / "model_info.json").is_file()
    assert len(lib.installed_packages) == 1
    assert bus.of_type(events.ERROR)[0].category == "RemovalError"


def test_remove_refuses_symlink_escape(lib, settings, tmp_path) -> None:
    target = write_package_dir(tmp_path / "elsewhere", "ende-1", manifest_payload())
    (settings.managed_dir / "ende-link").symlink_to(target, target_is_directory=True)
    lib.startup_load()
    record = lib.registry.find(("ende", "en", "de"))

    assert lib.remove(record) is False
    assert (target / "model_info.json").is_file()


def test_remove_when_directory_deletion_fails(lib, bus, monkeypatch) -> None:
    record = lib.install(io.BytesIO(build_package_archive(manifest_payload())), "en-de.tar.gz")
    package_dir = Path(record.install_path)

    def failing_rmtree(path, *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(path))

    with monkeypatch.context() as patch:
        patch.setattr(library_mod.shutil, "rmtree", failing_rmtree)
        assert lib.remove(record) is True

    assert package_dir.is_dir()
    assert not (package_dir / "model_info.json").exists()
    assert lib.installed_packages == ()
    assert bus.of_type(events.REMOVE_DONE)[0].payload["state"] == RemovalState.MANIFEST_DELETED.value
    assert bus.of_type(events.ERROR)[0].category == "RemovalError"

    lib.startup_load()
    assert lib.installed_packages == ()


def test_remove_when_manifest_cannot_be_deleted(lib, settings, bus) -> None:
    package_dir = write_package_dir(settings.managed_dir, "ende-1", manifest_payload())
    lib.startup_load()
    record = lib.registry.find(("ende", "en", "de"))
    (package_dir / "model_info.json").unlink()
    (package_dir / "model_info.json").mkdir()

    assert lib.remove(record) is False

    assert package_dir.is_dir()
    assert len(lib.installed_packages) == 1
    assert bus.of_type(events.REMOVE_DONE) == []


def test_remove_refuses_record_superseded_by_reinstall(lib, settings, bus) -> None:
    first = lib.install(io.BytesIO(build_package_archive(manifest_payload(version=1.0))), "en-de.tar.gz")
    second = lib.install(io.BytesIO(build_package_archive(manifest_payload(version=1.1))), "en-de.tar.gz")
    assert first.install_path != second.install_path
    bus.events.clear()

    assert lib.remove(first) is False

    assert Path(second.install_path).is_dir()
    assert Path(first.install_path).is_dir()
    assert [r.install_path for r in lib.installed_packages] == [second.install_path]
    assert bus.of_type(events.REMOVE_DONE) == []
    assert bus.of_type(events.ERROR)[0].category == "RemovalError"

    assert lib.remove(lib.registry.find(("ende", "en", "de"))) is True
    assert not Path(second.install_path).exists()
    assert lib.installed_packages == ()


def test_is_managed_rejects_remote_records_and_the_root(lib, settings) -> None:
    from LocalMT.ModelLibrary.models import PackageRecord

    remote = PackageRecord(short_name="ende", download_url="https://models.example.org/ende.tar.gz")
    root = PackageRecord(short_name="ende", install_path=str(settings.managed_dir))

    assert lib.is_managed(remote) is False
    assert lib.is_managed(root) is False


# --- Catalog Reconciliation ---------------------------------------------------


def test_catalog_refresh_reconciles_installed_packages(lib, settings, server) -> None:
    write_package_dir(settings.managed_dir, "ende-1", manifest_payload("ende", "en", "de", version=1.2))
    lib.startup_load()

    _refresh(lib)

    assert len(server.requests) == 1
    assert [r.short_name for r in lib.remote_packages] == ["deen", "ende"]
    assert [r.short_name for r in lib.new_packages] == ["deen"]
    assert [r.short_name for r in lib.outdated_packages] == ["ende"]
    assert lib.installed_packages[0].remote_version == 1.3
    assert lib.is_fetching is False


def test_installing_update_clears_outdated(lib, settings) -> None:
    write_package_dir(settings.managed_dir, "ende-1", manifest_payload(version=1.2))
    lib.startup_load()
    _refresh(lib)

    lib.install(io.BytesIO(build_package_archive(manifest_payload(version=1.3))), "en-de.tar.gz")

    assert lib.outdated_packages == ()
    assert lib.installed_packages[0].local_version == 1.3
    assert lib.installed_packages[0].remote_version == 1.3


def test_removing_package_makes_it_new_again(lib, settings) -> None:
    record = lib.install(io.BytesIO(build_package_archive(manifest_payload(version=1.3))), "en-de.tar.gz")
    _refresh(lib)
    assert [r.short_name for r in lib.new_packages] == ["deen"]

    lib.remove(record)

    assert [r.short_name for r in lib.new_packages] == ["deen", "ende"]


def test_failed_refresh_keeps_previous_catalog(lib, server, bus) -> None:
    _refresh(lib)
    server.status_code = 500

    _refresh(lib)

    assert len(lib.remote_packages) == 2
    assert bus.of_type(events.ERROR)[0].category == "NetworkError"


def test_refresh_catalog_hands_back_the_running_task(lib, server) -> None:
    async def scenario() -> None:
        task = lib.refresh_catalog()
        assert isinstance(task, asyncio.Task)
        assert lib.is_fetching is True
        assert lib.refresh_catalog() is None
        await task
        await lib.fetcher.fetch.aclose()

    asyncio.run(scenario())

    assert len(server.requests) == 1
    assert len(lib.remote_packages) == 2
