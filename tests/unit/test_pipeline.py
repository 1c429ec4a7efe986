"""
Unit tests for `BlobSyncPipeline`.

The pipeline is given a session factory that returns an in-memory session,
so the full scan, list, diff, upload and purge flow runs without a network.
"""

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

import pytest
from fakes import CountingSigner, FakeBlobStore, FakePublisher, FakeSession, sha256_of

from blob_sync.config import AppConfig, Config, EndpointConfig
from blob_sync.exceptions import ConfigError, NetworkError, ScanError
from blob_sync.models import DownloadResult, FileList
from blob_sync.pipeline import BlobSyncPipeline, SyncReport

SiteFactory = Callable[[Dict[str, str]], Path]


@pytest.fixture
def session(
    endpoints: Tuple[EndpointConfig, ...],
    blob_store: FakeBlobStore,
    publisher: FakePublisher,
    signer: CountingSigner,
) -> FakeSession:
    return FakeSession(endpoints, blob_store, publisher, signer)


@pytest.fixture
def make_pipeline(
    session: FakeSession, test_config: Config
) -> Callable[..., BlobSyncPipeline]:
    """
    Provide a factory for pipelines wired to the in-memory session.

    Keyword arguments are applied to the test config's `AppConfig`.
    """
    requested: List[bool] = []

    def _factory(config: Config, require_signer: bool = True) -> FakeSession:
        requested.append(require_signer)
        return session

    def _creator(**app_overrides: Any) -> BlobSyncPipeline:
        config: Config = replace(test_config, app=replace(test_config.app, **app_overrides))
        pipeline: BlobSyncPipeline = BlobSyncPipeline(
            config, asyncio.Event(), session_factory=_factory
        )
        pipeline.requested_signer = requested  # type: ignore[attr-defined]
        return pipeline

    return _creator


@pytest.mark.asyncio
async def test_run_uploads_new_and_changed_files_only(
    make_pipeline: Callable[..., BlobSyncPipeline],
    site_factory: SiteFactory,
    publisher: FakePublisher,
    blob_store: FakeBlobStore,
) -> None:
    """
    Tests a publish run against an existing publication.

    Arrange:
        - A local site with an unchanged, a changed and a new file.
        - Remote records for the unchanged and changed files plus one stale file.
    Act:
        - Run the pipeline without purge.
    Assert:
        - Only the changed and new files are uploaded and published.
        - The stale record is reported for deletion but left in place.
    """
    # Arrange
    root: Path = site_factory(
        {"index.html": "home", "about.html": "about v2", "new.html": "brand new"}
    )
    publisher.add("/index.html", sha256_of(b"home"))
    publisher.add("/about.html", sha256_of(b"about v1"))
    publisher.add("/stale.html", sha256_of(b"stale"))

    # Act
    report: SyncReport = await make_pipeline().run(root)

    # Assert
    assert (report.local_files, report.remote_files) == (3, 3)
    assert report.plan is not None
    assert sorted(f.remote_path for f in report.plan.to_transfer) == ["/about.html", "/new.html"]
    assert [f.remote_path for f in report.plan.unchanged] == ["/index.html"]
    assert [f.remote_path for f in report.plan.to_delete] == ["/stale.html"]
    assert report.upload.successful == 2
    assert sorted(path for path, _ in publisher.published) == ["/about.html", "/new.html"]
    assert report.purge is None
    assert publisher.retracted == []
    assert {sha for _, sha, _ in blob_store.put_calls} == {
        sha256_of(b"about v2"),
        sha256_of(b"brand new"),
    }


@pytest.mark.asyncio
async def test_second_run_uploads_nothing(
    make_pipeline: Callable[..., BlobSyncPipeline],
    site_factory: SiteFactory,
    publisher: FakePublisher,
) -> None:
    root: Path = site_factory({"index.html": "home", "css/site.css": "body {}"})

    await make_pipeline().run(root)
    report: SyncReport = await make_pipeline().run(root)

    assert report.remote_files == 2
    assert report.plan is not None and report.plan.to_transfer == []
    assert report.upload.successful == 0
    assert len(publisher.published) == 2


@pytest.mark.asyncio
async def test_force_reuploads_unchanged_files(
    make_pipeline: Callable[..., BlobSyncPipeline],
    site_factory: SiteFactory,
    publisher: FakePublisher,
) -> None:
    root: Path = site_factory({"index.html": "home"})
    publisher.add("/index.html", sha256_of(b"home"))

    report: SyncReport = await make_pipeline(force=True).run(root)

    assert report.upload.successful == 1
    assert publisher.published == [("/index.html", sha256_of(b"home"))]


@pytest.mark.asyncio
async def test_purge_removes_files_gone_locally(
    make_pipeline: Callable[..., BlobSyncPipeline],
    site_factory: SiteFactory,
    publisher: FakePublisher,
    blob_store: FakeBlobStore,
    endpoints: Tuple[EndpointConfig, ...],
) -> None:
    """
    Tests that purge deletes stale blobs everywhere and retracts their records.
    """
    root: Path = site_factory({"index.html": "home"})
    stale = publisher.add("/stale.html", sha256_of(b"stale"))

    report: SyncReport = await make_pipeline(purge=True).run(root)

    assert report.purge is not None
    assert report.purge.retracted == 1
    assert report.purge.blob_deletes == len(endpoints)
    assert publisher.retracted == [stale]
    assert {sha for _, sha in blob_store.delete_calls} == {sha256_of(b"stale")}


@pytest.mark.asyncio
async def test_purge_after_rename_keeps_blob_of_renamed_file(
    make_pipeline: Callable[..., BlobSyncPipeline],
    site_factory: SiteFactory,
    publisher: FakePublisher,
    blob_store: FakeBlobStore,
    endpoints: Tuple[EndpointConfig, ...],
) -> None:
    """
    Tests that purging a renamed file's old path keeps the shared blob.

    Arrange:
        - Publish `old.html`, then rename it to `new.html`.
    Act:
        - Run the pipeline with purge enabled.
    Assert:
        - The old record is retracted exactly once.
        - No blob is deleted and every endpoint still holds the content.
        - The only live record points at `/new.html` with that content.
    """
    # Arrange
    root: Path = site_factory({"old.html": "same"})
    await make_pipeline().run(root)
    (root / "old.html").rename(root / "new.html")
    sha: str = sha256_of(b"same")

    # Act
    report: SyncReport = await make_pipeline(purge=True).run(root)

    # Assert
    assert report.purge is not None
    assert (report.purge.retracted, report.purge.blobs_kept) == (1, 1)
    assert report.purge.blob_deletes == 0
    assert [r.path for r in publisher.retracted] == ["/old.html"]
    assert blob_store.delete_calls == []
    assert all(sha in blob_store.blobs[e.name] for e in endpoints)
    assert {r.path: r.sha256 for r in publisher.records.values()} == {"/new.html": sha}


@pytest.mark.asyncio
async def test_fallback_page_is_copied_and_published(
    make_pipeline: Callable[..., BlobSyncPipeline],
    site_factory: SiteFactory,
    publisher: FakePublisher,
) -> None:
    root: Path = site_factory({"index.html": "home"})

    await make_pipeline(fallback="/index.html").run(root)

    assert (root / "404.html").read_text() == "home"
    assert ("/404.html", sha256_of(b"home")) in publisher.published


@pytest.mark.asyncio
async def test_missing_fallback_page_raises(
    make_pipeline: Callable[..., BlobSyncPipeline], site_factory: SiteFactory
) -> None:
    root: Path = site_factory({"index.html": "home"})

    with pytest.raises(ScanError, match="fallback"):
        await make_pipeline(fallback="missing.html").run(root)


@pytest.mark.asyncio
async def test_empty_directory_raises_scan_error(
    make_pipeline: Callable[..., BlobSyncPipeline], tmp_path: Path
) -> None:
    with pytest.raises(ScanError, match="No files found"):
        await make_pipeline().run(tmp_path)


@pytest.mark.asyncio
async def test_listing_failure_aborts_run(
    make_pipeline: Callable[..., BlobSyncPipeline],
    site_factory: SiteFactory,
    publisher: FakePublisher,
    blob_store: FakeBlobStore,
) -> None:
    root: Path = site_factory({"index.html": "home"})
    publisher.fail_list = True

    with pytest.raises(NetworkError):
        await make_pipeline().run(root)
    assert blob_store.put_calls == []


@pytest.mark.asyncio
async def test_run_without_endpoints_raises(
    session: FakeSession, test_config: Config, site_factory: SiteFactory
) -> None:
    config: Config = replace(test_config, endpoints=())
    pipeline: BlobSyncPipeline = BlobSyncPipeline(
        config, asyncio.Event(), session_factory=lambda *a, **kw: session
    )

    with pytest.raises(ConfigError):
        await pipeline.run(site_factory({"index.html": "home"}))
    assert session.opened == 0


@pytest.mark.asyncio
async def test_run_after_shutdown_uploads_nothing(
    session: FakeSession, test_config: Config, site_factory: SiteFactory
) -> None:
    shutdown_event: asyncio.Event = asyncio.Event()
    shutdown_event.set()
    pipeline: BlobSyncPipeline = BlobSyncPipeline(
        test_config, shutdown_event, session_factory=lambda *a, **kw: session
    )

    report: SyncReport = await pipeline.run(site_factory({"index.html": "home"}))

    assert report.local_files == 1
    assert report.upload.successful == 0
    assert session.blob_store.put_calls == []
    assert report.interrupted


@pytest.mark.asyncio
async def test_list_files_defaults_to_own_identity(
    make_pipeline: Callable[..., BlobSyncPipeline], publisher: FakePublisher
) -> None:
    publisher.add("/index.html", "a" * 64)
    publisher.add("/other.html", "b" * 64, identity="someone-else")
    pipeline: BlobSyncPipeline = make_pipeline()

    files: FileList = await pipeline.list_files()

    assert [f.remote_path for f in files] == ["/index.html"]
    assert pipeline.requested_signer == [True]  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_list_files_of_other_identity_needs_no_signer(
    make_pipeline: Callable[..., BlobSyncPipeline], publisher: FakePublisher
) -> None:
    publisher.add("/other.html", "b" * 64, identity="someone-else")
    pipeline: BlobSyncPipeline = make_pipeline()

    files: FileList = await pipeline.list_files("someone-else")

    assert [f.remote_path for f in files] == ["/other.html"]
    assert pipeline.requested_signer == [False]  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_download_mirrors_published_files(
    make_pipeline: Callable[..., BlobSyncPipeline],
    publisher: FakePublisher,
    blob_store: FakeBlobStore,
    endpoints: Tuple[EndpointConfig, ...],
    tmp_path: Path,
) -> None:
    """
    Tests that another identity's publication can be downloaded.

    Arrange:
        - Two published files whose blobs exist only on the last endpoint.
    Act:
        - Download into an empty directory.
    Assert:
        - Both files are written with the published content.
    """
    # Arrange
    for path, content in (("/index.html", b"home"), ("/css/site.css", b"body {}")):
        blob_store.blobs.setdefault(endpoints[2].name, {})[sha256_of(content)] = content
        publisher.add(path, sha256_of(content), identity="someone-else")
    target: Path = tmp_path / "mirror"

    # Act
    result: DownloadResult = await make_pipeline().download(target, "someone-else")

    # Assert
    assert (result.downloaded, result.failed) == (2, 0)
    assert (target / "index.html").read_bytes() == b"home"
    assert (target / "css" / "site.css").read_bytes() == b"body {}"
