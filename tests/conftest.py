"""Pytest configuration and shared fixtures."""

import io
import tarfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from aosgit.core.catalog import Version, version_key
from aosgit.core.fetch import NotFoundError
from aosgit.download import ComponentRecord, ReleaseComponentRecord, ReleaseRecord
from aosgit.storage.object_store import ObjectStore


class Symlink:
    """Marker for a symlink member in ``make_tarball``."""

    def __init__(self, target: str) -> None:
        self.target = target


Member = Union[bytes, str, tuple, Symlink]


def make_tarball(
    files: Dict[str, Member],
    wrapper: Optional[str] = "pkg-1.0",
    compression: str = "gz",
) -> bytes:
    """Build an in-memory tarball.

    Values are file contents (bytes or str), ``(content, mode)`` tuples or
    ``Symlink`` markers. Members are added in dict order.
    """
    buffer = io.BytesIO()
    mode = f"w:{compression}" if compression else "w"
    with tarfile.open(fileobj=buffer, mode=mode) as archive:
        if wrapper:
            info = tarfile.TarInfo(wrapper)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            archive.addfile(info)
        for path, value in files.items():
            name = f"{wrapper}/{path}" if wrapper else path
            info = tarfile.TarInfo(name)
            if isinstance(value, Symlink):
                info.type = tarfile.SYMTYPE
                info.linkname = value.target
                info.mode = 0o777
                archive.addfile(info)
                continue
            if isinstance(value, tuple):
                content, file_mode = value
            else:
                content, file_mode = value, 0o644
            if isinstance(content, str):
                content = content.encode("utf-8")
            info.size = len(content)
            info.mode = file_mode
            archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class FakeFetcher:
    """Serves archive bytes from a dict; values may be exceptions to raise."""

    def __init__(self, archives: Dict[str, Union[bytes, Exception]]) -> None:
        self.archives = archives
        self.calls = []

    def __call__(self, url: str) -> bytes:
        self.calls.append(url)
        if url not in self.archives:
            raise NotFoundError(f"HTTP 404 from {url}", url=url, status=404)
        value = self.archives[url]
        if isinstance(value, Exception):
            raise value
        return value


def make_version(
    label: str,
    component: str = "xnu",
    available: bool = True,
    url: Optional[str] = None,
) -> Version:
    return Version(
        component=component,
        label=label,
        url=url or f"https://example.invalid/{component}-{label}.tar.gz",
        key=version_key(label),
        available=available,
    )


def component_record(component: str, version: str) -> ComponentRecord:
    filename = f"{component}-{version}.tar.gz"
    return ComponentRecord(component, filename, f"https://u/{component}/{filename}", version)


class FakeDownloader:
    """Offline stand-in for ``Downloader``.

    Listing values may be exceptions, which are raised when requested.
    """

    def __init__(
        self,
        versions: Optional[Dict[str, Any]] = None,
        releases: Optional[List[ReleaseRecord]] = None,
        release_components: Optional[Dict[str, Any]] = None,
        archives: Optional[Dict[str, Union[bytes, Exception]]] = None,
    ) -> None:
        self.versions = versions or {}
        self.releases = releases or []
        self.release_components = release_components or {}
        self.fetch = FakeFetcher(archives or {})

    def get_components(self) -> List[str]:
        return sorted(self.versions)

    def get_component_versions(self, component: str) -> List[ComponentRecord]:
        records = self.versions[component]
        if isinstance(records, Exception):
            raise records
        return records

    def get_components_versions(self) -> Dict[str, List[ComponentRecord]]:
        return {name: self.get_component_versions(name) for name in self.get_components()}

    def get_releases(self) -> List[ReleaseRecord]:
        return self.releases

    def get_release_components(self, record: ReleaseRecord) -> List[ReleaseComponentRecord]:
        components = self.release_components[record.url]
        if isinstance(components, Exception):
            raise components
        return components


@pytest.fixture
def tarball() -> Callable[..., bytes]:
    """Factory for in-memory tarballs."""
    return make_tarball


@pytest.fixture
def memory_store() -> ObjectStore:
    """In-memory object store."""
    return ObjectStore()


@pytest.fixture
def disk_store(tmp_path: Path) -> ObjectStore:
    """Object store in Git loose-object layout under a temp directory."""
    return ObjectStore(tmp_path / "objects")
