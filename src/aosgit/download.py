"""Discovery and fetching of Apple open source tarballs.

Listings on opensource.apple.com are plain HTML tables, so discovery is a
handful of regular expressions over page text. It is best effort: anything
the patterns miss is simply not discovered.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from aosgit.constants import (
    ARCHIVE_SUFFIX,
    HTTP_BACKOFF,
    HTTP_RETRIES,
    HTTP_RETRY_STATUSES,
    HTTP_TIMEOUT,
    MACOS_ALIASES,
    URL_MAIN,
    URL_TARBALLS,
    USER_AGENT,
)
from aosgit.core.catalog import CatalogEntry, version_key
from aosgit.core.fetch import FetchError, NotFoundError

logger = logging.getLogger(__name__)

_RELEASE_RE = re.compile(r'<a href="(?:/release/)?(?P<entity>[^"]+)">(?P<version>[^<]+)</a>')
_RELEASE_COMPONENT_RE = re.compile(r'<a href="/tarballs/(?P<path>[^"]+)">')
_COMPONENT_RE = re.compile(
    r'<tr><td valign="top"><a href="(?P<component>[^/"]+)/">'
    r'<img src="/static/images/icons/folder.png"'
)
_VERSION_RE = re.compile(
    r'<tr><td valign="top"><a href="?(?P<filename>[^">]+)"?>'
    r'<img src="?/static/images/icons/gz'
)


def is_macos(name: str) -> bool:
    return name in MACOS_ALIASES


def canonical_entity(name: str) -> str:
    """Map the several historical macOS entity names onto one."""
    return MACOS_ALIASES[0] if is_macos(name) else name


@dataclass(frozen=True)
class ComponentRecord:
    """A downloadable version of a component."""

    component: str
    filename: str
    url: str
    version: str


@dataclass(frozen=True)
class ReleaseRecord:
    """A software release such as ``macos 11.2``."""

    entity: str
    version: str
    url: str

    def matches_entity(self, name: str) -> bool:
        """Whether this record belongs to the named entity."""
        return name == self.entity or (is_macos(name) and is_macos(self.entity))


@dataclass(frozen=True)
class ReleaseComponentRecord:
    """A component tarball listed on a release page."""

    entity: str
    component: str
    url: str


class Downloader:
    """HTTP client for the Apple open source site.

    Connection failures and 5xx answers are retried with exponential backoff
    by the mounted ``HTTPAdapter``. Callers only ever see ``FetchError`` or
    ``NotFoundError``.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        if session is None:
            session = requests.Session()
            retry = Retry(
                total=HTTP_RETRIES,
                backoff_factor=HTTP_BACKOFF,
                status_forcelist=HTTP_RETRY_STATUSES,
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
            session.headers["User-Agent"] = USER_AGENT
        self.session = session
        self.timeout = timeout

    def _get(self, url: str) -> requests.Response:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Request to {url} failed: {e}", url=url) from e

        if response.status_code == 404:
            raise NotFoundError(f"HTTP 404 from {url}", url=url, status=404)
        if not 200 <= response.status_code < 300:
            raise FetchError(
                f"HTTP {response.status_code} from {url}",
                url=url,
                status=response.status_code,
            )
        return response

    def fetch(self, url: str) -> bytes:
        """Download the bytes behind ``url``.

        Raises:
            NotFoundError: If the server answers 404
            FetchError: On any other HTTP or transport failure
        """
        logger.debug("Fetching %s", url)
        return self._get(url).content

    def get_releases(self) -> List[ReleaseRecord]:
        """Obtain records describing Apple software releases, sorted."""
        text = self._get(URL_MAIN).text

        records = []
        for match in _RELEASE_RE.finditer(text):
            page = match.group("entity")
            if not page.endswith(".html"):
                logger.debug("Ignoring release link %s", page)
                continue
            # e.g. `macos-1121.html` or `developer-tools-91.html`
            name, sep, _ = page[: -len(".html")].rpartition("-")
            if not sep:
                logger.debug("Ignoring release link without version: %s", page)
                continue
            records.append(
                ReleaseRecord(
                    entity=name,
                    version=match.group("version").strip(),
                    url=f"{URL_MAIN}release/{page}",
                )
            )

        records.sort(key=lambda r: (canonical_entity(r.entity), version_key(r.version)))
        return records

    def get_release_components(self, record: ReleaseRecord) -> List[ReleaseComponentRecord]:
        """Obtain the component tarballs listed for a release."""
        text = self._get(record.url).text

        records = []
        for match in _RELEASE_COMPONENT_RE.finditer(text):
            path = match.group("path")
            if not path.endswith(ARCHIVE_SUFFIX):
                continue
            component, sep, _ = path.partition("/")
            if not sep:
                logger.debug("Ignoring tarball outside a component directory: %s", path)
                continue
            records.append(
                ReleaseComponentRecord(
                    entity=record.entity,
                    component=component,
                    url=f"{URL_MAIN}tarballs/{path}",
                )
            )
        return records

    def get_components(self) -> List[str]:
        """Obtain the sorted set of component names, e.g. ``hfs`` or ``xnu``."""
        text = self._get(URL_TARBALLS).text
        return sorted({m.group("component") for m in _COMPONENT_RE.finditer(text)})

    def get_component_versions(self, component: str) -> List[ComponentRecord]:
        """Obtain records for each available version of a component.

        The archives themselves are not downloaded.
        """
        text = self._get(f"{URL_TARBALLS}/{component}/").text

        records = []
        for match in _VERSION_RE.finditer(text):
            filename = match.group("filename")
            if not filename.endswith(ARCHIVE_SUFFIX):
                continue
            stem = filename[: -len(ARCHIVE_SUFFIX)]
            if stem.startswith(component + "-"):
                version = stem[len(component) + 1:]
            else:
                _, sep, version = stem.partition("-")
                if not sep:
                    logger.debug("Ignoring archive without version: %s", filename)
                    continue
            records.append(
                ComponentRecord(
                    component=component,
                    filename=filename,
                    url=f"{URL_TARBALLS}/{component}/{filename}",
                    version=version,
                )
            )

        records.sort(key=lambda r: version_key(r.version))
        return records

    def get_components_versions(self) -> Dict[str, List[ComponentRecord]]:
        """Obtain version records for every component that has any."""
        result = {}
        for component in self.get_components():
            records = self.get_component_versions(component)
            if records:
                result[component] = records
        return result


def catalog_entries(records: Iterable[ComponentRecord]) -> List[CatalogEntry]:
    """Convert component records into catalog entries."""
    return [CatalogEntry(r.component, r.version, r.url) for r in records]


def release_catalog_entries(records: Iterable[ReleaseRecord]) -> List[CatalogEntry]:
    """Convert release records into catalog entries keyed by canonical entity."""
    return [CatalogEntry(canonical_entity(r.entity), r.version, r.url) for r in records]
