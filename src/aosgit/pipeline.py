"""End-to-end synthesis: discovery, catalog, history and repository.

These functions wire the downloader into the core. Each run starts from an
empty destination and recomputes everything.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from aosgit.config import SynthesisConfig
from aosgit.core.catalog import CatalogError, VersionCatalog
from aosgit.core.fetch import FetchError
from aosgit.core.history import History, HistoryBuilder, ReleaseComponent, ReleasePoint
from aosgit.core.repository import RepositoryWriter, RepositoryWriterError
from aosgit.download import (
    Downloader,
    canonical_entity,
    catalog_entries,
    release_catalog_entries,
)

logger = logging.getLogger(__name__)


def create_component_repository(
    downloader: Downloader,
    component: str,
    destination: Path,
    bare: bool = True,
    config: Optional[SynthesisConfig] = None,
) -> History:
    """Create a Git repository with one tagged commit per component version.

    Raises:
        CatalogError: If the component's versions cannot be listed
        ObjectStoreError: If objects cannot be written
        RepositoryWriterError: If the repository cannot be written
    """
    config = config or SynthesisConfig()

    try:
        records = downloader.get_component_versions(component)
    except FetchError as e:
        raise CatalogError(f"Cannot list versions of {component}: {e}") from e

    catalog = VersionCatalog()
    versions = catalog.build(catalog_entries(records)).get(component, [])
    logger.info("%s: %d versions to import", component, len(versions))

    writer = RepositoryWriter(destination, bare=bare, branch=config.branch)
    store = writer.object_store()
    history = HistoryBuilder(store, downloader.fetch, config).build_component(
        component, versions
    )
    writer.materialize(history, store)
    return history


def split_workers(workers: int, jobs: int) -> Tuple[int, int]:
    """Divide a worker budget between concurrent jobs and their own pools.

    Returns:
        ``(outer, inner)`` with ``outer * inner <= workers`` and both at
        least one
    """
    outer = max(1, min(workers, jobs))
    return outer, max(1, workers // outer)


def create_components_repositories(
    downloader: Downloader,
    destination: Path,
    bare: bool = True,
    config: Optional[SynthesisConfig] = None,
) -> Tuple[Dict[str, History], Dict[str, Exception]]:
    """Create one repository per component under ``destination``.

    A component whose versions cannot be listed or whose repository cannot
    be written is reported in the returned errors; the others proceed.
    ``config.workers`` bounds the archive imports running at once across
    all components.

    Returns:
        ``(histories, errors)`` keyed by component name

    Raises:
        CatalogError: If the component list itself cannot be fetched
        ObjectStoreError: If objects cannot be written
    """
    config = config or SynthesisConfig()

    try:
        components = downloader.get_components()
    except FetchError as e:
        raise CatalogError(f"Cannot list components: {e}") from e

    histories: Dict[str, History] = {}
    errors: Dict[str, Exception] = {}

    outer, inner = split_workers(config.workers, len(components))
    component_config = config.with_workers(inner)
    logger.debug("%d components at a time, %d archives each", outer, inner)

    with ThreadPoolExecutor(max_workers=outer) as executor:
        futures = {
            executor.submit(
                create_component_repository,
                downloader,
                component,
                Path(destination) / component,
                bare,
                component_config,
            ): component
            for component in components
        }
        for future in as_completed(futures):
            component = futures[future]
            try:
                histories[component] = future.result()
            except (CatalogError, RepositoryWriterError) as e:
                logger.error("%s: %s", component, e)
                errors[component] = e
            except BaseException:
                for pending in futures:
                    pending.cancel()
                raise

    ordered = {name: histories[name] for name in sorted(histories)}
    return ordered, {name: errors[name] for name in sorted(errors)}


def release_points(downloader: Downloader, release: str) -> List[ReleasePoint]:
    """Discover the ordered release points of a release entity.

    Raises:
        CatalogError: If the release list cannot be fetched
    """
    try:
        records = [r for r in downloader.get_releases() if r.matches_entity(release)]
    except FetchError as e:
        raise CatalogError(f"Cannot list releases: {e}") from e

    by_url = {record.url: record for record in records}
    catalog = VersionCatalog()
    versions = catalog.build(release_catalog_entries(records)).get(
        canonical_entity(release), []
    )

    points = []
    for version in versions:
        record = by_url.get(version.url)
        entity = record.entity if record is not None else None
        if not version.available:
            points.append(ReleasePoint(version, entity=entity))
            continue
        try:
            components = downloader.get_release_components(record)
        except FetchError as e:
            logger.error("Cannot list components of %s %s: %s", release, version.label, e)
            points.append(ReleasePoint(version, error=str(e), entity=entity))
            continue
        points.append(
            ReleasePoint(
                version,
                tuple(ReleaseComponent(c.component, c.url) for c in components),
                entity=entity,
            )
        )
    return points


def create_release_repository(
    downloader: Downloader,
    release: str,
    destination: Path,
    bare: bool = True,
    config: Optional[SynthesisConfig] = None,
) -> History:
    """Create a repository with one commit per release of an entity.

    Each commit's tree holds one directory per component shipped in that
    release.
    """
    config = config or SynthesisConfig()
    points = release_points(downloader, release)
    logger.info("%s: %d releases to import", release, len(points))

    writer = RepositoryWriter(destination, bare=bare, branch=config.branch)
    store = writer.object_store()
    history = HistoryBuilder(store, downloader.fetch, config).build_release(release, points)
    writer.materialize(history, store)
    return history
