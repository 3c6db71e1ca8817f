"""Commit chain construction.

Building a history happens in two phases. Archives are fetched, expanded
and written to the object store on a bounded thread pool in whatever order
the workers finish. The resulting tree ids are then folded into a commit
chain strictly in catalog order on the calling thread, since every commit
embeds its parent's id.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from aosgit.config import Signature, SynthesisConfig
from aosgit.constants import COMMIT, MODE_TREE, TAG, TAG_MESSAGE
from aosgit.core.catalog import Version
from aosgit.core.fetch import Fetcher, FetchError, NotFoundError
from aosgit.core.snapshot import ArchiveError, SnapshotExpander
from aosgit.storage.content import ObjectId, encode_commit, encode_tag
from aosgit.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"


@dataclass(frozen=True)
class Commit:
    """A commit written to the object store."""

    id: ObjectId
    tree: ObjectId
    parent: Optional[ObjectId]
    label: str
    message: str
    author: Signature
    committer: Signature


@dataclass(frozen=True)
class Tag:
    """A version label pointing at a commit.

    ``annotation`` is the id of the tag object when tags are annotated; the
    ref then points at it rather than at the commit.
    """

    name: str
    commit: ObjectId
    annotation: Optional[ObjectId] = None

    @property
    def target(self) -> ObjectId:
        return self.annotation or self.commit


@dataclass(frozen=True)
class SkippedVersion:
    """A version (or release component) that left a gap in the history."""

    component: str
    label: str
    url: str
    reason: str
    severity: str = SEVERITY_WARNING


@dataclass
class History:
    """The result of building one branch of commits.

    Attributes:
        name: Component or release name
        commits: Commits in chain order, oldest first
        tags: One tag per commit
        skipped: Gaps, in catalog order
    """

    name: str
    commits: List[Commit] = field(default_factory=list)
    tags: List[Tag] = field(default_factory=list)
    skipped: List[SkippedVersion] = field(default_factory=list)

    @property
    def head(self) -> Optional[ObjectId]:
        return self.commits[-1].id if self.commits else None

    def tag_map(self) -> Dict[str, ObjectId]:
        return {tag.name: tag.commit for tag in self.tags}


@dataclass(frozen=True)
class ReleaseComponent:
    """A component archive belonging to a release point."""

    component: str
    url: str


@dataclass(frozen=True)
class ReleasePoint:
    """One release (e.g. ``macos 11.2``) and the component archives it ships.

    ``error`` is set when the component listing of the release could not be
    obtained; such a point becomes a gap.
    ``entity`` is the name the site publishes the release under (``os-x``
    for 10.x, ``macos`` after) and names the commit.
    """

    version: Version
    components: Tuple[ReleaseComponent, ...] = ()
    error: Optional[str] = None
    entity: Optional[str] = None


class HistoryBuilder:
    """Builds deterministic commit chains into an object store.

    Attributes:
        store: Object store receiving blobs, trees and commits
        fetch: Callable mapping an archive URL to its bytes. May raise
            ``FetchError``/``NotFoundError``.
        config: Identity, branch and concurrency settings
        expander: Archive canonicalizer
    """

    def __init__(
        self,
        store: ObjectStore,
        fetch: Fetcher,
        config: Optional[SynthesisConfig] = None,
        expander: Optional[SnapshotExpander] = None,
    ) -> None:
        self.store = store
        self.fetch = fetch
        self.config = config or SynthesisConfig()
        self.expander = expander or SnapshotExpander()

    def build_component(self, component: str, versions: Sequence[Version]) -> History:
        """Build the history of one component.

        Args:
            component: Component name, used in commit messages
            versions: Versions in catalog order

        Returns:
            History with one commit and one tag per imported version

        Raises:
            ObjectStoreError: If writing objects fails
        """
        history = History(name=component)

        wanted = []
        for version in versions:
            if version.available:
                wanted.append(version.url)
        trees, failures = self._import_archives(wanted)

        parent = None
        for version in versions:
            if not version.available:
                logger.info("Skipping unavailable %s %s", component, version.label)
                history.skipped.append(
                    SkippedVersion(
                        component, version.label, version.url,
                        "known unavailable upstream", SEVERITY_INFO,
                    )
                )
                continue

            if version.url in failures:
                reason, severity = failures[version.url]
                history.skipped.append(
                    SkippedVersion(component, version.label, version.url, reason, severity)
                )
                continue

            message = f"{component} {version.label}\n\nDownloaded from {version.url}"
            commit = self._commit(trees[version.url], parent, version.label, message)
            logger.info("Committed %s version %s as %s", component, version.label, commit.id)

            history.commits.append(commit)
            history.tags.append(self._tag(version.label, commit.id))
            parent = commit.id

        return history

    def build_release(self, release: str, points: Sequence[ReleasePoint]) -> History:
        """Build a merged history of a release entity.

        Each release point becomes one commit whose root tree has a
        subdirectory per component. Components missing from a point, or
        whose archive failed to import, are absent from that tree.
        """
        history = History(name=release)

        wanted = []
        for point in points:
            if point.version.available and point.error is None:
                wanted.extend(c.url for c in point.components)
        trees, failures = self._import_archives(wanted)

        reported = set()
        parent = None
        for point in points:
            version = point.version
            if point.error is not None:
                history.skipped.append(
                    SkippedVersion(release, version.label, version.url, point.error, SEVERITY_ERROR)
                )
                continue
            if not version.available:
                history.skipped.append(
                    SkippedVersion(
                        release, version.label, version.url,
                        "known unavailable upstream", SEVERITY_INFO,
                    )
                )
                continue

            entries: Dict[bytes, ObjectId] = {}
            for component in point.components:
                if component.url in failures:
                    if component.url not in reported:
                        reported.add(component.url)
                        reason, severity = failures[component.url]
                        history.skipped.append(
                            SkippedVersion(
                                component.component, version.label,
                                component.url, reason, severity,
                            )
                        )
                    continue
                name = component.component.encode("utf-8")
                if name in entries:
                    logger.warning(
                        "%s %s lists %s twice, keeping %s",
                        release, version.label, component.component, component.url,
                    )
                entries[name] = trees[component.url]

            tree = self.store.write_tree_entries(
                (MODE_TREE, name, oid) for name, oid in entries.items()
            )
            message = f"{point.entity or release} {version.label}"
            commit = self._commit(tree, parent, version.label, message)
            logger.info("Committed %s version %s as %s", release, version.label, commit.id)

            history.commits.append(commit)
            history.tags.append(self._tag(version.label, commit.id))
            parent = commit.id

        return history

    def import_archive(self, url: str) -> ObjectId:
        """Fetch, expand and store one archive, returning its root tree id."""
        tree = self.expander.expand(self.fetch(url))
        oid = self.store.write_tree(tree)
        logger.info("Imported %s as tree %s", url, oid)
        return oid

    def _import_archives(
        self, urls: Iterable[str]
    ) -> Tuple[Dict[str, ObjectId], Dict[str, Tuple[str, str]]]:
        """Import unique URLs concurrently.

        Returns:
            ``(trees, failures)``; failures map a URL to ``(reason, severity)``

        Raises:
            ObjectStoreError: Or any unexpected error; pending work is cancelled
        """
        unique = list(dict.fromkeys(urls))
        trees: Dict[str, ObjectId] = {}
        failures: Dict[str, Tuple[str, str]] = {}
        if not unique:
            return trees, failures

        with ThreadPoolExecutor(max_workers=self.config.workers) as executor:
            futures: Dict[Future, str] = {
                executor.submit(self.import_archive, url): url for url in unique
            }
            for future in as_completed(futures):
                url = futures[future]
                try:
                    trees[url] = future.result()
                except NotFoundError as e:
                    logger.warning("%s not found upstream; skipping", url)
                    failures[url] = (str(e), SEVERITY_INFO)
                except FetchError as e:
                    logger.error("Failed to download %s; skipping (%s)", url, e)
                    failures[url] = (str(e), SEVERITY_ERROR)
                except ArchiveError as e:
                    logger.warning("Failed to expand %s; skipping (%s)", url, e)
                    failures[url] = (str(e), SEVERITY_WARNING)
                except BaseException:
                    for pending in futures:
                        pending.cancel()
                    raise

        return trees, failures

    def _commit(
        self,
        tree: ObjectId,
        parent: Optional[ObjectId],
        label: str,
        message: str,
    ) -> Commit:
        author = self.config.author
        committer = self.config.committer
        body = encode_commit(tree, parent, author, committer, message)
        oid = self.store.put(body, COMMIT)
        return Commit(
            id=oid,
            tree=tree,
            parent=parent,
            label=label,
            message=message,
            author=author,
            committer=committer,
        )

    def _tag(self, name: str, commit: ObjectId) -> Tag:
        if not self.config.annotated_tags:
            return Tag(name, commit)
        body = encode_tag(commit, COMMIT, name, self.config.committer, TAG_MESSAGE)
        return Tag(name, commit, self.store.put(body, TAG))
