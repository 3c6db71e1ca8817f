"""Version catalog: a deterministic total order of versions per component.

Upstream version labels follow no single scheme (``7195.50.1``,
``10.4.11.x86``, ``dyld-46.16``), so labels are kept as opaque strings and
ordered by a derived key built from alternating digit and non-digit runs.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, NamedTuple, Tuple

logger = logging.getLogger(__name__)

_RUN_RE = re.compile(r"\d+|\D+")

# Numeric runs sort before text runs occupying the same position.
_NUMERIC = 0
_TEXT = 1

# Parsed labels sort before labels that fell back to raw lexical ordering.
_PARSED = 0
_FALLBACK = 1


class CatalogError(Exception):
    """Raised when the catalog cannot be built. Aborts the whole run."""


class CatalogParseError(CatalogError):
    """Raised when a version label cannot be parsed into an ordering key.

    The catalog recovers from this by ordering the label lexically.
    """


class CatalogEntry(NamedTuple):
    """One record from the discovery collaborator."""

    component: str
    label: str
    url: str
    available: bool = True


@dataclass(frozen=True)
class Version:
    """An immutable version of a component.

    Attributes:
        component: Component the version belongs to
        label: Raw upstream version string, also used as the tag name
        url: Where the archive for this version is fetched from
        key: Derived ordering key, see ``version_key``
        available: False for versions known to be missing upstream
    """

    component: str
    label: str
    url: str
    key: Tuple = field(compare=False, repr=False)
    available: bool = True


def parse_version(label: str) -> Tuple[Tuple[int, object], ...]:
    """Split a label into comparable runs.

    Digit runs become integers of any width, everything else stays text.

    Raises:
        CatalogParseError: If the label is empty or contains no digits

    Example:
        >>> parse_version("7195.50.1")
        ((0, 7195), (1, '.'), (0, 50), (1, '.'), (0, 1))
    """
    if not label:
        raise CatalogParseError("Empty version label")

    runs = []
    has_digits = False
    for run in _RUN_RE.findall(label):
        if run.isdigit():
            has_digits = True
            runs.append((_NUMERIC, int(run)))
        else:
            runs.append((_TEXT, run))

    if not has_digits:
        raise CatalogParseError(f"Version label has no numeric component: {label!r}")
    return tuple(runs)


def version_key(label: str) -> Tuple:
    """Total-order key for a version label.

    Labels that cannot be parsed fall back to raw lexical order and sort
    after every parsed label. The raw label breaks ties such as ``01`` and
    ``1`` so distinct labels never compare equal.
    """
    try:
        return (_PARSED, parse_version(label), label)
    except CatalogParseError:
        return (_FALLBACK, (), label)


class VersionCatalog:
    """Deduplicates discovery records and orders versions per component.

    Example:
        >>> catalog = VersionCatalog()
        >>> ordered = catalog.build([
        ...     CatalogEntry("xnu", "7195.121.3", "https://.../xnu-7195.121.3.tar.gz"),
        ...     CatalogEntry("xnu", "7195.50.1", "https://.../xnu-7195.50.1.tar.gz"),
        ... ])
        >>> [v.label for v in ordered["xnu"]]
        ['7195.50.1', '7195.121.3']
    """

    def __init__(self) -> None:
        self._versions: Dict[str, List[Version]] = {}
        self.parse_failures: List[Tuple[str, str]] = []
        self.duplicates: List[Tuple[str, str]] = []

    def build(self, entries: Iterable[CatalogEntry]) -> Dict[str, List[Version]]:
        """Build the catalog from raw discovery records.

        The first URL observed for a ``(component, label)`` pair wins; later
        duplicates are dropped.

        Args:
            entries: Records in discovery order

        Returns:
            Mapping of component name to versions in ascending order, with
            components in sorted order

        Raises:
            CatalogError: If a record has no component name or no URL
        """
        seen: Dict[Tuple[str, str], Version] = {}
        self.parse_failures = []
        self.duplicates = []

        for entry in entries:
            component, label, url, available = CatalogEntry(*entry)
            if not component:
                raise CatalogError(f"Record for version {label!r} has no component")
            if not url:
                raise CatalogError(f"Record {component} {label!r} has no source URL")

            if (component, label) in seen:
                logger.debug("Ignoring duplicate record %s %s (%s)", component, label, url)
                self.duplicates.append((component, label))
                continue

            try:
                parse_version(label)
            except CatalogParseError as e:
                logger.warning("%s: %s; ordering lexically", component, e)
                self.parse_failures.append((component, label))

            seen[(component, label)] = Version(
                component=component,
                label=label,
                url=url,
                key=version_key(label),
                available=bool(available),
            )

        grouped: Dict[str, List[Version]] = {}
        for version in seen.values():
            grouped.setdefault(version.component, []).append(version)

        self._versions = {
            component: sorted(grouped[component], key=lambda v: v.key)
            for component in sorted(grouped)
        }
        return dict(self._versions)

    def components(self) -> List[str]:
        return list(self._versions)

    def versions(self, component: str) -> List[Version]:
        """Ordered versions of ``component``.

        Raises:
            KeyError: If the component is not in the catalog
        """
        return list(self._versions[component])
