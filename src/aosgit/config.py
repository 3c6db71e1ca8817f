"""Synthesis configuration.

The commit identity and timestamp are fixed values rather than anything
derived from the running machine, and they are passed explicitly to the
history builder and repository writer.
"""

from dataclasses import dataclass, field, replace

from aosgit.constants import (
    AUTHOR_EMAIL,
    AUTHOR_NAME,
    AUTHOR_TIMESTAMP,
    AUTHOR_TZ_OFFSET,
    DEFAULT_BRANCH,
    DEFAULT_WORKERS,
)


@dataclass(frozen=True)
class Signature:
    """Author or committer identity with a fixed point in time."""

    name: str
    email: str
    timestamp: int
    offset: str = "+0000"

    def to_bytes(self) -> bytes:
        """Render as it appears in a commit header, e.g. ``Name <e> 0 +0000``."""
        return (
            f"{self.name} <{self.email}> {self.timestamp} {self.offset}"
        ).encode("utf-8")


DEFAULT_SIGNATURE = Signature(
    name=AUTHOR_NAME,
    email=AUTHOR_EMAIL,
    timestamp=AUTHOR_TIMESTAMP,
    offset=AUTHOR_TZ_OFFSET,
)


@dataclass(frozen=True)
class SynthesisConfig:
    """Settings threaded through a synthesis run.

    Attributes:
        author: Identity written to every commit's author line
        committer: Identity written to every commit's committer line
        branch: Name of the branch that receives the commit chain
        workers: Upper bound on concurrent fetch/expand jobs
        annotated_tags: Write a tag object per version instead of pointing
            the tag ref straight at the commit
    """

    author: Signature = field(default=DEFAULT_SIGNATURE)
    committer: Signature = field(default=DEFAULT_SIGNATURE)
    branch: str = DEFAULT_BRANCH
    workers: int = DEFAULT_WORKERS
    annotated_tags: bool = False

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")
        if not self.branch:
            raise ValueError("branch name must not be empty")

    def with_workers(self, workers: int) -> "SynthesisConfig":
        """Return a copy with a different worker bound."""
        return replace(self, workers=workers)
