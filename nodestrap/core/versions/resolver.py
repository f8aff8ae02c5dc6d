"""
Version resolution — which upstream release should this host get?

Two kinds of upstream feed are supported:

    GITHUB_RELEASES   JSON array of release objects; every ``tag_name``
                      matching the filter is a candidate and the highest
                      one under numeric ordering wins.
    STABLE_POINTER    plain-text document whose whole body is the
                      current stable version (e.g. dl.k8s.io stable.txt).

Nothing is cached: each run asks upstream again.

Ordering is numeric per component, most significant first, with missing
trailing components counting as zero, so ``1.10.0 > 1.9.0`` and
``1.2 == 1.2.0``.
"""

from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass
from enum import StrEnum

from nodestrap.adapters.http import HttpFetcher
from nodestrap.core.errors import FetchError, ResolutionError

logger = logging.getLogger(__name__)

TAG_FIELD = "tag_name"


class VersionSource(StrEnum):
    GITHUB_RELEASES = "github_releases"
    STABLE_POINTER = "stable_pointer"


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """An upstream version, immutable once resolved."""

    raw: str
    components: tuple[int, ...]
    source: VersionSource = VersionSource.GITHUB_RELEASES

    @classmethod
    def parse(cls, raw: str, source: VersionSource = VersionSource.GITHUB_RELEASES) -> Version:
        """Parse ``v1.7.2`` / ``1.7.2`` style strings.

        Raises:
            ValueError: If any dot-separated component is not an integer
                (pre-release suffixes like ``0-rc1`` included).
        """
        text = raw.strip()
        number = text[1:] if text[:1] in ("v", "V") else text
        if not number:
            raise ValueError(f"Empty version string: {raw!r}")
        try:
            components = tuple(int(part) for part in number.split("."))
        except ValueError:
            raise ValueError(f"Unparseable version string: {raw!r}") from None
        return cls(raw=text, components=components, source=source)

    @property
    def number(self) -> str:
        """The version without its ``v`` prefix."""
        return self.raw[1:] if self.raw[:1] in ("v", "V") else self.raw

    @property
    def prefix(self) -> str:
        return self.raw[: len(self.raw) - len(self.number)]

    def reduced(self, precision: int = 2) -> str:
        """Project onto the first ``precision`` components, keeping the prefix.

        ``v1.31.2`` → ``v1.31``.  A pure projection; nothing is fetched.
        """
        if precision < 1:
            raise ValueError("precision must be at least 1")
        padded = self._padded(precision)
        return self.prefix + ".".join(str(c) for c in padded[:precision])

    def _padded(self, width: int) -> tuple[int, ...]:
        return self.components + (0,) * (width - len(self.components))

    def _compare_key(self, other: Version) -> tuple[tuple[int, ...], tuple[int, ...]]:
        width = max(len(self.components), len(other.components))
        return self._padded(width), other._padded(width)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        mine, theirs = self._compare_key(other)
        return mine == theirs

    def __lt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        mine, theirs = self._compare_key(other)
        return mine < theirs

    def __hash__(self) -> int:
        trimmed = list(self.components)
        while len(trimmed) > 1 and trimmed[-1] == 0:
            trimmed.pop()
        return hash(tuple(trimmed))

    def __str__(self) -> str:
        return self.raw


def select_latest(tags: list[str], filter_pattern: str | None = None) -> Version | None:
    """Pick the highest tag matching ``filter_pattern``; None if none qualifies.

    Without a filter, tags that are not versions (``nightly``) are skipped.
    A tag the filter accepts must parse.

    Raises:
        ResolutionError: A filter-matching tag is not a version.
    """
    pattern = re.compile(filter_pattern) if filter_pattern else None
    candidates: list[Version] = []
    for tag in tags:
        if pattern is not None and not pattern.search(tag):
            continue
        try:
            candidates.append(Version.parse(tag, VersionSource.GITHUB_RELEASES))
        except ValueError as e:
            if pattern is not None:
                raise ResolutionError(
                    f"Release tag {tag!r} passes filter {filter_pattern!r} but does not parse: {e}"
                ) from e
            logger.debug("Skipping unparseable tag %r", tag)
    return max(candidates) if candidates else None


class VersionResolver:
    """Resolve versions from upstream feeds through an ``HttpFetcher``."""

    def __init__(self, fetcher: HttpFetcher):
        self._fetcher = fetcher

    def resolve(
        self,
        source: VersionSource,
        url: str,
        filter_pattern: str | None = None,
    ) -> Version:
        if source == VersionSource.GITHUB_RELEASES:
            return self.latest_release(url, filter_pattern)
        if source == VersionSource.STABLE_POINTER:
            return self.stable_pointer(url, filter_pattern)
        raise ResolutionError(f"Unknown version source: {source!r}")

    def latest_release(self, url: str, filter_pattern: str | None = None) -> Version:
        """Highest release tag at ``url`` matching ``filter_pattern``.

        Raises:
            ResolutionError: Feed unreachable, not a list, an entry without
                a tag, no entries, a filter-matching tag that does not parse,
                or no entry matching the filter.
        """
        try:
            data = self._fetcher.get_json(url)
        except FetchError as e:
            raise ResolutionError(f"Release feed {url} unreachable: {e}") from e

        if not isinstance(data, list):
            raise ResolutionError(
                f"Release feed {url} returned {type(data).__name__}, expected a list"
            )
        if not data:
            raise ResolutionError(f"Release feed {url} returned no releases")

        tags: list[str] = []
        for entry in data:
            tag = entry.get(TAG_FIELD) if isinstance(entry, dict) else None
            if not isinstance(tag, str) or not tag.strip():
                raise ResolutionError(
                    f"Release feed {url} has an entry without a usable '{TAG_FIELD}'"
                )
            tags.append(tag.strip())

        version = select_latest(tags, filter_pattern)
        if version is None:
            raise ResolutionError(
                f"No release in {url} matches filter {filter_pattern!r} "
                f"({len(tags)} tags examined)"
            )
        logger.info("Resolved %s → %s", url, version)
        return version

    def stable_pointer(self, url: str, filter_pattern: str | None = None) -> Version:
        """The single version string published at ``url``."""
        try:
            body = self._fetcher.get_text(url).strip()
        except FetchError as e:
            raise ResolutionError(f"Stable pointer {url} unreachable: {e}") from e

        if not body:
            raise ResolutionError(f"Stable pointer {url} is empty")
        if filter_pattern and not re.search(filter_pattern, body):
            raise ResolutionError(
                f"Stable pointer {url} value {body!r} does not match filter {filter_pattern!r}"
            )
        try:
            version = Version.parse(body, VersionSource.STABLE_POINTER)
        except ValueError as e:
            raise ResolutionError(f"Stable pointer {url}: {e}") from e
        logger.info("Resolved %s → %s", url, version)
        return version
