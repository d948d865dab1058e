"""
Tag resolver - finds the "latest" tag of an image and decides whether it is new
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from .base import ImageManifest, ImageTag, TagCatalog
from .errors import PatternError

logger = logging.getLogger(__name__)

MATCH_ALL = ".*"


def compile_tag_filter(pattern: Optional[str]) -> re.Pattern:
    """
    Compile a user-supplied tag filter

    Args:
        pattern: Regex to match tag names; None or blank matches every tag

    Returns:
        Compiled pattern

    Raises:
        PatternError: If the pattern is not a valid regular expression
    """
    if pattern is None or not pattern.strip():
        pattern = MATCH_ALL

    try:
        return re.compile(pattern)
    except re.error as e:
        raise PatternError(pattern, str(e)) from e


@dataclass(frozen=True)
class ResolutionOutcome:
    """Result of comparing the latest tag against a previous revision"""

    @property
    def has_revision(self) -> bool:
        return False


@dataclass(frozen=True)
class NoRevision(ResolutionOutcome):
    """No tag matched the filter"""


@dataclass(frozen=True)
class Unchanged(ResolutionOutcome):
    """Latest tag is the previous revision"""


@dataclass(frozen=True)
class NewRevision(ResolutionOutcome):
    """Latest tag differs from the previous revision (or there was none)"""
    tag: ImageTag

    @property
    def has_revision(self) -> bool:
        return True


class TagResolver:
    """Selects the latest matching tag from a catalog"""

    def select_latest(
        self,
        catalog: TagCatalog,
        pattern: Union[re.Pattern, str, None],
    ) -> Optional[ImageTag]:
        """
        Find the most recently uploaded tag matching a filter

        Each manifest contributes at most one tag: the first of its tags that
        matches. Among those, the strictly newest upload wins; on equal upload
        times the manifest evaluated first is kept, so the choice between
        equally-timed manifests depends on registry ordering. A manifest
        uploaded at epoch 0 never wins.

        Args:
            catalog: Manifests for the image
            pattern: Compiled filter (a string is compiled on the fly)

        Returns:
            ImageTag object or None if no tag matched or the pattern is unusable
        """
        try:
            regex = self._as_pattern(pattern)
        except PatternError as e:
            logger.error("Cannot resolve tags: %s", e)
            return None

        latest = None
        latest_ms = 0

        for manifest in catalog:
            match = self._first_match(manifest, regex)
            if match is None:
                continue

            if manifest.uploaded_at_ms > latest_ms:
                latest = ImageTag(name=match, uploaded_at_ms=manifest.uploaded_at_ms)
                latest_ms = manifest.uploaded_at_ms

        return latest

    def resolve_change(
        self,
        catalog: TagCatalog,
        pattern: Union[re.Pattern, str, None],
        previous: Optional[ImageTag] = None,
    ) -> ResolutionOutcome:
        """
        Decide whether the latest tag is a new revision

        Args:
            catalog: Manifests for the image
            pattern: Compiled filter
            previous: Last revision the caller knows about, or None

        Returns:
            NoRevision, Unchanged or NewRevision
        """
        latest = self.select_latest(catalog, pattern)

        if latest is None:
            logger.debug("No tag matched the filter")
            return NoRevision()

        # Identity is the (name, upload time) pair: a re-pushed tag is new
        if previous is not None and latest == previous:
            return Unchanged()

        return NewRevision(latest)

    def _first_match(self, manifest: ImageManifest, regex: re.Pattern) -> Optional[str]:
        for tag in manifest.tags:
            if regex.search(tag):
                return tag
        return None

    def _as_pattern(self, pattern: Union[re.Pattern, str, None]) -> re.Pattern:
        if isinstance(pattern, re.Pattern):
            return pattern
        if pattern is None or isinstance(pattern, str):
            return compile_tag_filter(pattern)
        raise PatternError(pattern, "not a regular expression")
