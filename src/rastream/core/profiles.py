"""Source profiles: named tuning parameters for file-backed sources.

A profile only configures how a PagedFile fetches bytes (page size, cache
depth, whether to map the file). It never changes what a bounded view returns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


class ProfileError(ValueError):
    """Raised when a profile document is malformed."""


@dataclass(frozen=True)
class SourceProfile:
    """Configuration for how a PagedFile reads from disk.

    Attributes:
        name: Profile identifier
        page_size: Bytes per cached page in buffered mode
        cache_pages: Number of pages kept in the LRU cache
        use_mmap: Whether to memory-map the file when the platform allows it
    """

    name: str
    page_size: int = 64 * 1024
    cache_pages: int = 16
    use_mmap: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ProfileError(f"name must be a non-empty string, got {self.name!r}")
        if not isinstance(self.page_size, int) or isinstance(self.page_size, bool) or self.page_size <= 0:
            raise ProfileError(f"page_size must be a positive integer, got {self.page_size!r}")
        if not isinstance(self.cache_pages, int) or isinstance(self.cache_pages, bool) or self.cache_pages <= 0:
            raise ProfileError(f"cache_pages must be a positive integer, got {self.cache_pages!r}")
        if not isinstance(self.use_mmap, bool):
            raise ProfileError(f"use_mmap must be a boolean, got {self.use_mmap!r}")


# ============================================================================
# PROFILE DEFINITIONS
# ============================================================================

DEFAULT_PROFILE = SourceProfile(name="default")

STREAMING_PROFILE = SourceProfile(
    name="streaming",
    page_size=1024 * 1024,  # Few large reads for front-to-back scans
    cache_pages=4,  # Pages are rarely revisited
    use_mmap=False,
)

LOW_MEMORY_PROFILE = SourceProfile(
    name="low_memory",
    page_size=4 * 1024,
    cache_pages=4,
    use_mmap=False,  # Keep address space small
)


# ============================================================================
# PROFILE REGISTRY
# ============================================================================

PROFILES = {
    "default": DEFAULT_PROFILE,
    "streaming": STREAMING_PROFILE,
    "low_memory": LOW_MEMORY_PROFILE,
}

_TUNABLES = {f.name for f in fields(SourceProfile)} - {"name"}


def get_profile(name: str) -> SourceProfile:
    """Get source profile by name.

    Args:
        name: Profile name (default, streaming, low_memory)

    Returns:
        SourceProfile instance

    Raises:
        KeyError: If profile name not found
    """
    return PROFILES[name]


def load_profile(path: str | Path) -> SourceProfile:
    """Load a profile from a YAML file.

    The document is a mapping. `base` names a built-in profile to start from
    (default: "default"); `name` defaults to the file stem; any of
    page_size, cache_pages and use_mmap override the base values.
    """
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ProfileError(f"Invalid YAML in {path}: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProfileError(f"Profile {path} must be a mapping, got {type(data).__name__}")

    unknown = set(data) - _TUNABLES - {"name", "base"}
    if unknown:
        raise ProfileError(f"Unknown profile keys in {path}: {', '.join(sorted(map(str, unknown)))}")

    base_name = data.get("base", "default")
    if not isinstance(base_name, str):
        raise ProfileError(f"base must be a profile name, got {base_name!r} in {path}")
    try:
        base = get_profile(base_name)
    except KeyError:
        raise ProfileError(f"Unknown base profile {base_name!r} in {path}") from None

    overrides = {key: data[key] for key in _TUNABLES if key in data}
    profile = replace(base, name=data.get("name", path.stem), **overrides)
    logger.debug("Loaded profile %r from %s (base=%s)", profile.name, path, base_name)
    return profile
