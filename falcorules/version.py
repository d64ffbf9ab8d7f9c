"""Engine version constants and semantic-version helpers."""

from __future__ import annotations

from semver import Version

ENGINE_VERSION_MAJOR = 0
ENGINE_VERSION_MINOR = 31
ENGINE_VERSION_PATCH = 0

ENGINE_VERSION = f"{ENGINE_VERSION_MAJOR}.{ENGINE_VERSION_MINOR}.{ENGINE_VERSION_PATCH}"

# Fingerprint of the fields, event types and event schema supported by this engine.
ENGINE_CHECKSUM = "7c512927c89f594f024f2ff181077c780c4fe6e9dd4cee3f20a9ef208a356e4e"


def engine_version() -> Version:
    """Return the version of this rule engine."""
    return Version(ENGINE_VERSION_MAJOR, ENGINE_VERSION_MINOR, ENGINE_VERSION_PATCH)


def implicit_engine_version(minor: int) -> Version:
    """Convert a legacy progressive engine version number into a semver.

    The legacy number is the minor component; major and patch come from
    this engine's own version.
    """
    if isinstance(minor, bool) or not isinstance(minor, int):
        raise TypeError(f"legacy engine version must be an integer, got {minor!r}")
    if minor < 0 or minor > 0xFFFFFFFF:
        raise ValueError(f"legacy engine version out of range: {minor}")
    return Version(ENGINE_VERSION_MAJOR, minor, ENGINE_VERSION_PATCH)


def parse_version(text: str) -> Version:
    """Parse an ``x.y.z`` semver string, raising ValueError if it is invalid."""
    if not isinstance(text, str):
        raise ValueError(f"Unable to parse version {text!r}: not a string")
    try:
        return Version.parse(text.strip())
    except (ValueError, TypeError) as exc:
        raise ValueError(f"Unable to parse version '{text}' as a semver string") from exc