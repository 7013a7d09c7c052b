from __future__ import annotations

import re
from pathlib import Path

VERSION_FILE = "VERSION"

_SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$")


def read_repo_version(*, repo_root: Path) -> str:
    """Return the release recorded in ``VERSION``, which must hold a single SemVer string."""
    try:
        version = (repo_root / VERSION_FILE).read_text(encoding="utf-8").strip()
    except FileNotFoundError as e:
        raise FileNotFoundError(f"{VERSION_FILE} missing under {repo_root}") from e
    if _SEMVER_RE.match(version) is None:
        raise ValueError(f"{VERSION_FILE} does not hold a SemVer release: {version!r}")
    return version
