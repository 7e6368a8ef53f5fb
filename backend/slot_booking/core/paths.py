from __future__ import annotations

from pathlib import Path

# backend/slot_booking/core/paths.py -> repo root is three levels above core/
REPO_ROOT = Path(__file__).resolve().parents[3]


def resolve_repo_path(path_value: str) -> Path:
    """Resolve env files and service-account keys given as absolute, CWD-relative or repo-relative paths."""
    candidate = Path(path_value)
    if candidate.is_absolute():
        return candidate
    if candidate.exists():
        return candidate.resolve()
    from_root = REPO_ROOT / candidate
    if from_root.exists():
        return from_root.resolve()
    return candidate.resolve()
