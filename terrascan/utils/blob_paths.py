"""Deterministic blob path generation for the imagery pipeline.

    raw/{YYYY}/{MM}/{provider}/{scene}/{band}.tif     (raw container)
    cog/{YYYY}/{MM}/{provider}/{scene}.tif            (COG container)
    cog/{YYYY}/{MM}/{provider}/{scene}.json           (COG sidecar)
    jobs/{job-id}/{output}                            (analysis container)

Year and month come from the scene acquisition date, so the same scene
always lands at the same path and re-running a stage overwrites its
previous output.

Path components are sanitised to lowercase slug form: only ``a-z``,
``0-9``, ``_`` and ``-`` are allowed.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

RAW_PREFIX = "raw"
COG_PREFIX = "cog"
JOBS_PREFIX = "jobs"

RESULT_FILENAME = "result.json"
FEATURES_FILENAME = "features.geojson"

_SLUG_RE = re.compile(r"[^a-z0-9_-]+")


def sanitise_slug(value: str) -> str:
    """Convert a string to a path-safe slug.

    Falls back to ``"unknown"`` if nothing survives sanitising.
    """
    slug = value.lower().strip().replace(" ", "-").replace(".", "-")
    slug = _SLUG_RE.sub("", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug if slug else "unknown"


def _scene_prefix(prefix: str, provider: str, scene_id: str, acquired_at: datetime) -> str:
    return (
        f"{prefix}/{acquired_at.year:04d}/{acquired_at.month:02d}/"
        f"{sanitise_slug(provider)}/{sanitise_slug(scene_id)}"
    )


def build_raw_band_path(
    provider: str,
    scene_id: str,
    band: str,
    *,
    acquired_at: datetime,
) -> str:
    """``raw/{YYYY}/{MM}/{provider}/{scene}/{band}.tif``"""
    base = _scene_prefix(RAW_PREFIX, provider, scene_id, acquired_at)
    return f"{base}/{sanitise_slug(band)}.tif"


def build_cog_path(provider: str, scene_id: str, *, acquired_at: datetime) -> str:
    """``cog/{YYYY}/{MM}/{provider}/{scene}.tif``"""
    return _scene_prefix(COG_PREFIX, provider, scene_id, acquired_at) + ".tif"


def build_sidecar_path(cog_path: str) -> str:
    """Return the metadata JSON path stored beside *cog_path*."""
    return cog_path.removesuffix(".tif") + ".json"


def build_job_output_path(job_id: str, filename: str) -> str:
    """``jobs/{job-id}/{filename}``

    *filename* keeps its extension; the stem is slugged.
    """
    stem, dot, ext = filename.rpartition(".")
    if not dot:
        stem, ext = filename, ""
    name = sanitise_slug(stem) + (f".{ext.lower()}" if ext else "")
    return f"{JOBS_PREFIX}/{sanitise_slug(job_id)}/{name}"
