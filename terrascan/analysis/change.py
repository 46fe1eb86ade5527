"""Change detection between two time-aligned rasters.

Methods:

- ``difference``: compute a spectral index for *before* and *after*;
  magnitude is ``|after - before|`` and the signed difference is kept.
- ``change_vector``: Euclidean magnitude of the per-pixel difference
  vector over the bands both scenes share.

The change threshold is picked automatically with Otsu's method over the
finite magnitude values, unless the caller supplies one.  Pixels with a
NaN magnitude are never marked as changed.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from terrascan.analysis.spectral import SpectralIndex, compute_index
from terrascan.core.constants import CLASSIFICATION_BANDS
from terrascan.core.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from numpy.typing import ArrayLike

logger = logging.getLogger("terrascan.analysis.change")

OTSU_BINS = 256


class ChangeDetectionError(ValidationError):
    """Inputs cannot be compared (shape mismatch, no common bands, bad method)."""

    default_stage = "change_detection"
    default_code = "CHANGE_DETECTION_INVALID"


class ChangeMethod(enum.Enum):
    DIFFERENCE = "difference"
    CHANGE_VECTOR = "change_vector"


@dataclass(frozen=True, slots=True)
class ChangeResult:
    """Thresholded change between two rasters.

    Attributes:
        mask: Boolean change mask (``magnitude > threshold``).
        magnitude: float32 change magnitude (NaN where undefined).
        threshold: Threshold applied to the magnitude.
        changed_pixels: Number of ``True`` pixels in *mask*.
        valid_pixels: Number of finite magnitude pixels.
        method: Method that produced the magnitude.
        difference: Signed ``after - before`` index difference
            (``difference`` method only).
    """

    mask: np.ndarray
    magnitude: np.ndarray
    threshold: float
    changed_pixels: int
    valid_pixels: int
    method: ChangeMethod
    difference: np.ndarray | None = None

    @property
    def changed_fraction(self) -> float:
        """Changed pixels as a fraction of valid pixels (0.0 when none are valid)."""
        if self.valid_pixels == 0:
            return 0.0
        return self.changed_pixels / self.valid_pixels

    def summary(self) -> dict[str, float | int | str]:
        return {
            "method": self.method.value,
            "threshold": self.threshold,
            "changed_pixels": self.changed_pixels,
            "valid_pixels": self.valid_pixels,
            "changed_fraction": self.changed_fraction,
        }


# ---------------------------------------------------------------------------
# Otsu thresholding
# ---------------------------------------------------------------------------


def otsu_threshold(values: ArrayLike, *, bins: int = OTSU_BINS) -> float:
    """Return the Otsu threshold of the finite entries of *values*.

    A *bins*-bin histogram spans ``[min, max]`` of the finite values and
    the threshold is the centre of the bin that maximises the
    between-class variance ``w0 * w1 * (mu0 - mu1) ** 2``.

    Returns ``0.0`` when there is no finite value, and the value itself
    when all finite values are equal.
    """
    data = np.asarray(values, dtype=np.float64).ravel()
    data = data[np.isfinite(data)]
    if data.size == 0:
        return 0.0
    lo = float(data.min())
    hi = float(data.max())
    if lo == hi:
        return lo

    hist, edges = np.histogram(data, bins=bins, range=(lo, hi))
    centres = (edges[:-1] + edges[1:]) / 2.0
    weights = hist.astype(np.float64)

    w0 = np.cumsum(weights)
    w1 = w0[-1] - w0
    cum_mass = np.cumsum(weights * centres)
    total_mass = cum_mass[-1]

    valid = (w0 > 0) & (w1 > 0)
    mu0 = np.zeros_like(w0)
    mu1 = np.zeros_like(w0)
    np.divide(cum_mass, w0, out=mu0, where=valid)
    np.divide(total_mass - cum_mass, w1, out=mu1, where=valid)
    between = np.where(valid, w0 * w1 * (mu0 - mu1) ** 2, 0.0)

    return float(centres[int(np.argmax(between))])


def threshold_change(
    magnitude: ArrayLike,
    *,
    method: ChangeMethod,
    threshold: float | None = None,
    difference: np.ndarray | None = None,
) -> ChangeResult:
    """Build a ``ChangeResult`` from a magnitude raster.

    Args:
        magnitude: Change magnitude (NaN = no data).
        method: Method that produced *magnitude*.
        threshold: Fixed threshold; Otsu is used when ``None``.
        difference: Optional signed difference to carry along.
    """
    mag = np.asarray(magnitude, dtype=np.float32)
    valid = np.isfinite(mag)
    thr = otsu_threshold(mag) if threshold is None else float(threshold)

    mask = np.zeros(mag.shape, dtype=bool)
    np.greater(mag, thr, out=mask, where=valid)

    return ChangeResult(
        mask=mask,
        magnitude=mag,
        threshold=thr,
        changed_pixels=int(mask.sum()),
        valid_pixels=int(valid.sum()),
        method=method,
        difference=difference,
    )


# ---------------------------------------------------------------------------
# Methods
# ---------------------------------------------------------------------------


def index_difference(
    before: Mapping[str, ArrayLike],
    after: Mapping[str, ArrayLike],
    *,
    index: str | SpectralIndex = SpectralIndex.NDVI,
    threshold: float | None = None,
) -> ChangeResult:
    """Change as the absolute difference of a spectral index.

    Raises:
        ChangeDetectionError: If the two index rasters differ in shape.
        SpectralIndexError: If either scene lacks a band the index needs.
    """
    index_before = compute_index(before, index)
    index_after = compute_index(after, index)
    _check_shapes(index_before.shape, index_after.shape)

    signed = index_after.astype(np.float64) - index_before.astype(np.float64)
    return threshold_change(
        np.abs(signed),
        method=ChangeMethod.DIFFERENCE,
        threshold=threshold,
        difference=signed.astype(np.float32),
    )


def change_vector(
    before: Mapping[str, ArrayLike],
    after: Mapping[str, ArrayLike],
    *,
    bands: Sequence[str] | None = None,
    threshold: float | None = None,
) -> ChangeResult:
    """Change as the Euclidean norm of the band difference vector.

    Args:
        before: Band name → 2-D array for the earlier scene.
        after: Band name → 2-D array for the later scene.
        bands: Bands to use; default is every reflectance band both share.
        threshold: Fixed threshold; Otsu when ``None``.

    Raises:
        ChangeDetectionError: If no band is shared or shapes differ.
    """
    if bands is None:
        names = sorted((set(before) & set(after)) - CLASSIFICATION_BANDS)
    else:
        names = [b for b in bands if b in before and b in after]
        absent = sorted(set(bands) - set(names))
        if absent:
            msg = f"change_vector: band(s) missing from one scene: {', '.join(absent)}"
            raise ChangeDetectionError(msg)
    if not names:
        msg = "change_vector: the two scenes share no reflectance band"
        raise ChangeDetectionError(msg)

    sum_sq = _squared_difference(before, after, names[0])
    for name in names[1:]:
        sq = _squared_difference(before, after, name)
        _check_shapes(sum_sq.shape, sq.shape, band=name)
        sum_sq += sq

    return threshold_change(
        np.sqrt(sum_sq), method=ChangeMethod.CHANGE_VECTOR, threshold=threshold
    )


def detect_change(
    before: Mapping[str, ArrayLike],
    after: Mapping[str, ArrayLike],
    *,
    method: str | ChangeMethod = ChangeMethod.DIFFERENCE,
    index: str | SpectralIndex = SpectralIndex.NDVI,
    bands: Sequence[str] | None = None,
    threshold: float | None = None,
) -> ChangeResult:
    """Dispatch to ``index_difference`` or ``change_vector``.

    Raises:
        ChangeDetectionError: On an unknown method.
    """
    try:
        selected = method if isinstance(method, ChangeMethod) else ChangeMethod(str(method))
    except ValueError as exc:
        known = ", ".join(m.value for m in ChangeMethod)
        msg = f"Unknown change method {method!r}; expected one of: {known}"
        raise ChangeDetectionError(msg) from exc

    if selected is ChangeMethod.DIFFERENCE:
        result = index_difference(before, after, index=index, threshold=threshold)
    else:
        result = change_vector(before, after, bands=bands, threshold=threshold)

    logger.info(
        "Change detected | method=%s | threshold=%.4f | changed=%d/%d",
        selected.value,
        result.threshold,
        result.changed_pixels,
        result.valid_pixels,
    )
    return result


def _squared_difference(
    before: Mapping[str, ArrayLike], after: Mapping[str, ArrayLike], name: str
) -> np.ndarray:
    a = np.asarray(before[name], dtype=np.float64)
    b = np.asarray(after[name], dtype=np.float64)
    _check_shapes(a.shape, b.shape, band=name)
    return (b - a) ** 2


def _check_shapes(a: tuple[int, ...], b: tuple[int, ...], *, band: str = "") -> None:
    if a != b:
        where = f" (band {band})" if band else ""
        msg = f"before/after shapes differ{where}: {a} vs {b}"
        raise ChangeDetectionError(msg)
