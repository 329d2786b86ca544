"""Gradient-domain (Poisson) blending of a source raster into a target.

Inside the blend region the composite keeps the source's gradients while
its boundary follows the target, so no seam is visible where the two meet.
For every unknown pixel p with 4-neighbours q::

    4 * f_p - sum(f_q, q unknown) = sum(s_p - s_q) + sum(t_q, q known)

The system is symmetric positive definite and is solved with conjugate
gradients starting from the source. Unknowns are the region pixels that do
not lie on the image border; border pixels are boundary data.

A solve that does not converge within ``max_iterations`` or
``time_limit_sec`` is not an error: the blender falls back to an
alpha-feathered copy and reports ``degraded=True`` with a reason.
"""

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np
from scipy import sparse
from scipy.ndimage import distance_transform_edt
from scipy.sparse.linalg import cg

from gapfill.schemas.internal import InternalBlenderConfig

__all__ = ['BlendResult', 'SeamlessBlender', 'blend_images_poisson', 'feather']

logger = logging.getLogger(__name__)

_OFFSETS = ((-1, 0), (1, 0), (0, -1), (0, 1))


class _DeadlineExceeded(Exception):
    pass


@dataclass
class BlendResult:
    """Composite plus solver report.

    ``degraded`` is True when the feathered fallback was used; ``reason``
    then says why.
    """

    composite: np.ndarray
    degraded: bool
    iterations: int
    reason: Optional[str] = None


def feather(source: np.ndarray, target: np.ndarray, mask: np.ndarray,
            radius: float) -> np.ndarray:
    """Alpha-feathered copy of ``source`` over ``target`` inside ``mask``.

    Alpha grows linearly from 0 at the region edge to 1 at ``radius``
    pixels inside it. The image border counts as a region edge.
    """
    padded = np.pad(mask, 1, mode="constant", constant_values=False)
    distance = distance_transform_edt(padded)[1:-1, 1:-1]
    alpha = np.clip(distance / radius, 0.0, 1.0)
    out = target.copy()
    inside = alpha > 0
    out[inside] = alpha[inside] * source[inside] + (1.0 - alpha[inside]) * target[inside]
    return out


def _check_inputs(source, target, mask) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    source = np.asarray(source, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)
    if source.ndim != 2 or source.shape != target.shape:
        raise ValueError(f"Source {source.shape} and target {target.shape} must be equal 2-D grids")
    if mask is None:
        mask = np.ones(source.shape, dtype=bool)
    mask = np.asarray(mask, dtype=bool)
    if mask.shape != source.shape:
        raise ValueError(f"Blend mask {mask.shape} does not match rasters {source.shape}")
    if not (np.all(np.isfinite(source[mask])) and np.all(np.isfinite(target))):
        raise ValueError("Blending requires finite source and target values")
    return source, target, mask


def _poisson_system(source: np.ndarray, target: np.ndarray, region: np.ndarray):
    rows, cols = np.nonzero(region)
    n = rows.size
    index = np.full(region.shape, -1, dtype=np.int64)
    index[rows, cols] = np.arange(n)

    own = np.arange(n)
    i_parts, j_parts, v_parts = [own], [own], [np.full(n, 4.0)]
    b = np.zeros(n)
    for dr, dc in _OFFSETS:
        nr, nc = rows + dr, cols + dc
        # no guidance across an edge whose outer source pixel is undefined
        outer = source[nr, nc]
        defined = np.isfinite(outer)
        b[defined] += source[rows[defined], cols[defined]] - outer[defined]
        neighbour = index[nr, nc]
        unknown = neighbour >= 0
        i_parts.append(own[unknown])
        j_parts.append(neighbour[unknown])
        v_parts.append(np.full(int(unknown.sum()), -1.0))
        b[~unknown] += target[nr[~unknown], nc[~unknown]]

    A = sparse.csr_matrix(
        (np.concatenate(v_parts), (np.concatenate(i_parts), np.concatenate(j_parts))),
        shape=(n, n),
    )
    return A, b, rows, cols


class SeamlessBlender:
    """Poisson blender with a bounded iterative solve.

    Parameters
    ----------
    config : InternalBlenderConfig
        ``tolerance`` (relative residual), ``max_iterations`` (None: half
        the number of unknowns), ``time_limit_sec`` and ``feather_radius``.

    Examples
    --------
    >>> blender = SeamlessBlender(config.blender)
    >>> result = blender.blend(neighbour, current, mask=taken)
    >>> if result.degraded:
    ...     logger.warning(result.reason)
    """

    def __init__(self, config: InternalBlenderConfig):
        self.config = config

    def blend(self, source, target, mask=None) -> BlendResult:
        """Blend ``source`` into ``target`` over ``mask`` (default: everywhere).

        Raises
        ------
        ValueError
            Shapes disagree or inputs are not finite.
        """
        source, target, mask = _check_inputs(source, target, mask)

        region = mask.copy()
        region[0, :] = region[-1, :] = False
        region[:, 0] = region[:, -1] = False

        composite = target.copy()
        if not region.any():
            return BlendResult(composite=composite, degraded=False, iterations=0)

        A, b, rows, cols = _poisson_system(source, target, region)
        n = b.size
        maxiter = self.config.max_iterations or max(1, n // 2)

        iterations = 0
        deadline = time.monotonic() + self.config.time_limit_sec

        def _count(_xk):
            nonlocal iterations
            iterations += 1
            if time.monotonic() > deadline:
                raise _DeadlineExceeded()

        reason = None
        try:
            solution, info = cg(A, b, x0=source[rows, cols], rtol=self.config.tolerance,
                                maxiter=maxiter, callback=_count)
        except _DeadlineExceeded:
            reason = f"time limit of {self.config.time_limit_sec}s exceeded after {iterations} iterations"
        else:
            if info > 0:
                reason = f"no convergence within {maxiter} iterations"
            elif info < 0:
                reason = f"solver breakdown (info={info})"
            elif not np.all(np.isfinite(solution)):
                reason = "solver produced non-finite values"

        if reason is not None:
            logger.debug("Poisson blend degraded (%d unknowns): %s", n, reason)
            fallback = feather(source, target, mask, self.config.feather_radius)
            return BlendResult(composite=fallback, degraded=True, iterations=iterations, reason=reason)

        composite[rows, cols] = solution
        return BlendResult(composite=composite, degraded=False, iterations=iterations)

    def composite(self, target, layers: Iterable[Tuple[np.ndarray, np.ndarray]]) -> BlendResult:
        """Fold several ``(source, mask)`` layers onto ``target`` in order."""
        current = np.asarray(target, dtype=np.float64).copy()
        iterations = 0
        reasons = []
        for source, mask in layers:
            result = self.blend(source, current, mask)
            current = result.composite
            iterations += result.iterations
            if result.degraded:
                reasons.append(result.reason)
        return BlendResult(
            composite=current,
            degraded=bool(reasons),
            iterations=iterations,
            reason="; ".join(reasons) if reasons else None,
        )


def blend_images_poisson(source, target, mask=None,
                         config: Optional[InternalBlenderConfig] = None) -> np.ndarray:
    """Composite of ``source`` blended into ``target``.

    Uses the default blender settings when ``config`` is omitted. A
    degraded blend is logged; call SeamlessBlender.blend() to inspect it.
    """
    if config is None:
        from gapfill.schemas import ParamConfig, resolve_config
        config = resolve_config(ParamConfig()).blender

    result = SeamlessBlender(config).blend(source, target, mask)
    if result.degraded:
        logger.warning("Blend degraded, feathered fallback used: %s", result.reason)
    return result.composite
