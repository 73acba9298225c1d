"""
Response transformation selection.

The working response is chosen from the Box-Cox power family. For each
lambda on a grid the full factorial model is fit to the transformed
response and scored by its profile log-likelihood (including the Jacobian
of the transformation, so scores are comparable across lambdas). A lambda
close enough to zero selects the natural log.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
import statsmodels.api as sm
from patsy import dmatrix
from scipy.special import boxcox

from src.statistical_analysis.statistical_tests import transformation_required

logger = logging.getLogger(__name__)

IDENTITY = "identity"
LOG = "log"
POWER = "power"


@dataclass(frozen=True)
class Transformation:
    """A monotone response transformation with its inverse."""

    kind: str = IDENTITY
    lmbda: float | None = None
    offset: float = 0.0

    def __post_init__(self):
        if self.kind not in (IDENTITY, LOG, POWER):
            raise ValueError(f"Unknown transformation kind: {self.kind}")
        if self.kind == POWER and not self.lmbda:
            raise ValueError("A power transformation needs a non-zero lambda")

    def apply(self, y):
        shifted = np.asarray(y, dtype=float) + self.offset
        if self.kind == IDENTITY:
            return shifted
        if np.any(shifted <= 0):
            raise ValueError(f"{self.description} requires values above {-self.offset}")
        if self.kind == LOG:
            return np.log(shifted)
        return np.power(shifted, self.lmbda)

    def inverse(self, z):
        z = np.asarray(z, dtype=float)
        if self.kind == IDENTITY:
            return z - self.offset
        if self.kind == LOG:
            return np.exp(z) - self.offset
        return np.power(z, 1.0 / self.lmbda) - self.offset

    @property
    def description(self) -> str:
        base = f"y + {self.offset:g}" if self.offset else "y"
        if self.kind == IDENTITY:
            return base if self.offset else "y (untransformed)"
        if self.kind == LOG:
            return f"log({base})"
        return f"({base})^{self.lmbda:g}"


def boxcox_transform(y, lmbda: float) -> np.ndarray:
    """Box-Cox transform ``(y**lmbda - 1) / lmbda``, with ``log(y)`` at lambda = 0."""
    y = np.asarray(y, dtype=float)
    if np.any(y <= 0):
        raise ValueError("Box-Cox transform requires strictly positive values")
    return boxcox(y, lmbda)


def boxcox_log_likelihood(y, design, lmbda: float) -> float:
    """
    Profile log-likelihood of an OLS fit of the Box-Cox transformed response.

    Parameters
    ----------
    y : array-like
        Strictly positive response.
    design : array-like
        Model design matrix (with intercept).
    lmbda : float
        Transformation parameter.
    """
    y = np.asarray(y, dtype=float)
    z = boxcox_transform(y, lmbda)
    llf = sm.OLS(z, np.asarray(design, dtype=float)).fit().llf
    return float(llf + (lmbda - 1.0) * np.sum(np.log(y)))


def boxcox_profile(data: pd.DataFrame, spec, source: str, offset: float, grid) -> pd.DataFrame:
    """
    Evaluate the Box-Cox log-likelihood of ``spec`` over a lambda grid.

    Parameters
    ----------
    data : pd.DataFrame
        Filtered dataset.
    spec : ModelSpec
        Model whose right-hand side is fit at every lambda.
    source : str
        Untransformed response field, e.g. ``length_of_stay``.
    offset : float
        Added to the response before transforming, guarding against zeros.
    grid : array-like
        Lambda values to evaluate.

    Returns
    -------
    pd.DataFrame
        Columns ``lambda`` and ``log_likelihood``, one row per grid point.

    Raises
    ------
    ValueError
        If the shifted response is not strictly positive or the grid is empty.
    """
    grid = np.asarray(grid, dtype=float)
    if grid.size == 0:
        raise ValueError("lambda grid must not be empty")

    y = data[source].to_numpy(dtype=float) + offset
    if np.any(y <= 0):
        raise ValueError(f"{source} + {offset:g} must be strictly positive for Box-Cox")

    design = dmatrix(spec.rhs, data, return_type="dataframe")

    log_likelihoods = [boxcox_log_likelihood(y, design, lmbda) for lmbda in grid]
    for lmbda, llf in zip(grid, log_likelihoods):
        logger.debug(f"Box-Cox lambda={lmbda:+.2f}: log-likelihood={llf:.3f}")

    return pd.DataFrame({"lambda": grid, "log_likelihood": log_likelihoods})


def select_transformation(profile: pd.DataFrame, offset: float, log_tolerance: float = 0.1) -> Transformation:
    """
    Pick the transformation from a Box-Cox profile.

    The lambda maximising the log-likelihood is selected. If it lies within
    ``log_tolerance`` of zero the natural log is used, otherwise the power
    ``y**lambda``.
    """
    if profile.empty:
        raise ValueError("Box-Cox profile is empty")

    best = profile.loc[profile["log_likelihood"].idxmax()]
    lmbda = float(best["lambda"])

    if abs(lmbda) < log_tolerance:
        transformation = Transformation(kind=LOG, lmbda=0.0, offset=offset)
    else:
        transformation = Transformation(kind=POWER, lmbda=lmbda, offset=offset)

    logger.info(f"Box-Cox optimum lambda={lmbda:+.2f}; working response {transformation.description}")
    return transformation


def choose_transformation(data: pd.DataFrame, spec, diagnostics: dict, config):
    """
    Decide the working response transformation.

    With policy ``"never"`` the response is used as is. With ``"auto"`` the
    Box-Cox search only runs when a diagnostic fails. ``"always"`` searches
    regardless of the diagnostics.

    Returns
    -------
    tuple
        ``(Transformation, profile)`` where ``profile`` is None if no search ran.
    """
    policy = config.transformation_policy
    if policy == "never":
        logger.info("Transformation disabled; using the raw response")
        return Transformation(), None
    if policy == "auto" and not transformation_required(diagnostics):
        logger.info("Model assumptions met; using the raw response")
        return Transformation(), None

    profile = boxcox_profile(data, spec, spec.response, config.response_offset, config.lambda_grid())
    transformation = select_transformation(
        profile, offset=config.response_offset, log_tolerance=config.log_tolerance
    )
    return transformation, profile


def apply_transformation(
    data: pd.DataFrame, transformation: Transformation, source: str, target: str
) -> pd.DataFrame:
    """Return a copy of ``data`` with the working response stored in ``target``."""
    df = data.copy()
    df[target] = transformation.apply(df[source])
    return df
