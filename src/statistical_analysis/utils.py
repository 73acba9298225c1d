import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def _grouping(df, factors):
    """Categorical group keys so that empty level combinations are kept."""
    keys = []
    for factor in factors:
        series = df[factor]
        if isinstance(series.dtype, pd.CategoricalDtype):
            keys.append(series)
        else:
            keys.append(pd.Categorical(series, categories=sorted(series.dropna().unique())))
    return keys


def cell_counts(df, factors):
    """
    Count observations for every level combination of the given factors.

    Parameters
    ----------
    df : pd.DataFrame
        Filtered dataset.
    factors : list of str
        Factor columns to cross.

    Returns
    -------
    pd.DataFrame
        One row per level combination (empty cells included) with an ``n`` column.

    Raises
    ------
    ValueError
        If ``factors`` is empty or names a column not in ``df``.
    """
    factors = list(factors)
    if not factors:
        raise ValueError("factors must not be empty")
    missing = [f for f in factors if f not in df.columns]
    if missing:
        raise ValueError(f"Factors not in dataset: {', '.join(missing)}")

    counts = pd.Series(1, index=df.index).groupby(_grouping(df, factors), observed=False).sum()
    counts.index.names = factors
    return counts.rename("n").reset_index()


def is_balanced(counts):
    """True if every cell of a ``cell_counts`` table has the same number of observations."""
    if counts is None or counts.empty:
        return False
    return counts["n"].nunique() == 1


def group_summary(df, response, factors):
    """
    Descriptive statistics of ``response`` per observed level combination.

    Returns
    -------
    pd.DataFrame
        Columns: the factors, then ``n, mean, sd, median, min, max``.
    """
    if response not in df.columns:
        raise ValueError(f"Response '{response}' not in dataset")

    grouped = df.groupby(_grouping(df, factors), observed=True)[response]
    summary = grouped.agg(["count", "mean", "std", "median", "min", "max"])
    summary = summary.rename(columns={"count": "n", "std": "sd"})
    summary.index.names = list(factors)
    return summary.reset_index()


def outcome_rates(df, factor, outcome="outcome_code"):
    """
    Proportion of positive outcomes (code 1) for each level of ``factor``.

    Returns
    -------
    pd.DataFrame
        Columns: ``factor, n, events, rate``.
    """
    if outcome not in df.columns:
        raise ValueError(f"Outcome '{outcome}' not in dataset")

    codes = df[outcome]
    if not codes.dropna().isin([0, 1]).all():
        raise ValueError(f"Outcome '{outcome}' must be coded 0/1")

    grouped = codes.groupby(_grouping(df, [factor]), observed=False)
    rates = pd.DataFrame({"n": grouped.count(), "events": grouped.sum()})
    # Empty levels get a NaN rate
    rates["rate"] = rates["events"] / rates["n"].replace(0, np.nan)
    rates.index.name = factor
    return rates.reset_index()
