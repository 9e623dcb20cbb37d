"""
Date Reconciler
===============

Cleans the two candidate dates of each patient event (primary event/issue
date and secondary entry/system date) and drops events with no usable date.

Rules, in order:
    1. Parse dd/mm/yyyy text; unparsable -> null
    2. Either date before earliest_date -> null
    3. Primary date after latest_date -> null
    4. Primary before implausible_before with secondary after plausible_after
       -> primary replaced by secondary
    5. Null primary -> secondary
    6. Drop events whose primary is null or after latest_date
    7. Drop exact duplicate rows
"""

import logging
from pathlib import Path
from typing import Optional

import pandas as pd
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.pipeline_config import DATE_CONFIG
from utils.errors import MissingColumnError

logger = logging.getLogger(__name__)


def parse_cprd_dates(values: pd.Series, date_format: Optional[str] = None) -> pd.Series:
    """
    Parse CPRD text dates; failures become NaT.

    Values that are already datetimes pass through unchanged.
    """
    if pd.api.types.is_datetime64_any_dtype(values):
        return values
    fmt = date_format or DATE_CONFIG.date_format
    return pd.to_datetime(values.astype("object"), format=fmt, errors='coerce')


def reconcile(
    events: pd.DataFrame,
    earliest_date: Optional[str] = None,
    latest_date: Optional[str] = None,
    primary: str = "event_date",
    secondary: str = "entry_date",
    deduplicate: bool = True,
) -> pd.DataFrame:
    """
    Reconcile event/entry dates and restrict to the study window.

    Args:
        events: Patient events with raw date columns
        earliest_date: ISO date; earlier dates are treated as errors
        latest_date: ISO date; end of the study window
        primary: Event/issue date column
        secondary: Entry/system date column
        deduplicate: Drop exact duplicate rows afterwards

    Returns:
        New DataFrame with parsed dates and invalid events removed
    """
    missing = {primary, secondary} - set(events.columns)
    if missing:
        raise MissingColumnError(missing, "patient events")

    earliest = pd.Timestamp(earliest_date or DATE_CONFIG.earliest_date)
    latest = pd.Timestamp(latest_date or DATE_CONFIG.latest_date)
    implausible_before = pd.Timestamp(DATE_CONFIG.implausible_before)
    plausible_after = pd.Timestamp(DATE_CONFIG.plausible_after)

    df = events.copy()
    n_start = len(df)

    # 1. Parse
    prim = parse_cprd_dates(df[primary])
    sec = parse_cprd_dates(df[secondary])
    n_unparsed = int((prim.isna() & df[primary].notna()).sum())
    if n_unparsed:
        logger.info(f"{n_unparsed:,} {primary} values could not be parsed")

    # 2. Before study start
    too_early = prim < earliest
    prim = prim.mask(too_early)
    sec = sec.mask(sec < earliest)

    # 3. Future event dates
    too_late = prim > latest
    prim = prim.mask(too_late)
    logger.info(
        f"Nulled {int(too_early.sum()):,} {primary} before {earliest.date()} "
        f"and {int(too_late.sum()):,} after {latest.date()}"
    )

    # 4. Implausible primary with a plausible entry date
    override = (prim < implausible_before) & (sec > plausible_after)
    prim = prim.mask(override, sec)
    if override.any():
        logger.info(f"Replaced {int(override.sum()):,} implausible {primary} with {secondary}")

    # 5. Coalesce
    filled = prim.isna() & sec.notna()
    prim = prim.fillna(sec)
    logger.info(f"Filled {int(filled.sum()):,} missing {primary} from {secondary}")

    df[primary] = prim
    df[secondary] = sec

    # 6. Drop unusable
    keep = df[primary].notna() & (df[primary] <= latest)
    df = df[keep]
    logger.info(f"Dropped {n_start - len(df):,} events without a valid {primary}")

    # 7. Deduplicate
    if deduplicate:
        n_before = len(df)
        df = drop_exact_duplicates(df)
        if n_before - len(df):
            logger.info(f"Dropped {n_before - len(df):,} duplicate events")

    return df.reset_index(drop=True)


def drop_exact_duplicates(df: pd.DataFrame) -> pd.DataFrame:
    """Drop identical rows, including those with list-valued columns."""
    hashable = df.copy()
    for col in hashable.columns:
        # only object columns can hold lists
        if not pd.api.types.is_object_dtype(hashable[col]):
            continue
        if hashable[col].map(lambda v: isinstance(v, list)).any():
            hashable[col] = hashable[col].map(lambda v: tuple(v) if isinstance(v, list) else v)
    return df[~hashable.duplicated()]
