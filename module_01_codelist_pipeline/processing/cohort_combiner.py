"""
Cohort Combiner
===============

Merges per-database extraction results into one patient-event table keyed
by a database-suffixed patient ID, reconciles dates and saves the result.
"""

import logging
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from extractors.cohort_extractor import EVENT_COLUMNS, make_patient_id
from processing.date_reconciler import drop_exact_duplicates, reconcile

logger = logging.getLogger(__name__)


def composite_patient_id(patid: str, database: str) -> str:
    """
    Patient ID unique across GOLD and Aurum.

    >>> composite_patient_id("12345", "gold")
    '12345-G'
    """
    return make_patient_id(pd.Series([patid]), database).iloc[0]


def combine_events(
    event_tables: Sequence[pd.DataFrame],
    earliest_date: Optional[str] = None,
    latest_date: Optional[str] = None,
    reconcile_dates: bool = True,
) -> pd.DataFrame:
    """
    Concatenate extraction results from both databases.

    Rows lacking a composite patient_id get one from patid + database.

    Args:
        event_tables: Output of cohort_extractor.extract, one per database/kind
        earliest_date: Passed to the date reconciler
        latest_date: Passed to the date reconciler
        reconcile_dates: Apply date reconciliation (also deduplicates)

    Returns:
        Combined patient events, key columns first
    """
    frames = [t for t in event_tables if len(t)]
    if not frames:
        return pd.DataFrame(columns=EVENT_COLUMNS)

    combined = pd.concat(frames, ignore_index=True)

    if 'patient_id' not in combined.columns:
        combined['patient_id'] = pd.NA
    no_id = combined['patient_id'].isna()
    for database, idx in combined[no_id].groupby('database').groups.items():
        combined.loc[idx, 'patient_id'] = make_patient_id(combined.loc[idx, 'patid'], database)

    if reconcile_dates:
        combined = reconcile(combined, earliest_date, latest_date)
    else:
        combined = drop_exact_duplicates(combined).reset_index(drop=True)

    first = [c for c in EVENT_COLUMNS if c in combined.columns]
    combined = combined[first + [c for c in combined.columns if c not in first]]

    for database, n in combined.groupby('database')['patient_id'].nunique().items():
        logger.info(f"{database}: {n:,} patients")
    logger.info(f"Combined: {len(combined):,} events, {combined['patient_id'].nunique():,} patients")
    return combined


def save_events(events: pd.DataFrame, output_path: Path) -> Path:
    """Save patient events as parquet."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    events.to_parquet(output_path, index=False)
    logger.info(f"Saved {len(events):,} events to {output_path}")
    return output_path
