"""
Medication Reference Loader
===========================

Reads one drug-class sheet of the medication reference workbook and expands
it into (keyword, brand, drug_class) search pairs for the matcher.

Workbook layout per sheet: a title row (skipped), then a header row with
``Clean`` (canonical ingredient), a brand-name column, an optional ``Group``
(drug class) and an ``Exclude`` marker column.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Union

import pandas as pd
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.pipeline_config import MEDICATION_REFERENCE_CONFIG, MEDICATION_REFERENCE_XLSX
from utils.errors import MissingColumnError

logger = logging.getLogger(__name__)


def _find_brand_column(columns: List[str]) -> Optional[str]:
    for col in MEDICATION_REFERENCE_CONFIG.brand_columns:
        if col in columns:
            return col
    return None


def normalize_reference(raw: pd.DataFrame, source: str = None) -> pd.DataFrame:
    """
    Reduce a raw reference sheet to one row per medication.

    Rows with no keyword, or with anything in the Exclude column, are dropped.

    Args:
        raw: Sheet as read from the workbook
        source: Name used in error messages

    Returns:
        DataFrame with keyword (lowercase), brandnames (raw text or null),
        drug_class (or null)
    """
    cfg = MEDICATION_REFERENCE_CONFIG
    raw = raw.rename(columns=lambda c: str(c).strip())
    if cfg.keyword_column not in raw.columns:
        raise MissingColumnError([cfg.keyword_column], source)

    brand_col = _find_brand_column(list(raw.columns))

    ref = pd.DataFrame({
        'keyword': raw[cfg.keyword_column].astype("string").str.strip().str.lower(),
        'brandnames': raw[brand_col].astype("string") if brand_col else pd.NA,
        'drug_class': raw[cfg.group_column].astype("string") if cfg.group_column in raw.columns else pd.NA,
    })
    ref['keyword'] = ref['keyword'].replace("", pd.NA)

    keep = ref['keyword'].notna()
    if cfg.exclude_column in raw.columns:
        keep &= raw[cfg.exclude_column].isna()

    ref = ref[keep].reset_index(drop=True)
    logger.info(f"Medication reference{' ' + source if source else ''}: {len(ref)} medications")
    return ref


def load_medication_reference(
    sheet: str,
    path: Union[str, Path] = MEDICATION_REFERENCE_XLSX,
) -> pd.DataFrame:
    """
    Load one sheet of the medication reference workbook.

    Args:
        sheet: Sheet name (e.g. "glp1ras")
        path: Workbook path

    Returns:
        Normalised reference table (see normalize_reference)
    """
    raw = pd.read_excel(
        path,
        sheet_name=sheet,
        skiprows=MEDICATION_REFERENCE_CONFIG.skip_rows,
        dtype=str,
        engine="openpyxl",
    )
    return normalize_reference(raw, source=sheet)


def expand_brand_synonyms(reference: pd.DataFrame) -> pd.DataFrame:
    """
    Expand each medication into one row per brand synonym.

    A medication without brands yields a single row with brand = null so
    it is still searched by keyword alone.

    Args:
        reference: Output of normalize_reference

    Returns:
        DataFrame with keyword, brand, drug_class
    """
    separator = re.compile(MEDICATION_REFERENCE_CONFIG.brand_separator)
    rows = []
    for rec in reference.itertuples(index=False):
        drug_class = None if pd.isna(rec.drug_class) else rec.drug_class
        brands = []
        if not pd.isna(rec.brandnames):
            brands = [b.strip().lower() for b in separator.split(rec.brandnames)]
            brands = [b for b in brands if b]

        if not brands:
            rows.append({'keyword': rec.keyword, 'brand': None, 'drug_class': drug_class})
        for brand in brands:
            rows.append({'keyword': rec.keyword, 'brand': brand, 'drug_class': drug_class})

    return pd.DataFrame(rows, columns=['keyword', 'brand', 'drug_class'])


def get_keywords(reference: pd.DataFrame) -> List[str]:
    """Unique keywords in reference order."""
    return list(dict.fromkeys(reference['keyword'].dropna()))
