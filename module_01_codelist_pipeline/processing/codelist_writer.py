"""
Code List Writer
================

Writes finished code lists in the layouts used for review and for CPRD
extraction requests:

- full code list (tab-delimited, database-specific code column)
- code ID file (one line, comma-separated)
- processed file (code + description, tab-delimited)
- review workbook of new/missing codes (one sheet per database)
- outcome workbook of ICD-10 lists (one sheet per list)
- combined Aurum + GOLD medication list with a database column
"""

import logging
from pathlib import Path
from typing import Dict, Optional

import pandas as pd
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.pipeline_config import (
    AURUM,
    CODE_COLUMNS,
    DATABASE_LABELS,
    GOLD,
    MEDICATION,
    normalize_database,
)

logger = logging.getLogger(__name__)

# Working columns never written to output files
INTERNAL_COLUMNS = ['term_original', 'database', 'matched_keywords', 'matched_brands', 'concat', 'match']


def _ensure_parent(path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def to_output_layout(code_list: pd.DataFrame, database: str, record_kind: str) -> pd.DataFrame:
    """
    Rename code_id to the database code column and drop working columns.

    Medication lists drop the free-text term (product name is kept).
    """
    code_column = CODE_COLUMNS[(normalize_database(database), record_kind)]
    drop = list(INTERNAL_COLUMNS)
    if record_kind == MEDICATION:
        drop.append('term')
    if 'drug_class' in code_list.columns and code_list['drug_class'].isna().all():
        drop.append('drug_class')

    out = code_list.drop(columns=[c for c in drop if c in code_list.columns])
    return out.rename(columns={'code_id': code_column})


def write_code_list(code_list: pd.DataFrame, path: Path, database: str, record_kind: str) -> Path:
    """Write the full code list as tab-delimited text."""
    path = _ensure_parent(path)
    to_output_layout(code_list, database, record_kind).to_csv(path, sep="\t", index=False)
    logger.info(f"Wrote {len(code_list):,} codes to {path}")
    return path


def write_icd10_code_list(code_list: pd.DataFrame, path: Path) -> Path:
    """Write an ICD-10 outcome list (code, term, labels, primary_only)."""
    path = _ensure_parent(path)
    out = code_list.drop(columns=[c for c in INTERNAL_COLUMNS if c in code_list.columns])
    out.rename(columns={'code_id': 'code'}).to_csv(path, sep="\t", index=False)
    logger.info(f"Wrote {len(code_list):,} ICD-10 codes to {path}")
    return path


def format_code_ids(code_list: pd.DataFrame) -> str:
    """Unique, trimmed, non-null code IDs joined with commas."""
    ids = code_list['code_id'].dropna().astype(str).str.strip()
    return ",".join(dict.fromkeys(i for i in ids if i))


def write_code_ids(code_list: pd.DataFrame, path: Path) -> Path:
    """Write the comma-separated code ID file used for extraction requests."""
    path = _ensure_parent(path)
    path.write_text(format_code_ids(code_list) + "\n")
    return path


def write_processed(code_list: pd.DataFrame, path: Path, database: str, record_kind: str) -> Path:
    """Write the two-column code/description file."""
    code_column = CODE_COLUMNS[(normalize_database(database), record_kind)]
    description = 'productname' if record_kind == MEDICATION else 'term'

    processed = pd.DataFrame({
        code_column: code_list['code_id'].astype(str).str.strip(),
        description: code_list[description] if description in code_list.columns else pd.NA,
    }).drop_duplicates(subset=code_column)

    path = _ensure_parent(path)
    processed.to_csv(path, sep="\t", index=False)
    return path


def write_review_workbook(sheets: Dict[str, pd.DataFrame], path: Path) -> Optional[Path]:
    """
    Write review tables (e.g. new or missing codes) to an Excel workbook.

    Args:
        sheets: Sheet name -> table; empty tables still get a header sheet
        path: Output .xlsx path

    Returns:
        Path written, or None if there were no sheets
    """
    if not sheets:
        return None
    path = _ensure_parent(path)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for name, table in sheets.items():
            table = table.drop(columns=[c for c in ('matched_keywords', 'matched_brands') if c in table.columns])
            table.to_excel(writer, sheet_name=name[:31], index=False)
    logger.info(f"Wrote review workbook {path} ({', '.join(sheets)})")
    return path


def write_outcome_workbook(code_lists: Dict[str, pd.DataFrame], path: Path) -> Optional[Path]:
    """
    Write ICD-10 outcome lists to one workbook, one sheet per list.

    Sheets use the ICD-10 list layout (code column named ``code``).
    """
    sheets = {
        name: codes.drop(columns=[c for c in INTERNAL_COLUMNS if c in codes.columns]).rename(columns={'code_id': 'code'})
        for name, codes in code_lists.items()
    }
    return write_review_workbook(sheets, path)


def combine_database_lists(
    aurum_list: pd.DataFrame,
    gold_list: pd.DataFrame,
    record_kind: str = MEDICATION,
) -> pd.DataFrame:
    """
    Stack Aurum and GOLD code lists with a database column.

    Both use the GOLD code column name (e.g. prodcode) in the combined file.
    """
    code_column = CODE_COLUMNS[(GOLD, record_kind)]
    parts = []
    for database, code_list in ((AURUM, aurum_list), (GOLD, gold_list)):
        out = to_output_layout(code_list, database, record_kind)
        out = out.rename(columns={CODE_COLUMNS[(database, record_kind)]: code_column})
        out['database'] = DATABASE_LABELS[database]
        parts.append(out)

    combined = pd.concat(parts, ignore_index=True)
    # Database-specific source columns (e.g. BNFChapter vs bnftext) are dropped
    shared = [c for c in combined.columns if all(c in p.columns for p in parts)]
    return combined[shared]
