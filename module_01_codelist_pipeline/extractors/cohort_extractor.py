"""
Cohort Extractor
================

Streams CPRD patient-record files and keeps rows whose code is in a code
list, producing patient events in a canonical layout shared by both
databases:

    patid, patient_id, code_id, event_date, entry_date, database, record_kind

followed by the code list metadata and remaining source columns. Dates are
left as raw text for the date reconciler.

Files are processed one at a time in chunks, so peak memory is one chunk
plus the accumulated matches.
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import pandas as pd
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.pipeline_config import (
    AURUM,
    CODE_COLUMNS,
    CPRD_DIR,
    DIAGNOSIS,
    EXTRACTION_CONFIG,
    GOLD,
    MEDICATION,
    PATIENT_ID_SUFFIXES,
    RECORD_KINDS,
    SOURCE_FOLDERS,
    normalize_database,
)
from utils.errors import MissingColumnError

logger = logging.getLogger(__name__)

EVENT_COLUMNS = [
    'patid', 'patient_id', 'code_id', 'event_date', 'entry_date', 'database', 'record_kind',
]


# =============================================================================
# RECORD SCHEMAS
# =============================================================================

@dataclass(frozen=True)
class RecordSchema:
    """Source column names of one (database, record kind) patient file."""

    database: str
    record_kind: str
    code_column: str
    event_date_column: str
    entry_date_column: str
    patient_column: str = "patid"

    @property
    def required_columns(self) -> List[str]:
        return [self.patient_column, self.code_column, self.event_date_column, self.entry_date_column]

    def to_canonical(self) -> Dict[str, str]:
        return {
            self.code_column: 'code_id',
            self.event_date_column: 'event_date',
            self.entry_date_column: 'entry_date',
        }


RECORD_SCHEMAS: Dict[Tuple[str, str], RecordSchema] = {
    # GOLD Clinical / Test / Referral
    (GOLD, DIAGNOSIS): RecordSchema(GOLD, DIAGNOSIS, CODE_COLUMNS[(GOLD, DIAGNOSIS)], "eventdate", "sysdate"),
    # Aurum Observation
    (AURUM, DIAGNOSIS): RecordSchema(AURUM, DIAGNOSIS, CODE_COLUMNS[(AURUM, DIAGNOSIS)], "obsdate", "enterdate"),
    # GOLD Therapy
    (GOLD, MEDICATION): RecordSchema(GOLD, MEDICATION, CODE_COLUMNS[(GOLD, MEDICATION)], "eventdate", "sysdate"),
    # Aurum DrugIssue
    (AURUM, MEDICATION): RecordSchema(AURUM, MEDICATION, CODE_COLUMNS[(AURUM, MEDICATION)], "issuedate", "enterdate"),
}


def _check_record_kind(record_kind: str):
    if record_kind not in RECORD_KINDS:
        raise ValueError(f"record_kind must be one of {RECORD_KINDS}, got {record_kind!r}")


def get_record_schema(database: str, record_kind: str) -> RecordSchema:
    """
    Look up the patient-file schema for a database and record kind.

    Raises:
        UnknownDatabaseError: If database is not "gold" or "aurum"
        ValueError: If record_kind is not "diagnosis" or "medication"
    """
    database = normalize_database(database)
    _check_record_kind(record_kind)
    return RECORD_SCHEMAS[(database, record_kind)]


def get_code_column(database: str, record_kind: str) -> str:
    """Join column name: medcode / medcodeid / prodcode / prodcodeid."""
    return get_record_schema(database, record_kind).code_column


def make_patient_id(patids: pd.Series, database: str) -> pd.Series:
    """Composite patient ID unique across databases ("12345" -> "12345-G"); blank IDs stay null."""
    suffix = PATIENT_ID_SUFFIXES[normalize_database(database)]
    ids = patids.map(lambda v: str(v).strip() if pd.notna(v) else "")
    return (ids + "-" + suffix).where(ids != "")


# =============================================================================
# FILE DISCOVERY & READING
# =============================================================================

def list_source_files(
    database: str,
    record_kind: str,
    root: Optional[Path] = None,
) -> List[Path]:
    """
    List numbered patient files for a database and record kind.

    Args:
        database: "gold" or "aurum"
        record_kind: "diagnosis" or "medication"
        root: CPRD extract root (defaults to CPRD_DIR)

    Returns:
        Sorted file paths across all configured source folders
    """
    database = normalize_database(database)
    _check_record_kind(record_kind)
    root = Path(root) if root else CPRD_DIR

    files = []
    for folder in SOURCE_FOLDERS[(database, record_kind)]:
        folder_path = root / folder
        if not folder_path.exists():
            logger.warning(f"Source folder not found: {folder_path}")
            continue
        files.extend(sorted(folder_path.glob(EXTRACTION_CONFIG.file_pattern)))
    return files


def read_patient_file(
    source: Union[str, Path],
    chunk_size: Optional[int] = None,
) -> Iterator[pd.DataFrame]:
    """
    Iterate over a tab-delimited CPRD patient file in chunks.

    All columns are read as text so codes and patient IDs keep leading
    zeros and full precision.

    Yields:
        DataFrame chunks
    """
    reader = pd.read_csv(
        source,
        sep=EXTRACTION_CONFIG.separator,
        dtype=str,
        chunksize=chunk_size or EXTRACTION_CONFIG.chunk_size,
        quoting=csv.QUOTE_NONE,
        keep_default_na=False,
        na_values=[""],
    )
    with reader:
        for chunk in reader:
            yield chunk


# =============================================================================
# EXTRACTION
# =============================================================================

def _prepare_code_list(code_list: pd.DataFrame) -> pd.DataFrame:
    if 'code_id' not in code_list.columns:
        raise MissingColumnError(['code_id'], "code list")
    codes = code_list.drop(columns=[c for c in ('database', 'record_kind') if c in code_list.columns])
    codes = codes[codes['code_id'].notna()].copy()
    codes['code_id'] = codes['code_id'].astype(str).str.strip()
    return codes


def match_chunk(chunk: pd.DataFrame, code_list: pd.DataFrame, schema: RecordSchema) -> pd.DataFrame:
    """
    Inner-join one chunk of patient records with a prepared code list.

    Many-to-many: each code may match many rows and each patient many codes.
    """
    events = chunk.rename(columns=schema.to_canonical())
    events['code_id'] = events['code_id'].str.strip()

    # Code list metadata must not shadow source columns
    meta = code_list.drop(columns=[c for c in code_list.columns if c != 'code_id' and c in events.columns])
    matched = events.merge(meta, on='code_id', how='inner')

    matched['patient_id'] = make_patient_id(matched[schema.patient_column], schema.database)
    no_patient = matched['patient_id'].isna()
    if no_patient.any():
        logger.warning(f"Dropping {int(no_patient.sum()):,} {schema.database} records with no patient ID")
        matched = matched[~no_patient].copy()
    matched['database'] = schema.database
    matched['record_kind'] = schema.record_kind
    if schema.patient_column != 'patid':
        matched = matched.rename(columns={schema.patient_column: 'patid'})
    return matched


def extract_file(
    source: Union[str, Path],
    code_list: pd.DataFrame,
    schema: RecordSchema,
    chunk_size: Optional[int] = None,
) -> pd.DataFrame:
    """
    Extract matching events from one patient file.

    Raises:
        MissingColumnError: If the file lacks the schema's columns
    """
    parts = []
    for chunk in read_patient_file(source, chunk_size):
        missing = set(schema.required_columns) - set(chunk.columns)
        if missing:
            raise MissingColumnError(missing, str(source))
        matched = match_chunk(chunk, code_list, schema)
        if len(matched):
            parts.append(matched)

    if not parts:
        return pd.DataFrame(columns=EVENT_COLUMNS)
    return pd.concat(parts, ignore_index=True)


def _order_columns(events: pd.DataFrame) -> pd.DataFrame:
    first = [c for c in EVENT_COLUMNS if c in events.columns]
    return events[first + [c for c in events.columns if c not in first]]


def extract(
    source_files: Sequence[Union[str, Path]],
    code_list: pd.DataFrame,
    database: str,
    record_kind: str,
    chunk_size: Optional[int] = None,
) -> pd.DataFrame:
    """
    Extract patient events matching a code list from a set of source files.

    Args:
        source_files: Patient files for one database and record kind
        code_list: Code list with a code_id column
        database: "gold" or "aurum"
        record_kind: "diagnosis" or "medication"
        chunk_size: Rows per read chunk

    Returns:
        Accumulated patient events (canonical columns first)

    Raises:
        UnknownDatabaseError: If database is not "gold" or "aurum"
    """
    schema = get_record_schema(database, record_kind)
    codes = _prepare_code_list(code_list)

    results = []
    n_files = len(source_files)
    for i, path in enumerate(source_files, start=1):
        events = extract_file(path, codes, schema, chunk_size)
        if len(events):
            results.append(events)
        logger.info(f"Progress: {i}/{n_files} completed")

    if not results:
        logger.warning(f"No {schema.database} {schema.record_kind} events matched the code list")
        return pd.DataFrame(columns=EVENT_COLUMNS)

    events = _order_columns(pd.concat(results, ignore_index=True))
    logger.info(
        f"Extracted {len(events):,} {schema.database} {schema.record_kind} events "
        f"for {events['patient_id'].nunique():,} patients"
    )
    return events
