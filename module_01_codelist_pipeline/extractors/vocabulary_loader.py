"""
Vocabulary Loader
=================

Reads CPRD GOLD/Aurum medical and product dictionaries, the WHO ICD-10
systematic code file, and previously curated code lists into canonical
DataFrames keyed by ``code_id`` with a lowercased ``term`` for matching.
"""

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, TextIO, Tuple, Union

import pandas as pd
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.pipeline_config import (
    AURUM,
    CODE_COLUMNS,
    DIAGNOSIS,
    EXTRACTION_CONFIG,
    GOLD,
    MEDICATION,
    RECORD_KINDS,
    normalize_database,
)
from utils.errors import MissingColumnError

logger = logging.getLogger(__name__)

Source = Union[str, Path, TextIO]

# Canonical product fields; absent ones are added as nulls
PRODUCT_FIELDS = [
    'productname', 'formulation', 'route', 'ingredient', 'strength', 'bnf_chapter',
]

ICD10_COLUMNS = [
    "hier_level", "tree_node", "terminal_type", "chapter", "3chars",
    "no_dagger", "no_aster", "no_dot", "title",
]


# =============================================================================
# DICTIONARY SCHEMAS
# =============================================================================

@dataclass(frozen=True)
class DictionarySchema:
    """Column layout of one master dictionary file."""

    name: str
    database: str
    code_column: str
    description_column: Optional[str]
    # source column -> canonical column
    rename: Dict[str, str] = field(default_factory=dict)
    drop_columns: Tuple[str, ...] = ()
    separator: str = "\t"
    column_names: Optional[Tuple[str, ...]] = None  # for headerless files
    is_product: bool = False

    @property
    def required_columns(self) -> List[str]:
        required = [self.code_column]
        if self.description_column:
            required.append(self.description_column)
        required.extend(self.rename.keys())
        return required


AURUM_MEDICAL_SCHEMA = DictionarySchema(
    name="aurum_medical",
    database=AURUM,
    code_column="MedCodeId",
    description_column="Term",
    drop_columns=("Release",),
)

GOLD_MEDICAL_SCHEMA = DictionarySchema(
    name="gold_medical",
    database=GOLD,
    code_column="medcode",
    description_column="readterm",
    drop_columns=("databaserelease",),
)

AURUM_PRODUCT_SCHEMA = DictionarySchema(
    name="aurum_product",
    database=AURUM,
    code_column="ProdCodeId",
    description_column="Term from EMIS",
    rename={
        'ProductName': 'productname',
        'Formulation': 'formulation',
        'RouteOfAdministration': 'route',
        'DrugSubstanceName': 'ingredient',
        'SubstanceStrength': 'strength',
        'BNFChapter': 'bnf_chapter',
    },
    drop_columns=("Release",),
    is_product=True,
)

# GOLD products have no free-text term
GOLD_PRODUCT_SCHEMA = DictionarySchema(
    name="gold_product",
    database=GOLD,
    code_column="prodcode",
    description_column=None,
    rename={
        'productname': 'productname',
        'formulation': 'formulation',
        'routeofadministration': 'route',
        'ingredient': 'ingredient',
        'strength': 'strength',
        'bnftext': 'bnf_chapter',
    },
    drop_columns=("databaserelease",),
    is_product=True,
)

ICD10_SCHEMA = DictionarySchema(
    name="icd10",
    database="icd10",
    code_column="no_dagger",
    description_column="title",
    drop_columns=("hier_level", "tree_node", "terminal_type", "3chars", "no_aster", "no_dot"),
    separator=";",
    column_names=tuple(ICD10_COLUMNS),
)

DICTIONARY_SCHEMAS: Dict[Tuple[str, str], DictionarySchema] = {
    (AURUM, DIAGNOSIS): AURUM_MEDICAL_SCHEMA,
    (GOLD, DIAGNOSIS): GOLD_MEDICAL_SCHEMA,
    (AURUM, MEDICATION): AURUM_PRODUCT_SCHEMA,
    (GOLD, MEDICATION): GOLD_PRODUCT_SCHEMA,
}


def get_dictionary_schema(database: str, record_kind: str) -> DictionarySchema:
    """
    Look up the dictionary schema for a database and record kind.

    Args:
        database: "gold" or "aurum"
        record_kind: "diagnosis" (medical dictionary) or "medication" (product)

    Returns:
        DictionarySchema
    """
    database = normalize_database(database)
    if record_kind not in RECORD_KINDS:
        raise ValueError(f"record_kind must be one of {RECORD_KINDS}, got {record_kind!r}")
    return DICTIONARY_SCHEMAS[(database, record_kind)]


# =============================================================================
# READING
# =============================================================================

def _source_name(source: Source) -> str:
    if isinstance(source, (str, Path)):
        return str(source)
    return getattr(source, 'name', type(source).__name__)


def read_delimited(
    source: Source,
    separator: str = "\t",
    column_names: Optional[List[str]] = None,
) -> pd.DataFrame:
    """
    Read a delimited text file with every column as string.

    Whitespace is trimmed and empty cells become nulls; literal "NA" terms
    are kept as text.
    """
    df = pd.read_csv(
        source,
        sep=separator,
        header=None if column_names else 0,
        names=column_names,
        dtype=str,
        quoting=csv.QUOTE_NONE,
        keep_default_na=False,
        na_values=[""],
    )
    df.columns = [str(c).strip() for c in df.columns]

    for col in df.columns:
        df[col] = df[col].str.strip()
    return df.replace("", pd.NA)


def check_columns(df: pd.DataFrame, required: List[str], source: str = None):
    """Raise MissingColumnError if any required column is absent."""
    missing = set(required) - set(df.columns)
    if missing:
        raise MissingColumnError(missing, source)


def load_vocabulary(source: Source, schema: DictionarySchema) -> pd.DataFrame:
    """
    Load a master dictionary into the canonical vocabulary table.

    Args:
        source: Path or file handle of the dictionary
        schema: Column layout of the file

    Returns:
        DataFrame with code_id, term (lowercased), term_original, database,
        product fields for product dictionaries, and any remaining source
        columns not listed in schema.drop_columns

    Raises:
        MissingColumnError: If the header lacks a required column
    """
    name = _source_name(source)
    df = read_delimited(
        source,
        separator=schema.separator,
        column_names=list(schema.column_names) if schema.column_names else None,
    )
    check_columns(df, schema.required_columns, name)

    df = df.drop(columns=[c for c in schema.drop_columns if c in df.columns])

    vocab = pd.DataFrame({'code_id': df[schema.code_column]})
    if schema.description_column:
        vocab['term_original'] = df[schema.description_column]
    else:
        vocab['term_original'] = pd.Series(pd.NA, index=df.index, dtype="object")
    vocab['term'] = vocab['term_original'].str.lower()
    vocab['database'] = schema.database

    for source_col, canonical in schema.rename.items():
        vocab[canonical] = df[source_col]
    if schema.is_product:
        for col in PRODUCT_FIELDS:
            if col not in vocab.columns:
                vocab[col] = pd.NA

    used = {schema.code_column, schema.description_column, *schema.rename.keys()}
    for col in df.columns:
        if col not in used and col not in vocab.columns:
            vocab[col] = df[col]

    vocab = vocab[vocab['code_id'].notna()]
    n_dupes = vocab['code_id'].duplicated().sum()
    if n_dupes:
        logger.warning(f"{name}: dropping {n_dupes} duplicate code_id rows")
        vocab = vocab.drop_duplicates(subset='code_id', keep='first')

    logger.info(f"Loaded {len(vocab):,} codes from {name} ({schema.name})")
    return vocab.reset_index(drop=True)


def load_medical_dictionary(source: Source, database: str) -> pd.DataFrame:
    """Load a GOLD or Aurum medical (diagnosis) dictionary."""
    return load_vocabulary(source, get_dictionary_schema(database, DIAGNOSIS))


def load_product_dictionary(source: Source, database: str) -> pd.DataFrame:
    """Load a GOLD or Aurum product (medication) dictionary."""
    return load_vocabulary(source, get_dictionary_schema(database, MEDICATION))


def load_icd10_dictionary(source: Source) -> pd.DataFrame:
    """Load the WHO ICD-10 systematic code file (semicolon, no header)."""
    return load_vocabulary(source, ICD10_SCHEMA)


# =============================================================================
# CURATED CODE LISTS
# =============================================================================

def load_codelist(source: Source, database: str, record_kind: str) -> pd.DataFrame:
    """
    Load a previously curated code list.

    The database-specific code column (medcode, medcodeid, prodcode,
    prodcodeid) becomes ``code_id``; placeholder identifiers such as "0"
    or "Not in current release" are dropped.

    Args:
        source: Path or file handle of the tab-delimited code list
        database: "gold" or "aurum"
        record_kind: "diagnosis" or "medication"

    Returns:
        DataFrame with code_id first, remaining columns unchanged
    """
    database = normalize_database(database)
    if record_kind not in RECORD_KINDS:
        raise ValueError(f"record_kind must be one of {RECORD_KINDS}, got {record_kind!r}")

    name = _source_name(source)
    df = read_delimited(source)
    code_column = CODE_COLUMNS[(database, record_kind)]
    if code_column not in df.columns and 'code_id' in df.columns:
        code_column = 'code_id'
    check_columns(df, [code_column], name)

    df = df.rename(columns={code_column: 'code_id'})
    placeholders = set(EXTRACTION_CONFIG.placeholder_codes)
    keep = df['code_id'].notna() & ~df['code_id'].isin(placeholders)
    dropped = (~keep).sum()
    if dropped:
        logger.info(f"{name}: dropped {dropped} placeholder code rows")

    df = df[keep]
    columns = ['code_id'] + [c for c in df.columns if c != 'code_id']
    return df[columns].reset_index(drop=True)
