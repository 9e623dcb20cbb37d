"""
Module 1: Code List & Extraction Configuration
==============================================

Central configuration for code list curation and CPRD cohort extraction.
"""

from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import sys
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent))

from utils.errors import UnknownDatabaseError


# =============================================================================
# PATH CONFIGURATION
# =============================================================================

MODULE_ROOT = Path(__file__).parent.parent
PROJECT_ROOT = MODULE_ROOT.parent

# Code lists
CODE_LISTS_DIR = PROJECT_ROOT / "Code_Lists"
MASTER_LISTS_DIR = CODE_LISTS_DIR / "MASTER_Lists"
OLD_CODE_LISTS_DIR = CODE_LISTS_DIR / "OLD_Code_Lists"
MEDICATION_REFERENCE_XLSX = CODE_LISTS_DIR / "medication_reference.xlsx"

# Master dictionaries
AURUM_MEDICAL_DICT = MASTER_LISTS_DIR / "CPRD_Aurum_Medical_10Feb2025.txt"
GOLD_MEDICAL_DICT = MASTER_LISTS_DIR / "CPRD_GOLD_Medical_23Feb2025.txt"
AURUM_PRODUCT_DICT = MASTER_LISTS_DIR / "CPRD_Aurum_Product_10Feb2025.txt"
GOLD_PRODUCT_DICT = MASTER_LISTS_DIR / "CPRD_GOLD_Product_23Feb2025.txt"
ICD10_DICT = MASTER_LISTS_DIR / "icd102019syst_codes.txt"

# QOF business rules (expanded cluster list)
QOF_CLUSTERS_XLSX = MASTER_LISTS_DIR / "Business_Rules_Combined_Change_Log_QOF+2024-25_v49.1.xlsm"

# CPRD patient-record extracts
CPRD_DIR = PROJECT_ROOT / "2023 CPRD"
EXTRACTION_DIR = PROJECT_ROOT / "Data" / "Extraction_Files"

# Config files
CONFIG_DIR = MODULE_ROOT / "config"
CLASSIFICATION_RULES_YAML = CONFIG_DIR / "classification_rules.yaml"
FORMULATION_RULES_YAML = CONFIG_DIR / "formulation_rules.yaml"


# =============================================================================
# DATABASES & RECORD KINDS
# =============================================================================

GOLD = "gold"
AURUM = "aurum"
DATABASES = (GOLD, AURUM)

# Display labels used in the combined tables
DATABASE_LABELS = {GOLD: "Gold", AURUM: "Aurum"}

# Suffix appended to raw patids so merged IDs never collide
PATIENT_ID_SUFFIXES = {GOLD: "G", AURUM: "A"}

DIAGNOSIS = "diagnosis"
MEDICATION = "medication"
RECORD_KINDS = (DIAGNOSIS, MEDICATION)


def normalize_database(database: str) -> str:
    """
    Validate a source database tag.

    Args:
        database: "gold" or "aurum" (any case)

    Returns:
        Lowercase database tag

    Raises:
        UnknownDatabaseError: If the tag is not a recognised CPRD database
    """
    tag = str(database).strip().lower() if database is not None else ""
    if tag not in DATABASES:
        raise UnknownDatabaseError(database)
    return tag


# Code column in patient files and code lists, per (database, record kind)
CODE_COLUMNS: Dict[Tuple[str, str], str] = {
    (GOLD, DIAGNOSIS): "medcode",
    (AURUM, DIAGNOSIS): "medcodeid",
    (GOLD, MEDICATION): "prodcode",
    (AURUM, MEDICATION): "prodcodeid",
}

# Source folders holding the numbered file parts, per (database, record kind)
SOURCE_FOLDERS: Dict[Tuple[str, str], List[str]] = {
    (GOLD, DIAGNOSIS): ["GOLD/Clinical", "GOLD/Test", "GOLD/Referral"],
    (AURUM, DIAGNOSIS): ["Aurum/Observation"],
    (GOLD, MEDICATION): ["GOLD/Therapy"],
    (AURUM, MEDICATION): ["Aurum/DrugIssue"],
}


# =============================================================================
# DATE CONFIGURATION
# =============================================================================

@dataclass
class DateConfig:
    """Study window and date sanity thresholds."""

    earliest_date: str = "1900-01-01"
    latest_date: str = "2023-06-01"

    # Event dates before this are treated as data-entry defaults...
    implausible_before: str = "1910-01-01"
    # ...and replaced when the entry date is after this
    plausible_after: str = "1990-01-01"

    # CPRD text date format
    date_format: str = "%d/%m/%Y"


DATE_CONFIG = DateConfig()


# =============================================================================
# EXTRACTION CONFIGURATION
# =============================================================================

@dataclass
class ExtractionConfig:
    """Patient-record streaming settings."""

    chunk_size: int = 1_000_000  # Rows per chunk
    file_pattern: str = "*.txt"
    separator: str = "\t"

    # Code list values that are placeholders, not real codes
    placeholder_codes: List[str] = field(default_factory=lambda: [
        '0',
        'Not in current release',
    ])


EXTRACTION_CONFIG = ExtractionConfig()


# =============================================================================
# MEDICATION REFERENCE CONFIGURATION
# =============================================================================

@dataclass
class MedicationReferenceConfig:
    """Layout of the medication reference spreadsheet."""

    skip_rows: int = 1
    keyword_column: str = "Clean"
    brand_columns: List[str] = field(default_factory=lambda: [
        'Brand names',
        'Brand names, including branded generics',
    ])
    group_column: str = "Group"
    exclude_column: str = "Exclude"
    brand_separator: str = r",\s*"

    # Sheet name -> output label column
    sheets: Dict[str, str] = field(default_factory=lambda: {
        'glp1ras': 'GLP-1RA',
        'sulfonylureas': 'Sulfonylurea',
        'antidiabetics': 'Antidiabetic',
        'sglt2is': 'SGLT2i',
    })


MEDICATION_REFERENCE_CONFIG = MedicationReferenceConfig()


@dataclass
class QofClusterConfig:
    """Layout of the QOF business rules workbook."""

    sheet: str = "Expanded Cluster List"
    skip_rows: int = 14
    cluster_column: str = "Cluster ID"
    cluster_description_column: str = "Cluster description"
    code_column: str = "SNOMED concept ID"


QOF_CLUSTER_CONFIG = QofClusterConfig()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

_classification_rules: Optional[Dict] = None
_formulation_rules: Optional[Dict] = None


def load_classification_rules() -> Dict:
    """Load and cache code list rule sets from YAML."""
    global _classification_rules
    if _classification_rules is None:
        with open(CLASSIFICATION_RULES_YAML, 'r') as f:
            _classification_rules = yaml.safe_load(f)
    return _classification_rules


def load_formulation_rules() -> Dict:
    """Load and cache formulation/route inference rules from YAML."""
    global _formulation_rules
    if _formulation_rules is None:
        with open(FORMULATION_RULES_YAML, 'r') as f:
            _formulation_rules = yaml.safe_load(f)
    return _formulation_rules


def ensure_directories():
    """Create all required output directories."""
    for dir_path in [
        CODE_LISTS_DIR,
        EXTRACTION_DIR,
    ]:
        dir_path.mkdir(parents=True, exist_ok=True)


def get_rule_set_names() -> List[str]:
    """Get names of all configured diagnosis rule sets."""
    return list(load_classification_rules().get('rule_sets', {}).keys())


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    print("=" * 60)
    print("Module 1: Code List & Extraction Configuration")
    print("=" * 60)
    print(f"\nProject Root: {PROJECT_ROOT}")
    print(f"Code Lists: {CODE_LISTS_DIR}")
    print(f"CPRD Extracts: {CPRD_DIR}")
    print(f"\nStudy window: {DATE_CONFIG.earliest_date} to {DATE_CONFIG.latest_date}")
    print(f"Rule sets: {', '.join(get_rule_set_names())}")
    print(f"Medication sheets: {', '.join(MEDICATION_REFERENCE_CONFIG.sheets)}")
    print("=" * 60)
