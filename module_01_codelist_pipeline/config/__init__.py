"""
Module 1 Configuration Package
"""

from .pipeline_config import (
    # Paths
    PROJECT_ROOT,
    MODULE_ROOT,
    CODE_LISTS_DIR,
    MASTER_LISTS_DIR,
    OLD_CODE_LISTS_DIR,
    MEDICATION_REFERENCE_XLSX,
    QOF_CLUSTERS_XLSX,
    CPRD_DIR,
    EXTRACTION_DIR,

    # Databases
    GOLD,
    AURUM,
    DATABASES,
    DATABASE_LABELS,
    PATIENT_ID_SUFFIXES,
    DIAGNOSIS,
    MEDICATION,
    RECORD_KINDS,
    CODE_COLUMNS,
    SOURCE_FOLDERS,

    # Configs
    DATE_CONFIG,
    EXTRACTION_CONFIG,
    MEDICATION_REFERENCE_CONFIG,
    QOF_CLUSTER_CONFIG,

    # Helpers
    normalize_database,
    load_classification_rules,
    load_formulation_rules,
    ensure_directories,
    get_rule_set_names,
)

__all__ = [
    'PROJECT_ROOT',
    'MODULE_ROOT',
    'CODE_LISTS_DIR',
    'MASTER_LISTS_DIR',
    'OLD_CODE_LISTS_DIR',
    'MEDICATION_REFERENCE_XLSX',
    'QOF_CLUSTERS_XLSX',
    'CPRD_DIR',
    'EXTRACTION_DIR',
    'GOLD',
    'AURUM',
    'DATABASES',
    'DATABASE_LABELS',
    'PATIENT_ID_SUFFIXES',
    'DIAGNOSIS',
    'MEDICATION',
    'RECORD_KINDS',
    'CODE_COLUMNS',
    'SOURCE_FOLDERS',
    'DATE_CONFIG',
    'EXTRACTION_CONFIG',
    'MEDICATION_REFERENCE_CONFIG',
    'QOF_CLUSTER_CONFIG',
    'normalize_database',
    'load_classification_rules',
    'load_formulation_rules',
    'ensure_directories',
    'get_rule_set_names',
]
