"""
Module 1 Extractors
===================

Dictionary and reference loaders, and code-list-driven CPRD record extraction.
"""

from .vocabulary_loader import (
    load_vocabulary,
    load_medical_dictionary,
    load_product_dictionary,
    load_icd10_dictionary,
    load_codelist,
    get_dictionary_schema,
)

from .medication_reference import (
    load_medication_reference,
    normalize_reference,
    expand_brand_synonyms,
)

from .cohort_extractor import (
    extract,
    extract_file,
    list_source_files,
    get_code_column,
    get_record_schema,
)

from .qof_clusters import (
    load_qof_cluster,
    select_cluster,
)
