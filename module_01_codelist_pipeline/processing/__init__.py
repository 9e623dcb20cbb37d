"""
Module 1 Processing
===================

Code list classification, medication matching, review diffs, date
reconciliation and output writers.
"""

from .rule_classifier import (
    classify,
    tag_subtypes,
    build_code_list,
    combine_code_lists,
    get_rule_set,
)

from .medication_matcher import match_medications, MatchResult
from .codelist_differ import diff_code_lists, uncovered_codes, CodeListDiff
from .date_reconciler import reconcile, parse_cprd_dates
from .cohort_combiner import combine_events, composite_patient_id
