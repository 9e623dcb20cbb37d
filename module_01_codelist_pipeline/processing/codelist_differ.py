"""
Code-List Differ
================

Compares a newly built code list with a previous version for review.

- added:   codes in the new list but not the previous one
- missing: codes in the previous list but not the new one, restricted to codes
           still present in the current vocabulary (retired codes can no
           longer be recorded, so they are not reported)
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pandas as pd
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from utils.errors import MissingColumnError

logger = logging.getLogger(__name__)


@dataclass
class CodeListDiff:
    """Review tables for one code list / database."""

    added: pd.DataFrame
    missing: pd.DataFrame

    @property
    def added_ids(self) -> set:
        return set(self.added['code_id'])

    @property
    def missing_ids(self) -> set:
        return set(self.missing['code_id'])

    @property
    def is_empty(self) -> bool:
        return self.added.empty and self.missing.empty


def _require_code_id(df: pd.DataFrame, name: str):
    if 'code_id' not in df.columns:
        raise MissingColumnError(['code_id'], name)


def diff_code_lists(
    new: pd.DataFrame,
    previous: pd.DataFrame,
    vocabulary: Optional[pd.DataFrame] = None,
) -> CodeListDiff:
    """
    Report codes added to and dropped from a code list.

    Args:
        new: Newly built code list
        previous: Previous version of the list
        vocabulary: Current vocabulary; when given, missing codes are
            restricted to those still in it and enriched with its columns

    Returns:
        CodeListDiff
    """
    _require_code_id(new, "new code list")
    _require_code_id(previous, "previous code list")

    new_ids = set(new['code_id'].dropna().astype(str))
    previous_ids = set(previous['code_id'].dropna().astype(str))

    added = new[new['code_id'].astype(str).isin(new_ids - previous_ids)]

    missing_ids = previous_ids - new_ids
    if vocabulary is not None:
        _require_code_id(vocabulary, "vocabulary")
        in_vocab = vocabulary['code_id'].astype(str).isin(missing_ids)
        missing = vocabulary[in_vocab]
        retired = len(missing_ids) - int(in_vocab.sum())
        if retired:
            logger.info(f"{retired} previous codes no longer in the dictionary")
    else:
        missing = previous[previous['code_id'].astype(str).isin(missing_ids)]

    logger.info(f"Code list diff: {len(added)} added, {len(missing)} missing")
    return CodeListDiff(
        added=added.reset_index(drop=True),
        missing=missing.drop_duplicates(subset='code_id').reset_index(drop=True),
    )


def uncovered_codes(reference: pd.DataFrame, code_list: pd.DataFrame) -> pd.DataFrame:
    """
    Reference codes (e.g. a QOF cluster) absent from a code list.

    Returns:
        Reference rows whose code_id is not in the code list
    """
    _require_code_id(reference, "reference codes")
    _require_code_id(code_list, "code list")

    listed = set(code_list['code_id'].dropna().astype(str))
    uncovered = reference[~reference['code_id'].astype(str).isin(listed)]
    logger.info(f"{len(uncovered)} of {len(reference)} reference codes not in the code list")
    return uncovered.reset_index(drop=True)
