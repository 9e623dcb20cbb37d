"""
Rule-Based Code Classifier
==========================

Selects codes from a vocabulary whose text matches an inclusion pattern and
not an exclusion pattern, then tags each selected code with a subtype label.

Patterns are case-insensitive regular expressions searched anywhere in the
text. Lookbehind/lookahead refinements are supported, e.g.
``(?<!manic-)depressive`` excludes "depressive" except in "manic-depressive".
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.pipeline_config import load_classification_rules
from utils.errors import MissingColumnError, PatternCompileError

logger = logging.getLogger(__name__)

Pattern = Union[str, Sequence[str]]


# =============================================================================
# PATTERNS
# =============================================================================

def join_pattern(pattern: Optional[Pattern]) -> Optional[str]:
    """Join a list of regex fragments into one alternation."""
    if pattern is None:
        return None
    if isinstance(pattern, str):
        return pattern or None
    fragments = [p for p in pattern if p]
    return "|".join(fragments) if fragments else None


def compile_pattern(pattern: Pattern) -> re.Pattern:
    """
    Compile a case-insensitive classification pattern.

    Args:
        pattern: Regex string, or list of fragments joined with "|"

    Returns:
        Compiled pattern

    Raises:
        PatternCompileError: If the pattern is not a valid regex
    """
    text = join_pattern(pattern)
    if text is None:
        raise PatternCompileError(str(pattern), "empty pattern")
    try:
        return re.compile(text, re.IGNORECASE)
    except re.error as e:
        raise PatternCompileError(text, str(e)) from e


def pattern_matches(values: pd.Series, pattern: re.Pattern) -> pd.Series:
    """Boolean mask of values containing a match; nulls never match."""
    # Python re rather than the pandas string engine: lookbehind must work
    return values.map(lambda v: isinstance(v, str) and pattern.search(v) is not None).astype(bool)


# =============================================================================
# CLASSIFICATION
# =============================================================================

def classify(
    vocabulary: pd.DataFrame,
    include: Pattern,
    exclude: Optional[Pattern] = None,
    manual_exclusions: Optional[Iterable[str]] = None,
    column: str = "term",
) -> pd.DataFrame:
    """
    Select vocabulary entries by inclusion/exclusion patterns.

    Inclusion is evaluated first and exclusion second; manually excluded
    code_ids are removed last, whatever the pattern outcome.

    Args:
        vocabulary: Vocabulary table (see vocabulary_loader)
        include: Inclusion pattern
        exclude: Exclusion pattern, or None
        manual_exclusions: code_ids to force-remove
        column: Column the patterns are tested against

    Returns:
        Matching subset of the vocabulary (new DataFrame, original order)

    Raises:
        PatternCompileError: If either pattern is invalid
        MissingColumnError: If the match column is absent
    """
    include_re = compile_pattern(include)
    exclude_re = compile_pattern(exclude) if join_pattern(exclude) else None

    if vocabulary.empty:
        return vocabulary.copy()
    if column not in vocabulary.columns:
        raise MissingColumnError([column], "vocabulary")

    mask = pattern_matches(vocabulary[column], include_re)
    n_included = int(mask.sum())

    if exclude_re is not None:
        mask &= ~pattern_matches(vocabulary[column], exclude_re)
    n_after_exclude = int(mask.sum())

    if manual_exclusions:
        mask &= ~vocabulary['code_id'].isin(set(manual_exclusions))

    result = vocabulary[mask].copy()
    logger.info(
        f"Classified {len(vocabulary):,} codes: {n_included:,} included, "
        f"{n_included - n_after_exclude:,} excluded by pattern, "
        f"{n_after_exclude - len(result):,} manually excluded, {len(result):,} kept"
    )
    return result


def tag_subtypes(
    codes: pd.DataFrame,
    rules: Sequence[Tuple[str, str]],
    label_column: str,
    default: Optional[str] = None,
    column: str = "term",
) -> pd.DataFrame:
    """
    Label each code by the first matching (pattern, label) rule.

    Args:
        codes: Classified codes
        rules: Ordered (pattern, label) pairs; first match wins
        label_column: Output column
        default: Label when no rule matches; None keeps the existing value
        column: Column the patterns are tested against

    Returns:
        New DataFrame with label_column set
    """
    result = codes.copy()
    if default is not None or label_column not in result.columns:
        labels = pd.Series(default, index=result.index, dtype="object")
    else:
        labels = result[label_column].astype("object").copy()

    if len(result) and rules:
        if column not in result.columns:
            raise MissingColumnError([column], "code list")
        # codes x rules hit matrix; argmax picks the first matching rule
        hits = np.column_stack([
            pattern_matches(result[column], compile_pattern(pattern)).to_numpy() for pattern, _ in rules
        ])
        any_hit = hits.any(axis=1)
        rule_labels = np.array([label for _, label in rules], dtype=object)
        labels.loc[any_hit] = rule_labels[hits.argmax(axis=1)[any_hit]]

    result[label_column] = labels
    return result


# =============================================================================
# RULE SETS
# =============================================================================

@dataclass
class RuleSet:
    """One configured code list definition."""

    name: str
    include: Pattern
    exclude: Optional[Pattern] = None
    manual_exclusions: List[str] = field(default_factory=list)
    dictionary: str = "medical"
    match_column: str = "term"
    label_column: Optional[str] = None
    subtypes: List[Tuple[str, str]] = field(default_factory=list)
    default_label: Optional[str] = None
    primary_only: Optional[bool] = None
    description: str = ""
    previous: Dict[str, str] = field(default_factory=dict)
    reference_cluster: Optional[str] = None

    @classmethod
    def from_config(cls, name: str, cfg: Dict) -> "RuleSet":
        return cls(
            name=name,
            include=cfg['include'],
            exclude=cfg.get('exclude'),
            manual_exclusions=[str(c) for c in cfg.get('manual_exclusions') or []],
            dictionary=cfg.get('dictionary', 'medical'),
            match_column=cfg.get('match_column', 'term'),
            label_column=cfg.get('label_column'),
            subtypes=[(s['pattern'], s['label']) for s in cfg.get('subtypes') or []],
            default_label=cfg.get('default_label'),
            primary_only=cfg.get('primary_only'),
            description=cfg.get('description', ''),
            previous=cfg.get('previous') or {},
            reference_cluster=cfg.get('reference_cluster'),
        )


def get_rule_set(name: str) -> RuleSet:
    """Load a named rule set from classification_rules.yaml."""
    rule_sets = load_classification_rules().get('rule_sets', {})
    if name not in rule_sets:
        raise KeyError(f"Unknown rule set '{name}'. Available: {', '.join(rule_sets)}")
    return RuleSet.from_config(name, rule_sets[name])


def build_code_list(vocabulary: pd.DataFrame, rule_set: RuleSet) -> pd.DataFrame:
    """
    Classify a vocabulary with a rule set and attach its labels.

    Adds the subtype label column (if configured) and a primary_only flag
    (for ICD-10 outcome lists).
    """
    logger.info(f"Building code list '{rule_set.name}'")
    codes = classify(
        vocabulary,
        include=rule_set.include,
        exclude=rule_set.exclude,
        manual_exclusions=rule_set.manual_exclusions,
        column=rule_set.match_column,
    )

    if rule_set.label_column:
        codes = tag_subtypes(
            codes,
            rule_set.subtypes,
            rule_set.label_column,
            default=rule_set.default_label,
            column=rule_set.match_column,
        )
    if rule_set.primary_only is not None:
        codes['primary_only'] = bool(rule_set.primary_only)

    return codes.reset_index(drop=True)


# =============================================================================
# COMBINED CODE LISTS
# =============================================================================

def combine_code_lists(
    code_lists: Sequence[pd.DataFrame],
    subtypes: Optional[Sequence[Tuple[str, str]]] = None,
    label_column: Optional[str] = None,
    column: str = "term",
) -> pd.DataFrame:
    """
    Concatenate code lists keeping the first occurrence of each code_id.

    Optional subtype rules override the label of matching codes only.
    """
    frames = [df for df in code_lists if not df.empty]
    if not frames:
        return code_lists[0].copy() if code_lists else pd.DataFrame(columns=['code_id'])

    combined = pd.concat(frames, ignore_index=True)
    n_dupes = combined['code_id'].duplicated().sum()
    if n_dupes:
        logger.info(f"Combined list: dropping {n_dupes} codes already present")
    combined = combined.drop_duplicates(subset='code_id', keep='first').reset_index(drop=True)

    if subtypes and label_column:
        combined = tag_subtypes(combined, subtypes, label_column, default=None, column=column)
    return combined


def build_combined_code_list(name: str, vocabulary: pd.DataFrame) -> pd.DataFrame:
    """Build every member rule set of a configured combined list and merge them."""
    combined_cfg = load_classification_rules().get('combined', {})
    if name not in combined_cfg:
        raise KeyError(f"Unknown combined list '{name}'. Available: {', '.join(combined_cfg)}")
    cfg = combined_cfg[name]

    members = [build_code_list(vocabulary, get_rule_set(m)) for m in cfg['members']]
    subtypes = [(s['pattern'], s['label']) for s in cfg.get('subtypes') or []]
    return combine_code_lists(
        members,
        subtypes=subtypes,
        label_column=cfg.get('label_column'),
        column=cfg.get('match_column', 'term'),
    )
