"""
Medication Matcher
==================

Finds product codes whose product name, term or ingredient names a drug of
interest (by ingredient keyword or brand synonym), fills missing
formulation/route from text cues, and keeps only products confirmed by a
whole-word scan of their combined text.

Pipeline:
    1. Candidate generation: per (keyword, brand) pair, whole-word match on
       each of productname / term / ingredient.
    2. Ingredient fallback: null ingredient <- matched keyword(s), title case.
    3. Product name fallback: null productname <- term.
    4. Formulation then route inference (null-only, first rule wins).
    5. Precision scan of the concatenated text against all keywords; this is
       the authoritative filter. Non-confirmed candidates form the excluded
       report.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
from tqdm import tqdm
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.pipeline_config import load_formulation_rules
from extractors.medication_reference import expand_brand_synonyms, get_keywords
from processing.rule_classifier import compile_pattern
from utils.errors import MissingColumnError

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ['productname', 'term', 'ingredient']

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_formulation_rules: Optional[List[Tuple[re.Pattern, str]]] = None
_route_rules: Optional[List[Tuple[re.Pattern, str]]] = None


# =============================================================================
# TEXT HELPERS
# =============================================================================

def whole_word_pattern(term: str) -> re.Pattern:
    """Case-insensitive whole-word pattern for a literal term."""
    return re.compile(r"\b" + re.escape(term) + r"\b", re.IGNORECASE)


def capitalize_first(text: str) -> str:
    """Upper-case the first character only ("glp-1" -> "Glp-1")."""
    return text[:1].upper() + text[1:]


def concat_text(row: pd.Series) -> str:
    """Lowercased productname + term + ingredient with punctuation as spaces."""
    parts = [str(row[f]) for f in SEARCH_FIELDS if f in row.index and not pd.isna(row[f])]
    return _NON_ALNUM.sub(" ", " ".join(parts).lower())


def _field_hits(products: pd.DataFrame, pattern: re.Pattern) -> pd.Series:
    hits = pd.Series(False, index=products.index)
    for col in SEARCH_FIELDS:
        hits |= products[col].map(lambda v: isinstance(v, str) and pattern.search(v) is not None)
    return hits


# =============================================================================
# INFERENCE RULES
# =============================================================================

def _compile_rules(entries: Sequence[Dict]) -> List[Tuple[re.Pattern, str]]:
    return [(compile_pattern(e['pattern']), e['label']) for e in entries]


def get_formulation_rules() -> List[Tuple[re.Pattern, str]]:
    """Ordered (pattern, formulation) rules from formulation_rules.yaml."""
    global _formulation_rules
    if _formulation_rules is None:
        _formulation_rules = _compile_rules(load_formulation_rules()['formulation'])
    return _formulation_rules


def get_route_rules() -> List[Tuple[re.Pattern, str]]:
    """Ordered (pattern, route) rules from formulation_rules.yaml."""
    global _route_rules
    if _route_rules is None:
        _route_rules = _compile_rules(load_formulation_rules()['route'])
    return _route_rules


def first_rule_match(text: Optional[str], rules: Sequence[Tuple[re.Pattern, str]]) -> Optional[str]:
    """Label of the first rule whose pattern occurs in text, else None."""
    if not isinstance(text, str):
        return None
    for pattern, label in rules:
        if pattern.search(text):
            return label
    return None


def infer_formulation(text: str) -> Optional[str]:
    """
    Infer a formulation from product text.

    >>> infer_formulation("ozempic 1mg pen")
    'Solution for injection'
    """
    return first_rule_match(text, get_formulation_rules())


def infer_route(formulation: str) -> Optional[str]:
    """Infer administration route from a formulation."""
    return first_rule_match(formulation, get_route_rules())


# =============================================================================
# MATCHING
# =============================================================================

@dataclass
class MatchResult:
    """Matched code list plus audit tables."""

    matched: pd.DataFrame
    report: pd.DataFrame

    @property
    def excluded(self) -> pd.DataFrame:
        """Candidates rejected by the precision scan."""
        return self.report[~self.report['match']].reset_index(drop=True)


def find_candidates(
    products: pd.DataFrame,
    pairs: pd.DataFrame,
    show_progress: bool = False,
) -> pd.DataFrame:
    """
    Candidate products matching any keyword or brand on any search field.

    Args:
        products: Product vocabulary
        pairs: Expanded (keyword, brand, drug_class) pairs
        show_progress: Show a tqdm bar over the pairs

    Returns:
        Matching subset of products with matched_keywords, matched_brands
        and drug_class (lists, insertion-ordered, unique)
    """
    missing = set(SEARCH_FIELDS + ['code_id']) - set(products.columns)
    if missing:
        raise MissingColumnError(missing, "product vocabulary")

    keywords: Dict[int, List[str]] = {}
    brands: Dict[int, List[str]] = {}
    classes: Dict[int, List[str]] = {}
    keyword_patterns: Dict[str, pd.Series] = {}

    iterator = pairs.itertuples(index=False)
    if show_progress:
        iterator = tqdm(iterator, total=len(pairs), desc="Matching medications")

    for pair in iterator:
        if pair.keyword not in keyword_patterns:
            keyword_patterns[pair.keyword] = _field_hits(products, whole_word_pattern(pair.keyword))
        keyword_hit = keyword_patterns[pair.keyword]

        brand = pair.brand if isinstance(pair.brand, str) and pair.brand else None
        brand_hit = _field_hits(products, whole_word_pattern(brand)) if brand else None

        hit = keyword_hit | brand_hit if brand_hit is not None else keyword_hit
        for idx in products.index[hit]:
            kw = keywords.setdefault(idx, [])
            if pair.keyword not in kw:
                kw.append(pair.keyword)
            if brand_hit is not None and brand_hit[idx]:
                br = brands.setdefault(idx, [])
                if brand not in br:
                    br.append(brand)
            if isinstance(pair.drug_class, str):
                dc = classes.setdefault(idx, [])
                if pair.drug_class not in dc:
                    dc.append(pair.drug_class)

    candidates = products.loc[[i for i in products.index if i in keywords]].copy()
    candidates['matched_keywords'] = [keywords[i] for i in candidates.index]
    candidates['matched_brands'] = [brands.get(i, []) for i in candidates.index]
    candidates['drug_class'] = [classes.get(i, []) for i in candidates.index]
    return candidates


def match_medications(
    products: pd.DataFrame,
    reference: pd.DataFrame,
    medication_field: str = "medication",
    show_progress: bool = False,
) -> MatchResult:
    """
    Match a product vocabulary against a medication reference.

    Args:
        products: Product vocabulary (see vocabulary_loader)
        reference: Normalised reference (keyword, brandnames, drug_class)
        medication_field: Output label column, e.g. "GLP-1RA"
        show_progress: Show a tqdm bar during candidate generation

    Returns:
        MatchResult with the confirmed code list and the full candidate report
        (``match`` column marks confirmed rows)
    """
    pairs = expand_brand_synonyms(reference)
    keywords = get_keywords(reference)
    keyword_res = [(kw, whole_word_pattern(kw)) for kw in keywords]

    candidates = find_candidates(products, pairs, show_progress=show_progress)
    logger.info(f"{len(candidates):,} candidate products from {len(pairs):,} keyword/brand pairs")

    if candidates.empty:
        report = candidates.assign(concat=pd.Series(dtype=object), match=pd.Series(dtype=bool))
        report[medication_field] = pd.Series(dtype=object)
        return MatchResult(matched=report.drop(columns=['concat', 'match']), report=report)

    # Fallback ingredient from the candidate keywords
    fallback = candidates['matched_keywords'].map(lambda kws: "/".join(k.title() for k in kws))
    candidates['ingredient'] = candidates['ingredient'].where(candidates['ingredient'].notna(), fallback)

    candidates['productname'] = candidates['productname'].where(
        candidates['productname'].notna(), candidates['term']
    )

    candidates['concat'] = candidates.apply(concat_text, axis=1)

    inferred = candidates['concat'].map(infer_formulation)
    n_form = int((candidates['formulation'].isna() & inferred.notna()).sum())
    candidates['formulation'] = candidates['formulation'].where(candidates['formulation'].notna(), inferred)

    inferred_route = candidates['formulation'].map(infer_route)
    n_route = int((candidates['route'].isna() & inferred_route.notna()).sum())
    candidates['route'] = candidates['route'].where(candidates['route'].notna(), inferred_route)
    logger.info(f"Inferred formulation for {n_form:,} and route for {n_route:,} products")

    # Precision scan
    def confirmed(text: str) -> List[str]:
        return [kw for kw, pattern in keyword_res if pattern.search(text)]

    confirmed_keywords = candidates['concat'].map(confirmed)
    candidates['match'] = confirmed_keywords.map(bool)
    candidates[medication_field] = confirmed_keywords.map(
        lambda kws: "/".join(dict.fromkeys(capitalize_first(k) for k in kws))
    )
    candidates['drug_class'] = candidates['drug_class'].map(lambda dc: "/".join(dc) if dc else None)

    report = candidates.reset_index(drop=True)
    matched = report[report['match']].drop(columns=['concat', 'match']).reset_index(drop=True)
    logger.info(
        f"{medication_field}: {len(matched):,} products confirmed, "
        f"{len(report) - len(matched):,} excluded by precision scan"
    )
    return MatchResult(matched=matched, report=report)
