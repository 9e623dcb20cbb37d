"""Tests for medication product matching."""

import pytest
import pandas as pd
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from processing.medication_matcher import (
    capitalize_first,
    find_candidates,
    infer_formulation,
    infer_route,
    match_medications,
)
from extractors.medication_reference import expand_brand_synonyms


def make_products(rows):
    """Product vocabulary with canonical columns."""
    columns = ['code_id', 'term', 'productname', 'formulation', 'route', 'ingredient', 'strength']
    df = pd.DataFrame(rows, columns=columns)
    return df.astype(object).where(df.notna(), None)


def make_reference(rows):
    return pd.DataFrame(rows, columns=['keyword', 'brandnames', 'drug_class'])


@pytest.fixture
def glp_reference():
    return make_reference([
        ('semaglutide', 'ozempic, wegovy, rybelsus', None),
        ('exenatide', 'byetta, bydureon', None),
        ('liraglutide', None, None),
    ])


class TestInference:
    """Tests for formulation and route rules."""

    def test_pen_is_injection(self):
        """Pen devices are solutions for injection."""
        assert infer_formulation("ozempic 1mg pen semaglutide") == "Solution for injection"

    def test_first_rule_wins(self):
        """Tablet is checked before injection."""
        assert infer_formulation("starter pack tablets and vial") == "Tablet"

    def test_abbreviation_needs_word_boundary(self):
        """'tab' as an abbreviation matches; inside another word it does not."""
        assert infer_formulation("metformin 500mg tab") == "Tablet"
        assert infer_formulation("stable compound") is None

    def test_route_from_formulation(self):
        """Routes follow formulation."""
        assert infer_route("Tablet") == "Oral"
        assert infer_route("Solution for injection") == "Intramuscular"
        assert infer_route("Suppository") == "Rectal"
        assert infer_route(None) is None

    def test_capitalize_first(self):
        """Only the first character is upper-cased."""
        assert capitalize_first("glp-1 analogue") == "Glp-1 analogue"


class TestCandidates:
    """Tests for candidate generation."""

    def test_whole_word_keyword(self):
        """'met' does not match Metformin; 'metformin' does."""
        products = make_products([('1', None, 'Metformin 500mg tablets', 'Tablet', 'Oral', None, None)])

        short = expand_brand_synonyms(make_reference([('met', None, None)]))
        full = expand_brand_synonyms(make_reference([('metformin', None, None)]))

        assert find_candidates(products, short).empty
        assert find_candidates(products, full)['code_id'].tolist() == ['1']

    def test_brand_match_on_any_field(self, glp_reference):
        """A brand in the term alone is enough."""
        products = make_products([('1', 'Wegovy 2.4mg', None, None, None, None, None)])
        cands = find_candidates(products, expand_brand_synonyms(glp_reference))

        assert cands.loc[0, 'matched_keywords'] == ['semaglutide']
        assert cands.loc[0, 'matched_brands'] == ['wegovy']

    def test_multiple_keywords_unioned(self, glp_reference):
        """Combination products keep every matched keyword in order."""
        products = make_products([('1', None, 'Exenatide + semaglutide', None, None, None, None)])
        cands = find_candidates(products, expand_brand_synonyms(glp_reference))
        assert cands.loc[0, 'matched_keywords'] == ['semaglutide', 'exenatide']


class TestMatchMedications:
    """Tests for the full matching pipeline."""

    def test_ozempic_example(self, glp_reference):
        """Null ingredient and formulation are filled for a brand-only product."""
        products = make_products([('1', None, 'Ozempic 1mg pen', None, None, None, None)])

        result = match_medications(products, glp_reference, medication_field="GLP-1RA")
        row = result.matched.iloc[0]

        assert row['ingredient'] == 'Semaglutide'
        assert row['formulation'] == 'Solution for injection'
        assert row['route'] == 'Intramuscular'
        assert row['GLP-1RA'] == 'Semaglutide'

    def test_existing_values_not_overwritten(self, glp_reference):
        """Formulation, route and ingredient already present are kept."""
        products = make_products([
            ('1', None, 'Byetta 10micrograms pen', 'Solution for injection', 'Subcutaneous', 'Exenatide', '10mcg'),
        ])
        row = match_medications(products, glp_reference, "GLP-1RA").matched.iloc[0]

        assert row['route'] == 'Subcutaneous'
        assert row['ingredient'] == 'Exenatide'

    def test_productname_falls_back_to_term(self, glp_reference):
        """A null product name takes the term."""
        products = make_products([('1', 'Liraglutide 6mg/ml pre-filled pen', None, None, None, None, None)])
        row = match_medications(products, glp_reference, "GLP-1RA").matched.iloc[0]
        assert row['productname'] == 'Liraglutide 6mg/ml pre-filled pen'

    def test_precision_scan_excludes(self):
        """Candidates not confirmed by the keyword scan go to the excluded report."""
        reference = make_reference([('insulin', 'lantus', None)])
        products = make_products([
            ('1', None, 'Lantus 100units/ml SoloStar', 'Solution for injection', None, 'Insulin glargine', None),
            ('2', None, 'Lantus pen needles', None, None, 'Device', None),
        ])

        result = match_medications(products, reference, "Insulin")

        assert result.matched['code_id'].tolist() == ['1']
        assert result.excluded['code_id'].tolist() == ['2']
        assert result.report['match'].tolist() == [True, False]

    def test_no_candidates(self, glp_reference):
        """No matches yields empty tables, not an error."""
        products = make_products([('1', None, 'Paracetamol 500mg tablets', 'Tablet', 'Oral', 'Paracetamol', None)])
        result = match_medications(products, glp_reference, "GLP-1RA")

        assert result.matched.empty
        assert result.excluded.empty

    def test_drug_class_carried(self):
        """Reference groups become the drug_class column."""
        reference = make_reference([('gliclazide', 'diamicron', 'Sulfonylurea'), ('metformin', None, 'Biguanide')])
        products = make_products([('1', None, 'Diamicron 30mg MR tablets', 'Tablet', 'Oral', 'Gliclazide', None)])

        row = match_medications(products, reference, "Antidiabetic").matched.iloc[0]
        assert row['drug_class'] == 'Sulfonylurea'
        assert row['Antidiabetic'] == 'Gliclazide'
