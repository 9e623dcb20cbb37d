"""Tests for the medication reference workbook loader."""

import pytest
import pandas as pd
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from extractors.medication_reference import (
    expand_brand_synonyms,
    get_keywords,
    load_medication_reference,
    normalize_reference,
)
from utils.errors import MissingColumnError


@pytest.fixture
def raw_sheet():
    """Reference sheet as read from Excel."""
    return pd.DataFrame({
        'Clean': ['Semaglutide', 'Exenatide', 'Liraglutide', None, 'Albiglutide'],
        'Brand names, including branded generics': ['Ozempic, Wegovy,Rybelsus', 'Byetta', None, 'Orphan', 'Eperzan'],
        'Exclude': [None, None, None, None, 'withdrawn'],
    })


class TestNormalizeReference:
    """Tests for reference cleaning."""

    def test_filters_and_lowercases(self, raw_sheet):
        """Rows without keyword or marked Exclude are dropped."""
        ref = normalize_reference(raw_sheet)
        assert ref['keyword'].tolist() == ['semaglutide', 'exenatide', 'liraglutide']

    def test_missing_keyword_column(self):
        """The Clean column is required."""
        with pytest.raises(MissingColumnError):
            normalize_reference(pd.DataFrame({'Drug': ['x']}))

    def test_group_carried(self):
        """The Group column becomes drug_class."""
        raw = pd.DataFrame({'Clean': ['Gliclazide'], 'Brand names': ['Diamicron'], 'Group': ['Sulfonylurea']})
        ref = normalize_reference(raw)
        assert ref.loc[0, 'drug_class'] == 'Sulfonylurea'


class TestExpandBrandSynonyms:
    """Tests for keyword/brand pair expansion."""

    def test_one_row_per_brand(self, raw_sheet):
        """Brands split on commas with optional spaces."""
        pairs = expand_brand_synonyms(normalize_reference(raw_sheet))
        sema = pairs[pairs['keyword'] == 'semaglutide']
        assert sema['brand'].tolist() == ['ozempic', 'wegovy', 'rybelsus']

    def test_keyword_without_brands(self, raw_sheet):
        """A medication with no brands is still searched by keyword."""
        pairs = expand_brand_synonyms(normalize_reference(raw_sheet))
        lira = pairs[pairs['keyword'] == 'liraglutide']
        assert len(lira) == 1
        assert pd.isna(lira['brand'].iloc[0])

    def test_keywords_in_order(self, raw_sheet):
        """Keyword list is unique and ordered."""
        assert get_keywords(normalize_reference(raw_sheet)) == ['semaglutide', 'exenatide', 'liraglutide']


class TestLoadWorkbook:
    """Tests for reading the Excel workbook."""

    def test_skips_title_row(self, tmp_path, raw_sheet):
        """The first sheet row is a title, the second the header."""
        path = tmp_path / "medication_reference.xlsx"
        rows = [["GLP-1 receptor agonists", None, None], list(raw_sheet.columns)]
        rows += raw_sheet.astype(object).where(raw_sheet.notna(), None).values.tolist()
        pd.DataFrame(rows).to_excel(path, sheet_name="glp1ras", index=False, header=False)

        ref = load_medication_reference("glp1ras", path)
        assert ref['keyword'].tolist() == ['semaglutide', 'exenatide', 'liraglutide']
