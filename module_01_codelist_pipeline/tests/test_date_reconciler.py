"""Tests for event date reconciliation."""

import pytest
import pandas as pd
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from processing.date_reconciler import drop_exact_duplicates, parse_cprd_dates, reconcile
from utils.errors import MissingColumnError


def events(*dates):
    """Events from (event_date, entry_date) text pairs."""
    return pd.DataFrame({
        'patient_id': [f"{i}-A" for i in range(len(dates))],
        'code_id': '100',
        'event_date': [d[0] for d in dates],
        'entry_date': [d[1] for d in dates],
    })


class TestParseDates:
    """Tests for CPRD date parsing."""

    def test_day_month_year(self):
        """Dates are dd/mm/yyyy."""
        parsed = parse_cprd_dates(pd.Series(['15/06/2010', '01/02/2003']))
        assert parsed.tolist() == [pd.Timestamp('2010-06-15'), pd.Timestamp('2003-02-01')]

    def test_unparsable_is_null(self):
        """Bad or empty dates become NaT without raising."""
        parsed = parse_cprd_dates(pd.Series(['31/02/2010', 'unknown', None]))
        assert parsed.isna().all()


class TestReconcile:
    """Tests for reconciliation rules."""

    def test_implausible_primary_replaced(self):
        """A 1901 event date with a 2010 entry date takes the entry date."""
        result = reconcile(events(('01/01/1901', '15/06/2010')), '1900-01-01', '2023-06-01')
        assert result.loc[0, 'event_date'] == pd.Timestamp('2010-06-15')

    def test_future_event_dropped(self):
        """An event after the study window with no usable entry date is dropped."""
        result = reconcile(events(('15/06/2030', '15/06/2030')), '1900-01-01', '2023-06-01')
        assert result.empty

    def test_future_event_uses_entry_date(self):
        """A future event date is nulled and filled from a valid entry date."""
        result = reconcile(events(('15/06/2030', '01/03/2020')), '1900-01-01', '2023-06-01')
        assert result.loc[0, 'event_date'] == pd.Timestamp('2020-03-01')

    def test_missing_primary_coalesced(self):
        """Unparsable event dates fall back to the entry date."""
        result = reconcile(events(('', '02/02/2015')), '1900-01-01', '2023-06-01')
        assert result.loc[0, 'event_date'] == pd.Timestamp('2015-02-02')

    def test_too_early_dates_nulled(self):
        """Dates before the earliest date are errors."""
        result = reconcile(events(('01/01/1850', '01/01/1850')), '1900-01-01', '2023-06-01')
        assert result.empty

    def test_old_primary_without_plausible_entry_kept(self):
        """A pre-1910 event is kept when the entry date cannot replace it."""
        result = reconcile(events(('01/01/1905', '01/01/1950')), '1900-01-01', '2023-06-01')
        assert result.loc[0, 'event_date'] == pd.Timestamp('1905-01-01')

    def test_entry_date_not_bounded_above(self):
        """Entry dates after the window are kept as entry dates."""
        result = reconcile(events(('01/01/2020', '01/01/2024')), '1900-01-01', '2023-06-01')
        assert result.loc[0, 'entry_date'] == pd.Timestamp('2024-01-01')

    def test_duplicates_dropped(self):
        """Identical rows collapse to one."""
        df = pd.concat([events(('01/01/2020', '02/01/2020'))] * 3, ignore_index=True)
        assert len(reconcile(df, '1900-01-01', '2023-06-01')) == 1

    def test_future_event_without_entry_date_dropped(self):
        """A future event with no entry date leaves an empty, typed table."""
        result = reconcile(events(('15/06/2030', None)), '1900-01-01', '2023-06-01')

        assert result.empty
        assert {'event_date', 'entry_date'} <= set(result.columns)

    def test_defaults_from_config(self):
        """Window defaults to the configured study dates."""
        result = reconcile(events(('01/07/2023', '01/07/2023'), ('01/05/2023', '01/05/2023')))
        assert len(result) == 1

    def test_custom_columns(self):
        """Medication issue/enter dates can be reconciled directly."""
        df = pd.DataFrame({'issuedate': ['01/01/1901'], 'enterdate': ['01/01/2001']})
        result = reconcile(df, primary='issuedate', secondary='enterdate')
        assert result.loc[0, 'issuedate'] == pd.Timestamp('2001-01-01')

    def test_missing_date_column(self):
        """Events without date columns are a schema error."""
        with pytest.raises(MissingColumnError):
            reconcile(pd.DataFrame({'event_date': ['01/01/2020']}))

    def test_input_not_modified(self):
        """Reconciliation returns a new table."""
        df = events(('01/01/1901', '15/06/2010'))
        reconcile(df)
        assert df.loc[0, 'event_date'] == '01/01/1901'


class TestDropExactDuplicates:
    """Tests for duplicate removal on mixed column types."""

    def test_list_columns(self):
        """Rows with equal list values are duplicates."""
        df = pd.DataFrame({'code_id': ['1', '1', '2'], 'matched_keywords': [['a'], ['a'], ['a']]})
        assert drop_exact_duplicates(df)['code_id'].tolist() == ['1', '2']

    def test_empty_datetime_columns(self):
        """An empty table with parsed date columns passes through."""
        df = pd.DataFrame({
            'code_id': pd.Series([], dtype=object),
            'event_date': pd.Series([], dtype='datetime64[ns]'),
        })
        result = drop_exact_duplicates(df)

        assert result.empty
        assert list(result.columns) == ['code_id', 'event_date']
