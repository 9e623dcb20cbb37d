"""Tests for code-list-driven patient record extraction."""

import pytest
import pandas as pd
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from extractors.cohort_extractor import (
    EVENT_COLUMNS,
    extract,
    get_code_column,
    list_source_files,
    make_patient_id,
)
from utils.errors import MissingColumnError, UnknownDatabaseError


AURUM_OBS_1 = (
    "patid\tconsid\tpracid\tobsid\tobsdate\tenterdate\tstaffid\tmedcodeid\tvalue\n"
    "1001\t1\t10\t1\t01/02/2015\t02/02/2015\t5\t1002\t\n"
    "1001\t2\t10\t2\t01/03/2016\t01/03/2016\t5\t9999\t\n"
    "1002\t3\t10\t3\t05/05/2018\t05/05/2018\t6\t1002\t\n"
)

AURUM_OBS_2 = (
    "patid\tconsid\tpracid\tobsid\tobsdate\tenterdate\tstaffid\tmedcodeid\tvalue\n"
    "1003\t4\t11\t4\t10/10/2019\t10/10/2019\t7\t1001\t\n"
    "1003\t5\t11\t5\t11/10/2019\t11/10/2019\t7\t1002\t\n"
)

GOLD_CLINICAL = (
    "patid\teventdate\tsysdate\tconstype\tconsid\tmedcode\tstaffid\tepisode\n"
    "12345\t01/01/2010\t02/01/2010\t1\t1\t11\t3\t1\n"
    "12346\t01/01/2011\t02/01/2011\t1\t2\t99\t3\t1\n"
)


@pytest.fixture
def aurum_files(tmp_path):
    folder = tmp_path / "Aurum" / "Observation"
    folder.mkdir(parents=True)
    (folder / "SMI_Extract_Observation_001.txt").write_text(AURUM_OBS_1)
    (folder / "SMI_Extract_Observation_002.txt").write_text(AURUM_OBS_2)
    return sorted(folder.glob("*.txt"))


@pytest.fixture
def smi_codes():
    return pd.DataFrame({
        'code_id': ['1001', '1002'],
        'term': ['schizophrenia', 'manic-depressive psychosis'],
        'group': ['schizophrenia', 'bipolar'],
    })


class TestCodeColumns:
    """Tests for per-database join columns."""

    def test_code_columns(self):
        """Diagnosis and medication codes are named per database."""
        assert get_code_column("gold", "diagnosis") == "medcode"
        assert get_code_column("aurum", "diagnosis") == "medcodeid"
        assert get_code_column("gold", "medication") == "prodcode"
        assert get_code_column("aurum", "medication") == "prodcodeid"

    def test_unknown_database(self, smi_codes):
        """Extraction fails fast for an unknown database."""
        with pytest.raises(UnknownDatabaseError):
            extract([], smi_codes, "hes", "diagnosis")

    def test_unknown_record_kind(self, smi_codes):
        """Unknown record kinds are rejected."""
        with pytest.raises(ValueError):
            extract([], smi_codes, "gold", "procedure")


class TestExtract:
    """Tests for streaming extraction."""

    def test_inner_join_across_files(self, aurum_files, smi_codes):
        """Only rows with listed codes are kept, from every file."""
        events = extract(aurum_files, smi_codes, "aurum", "diagnosis")

        assert len(events) == 4
        assert set(events['code_id']) == {'1001', '1002'}
        assert list(events.columns[:len(EVENT_COLUMNS)]) == EVENT_COLUMNS

    def test_canonical_dates(self, aurum_files, smi_codes):
        """Aurum obsdate/enterdate become event_date/entry_date."""
        events = extract(aurum_files, smi_codes, "aurum", "diagnosis")
        first = events[events['patid'] == '1001'].iloc[0]

        assert first['event_date'] == '01/02/2015'
        assert first['entry_date'] == '02/02/2015'
        assert 'obsdate' not in events.columns

    def test_code_list_metadata_attached(self, aurum_files, smi_codes):
        """Code list columns travel with each event."""
        events = extract(aurum_files, smi_codes, "aurum", "diagnosis")
        assert set(events.loc[events['code_id'] == '1002', 'group']) == {'bipolar'}

    def test_many_to_many(self, aurum_files, smi_codes):
        """One code matches many patients and one patient many codes."""
        events = extract(aurum_files, smi_codes, "aurum", "diagnosis")

        assert events.loc[events['code_id'] == '1002', 'patid'].nunique() == 3
        assert events.loc[events['patid'] == '1003', 'code_id'].nunique() == 2

    def test_idempotent(self, aurum_files, smi_codes):
        """Re-running gives the same event set."""
        first = extract(aurum_files, smi_codes, "aurum", "diagnosis")
        second = extract(aurum_files, smi_codes, "aurum", "diagnosis")

        key = ['patid', 'code_id', 'event_date']
        pd.testing.assert_frame_equal(
            first.sort_values(key).reset_index(drop=True),
            second.sort_values(key).reset_index(drop=True),
        )

    def test_small_chunks_same_result(self, aurum_files, smi_codes):
        """Chunk size does not change the result."""
        whole = extract(aurum_files, smi_codes, "aurum", "diagnosis")
        chunked = extract(aurum_files, smi_codes, "aurum", "diagnosis", chunk_size=1)
        assert len(whole) == len(chunked)
        assert set(whole['patient_id']) == set(chunked['patient_id'])

    def test_gold_patient_ids(self, tmp_path):
        """GOLD events get -G patient IDs and keep patid as text."""
        path = tmp_path / "gold_clinical.txt"
        path.write_text(GOLD_CLINICAL)
        codes = pd.DataFrame({'code_id': ['11'], 'term': ['schizophrenia']})

        events = extract([path], codes, "gold", "diagnosis")

        assert events['patient_id'].tolist() == ['12345-G']
        assert events.loc[0, 'database'] == 'gold'
        assert events.loc[0, 'record_kind'] == 'diagnosis'

    def test_no_matches(self, aurum_files):
        """No matching codes gives an empty event table."""
        codes = pd.DataFrame({'code_id': ['42']})
        events = extract(aurum_files, codes, "aurum", "diagnosis")
        assert events.empty
        assert list(events.columns) == EVENT_COLUMNS

    def test_wrong_schema_raises(self, aurum_files, smi_codes):
        """Reading Aurum files as GOLD is a schema error."""
        with pytest.raises(MissingColumnError):
            extract(aurum_files, smi_codes, "gold", "diagnosis")

    def test_progress_logged(self, aurum_files, smi_codes, caplog):
        """Per-file progress is logged."""
        with caplog.at_level("INFO"):
            extract(aurum_files, smi_codes, "aurum", "diagnosis")
        assert "Progress: 2/2 completed" in caplog.text


class TestSourceFiles:
    """Tests for source file discovery."""

    def test_lists_configured_folders(self, tmp_path, aurum_files):
        """Files are found under the configured Aurum folder."""
        files = list_source_files("aurum", "diagnosis", root=tmp_path)
        assert [f.name for f in files] == [f.name for f in aurum_files]

    def test_missing_folder_is_empty(self, tmp_path):
        """Absent source folders yield no files."""
        assert list_source_files("gold", "medication", root=tmp_path) == []


class TestPatientId:
    """Tests for composite patient IDs."""

    def test_suffixes(self):
        """Raw IDs are suffixed by database."""
        assert make_patient_id(pd.Series(['12345']), 'gold').iloc[0] == '12345-G'
        assert make_patient_id(pd.Series(['12345']), 'aurum').iloc[0] == '12345-A'

    def test_blank_ids_stay_null(self):
        """Empty or missing patids get no composite ID."""
        ids = make_patient_id(pd.Series(['12345', '', None, '  ']), 'gold')

        assert ids.iloc[0] == '12345-G'
        assert ids.iloc[1:].isna().all()

    def test_records_without_patid_dropped(self, tmp_path, smi_codes):
        """Matched rows with an empty patid are not extracted."""
        source = tmp_path / "SMI_Extract_Observation_001.txt"
        source.write_text(
            "patid\tconsid\tpracid\tobsid\tobsdate\tenterdate\tstaffid\tmedcodeid\tvalue\n"
            "1001\t1\t10\t1\t01/02/2015\t02/02/2015\t5\t1002\t\n"
            "\t2\t10\t2\t01/03/2016\t01/03/2016\t5\t1001\t\n"
        )
        events = extract([source], smi_codes, "aurum", "diagnosis")

        assert events['patient_id'].tolist() == ['1001-A']
