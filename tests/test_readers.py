"""Tests for local extract readers."""

from __future__ import annotations

import pandas as pd
import pytest

from shrf.data.area_indicators.errors import InputContractError
from shrf.data.area_indicators.readers import (
    clean_geo_codes,
    find_input_files,
    parse_numeric,
    read_attribute_file,
    read_census_profile,
    read_correspondence,
    read_events,
    read_population_denominators,
)


def _write_csv(path, rows: dict) -> None:
    pd.DataFrame(rows).to_csv(path, index=False)


class TestParsing:
    """Tests for code and value cleaning."""

    def test_sentinel_codes_become_missing(self):
        """Test placeholder DA codes and blanks are missing."""
        codes = clean_geo_codes(pd.Series(["35010001", "99999999", " ", None]), "da")
        assert codes.iloc[0] == "35010001"
        assert codes.iloc[1:].isna().all()

    def test_suppression_symbols(self):
        """Test suppressed profile values are missing, not zero."""
        values = parse_numeric(pd.Series(["10", "x", "..", "2.5", ""]), "test")
        assert values.iloc[0] == 10.0
        assert values.iloc[3] == 2.5
        assert values.iloc[[1, 2, 4]].isna().all()

    def test_unparseable_value(self):
        """Test text that is neither a number nor a symbol is rejected."""
        with pytest.raises(InputContractError, match="Unparseable"):
            parse_numeric(pd.Series(["ten"]), "test")


class TestInputFiles:
    """Tests for locating files under the input directory."""

    def test_profile_chunks_sorted(self, tmp_path):
        """Test profile chunks are matched by glob in name order."""
        for region in ("quebec", "atlantic"):
            (tmp_path / f"census_profile_da21_{region}_2021_RAW.csv").touch()
        paths = find_input_files(tmp_path, "profile", 2021)
        assert [p.name for p in paths] == [
            "census_profile_da21_atlantic_2021_RAW.csv",
            "census_profile_da21_quebec_2021_RAW.csv",
        ]

    def test_missing_required_file(self, tmp_path):
        """Test an absent required file raises InputContractError."""
        with pytest.raises(InputContractError, match="correspondence"):
            find_input_files(tmp_path, "correspondence", 2016)

    def test_missing_optional_file(self, tmp_path):
        """Test an absent optional file gives an empty list."""
        assert find_input_files(tmp_path, "nhs", 2011, required=False) == []


class TestCensusReaders:
    """Tests for correspondence, attribute and profile files."""

    def test_correspondence(self, tmp_path):
        """Test area percentages become fractional weights."""
        path = tmp_path / "correspondence_file_2021_RAW.csv"
        _write_csv(
            path,
            {
                "DAUID2021_ADIDU2021": ["35010001", "35010001", "35019999"],
                "DAUID2016_ADIDU2016": ["35010001", "35010002", "99999999"],
                "DAAREAPRCNT_ADPRCNTSUP": ["60", "40", "100"],
            },
        )
        df = read_correspondence(path, 2021)
        assert df.columns.tolist() == ["source_id", "target_id", "weight"]
        # Row with a sentinel target is dropped
        assert len(df) == 2
        assert df["weight"].tolist() == pytest.approx([0.6, 0.4])

    def test_correspondence_missing_column(self, tmp_path):
        """Test a file without the area column is rejected."""
        path = tmp_path / "correspondence.csv"
        _write_csv(path, {"DAUID2021_ADIDU2021": ["1"], "DAUID2016_ADIDU2016": ["2"]})
        with pytest.raises(InputContractError, match="DAAREAPRCNT_ADPRCNTSUP"):
            read_correspondence(path, 2021)

    def test_attribute_file(self, tmp_path):
        """Test 2021 attribute columns are harmonized with file order kept."""
        path = tmp_path / "attribute_file_db21_2021_RAW.csv"
        _write_csv(
            path,
            {
                "DBUID_IDIDU": ["350100010001", "350100010002"],
                "DBPOP2021_IDPOP2021": ["12", ""],
                "DAUID_ADIDU": ["35010001", "35010001"],
                "PRUID_PRIDU": ["35", "35"],
                "PRENAME_PRANOM": ["Ontario", "Ontario"],
                "CDUID_DRIDU": ["3501", "3501"],
                "CSDUID_SDRIDU": ["3501005", "3501005"],
                "CSDNAME_SDRNOM": ["South Glengarry", "South Glengarry"],
                "SACTYPE_CSSGENRE": ["1", "1"],
                "CMAUID_RMRIDU": ["999", "999"],
                "CTUID_SRIDU": ["", ""],
            },
        )
        df = read_attribute_file(path, 2021)
        assert df["row_idx"].tolist() == [0, 1]
        assert df["db_pop"].tolist() == [12.0, 0.0]
        assert df["cma_id"].isna().all()
        assert df["ct_id"].isna().all()

    def test_census_profile_2021(self, tmp_path):
        """Test DA rows of wanted characteristics are spread wide."""
        path = tmp_path / "census_profile_da21_ontario_2021_RAW.csv"
        _write_csv(
            path,
            {
                "ALT_GEO_CODE": ["35010001", "35010001", "35010001", "35"],
                "GEO_LEVEL": [
                    "Dissemination area",
                    "Dissemination area",
                    "Dissemination area",
                    "Province",
                ],
                "CHARACTERISTIC_ID": ["1", "57", "99999", "1"],
                "C1_COUNT_TOTAL": ["500", "2.4", "7", "14000000"],
                "C3_COUNT_WOMEN+": ["260", "x", "3", "7000000"],
                "C2_COUNT_MEN+": ["240", "x", "4", "7000000"],
            },
        )
        wide = read_census_profile(path, 2021)
        assert wide["unit_id"].tolist() == ["35010001"]
        assert wide.loc[0, "p_1_t"] == 500.0
        assert wide.loc[0, "p_57_t"] == 2.4
        assert pd.isna(wide.loc[0, "p_57_f"])
        assert not any(c.startswith("p_99999") for c in wide.columns)


class TestEventReaders:
    """Tests for event and denominator extracts."""

    def test_events(self, tmp_path):
        """Test sex codes are normalized and sentinel geographies dropped."""
        path = tmp_path / "events.csv"
        _write_csv(
            path,
            {
                "event_id": ["e1", "e2"],
                "year": ["2016", "2017"],
                "age": ["60", ""],
                "sex": ["F", "1"],
                "geo_id": ["35010001", "00000000"],
                "icd_code": ["I60.1", "C50"],
            },
        )
        df = read_events(path)
        assert df["sex"].tolist() == ["f", "m"]
        assert df["year"].tolist() == [2016, 2017]
        assert pd.isna(df.loc[1, "age"])
        assert pd.isna(df.loc[1, "geo_id"])

    def test_events_missing_column(self, tmp_path):
        """Test an event file without icd_code is rejected."""
        path = tmp_path / "events.csv"
        _write_csv(
            path, {"year": ["2016"], "age": ["1"], "sex": ["f"], "geo_id": ["1"]}
        )
        with pytest.raises(InputContractError, match="icd_code"):
            read_events(path)

    def test_denominators_unknown_age_group(self, tmp_path):
        """Test denominators with a non-standard age group are rejected."""
        path = tmp_path / "denominators.csv"
        _write_csv(
            path,
            {
                "geo_id": ["35010001"],
                "year": ["2016"],
                "sex": ["f"],
                "age_group": ["0_14"],
                "population": ["10"],
            },
        )
        with pytest.raises(InputContractError, match="Unknown age groups"):
            read_population_denominators(path)

    def test_denominators_missing_year(self, tmp_path):
        """Test denominator rows without a year are rejected."""
        path = tmp_path / "denominators.csv"
        _write_csv(
            path,
            {
                "geo_id": ["35010001", "35010001"],
                "year": ["2016", ""],
                "sex": ["f", "f"],
                "age_group": ["0_4", "5_9"],
                "population": ["10", "12"],
            },
        )
        with pytest.raises(InputContractError, match="1 rows without a year"):
            read_population_denominators(path)
