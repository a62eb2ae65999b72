"""Tests for DuckDB pipeline processors."""

from __future__ import annotations

import pandas as pd
import pytest

from shrf.data.area_indicators.duckdb_processor import (
    CasdohiProcessor,
    EventRateProcessor,
    PopulationCountProcessor,
    _year_plan,
)
from shrf.data.area_indicators.errors import InputContractError, IntegrityError

# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


def _blocks(da_pops: dict[str, float], ct_id: str = "5350001.00") -> pd.DataFrame:
    """One block per DA, all in one census tract of Toronto."""
    n = len(da_pops)
    return pd.DataFrame(
        {
            "row_idx": range(n),
            "db_id": [f"{da}01" for da in da_pops],
            "db_pop": list(da_pops.values()),
            "da_id": list(da_pops),
            "pr_id": ["35"] * n,
            "pr_name": ["Ontario"] * n,
            "cd_id": ["3520"] * n,
            "csd_id": ["3520005"] * n,
            "csd_name": ["Toronto"] * n,
            "sactype": ["1"] * n,
            "cma_id": ["535"] * n,
            "ct_id": [ct_id] * n,
        }
    )


@pytest.fixture
def blocks() -> dict[int, pd.DataFrame]:
    """2011 DAs A1/A2 (1,500 people) and 2016 DAs B1-B3 (2,000 people)."""
    return {
        2011: _blocks({"A1": 1000.0, "A2": 500.0}),
        2016: _blocks({"B1": 1200.0, "B2": 300.0, "B3": 500.0}, "5350001.01"),
    }


@pytest.fixture
def correspondence() -> dict[int, pd.DataFrame]:
    """2016 DAs onto 2011 DAs, B2 split evenly."""
    return {
        2016: pd.DataFrame(
            {
                "source_id": ["B1", "B2", "B2", "B3"],
                "target_id": ["A1", "A1", "A2", "A2"],
                "weight": [1.0, 0.5, 0.5, 1.0],
            }
        )
    }


@pytest.fixture
def population_processor(blocks, correspondence) -> PopulationCountProcessor:
    """Population processor run over 2011-2016."""
    processor = PopulationCountProcessor(start_year=2011, end_year=2016)
    processor.load_frames(blocks, correspondence)
    processor.create_population_counts()
    return processor


# -----------------------------------------------------------------------------
# Test: Year planning
# -----------------------------------------------------------------------------


class TestYearPlan:
    """Tests for splitting year ranges across censuses."""

    def test_full_range(self):
        """Test 2011-2021 covers three censuses and two intervals."""
        censal, intervals = _year_plan(2011, 2021)
        assert censal == [2011, 2016, 2021]
        assert intervals == {
            (2011, 2016): [2012, 2013, 2014, 2015],
            (2016, 2021): [2017, 2018, 2019, 2020],
        }

    def test_partial_range(self):
        """Test a range starting mid-interval."""
        censal, intervals = _year_plan(2014, 2017)
        assert censal == [2016]
        assert intervals == {(2011, 2016): [2014, 2015], (2016, 2021): [2017]}

    def test_inverted_range(self):
        """Test start after end is rejected."""
        with pytest.raises(ValueError, match="after"):
            _year_plan(2016, 2011)

    def test_extrapolation_rejected(self):
        """Test years past the last census are rejected."""
        with pytest.raises(ValueError, match="extrapolation"):
            PopulationCountProcessor(start_year=2011, end_year=2022)

    def test_required_vintages(self):
        """Test an intercensal year needs both surrounding censuses."""
        processor = PopulationCountProcessor(start_year=2013, end_year=2013)
        assert processor.censal_years == []
        assert processor.vintages == [2011, 2016]


# -----------------------------------------------------------------------------
# Test: Population counts
# -----------------------------------------------------------------------------


class TestPopulationCountProcessor:
    """Tests for yearly DA and CT population counts."""

    def test_requires_inputs(self):
        """Test counts cannot be created before inputs are loaded."""
        processor = PopulationCountProcessor(start_year=2011, end_year=2016)
        with pytest.raises(RuntimeError, match="Call load_inputs\\(\\) first"):
            processor.create_population_counts()

    def test_censal_counts(self, population_processor):
        """Test censal years carry their own boundary and counts."""
        da = population_processor.to_pandas("population_da")
        census_2016 = da[da["year"] == 2016].set_index("da_id")
        assert census_2016.loc["B1", "population"] == 1200
        assert (census_2016["boundary"] == 2016).all()

    def test_intercensal_counts(self, population_processor):
        """Test 2013 is interpolated on the 2011 boundary."""
        da = population_processor.to_pandas("population_da")
        y2013 = da[da["year"] == 2013].set_index("da_id")
        # 2016 onto 2011: A1 = 1200 + 150, A2 = 150 + 500
        assert y2013.loc["A1", "population"] == 1140
        assert y2013.loc["A2", "population"] == 560
        assert (y2013["boundary"] == 2011).all()

    def test_geography_attached(self, population_processor):
        """Test DA rows carry their boundary's hierarchy columns."""
        da = population_processor.to_pandas("population_da")
        assert da.columns.tolist()[:3] == ["year", "boundary", "da_id"]
        assert (da["pr_id"] == "35").all()

    def test_census_tract_counts(self, population_processor):
        """Test CT counts sum the DAs of each year."""
        ct = population_processor.to_pandas("population_ct")
        totals = dict(zip(ct["year"], ct["population"]))
        assert totals == {
            2011: 1500,
            2012: 1600,
            2013: 1700,
            2014: 1800,
            2015: 1900,
            2016: 2000,
        }

    def test_census_tract_rounds_after_sum(self):
        """Test CT totals sum unrounded DA estimates and round once."""
        processor = PopulationCountProcessor(start_year=2013, end_year=2013)
        processor.load_frames(
            {
                2011: _blocks({"A1": 10.0, "A2": 10.0}),
                2016: _blocks({"B1": 11.0, "B2": 11.0}),
            },
            {
                2016: pd.DataFrame(
                    {
                        "source_id": ["B1", "B2"],
                        "target_id": ["A1", "A2"],
                        "weight": [1.0, 1.0],
                    }
                )
            },
        )
        processor.create_population_counts()

        # Each DA is 10.4 in 2013
        da = processor.to_pandas("population_da")
        ct = processor.to_pandas("population_ct")
        assert sorted(da["population"].tolist()) == [10, 10]
        assert ct["population"].tolist() == [21]

    def test_validate(self, population_processor):
        """Test valid counts and yearly totals."""
        results = population_processor.validate()
        assert results["is_valid"]
        assert results["stats"]["total_population"][2014] == pytest.approx(1800)

    def test_validate_expected_totals(self, population_processor):
        """Test a mismatch with published totals is an error."""
        results = population_processor.validate(expected_totals={2016: 2100})
        assert not results["is_valid"]
        assert "2016" in results["errors"][0]

    def test_validate_strict(self, population_processor):
        """Test strict validation raises on errors."""
        with pytest.raises(IntegrityError, match="published"):
            population_processor.validate(expected_totals={2016: 2100}, strict=True)

    def test_validate_detects_negative_population(self):
        """Test negative counts are errors and missing counts are warnings."""
        processor = PopulationCountProcessor(start_year=2011, end_year=2016)
        processor.conn.execute("""
            CREATE OR REPLACE TABLE population_da AS
            SELECT * FROM (VALUES
                (2011, 2011, 'A1', 1000),
                (2011, 2011, 'A2', -5),
                (2012, 2011, 'A1', NULL)
            ) AS t(year, boundary, da_id, population)
        """)
        processor._completed.add("population_da")

        results = processor.validate()
        assert not results["is_valid"]
        assert "negative" in results["errors"][0]
        assert any("without a population" in w for w in results["warnings"])

    def test_bad_correspondence_rejected(self, blocks):
        """Test weights not summing to one stop loading."""
        processor = PopulationCountProcessor(start_year=2011, end_year=2016)
        bad = {
            2016: pd.DataFrame(
                {"source_id": ["B1"], "target_id": ["A1"], "weight": [0.7]}
            )
        }
        with pytest.raises(IntegrityError):
            processor.load_frames(blocks, bad)

    def test_save_outputs(self, population_processor, tmp_path):
        """Test one CSV per year for DAs and CTs."""
        paths = population_processor.save_outputs(tmp_path)
        assert paths["da_2013"].name == "pop_counts_da_2013.csv"
        assert paths["ct_2016"].name == "pop_counts_ct_2016.csv"
        assert "xlsx" not in paths

    def test_stage_snapshots(self, population_processor, tmp_path):
        """Test completed stages reload into a fresh processor."""
        saved = population_processor.save_stages(tmp_path)
        assert set(saved) == set(PopulationCountProcessor.stages)

        resumed = PopulationCountProcessor(start_year=2011, end_year=2016)
        resumed.load_stages(tmp_path)
        assert resumed.is_complete("population_ct")
        assert len(resumed.to_pandas("population_da")) == len(
            population_processor.to_pandas("population_da")
        )


# -----------------------------------------------------------------------------
# Test: CASDOHI indicators
# -----------------------------------------------------------------------------


class TestCasdohiProcessor:
    """Tests for indicators over a single census."""

    @pytest.fixture
    def processor(self, blocks) -> CasdohiProcessor:
        """CASDOHI processor for 2016 with a partial profile."""
        profile = pd.DataFrame(
            {
                "unit_id": ["B1", "B2", "B3"],
                "p_1_t": [1200.0, 300.0, 500.0],
                "p_8_f": [600.0, 160.0, 240.0],
                "p_8_m": [600.0, 140.0, 260.0],
                "p_74_t": [300.0, 80.0, 0.0],
                "p_78_t": [30.0, 20.0, 0.0],
            }
        )
        processor = CasdohiProcessor(start_year=2016, end_year=2016)
        processor.load_frames({2016: profile}, {2016: blocks[2016]}, {})
        return processor

    def test_requires_profiles(self):
        """Test indicators cannot be built before profiles."""
        processor = CasdohiProcessor(start_year=2016, end_year=2016)
        with pytest.raises(RuntimeError, match="Call create_indicator_profiles"):
            processor.create_indicators()

    def test_missing_census_profile(self, blocks):
        """Test a requested census without a loaded profile is an input error."""
        processor = CasdohiProcessor(start_year=2011, end_year=2011)
        processor.load_frames(
            {2016: pd.DataFrame({"unit_id": ["B1"], "p_1_t": [1200.0]})}, blocks, {}
        )
        with pytest.raises(InputContractError, match="No 2011 census profile"):
            processor.create_indicator_profiles()

    def test_indicators(self, processor):
        """Test indicator values and attached geography."""
        processor.create_indicator_profiles().create_indicators()
        indicators = processor.to_pandas("indicators").set_index("da_id")
        assert indicators.loc["B1", "pop_t"] == pytest.approx(1200.0)
        assert indicators.loc["B2", "pct_single_parent_t"] == pytest.approx(25.0)
        assert pd.isna(indicators.loc["B3", "pct_single_parent_t"])
        assert indicators.loc["B1", "cma_id"] == "535"

    def test_validate_reports_empty_indicators(self, processor):
        """Test indicators without source columns are flagged as warnings."""
        processor.create_indicator_profiles().create_indicators()
        results = processor.validate()
        assert results["is_valid"]
        assert any("without any value" in w for w in results["warnings"])
        assert results["stats"]["rows"] == 3

    def test_save_outputs(self, processor, tmp_path):
        """Test yearly CSV and the tag table are written."""
        processor.create_indicator_profiles().create_indicators()
        paths = processor.save_outputs(tmp_path)
        assert paths["2016"].name == "casdohi_da_2016.csv"
        tags = pd.read_csv(paths["tags"])
        assert {"indicator", "kind", "variable_class"} <= set(tags.columns)


# -----------------------------------------------------------------------------
# Test: Event rates
# -----------------------------------------------------------------------------


class TestEventRateProcessor:
    """Tests for the event rate pipeline on in-memory frames."""

    @pytest.fixture
    def population(self):
        """Women and men at 1,000 per stratum."""
        return pd.DataFrame(
            {
                "geo_id": ["35010001"] * 4,
                "year": [2016] * 4,
                "sex": ["f", "f", "m", "m"],
                "age_group": ["30_34", "60_64", "50_54", "70_74"],
                "population": [1000.0] * 4,
            }
        )

    def test_requires_inputs(self):
        """Test rates cannot be created before inputs are loaded."""
        with pytest.raises(RuntimeError, match="Call load_inputs\\(\\) first"):
            EventRateProcessor().create_rates()

    def test_rates(self, sample_events, population):
        """Test rates with unit rounding."""
        processor = EventRateProcessor(rounding_base=1)
        processor.load_frames(sample_events, population).create_rates()
        rates = processor.to_pandas("event_rates").set_index(["sex", "category"])
        assert rates.loc[("f", "avoidable"), "rate"] == pytest.approx(100.0)
        assert rates.loc[("t", "avoidable"), "rate"] == pytest.approx(50.0)

    def test_default_rounding(self, sample_events, population):
        """Test counts are published as multiples of five."""
        processor = EventRateProcessor()
        processor.load_frames(sample_events, population).create_rates()
        strata = processor.to_pandas("rate_strata")
        assert (strata["events"] % 5 == 0).all()
        assert (strata["population"] % 5 == 0).all()

    def test_validate(self, sample_events, population):
        """Test valid rates and per-category stats."""
        processor = EventRateProcessor(rounding_base=1)
        processor.load_frames(sample_events, population).create_rates()
        results = processor.validate()
        assert results["is_valid"]
        categories = {row["category"] for row in results["stats"]["by_category"]}
        assert categories == {"preventable", "treatable", "avoidable"}

    def test_denominators_required(self, tmp_path):
        """Test load_inputs needs a denominator source."""
        path = tmp_path / "events.csv"
        pd.DataFrame(
            {
                "year": ["2016"],
                "age": ["60"],
                "sex": ["f"],
                "geo_id": ["35010001"],
                "icd_code": ["I60"],
            }
        ).to_csv(path, index=False)
        with pytest.raises(ValueError, match="denominators_path or persons_paths"):
            EventRateProcessor().load_inputs(path)

    def test_save_outputs(self, sample_events, population, tmp_path):
        """Test one rate file per event year."""
        processor = EventRateProcessor()
        processor.load_frames(sample_events, population).create_rates()
        paths = processor.save_outputs(tmp_path)
        assert list(paths) == ["2016"]
        assert paths["2016"].name == "event_rates_2016.csv"
