"""Tests for areal reweighting onto previous-census boundaries."""

from __future__ import annotations

import pandas as pd
import pytest

from shrf.data.area_indicators.errors import InputContractError, IntegrityError
from shrf.data.area_indicators.reweighting import (
    check_mass_conservation,
    reweight_profile,
    validate_correspondence,
)


def _value(result: pd.DataFrame, unit_id: str, variable: str, sex: str = "t"):
    row = result[
        (result["unit_id"] == unit_id)
        & (result["variable"] == variable)
        & (result["sex"] == sex)
    ]
    assert len(row) == 1
    return row["value"].iloc[0]


# -----------------------------------------------------------------------------
# Test: Variable classes
# -----------------------------------------------------------------------------


class TestReweightingClasses:
    """Tests for extensive, intensive and median redistribution."""

    def test_extensive_sum(
        self,
        conn,
        two_block_profile,
        two_block_population,
        full_correspondence,
        variable_classes,
    ):
        """Test extensive values are summed: 50 + 80 = 130."""
        result = reweight_profile(
            conn,
            two_block_profile,
            two_block_population,
            full_correspondence,
            variable_classes,
        )
        assert _value(result, "A", "p_1") == pytest.approx(130.0)

    def test_intensive_population_weighted_mean(
        self,
        conn,
        two_block_profile,
        two_block_population,
        full_correspondence,
        variable_classes,
    ):
        """Test intensive values are population-weighted: (100*50 + 200*80)/300."""
        result = reweight_profile(
            conn,
            two_block_profile,
            two_block_population,
            full_correspondence,
            variable_classes,
        )
        assert _value(result, "A", "p_58") == pytest.approx(70.0)

    def test_median_of_medians(
        self, conn, two_block_population, full_correspondence, variable_classes
    ):
        """Test median picks the first source past half the weighted population."""
        profile = pd.DataFrame(
            {
                "unit_id": ["B1", "B2"],
                "variable": ["p_40", "p_40"],
                "sex": ["t", "t"],
                "value": [50.0, 80.0],
            }
        )
        result = reweight_profile(
            conn, profile, two_block_population, full_correspondence, variable_classes
        )
        # Cumulative shares 1/3 then 1, so B2 carries the median
        assert _value(result, "A", "p_40") == pytest.approx(80.0)

    def test_median_dominant_low_value(
        self, conn, full_correspondence, variable_classes
    ):
        """Test a heavily populated low-value source wins the median."""
        profile = pd.DataFrame(
            {
                "unit_id": ["B1", "B2"],
                "variable": ["p_40", "p_40"],
                "sex": ["t", "t"],
                "value": [30.0, 90.0],
            }
        )
        population = pd.DataFrame(
            {"unit_id": ["B1", "B2"], "sex": ["t", "t"], "population": [900.0, 100.0]}
        )
        result = reweight_profile(
            conn, profile, population, full_correspondence, variable_classes
        )
        assert _value(result, "A", "p_40") == pytest.approx(30.0)

    def test_intensive_denominator_keeps_missing_values(
        self,
        conn,
        two_block_population,
        full_correspondence,
        variable_classes,
    ):
        """Test a missing intensive value still counts in the population weight."""
        profile = pd.DataFrame(
            {
                "unit_id": ["B1", "B2"],
                "variable": ["p_58", "p_58"],
                "sex": ["t", "t"],
                "value": [50.0, float("nan")],
            }
        )
        result = reweight_profile(
            conn, profile, two_block_population, full_correspondence, variable_classes
        )
        assert _value(result, "A", "p_58") == pytest.approx(5000.0 / 300.0)


# -----------------------------------------------------------------------------
# Test: Correspondence links
# -----------------------------------------------------------------------------


class TestCorrespondenceLinks:
    """Tests for split, zero-weight and unmatched links."""

    def test_split_source(
        self, conn, two_block_profile, two_block_population, variable_classes
    ):
        """Test a source split across two targets shares its extensive value."""
        correspondence = pd.DataFrame(
            {
                "source_id": ["B1", "B1", "B2"],
                "target_id": ["A", "C", "A"],
                "weight": [0.25, 0.75, 1.0],
            }
        )
        result = reweight_profile(
            conn,
            two_block_profile,
            two_block_population,
            correspondence,
            variable_classes,
        )
        assert _value(result, "A", "p_1") == pytest.approx(92.5)
        assert _value(result, "C", "p_1") == pytest.approx(37.5)
        # Only B1 feeds C, so its intensive value is B1's
        assert _value(result, "C", "p_58") == pytest.approx(50.0)

    def test_target_without_data_is_missing(
        self, conn, two_block_profile, two_block_population, variable_classes
    ):
        """Test a target reached only by zero-weight links gets missing values."""
        correspondence = pd.DataFrame(
            {
                "source_id": ["B1", "B2", "B1"],
                "target_id": ["A", "A", "C"],
                "weight": [1.0, 1.0, 0.0],
            }
        )
        result = reweight_profile(
            conn,
            two_block_profile,
            two_block_population,
            correspondence,
            variable_classes,
        )
        assert pd.isna(_value(result, "C", "p_1"))
        assert pd.isna(_value(result, "C", "p_58"))
        assert _value(result, "A", "p_1") == pytest.approx(130.0)

    def test_every_target_gets_every_variable(
        self,
        conn,
        two_block_profile,
        two_block_population,
        full_correspondence,
        variable_classes,
    ):
        """Test output has one row per target, variable and sex."""
        result = reweight_profile(
            conn,
            two_block_profile,
            two_block_population,
            full_correspondence,
            variable_classes,
        )
        assert len(result) == 2
        assert set(result["variable"]) == {"p_1", "p_58"}


# -----------------------------------------------------------------------------
# Test: Input contracts and integrity checks
# -----------------------------------------------------------------------------


class TestReweightingChecks:
    """Tests for contract violations and integrity failures."""

    def test_unclassified_variable_rejected(
        self, conn, two_block_population, full_correspondence, variable_classes
    ):
        """Test a profile variable without a class raises InputContractError."""
        profile = pd.DataFrame(
            {"unit_id": ["B1"], "variable": ["p_9999"], "sex": ["t"], "value": [1.0]}
        )
        with pytest.raises(InputContractError, match="without a variable class"):
            reweight_profile(
                conn,
                profile,
                two_block_population,
                full_correspondence,
                variable_classes,
            )

    def test_missing_column_rejected(
        self, conn, two_block_profile, two_block_population, variable_classes
    ):
        """Test a correspondence frame without weights is rejected."""
        correspondence = pd.DataFrame({"source_id": ["B1"], "target_id": ["A"]})
        with pytest.raises(InputContractError, match="weight"):
            reweight_profile(
                conn,
                two_block_profile,
                two_block_population,
                correspondence,
                variable_classes,
            )

    def test_valid_correspondence_passes(self, conn, full_correspondence):
        """Test weights summing to one per source pass validation."""
        validate_correspondence(conn, full_correspondence)

    def test_weight_sum_violation(self, conn):
        """Test a source whose weights sum to 0.9 fails validation."""
        correspondence = pd.DataFrame(
            {
                "source_id": ["B1", "B1", "B2"],
                "target_id": ["A", "C", "A"],
                "weight": [0.5, 0.4, 1.0],
            }
        )
        with pytest.raises(IntegrityError, match="invalid correspondence"):
            validate_correspondence(conn, correspondence)

    def test_weight_out_of_range(self, conn):
        """Test a negative weight fails validation even when sums match."""
        correspondence = pd.DataFrame(
            {
                "source_id": ["B1", "B1"],
                "target_id": ["A", "C"],
                "weight": [1.2, -0.2],
            }
        )
        with pytest.raises(IntegrityError, match="B1"):
            validate_correspondence(conn, correspondence)

    def test_mass_conserved(
        self,
        conn,
        two_block_profile,
        two_block_population,
        full_correspondence,
        variable_classes,
    ):
        """Test national extensive totals are unchanged by reweighting."""
        result = reweight_profile(
            conn,
            two_block_profile,
            two_block_population,
            full_correspondence,
            variable_classes,
        )
        totals = check_mass_conservation(
            conn, two_block_profile, result, variable_classes
        )
        assert totals["relative_difference"].max() == pytest.approx(0.0)
        # Intensive variables are not part of the check
        assert set(totals["variable"]) == {"p_1"}

    def test_mass_loss_detected(
        self, conn, two_block_profile, two_block_population, variable_classes
    ):
        """Test a source without correspondence makes the mass check fail."""
        correspondence = pd.DataFrame(
            {"source_id": ["B1"], "target_id": ["A"], "weight": [1.0]}
        )
        result = reweight_profile(
            conn,
            two_block_profile,
            two_block_population,
            correspondence,
            variable_classes,
        )
        with pytest.raises(IntegrityError, match="not conserved"):
            check_mass_conservation(conn, two_block_profile, result, variable_classes)
