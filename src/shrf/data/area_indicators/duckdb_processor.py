"""DuckDB-based processors for Canadian small-area pipelines.

Three pipelines share one stage-by-stage processor skeleton:
1. Population counts: DA and CT population for every year of the range,
   censal years on their own boundary, intercensal years estimated on the
   earlier census boundary (areal reweighting + linear interpolation)
2. CASDOHI: census profile indicators built the same way
3. Event rates: age-standardized rates of ICD-10 classified events

Each stage method returns ``self`` and keeps its output as a DuckDB table
named after the stage. Stage tables can be written to parquet and reloaded
so a failed run resumes from the last completed stage.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import duckdb
import pandas as pd
from loguru import logger

from shrf.data.area_indicators import sql
from shrf.data.area_indicators.classification import (
    classify_events,
    load_category_rules,
)
from shrf.data.area_indicators.constants import (
    CENSUS_VINTAGES,
    RATE_MULTIPLIER,
    ROUNDING_BASE,
    Z_95,
)
from shrf.data.area_indicators.errors import InputContractError, IntegrityError
from shrf.data.area_indicators.frames import fetch_table, register_frame
from shrf.data.area_indicators.indicators import (
    CASDOHI_INDICATORS,
    derive_indicators,
    indicator_tags,
)
from shrf.data.area_indicators.interpolation import interpolate_profiles
from shrf.data.area_indicators.readers import (
    find_input_files,
    read_attribute_file,
    read_census_persons,
    read_census_profile,
    read_census_profile_2011,
    read_correspondence,
    read_events,
    read_population_denominators,
)
from shrf.data.area_indicators.release import (
    aggregate_to_census_tract,
    attach_attributes,
    collapse_attribute_file,
    order_release_columns,
    write_labelled_xlsx,
    write_yearly_csv,
)
from shrf.data.area_indicators.reweighting import (
    check_mass_conservation,
    reweight_profile,
    validate_correspondence,
)
from shrf.data.area_indicators.standardization import (
    apply_disclosure_rounding,
    build_population_denominators,
    compute_rates,
    default_standard_population,
    rate_strata,
    standardization_weights,
    stratum_events,
    stratum_population,
)
from shrf.data.area_indicators.variables import (
    harmonize_profile,
    profile_columns,
    profile_to_long,
    profile_to_wide,
    variable_classes_frame,
)
from shrf.data.area_indicators.variables import (
    stratum_population as profile_stratum_population,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any


class _StageProcessor:
    """Connection handling and stage bookkeeping shared by the processors."""

    stages: tuple[str, ...] = ()

    def __init__(self, cache_dir: str | Path | None = None) -> None:
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.conn = duckdb.connect()
        # Allow DuckDB to spill to disk when in-memory tables exceed RAM
        if self.cache_dir:
            temp_dir = self.cache_dir / "duckdb_temp"
            temp_dir.mkdir(parents=True, exist_ok=True)
            self.conn.execute(f"SET temp_directory='{temp_dir}'")
        self._completed: set[str] = set()

    def is_complete(self, stage: str) -> bool:
        return stage in self._completed

    def to_pandas(self, stage: str) -> pd.DataFrame:
        """Export a completed stage table to a pandas DataFrame."""
        self._ensure_stage(stage)
        return fetch_table(self.conn, stage)

    def save_stages(self, output_dir: str | Path) -> dict[str, Path]:
        """Write every completed stage table to ``{stage}.parquet``."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        paths = {}
        for stage in self.stages:
            if stage not in self._completed:
                continue
            path = output_dir / f"{stage}.parquet"
            self._execute(sql.COPY_TO_PARQUET.format(table=stage, path=path))
            paths[stage] = path
        return paths

    def load_stages(self, input_dir: str | Path) -> _StageProcessor:
        """Reload stage snapshots written by ``save_stages``."""
        for stage in self.stages:
            path = Path(input_dir) / f"{stage}.parquet"
            if not path.exists():
                continue
            self._execute(sql.LOAD_PARQUET.format(table=stage, path=path))
            self._completed.add(stage)
            logger.info("Resumed stage '{}' from {}", stage, path)
        return self

    # -------------------------------------------------------------------------
    # Private helpers
    # -------------------------------------------------------------------------

    def _execute(self, query: str) -> duckdb.DuckDBPyConnection:
        """Execute SQL query."""
        return self.conn.execute(query)

    def _fetchone(self, query: str) -> Any:
        """Execute query and return first value."""
        return self.conn.execute(query).fetchone()[0]

    def _register_dataframe(self, name: str, df: pd.DataFrame) -> None:
        """Register DataFrame as DuckDB table."""
        register_frame(self.conn, name, df)

    def _complete(self, stage: str, df: pd.DataFrame) -> None:
        """Store a stage result and mark the stage as done."""
        self._register_dataframe(stage, df)
        self._completed.add(stage)
        logger.info("  {}: {:,} rows", stage, len(df))

    def _ensure_stage(self, stage: str, method: str | None = None) -> None:
        """Ensure a stage has been completed."""
        if stage not in self._completed:
            raise RuntimeError(f"Call {method or stage}() first")

    def _load_geography(
        self,
        blocks: Mapping[int, pd.DataFrame],
        correspondence: Mapping[int, pd.DataFrame],
    ) -> None:
        """Collapse attribute files and check correspondence weights."""
        attributes = [
            collapse_attribute_file(
                self.conn, df, output=f"attributes_da_{vintage}"
            ).assign(vintage=vintage)
            for vintage, df in sorted(blocks.items())
        ]
        self._complete("attributes", pd.concat(attributes, ignore_index=True))

        links = []
        for vintage, df in sorted(correspondence.items()):
            validate_correspondence(
                self.conn, df, table=f"correspondence_check_{vintage}"
            )
            links.append(df.assign(vintage=vintage))
        if links:
            self._complete("correspondence", pd.concat(links, ignore_index=True))

    def _vintage_rows(self, stage: str, vintage: int) -> pd.DataFrame:
        df = self.to_pandas(stage)
        return df[df["vintage"] == vintage].drop(columns="vintage")


def _year_plan(start_year: int, end_year: int) -> tuple[list[int], dict]:
    """Split a year range into censal years and intercensal intervals.

    Returns:
        Censal years in range, and ``{(start_vintage, end_vintage): years}``
        for every interval with requested intercensal years
    """
    if start_year > end_year:
        raise ValueError(f"start_year {start_year} is after end_year {end_year}")
    if start_year < CENSUS_VINTAGES[0] or end_year > CENSUS_VINTAGES[-1]:
        raise ValueError(
            f"Years must lie within {CENSUS_VINTAGES[0]}-{CENSUS_VINTAGES[-1]}; "
            "extrapolation beyond the last census is not supported"
        )
    years = range(start_year, end_year + 1)
    censal = [y for y in years if y in CENSUS_VINTAGES]
    intervals = {}
    for start, end in zip(CENSUS_VINTAGES, CENSUS_VINTAGES[1:]):
        wanted = [y for y in years if start < y < end]
        if wanted:
            intervals[(start, end)] = wanted
    return censal, intervals


def _required_vintages(censal: list[int], intervals: dict) -> list[int]:
    needed = set(censal)
    for start, end in intervals:
        needed.update((start, end))
    return sorted(needed)


class PopulationCountProcessor(_StageProcessor):
    """Yearly DA and CT population counts across census boundaries.

    Example:
        processor = PopulationCountProcessor(start_year=2011, end_year=2021)
        processor.load_inputs("data/input")
        processor.create_population_counts()
        processor.save_outputs("data/output")
    """

    stages = ("attributes", "correspondence", "population_da", "population_ct")

    def __init__(
        self,
        start_year: int = CENSUS_VINTAGES[0],
        end_year: int = CENSUS_VINTAGES[-1],
        cache_dir: str | Path | None = None,
    ) -> None:
        """Initialize processor for the years ``start_year``-``end_year``."""
        super().__init__(cache_dir)
        self.start_year = start_year
        self.end_year = end_year
        self.censal_years, self.intervals = _year_plan(start_year, end_year)
        self.vintages = _required_vintages(self.censal_years, self.intervals)

    def load_inputs(self, input_dir: str | Path) -> PopulationCountProcessor:
        """Read attribute and correspondence files from ``input_dir``."""
        logger.info("Loading attribute files {}...", self.vintages)
        blocks = {
            v: read_attribute_file(find_input_files(input_dir, "attributes", v)[0], v)
            for v in self.vintages
        }
        correspondence = {
            end: read_correspondence(
                find_input_files(input_dir, "correspondence", end)[0], end
            )
            for _start, end in self.intervals
        }
        return self.load_frames(blocks, correspondence)

    def load_frames(
        self,
        blocks: Mapping[int, pd.DataFrame],
        correspondence: Mapping[int, pd.DataFrame],
    ) -> PopulationCountProcessor:
        """Load block attribute frames and correspondence frames per vintage."""
        self._load_geography(blocks, correspondence)
        return self

    def create_population_counts(self) -> PopulationCountProcessor:
        """Create DA and CT population counts for every requested year."""
        self._ensure_stage("attributes", "load_inputs")
        if self.intervals:
            self._ensure_stage("correspondence", "load_inputs")

        attributes = self.to_pandas("attributes")
        classes = variable_classes_frame()
        frames = []

        logger.info("Step 1: Censal counts {}...", self.censal_years)
        for year in self.censal_years:
            da = attributes[attributes["vintage"] == year]
            frames.append(
                pd.DataFrame(
                    {
                        "year": year,
                        "boundary": year,
                        "da_id": da["da_id"],
                        "population": da["da_pop"],
                    }
                )
            )

        for (start, end), years in self.intervals.items():
            logger.info(
                "Step 2: Reweighting {} DA population onto DA {} for {}...",
                end,
                start,
                years,
            )
            source = _population_profile(attributes, end)
            links = self._vintage_rows("correspondence", end)
            reweighted = reweight_profile(
                self.conn,
                source,
                _population_strata(attributes, end),
                links,
                classes,
                output=f"population_reweighted_{end}",
            )
            check_mass_conservation(self.conn, source, reweighted, classes)

            interpolated = interpolate_profiles(
                self.conn,
                _population_profile(attributes, start),
                reweighted,
                start_year=start,
                years=years,
                span=end - start,
                output=f"population_interpolated_{start}",
            )
            frames.append(
                pd.DataFrame(
                    {
                        "year": interpolated["year"],
                        "boundary": start,
                        "da_id": interpolated["unit_id"],
                        "population": interpolated["value"],
                    }
                )
            )

        counts = pd.concat(frames, ignore_index=True)
        counts["year"] = counts["year"].astype(int)
        counts["population"] = counts["population"].astype("Float64")

        logger.info("Step 3: Attaching geography and aggregating to census tracts...")
        da_frames, ct_frames = [], []
        for boundary, rows in counts.groupby("boundary", sort=True):
            boundary_attributes = attributes[attributes["vintage"] == boundary]
            ct_frames.append(
                aggregate_to_census_tract(
                    self.conn,
                    rows,
                    boundary_attributes,
                    output=f"population_ct_{boundary}",
                ).assign(boundary=boundary)
            )
            da_frames.append(
                attach_attributes(
                    rows.assign(population=_round_counts(rows["population"])),
                    boundary_attributes,
                )
            )

        self._complete(
            "population_da",
            order_release_columns(
                pd.concat(da_frames, ignore_index=True), "population_da"
            ),
        )
        self._complete(
            "population_ct",
            order_release_columns(
                pd.concat(ct_frames, ignore_index=True), "population_ct"
            ),
        )
        return self

    def validate(
        self, expected_totals: Mapping[int, int] | None = None, strict: bool = False
    ) -> dict[str, Any]:
        """Validate population counts.

        Args:
            expected_totals: Published national totals by year to compare
                against (opt-in, meaningful on national extracts only)
            strict: Raise IntegrityError instead of returning on errors
        """
        self._ensure_stage("population_da", "create_population_counts")
        results: dict[str, Any] = {
            "is_valid": True,
            "errors": [],
            "warnings": [],
            "stats": {},
        }

        negative = self._fetchone(
            sql.COUNT_INVALID_POPULATION.format(table="population_da")
        )
        if negative > 0:
            results["errors"].append(f"Found {negative} rows with negative population")

        missing = self._fetchone(
            sql.COUNT_MISSING_POPULATION.format(table="population_da")
        )
        if missing > 0:
            results["warnings"].append(
                f"Found {missing} DA-years without a population estimate"
            )

        totals = self._execute(
            sql.GET_POPULATION_TOTALS_BY_YEAR.format(table="population_da")
        ).df()
        by_year = dict(zip(totals["year"], totals["total_population"]))
        results["stats"]["total_population"] = {
            int(y): float(t) for y, t in by_year.items()
        }

        for year, expected in (expected_totals or {}).items():
            actual = by_year.get(year)
            if actual is None:
                results["errors"].append(f"No population counts for {year}")
            elif abs(float(actual) - expected) > 0.5:
                results["errors"].append(
                    f"{year} total {float(actual):,.0f} differs from the published "
                    f"total {expected:,}"
                )

        results["is_valid"] = not results["errors"]
        if strict and not results["is_valid"]:
            raise IntegrityError("; ".join(results["errors"]))
        return results

    def save_outputs(
        self, output_dir: str | Path, xlsx: bool = False
    ) -> dict[str, Path]:
        """Write one CSV per year for DA and CT counts, optionally a workbook."""
        self._ensure_stage("population_da", "create_population_counts")
        da = self.to_pandas("population_da")
        paths = {
            f"da_{year}": path
            for year, path in write_yearly_csv(da, output_dir, "pop_counts_da").items()
        }
        ct = self.to_pandas("population_ct")
        paths.update(
            {
                f"ct_{year}": path
                for year, path in write_yearly_csv(
                    ct, output_dir, "pop_counts_ct"
                ).items()
            }
        )
        if xlsx:
            paths["xlsx"] = write_labelled_xlsx(
                da, Path(output_dir) / "pop_counts_da.xlsx"
            )
        return paths


def _round_counts(population: pd.Series) -> pd.Series:
    """Round DA estimates to whole persons, halves to even."""
    return population.round().astype("Int64")


def _population_profile(attributes: pd.DataFrame, vintage: int) -> pd.DataFrame:
    """DA population of one vintage as a single-variable long profile."""
    da = attributes[attributes["vintage"] == vintage]
    return pd.DataFrame(
        {
            "unit_id": da["da_id"],
            "variable": "p_1",
            "sex": "t",
            "value": da["da_pop"].astype("float64"),
        }
    )


def _population_strata(attributes: pd.DataFrame, vintage: int) -> pd.DataFrame:
    da = attributes[attributes["vintage"] == vintage]
    return pd.DataFrame(
        {
            "unit_id": da["da_id"],
            "sex": "t",
            "population": da["da_pop"].astype("float64"),
        }
    )


class CasdohiProcessor(_StageProcessor):
    """Yearly CASDOHI indicators on dissemination areas.

    Example:
        processor = CasdohiProcessor(start_year=2011, end_year=2021)
        processor.load_inputs("data/input")
        processor.create_indicator_profiles()
        processor.create_indicators()
        processor.save_outputs("data/output")
    """

    stages = (
        "attributes",
        "correspondence",
        "profiles",
        "indicator_profiles",
        "indicators",
    )

    def __init__(
        self,
        start_year: int = CENSUS_VINTAGES[0],
        end_year: int = CENSUS_VINTAGES[-1],
        cache_dir: str | Path | None = None,
    ) -> None:
        """Initialize processor for the years ``start_year``-``end_year``."""
        super().__init__(cache_dir)
        self.start_year = start_year
        self.end_year = end_year
        self.censal_years, self.intervals = _year_plan(start_year, end_year)
        self.vintages = _required_vintages(self.censal_years, self.intervals)
        self.definitions = CASDOHI_INDICATORS

    def load_inputs(self, input_dir: str | Path) -> CasdohiProcessor:
        """Read attribute, correspondence and census profile files."""
        logger.info("Loading census profiles {}...", self.vintages)
        profiles = {}
        for vintage in self.vintages:
            paths = find_input_files(input_dir, "profile", vintage)
            if vintage == 2011:
                nhs = find_input_files(input_dir, "nhs", 2011, required=False)
                profiles[vintage] = read_census_profile_2011(
                    paths, nhs[0] if nhs else None
                )
            else:
                profiles[vintage] = read_census_profile(paths, vintage)

        blocks = {
            v: read_attribute_file(find_input_files(input_dir, "attributes", v)[0], v)
            for v in self.vintages
        }
        correspondence = {
            end: read_correspondence(
                find_input_files(input_dir, "correspondence", end)[0], end
            )
            for _start, end in self.intervals
        }
        return self.load_frames(profiles, blocks, correspondence)

    def load_frames(
        self,
        profiles: Mapping[int, pd.DataFrame],
        blocks: Mapping[int, pd.DataFrame],
        correspondence: Mapping[int, pd.DataFrame],
    ) -> CasdohiProcessor:
        """Load raw wide profiles, block attributes and correspondence frames."""
        self._load_geography(blocks, correspondence)
        harmonized = [
            harmonize_profile(raw, vintage).assign(vintage=vintage)
            for vintage, raw in sorted(profiles.items())
        ]
        self._complete("profiles", pd.concat(harmonized, ignore_index=True))
        return self

    def create_indicator_profiles(self) -> CasdohiProcessor:
        """Build one harmonized wide profile per requested year."""
        self._ensure_stage("profiles", "load_inputs")
        if self.intervals:
            self._ensure_stage("correspondence", "load_inputs")

        classes = variable_classes_frame()
        frames = []

        logger.info("Step 1: Censal profiles {}...", self.censal_years)
        for year in self.censal_years:
            frames.append(self._profile(year).assign(year=year, boundary=year))

        for (start, end), years in self.intervals.items():
            logger.info(
                "Step 2: Reweighting {} profile onto DA {} for {}...",
                end,
                start,
                years,
            )
            end_profile = self._profile(end)
            source = profile_to_long(end_profile).dropna(subset=["unit_id"])
            reweighted = reweight_profile(
                self.conn,
                source,
                profile_stratum_population(end_profile),
                self._vintage_rows("correspondence", end),
                classes,
                output=f"profile_reweighted_{end}",
            )
            check_mass_conservation(self.conn, source, reweighted, classes)

            interpolated = interpolate_profiles(
                self.conn,
                profile_to_long(self._profile(start)),
                reweighted,
                start_year=start,
                years=years,
                span=end - start,
                output=f"profile_interpolated_{start}",
            )
            frames.append(
                profile_to_wide(interpolated, ("year", "unit_id")).assign(
                    boundary=start
                )
            )

        profiles = pd.concat(frames, ignore_index=True)
        profiles["year"] = profiles["year"].astype(int)
        self._complete("indicator_profiles", profiles)
        return self

    def create_indicators(self) -> CasdohiProcessor:
        """Derive CASDOHI indicators and attach DA geography."""
        self._ensure_stage("indicator_profiles", "create_indicator_profiles")
        self._ensure_stage("attributes", "load_inputs")

        logger.info(
            "Step 3: Deriving {} indicators...", len(indicator_tags(self.definitions))
        )
        profiles = self.to_pandas("indicator_profiles")
        attributes = self.to_pandas("attributes")
        frames = []
        for boundary, rows in profiles.groupby("boundary", sort=True):
            indicators = derive_indicators(
                self.conn,
                rows.drop(columns="boundary"),
                self.definitions,
                key_columns=("year", "unit_id"),
                output=f"indicators_{boundary}",
            ).rename(columns={"unit_id": "da_id"})
            frames.append(
                attach_attributes(
                    indicators.assign(boundary=boundary),
                    attributes[attributes["vintage"] == boundary],
                )
            )

        indicators = pd.concat(frames, ignore_index=True)
        self._complete("indicators", order_release_columns(indicators, "casdohi"))
        return self

    def validate(self) -> dict[str, Any]:
        """Validate derived indicators."""
        self._ensure_stage("indicators", "create_indicators")
        results: dict[str, Any] = {
            "is_valid": True,
            "errors": [],
            "warnings": [],
            "stats": {},
        }

        indicators = self.to_pandas("indicators")
        if "pop_t" in indicators.columns:
            negative = int((indicators["pop_t"] < 0).sum())
            if negative:
                results["errors"].append(
                    f"Found {negative} rows with negative population"
                )
            results["stats"]["by_year"] = (
                self._execute(sql.GET_INDICATOR_SUMMARY.format(table="indicators"))
                .df()
                .to_dict("records")
            )

        tags = indicator_tags(self.definitions)
        shares = [
            c
            for c in tags.loc[tags["kind"] == "percentage", "indicator"]
            if c in indicators.columns
        ]
        out_of_range = {
            c: int(((indicators[c] < 0) | (indicators[c] > 100)).sum()) for c in shares
        }
        out_of_range = {c: n for c, n in out_of_range.items() if n}
        if out_of_range:
            results["warnings"].append(
                f"Percentages outside [0, 100] (census random rounding): "
                f"{out_of_range}"
            )

        empty = [c for c in tags["indicator"] if indicators[c].isna().all()]
        if empty:
            results["warnings"].append(f"Indicators without any value: {empty}")

        results["stats"]["rows"] = len(indicators)
        results["is_valid"] = not results["errors"]
        return results

    def save_outputs(
        self, output_dir: str | Path, xlsx: bool = False
    ) -> dict[str, Path]:
        """Write one CSV per year plus the indicator tag table."""
        self._ensure_stage("indicators", "create_indicators")
        indicators = self.to_pandas("indicators")
        paths: dict[str, Path] = {
            str(year): path
            for year, path in write_yearly_csv(
                indicators, output_dir, "casdohi_da"
            ).items()
        }
        tags_path = Path(output_dir) / "casdohi_indicator_tags.csv"
        indicator_tags(self.definitions).to_csv(tags_path, index=False)
        paths["tags"] = tags_path
        if xlsx:
            paths["xlsx"] = write_labelled_xlsx(
                indicators, Path(output_dir) / "casdohi_da.xlsx"
            )
        return paths

    def _profile(self, vintage: int) -> pd.DataFrame:
        """Harmonized wide profile of one census vintage."""
        rows = self._vintage_rows("profiles", vintage)
        if rows.empty:
            raise InputContractError(f"No {vintage} census profile loaded")
        return rows[["unit_id", *profile_columns(vintage)]].reset_index(drop=True)


class EventRateProcessor(_StageProcessor):
    """Age-standardized event rates by geography, year, sex and category.

    Example:
        processor = EventRateProcessor()
        processor.load_inputs("events.csv", denominators_path="pop.csv")
        processor.create_rates()
        processor.save_outputs("data/output")
    """

    stages = (
        "events",
        "population",
        "standard_population",
        "rate_strata",
        "event_rates",
    )

    def __init__(
        self,
        rules_path: str | Path | None = None,
        standard_year: int | None = None,
        rounding_base: int = ROUNDING_BASE,
        multiplier: int = RATE_MULTIPLIER,
        cache_dir: str | Path | None = None,
    ) -> None:
        """Initialize processor with classification and rate options."""
        super().__init__(cache_dir)
        self.rules = load_category_rules(rules_path)
        self.standard_year = standard_year
        self.rounding_base = rounding_base
        self.multiplier = multiplier

    def load_inputs(
        self,
        events_path: str | Path,
        denominators_path: str | Path | None = None,
        persons_paths: Mapping[int, str | Path] | None = None,
        standard_path: str | Path | None = None,
    ) -> EventRateProcessor:
        """Read events and population denominators.

        Denominators come either pre-aggregated (``denominators_path``) or
        from person-level census records keyed by reference year.
        """
        events = read_events(events_path)
        if denominators_path is not None:
            population = read_population_denominators(denominators_path)
        elif persons_paths:
            logger.info("Building denominators from census records...")
            population = pd.concat(
                [
                    build_population_denominators(
                        self.conn,
                        read_census_persons(path),
                        year,
                        output=f"population_denominators_{year}",
                    )
                    for year, path in sorted(persons_paths.items())
                ],
                ignore_index=True,
            )
        else:
            raise ValueError("Provide denominators_path or persons_paths")

        standard = None
        if standard_path is not None:
            standard = read_population_denominators(standard_path)
        return self.load_frames(events, population, standard)

    def load_frames(
        self,
        events: pd.DataFrame,
        population: pd.DataFrame,
        standard: pd.DataFrame | None = None,
    ) -> EventRateProcessor:
        """Load event records, stratum populations and an optional standard."""
        self._complete("events", events)
        population = stratum_population(self.conn, population)
        self._complete("population", population)

        if standard is None:
            standard = default_standard_population(
                self.conn, population, self.standard_year
            )
        else:
            standard = standard.groupby(["sex", "age_group"], as_index=False)[
                "population"
            ].sum()
        self._complete("standard_population", standard)
        return self

    def create_rates(self) -> EventRateProcessor:
        """Classify events and compute rounded standardized rates."""
        self._ensure_stage("events", "load_inputs")

        logger.info(
            "Step 1: Classifying events with '{}' v{}...",
            self.rules.name,
            self.rules.version,
        )
        classified = classify_events(self.to_pandas("events"), self.rules)

        logger.info("Step 2: Computing standardization weights...")
        weights = standardization_weights(
            self.conn,
            self.to_pandas("population"),
            self.to_pandas("standard_population"),
        )

        logger.info("Step 3: Aggregating events per stratum...")
        counts = stratum_events(self.conn, classified)
        strata = rate_strata(self.conn, weights, counts, self.rules.output_categories)
        self._complete(
            "rate_strata", apply_disclosure_rounding(strata, self.rounding_base)
        )

        logger.info("Step 4: Computing rates...")
        rates = compute_rates(
            self.conn,
            self.to_pandas("rate_strata"),
            multiplier=self.multiplier,
            z=Z_95,
            output="event_rates_computed",
        )
        self._complete("event_rates", order_release_columns(rates, "event_rates"))
        return self

    def validate(self) -> dict[str, Any]:
        """Validate rate outputs."""
        self._ensure_stage("event_rates", "create_rates")
        results: dict[str, Any] = {
            "is_valid": True,
            "errors": [],
            "warnings": [],
            "stats": {},
        }

        invalid = self._fetchone(sql.COUNT_INVALID_RATES.format(table="event_rates"))
        if invalid > 0:
            results["errors"].append(
                f"Found {invalid} rates with negative values or inverted intervals"
            )

        null_rates = self._fetchone(sql.COUNT_NULL_RATES.format(table="event_rates"))
        if null_rates > 0:
            results["warnings"].append(
                f"{null_rates} rates have a zero weighted population"
            )

        results["stats"]["by_category"] = (
            self._execute(sql.GET_RATE_SUMMARY.format(table="event_rates"))
            .df()
            .to_dict("records")
        )
        results["is_valid"] = not results["errors"]
        return results

    def save_outputs(self, output_dir: str | Path) -> dict[str, Path]:
        """Write one rate CSV per year."""
        self._ensure_stage("event_rates", "create_rates")
        return {
            str(year): path
            for year, path in write_yearly_csv(
                self.to_pandas("event_rates"), output_dir, "event_rates"
            ).items()
        }
