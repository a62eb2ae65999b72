"""Readers for local census, correspondence and event extracts.

Handles parsing and column harmonization for:
- Dissemination block attribute files (2011 fixed-width, 2016/2021 CSV)
- DA correspondence files between consecutive censuses
- Census profiles (2016/2021 long CSV, 2011 short-form + NHS)
- Event records and person-level census records
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pandas as pd
from loguru import logger

from shrf.data.area_indicators.constants import (
    AGE_GROUPS,
    ATTRIBUTE_2011_FWF,
    ATTRIBUTE_COLUMNS,
    CORRESPONDENCE_COLUMNS,
    GEO_SENTINEL_CODES,
    INPUT_FILES,
    PROFILE_2011_SHORT_FORM_COLUMNS,
    PROFILE_2011_SHORT_FORM_IDS,
    PROFILE_COLUMNS,
    PROFILE_DA_LEVEL,
    PROFILE_MISSING_SYMBOLS,
)
from shrf.data.area_indicators.errors import InputContractError
from shrf.data.area_indicators.variables import source_ids

if TYPE_CHECKING:
    from collections.abc import Iterable

# Raw sex codes found in event and person extracts
_SEX_CODES = {
    "t": "t",
    "f": "f",
    "m": "m",
    "F": "f",
    "M": "m",
    "2": "f",
    "1": "m",
}

# Geographic columns and the sentinel family that applies to them
_GEO_COLUMN_LEVELS = {
    "da_id": "da",
    "ct_id": "ct",
    "cma_id": "cma",
    "pr_id": "pr",
    "source_id": "da",
    "target_id": "da",
}

EVENT_COLUMNS = ["year", "age", "sex", "geo_id", "icd_code"]
PERSON_COLUMNS = ["geo_id", "age", "sex", "weight", "dwelling_code"]
DENOMINATOR_COLUMNS = ["geo_id", "year", "sex", "age_group", "population"]


def clean_geo_codes(values: pd.Series, level: str | None = None) -> pd.Series:
    """Convert geography codes to nullable strings, sentinels becoming <NA>."""
    codes = values.astype("string").str.strip()
    sentinels = set(GEO_SENTINEL_CODES.get(level, ())) if level else set()
    return codes.mask(codes.isin(sentinels) | (codes == ""))


def parse_numeric(values: pd.Series, label: str) -> pd.Series:
    """Parse a numeric column, treating suppression symbols as missing.

    Raises:
        InputContractError: When a value is neither numeric nor a known symbol
    """
    text = values.astype("string").str.strip()
    text = text.mask(text.isin(PROFILE_MISSING_SYMBOLS) | (text == ""))
    try:
        parsed = pd.to_numeric(text.astype(object).where(text.notna(), None))
    except (ValueError, TypeError) as e:
        raise InputContractError(f"Unparseable numeric value in {label}: {e}") from e
    return parsed.astype("float64")


def read_table(path: str | Path, columns: list[str] | None = None) -> pd.DataFrame:
    """Read a CSV or parquet extract with every column as text."""
    path = Path(path)
    if path.suffix == ".parquet":
        df = pd.read_parquet(path, columns=columns)
        return df.astype("string")
    return pd.read_csv(path, usecols=columns, dtype=str, keep_default_na=False)


def find_input_files(
    input_dir: str | Path, kind: str, vintage: int, required: bool = True
) -> list[Path]:
    """Resolve the input files of one kind and vintage under ``input_dir``.

    Raises:
        InputContractError: When a required file is absent
    """
    pattern = INPUT_FILES[kind].get(vintage)
    paths = sorted(Path(input_dir).glob(pattern)) if pattern else []
    if required and not paths:
        raise InputContractError(
            f"No {kind} file for {vintage} in {input_dir} (expected {pattern})"
        )
    return paths


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    """Raise InputContractError listing required columns missing from df."""
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise InputContractError(f"{source} is missing columns: {missing}")


def _clean_geo_columns(df: pd.DataFrame) -> pd.DataFrame:
    for column, level in _GEO_COLUMN_LEVELS.items():
        if column in df.columns:
            df[column] = clean_geo_codes(df[column], level)
    return df


def read_correspondence(path: str | Path, vintage: int) -> pd.DataFrame:
    """Read a DA correspondence file linking ``vintage`` DAs to the previous census.

    Args:
        path: Raw correspondence CSV
        vintage: Newer census of the pair (2016 or 2021)

    Returns:
        DataFrame with source_id (newer DA), target_id (older DA) and weight
        (area share as a fraction)
    """
    if vintage not in CORRESPONDENCE_COLUMNS:
        raise ValueError(
            f"No correspondence layout for {vintage}. "
            f"Available: {list(CORRESPONDENCE_COLUMNS)}"
        )
    columns = CORRESPONDENCE_COLUMNS[vintage]
    raw = read_table(path)
    _require_columns(raw, columns.values(), f"Correspondence file {path}")

    df = pd.DataFrame(
        {
            "source_id": raw[columns["source_id"]],
            "target_id": raw[columns["target_id"]],
            "weight": parse_numeric(raw[columns["area_percentage"]], "area percentage")
            / 100,
        }
    )
    df = _clean_geo_columns(df)
    dropped = df["source_id"].isna() | df["target_id"].isna()
    if dropped.any():
        logger.warning(
            "  Correspondence {}: {:,} rows without a source or target DA dropped",
            vintage,
            int(dropped.sum()),
        )
        df = df[~dropped].reset_index(drop=True)

    logger.debug(
        "  Correspondence {}: {:,} rows, {:,} source DAs, {:,} target DAs",
        vintage,
        len(df),
        df["source_id"].nunique(),
        df["target_id"].nunique(),
    )
    return df


def read_attribute_file(path: str | Path, vintage: int) -> pd.DataFrame:
    """Read a dissemination block attribute file.

    The 2011 file is fixed-width text with a header line; 2016 and 2021 are
    CSV. Returns one row per block with harmonized column names and a
    ``row_idx`` column preserving file order.
    """
    if vintage == 2011:
        names = list(ATTRIBUTE_2011_FWF)
        raw = pd.read_fwf(
            path,
            colspecs=list(ATTRIBUTE_2011_FWF.values()),
            names=names,
            dtype=str,
            skiprows=1,
            keep_default_na=False,
            encoding="latin-1",
        )
    elif vintage in ATTRIBUTE_COLUMNS:
        columns = ATTRIBUTE_COLUMNS[vintage]
        raw = pd.read_csv(
            path, dtype=str, keep_default_na=False, encoding="latin-1"
        )
        _require_columns(raw, columns.values(), f"Attribute file {path}")
        raw = raw.rename(columns={v: k for k, v in columns.items()})[list(columns)]
    else:
        raise ValueError(f"No attribute file layout for {vintage}")

    df = raw.copy()
    for column in df.columns:
        if column != "db_pop":
            df[column] = df[column].astype("string").str.strip()
    df["db_pop"] = parse_numeric(df["db_pop"], "block population").fillna(0)
    df = _clean_geo_columns(df)
    df.insert(0, "row_idx", range(len(df)))

    logger.debug(
        "  Attribute file {}: {:,} blocks, {:,} DAs",
        vintage,
        len(df),
        df["da_id"].nunique(),
    )
    return df


def _long_profile_to_wide(long: pd.DataFrame) -> pd.DataFrame:
    """Spread ``unit_id, prof_id, t, f, m`` rows into ``p_{id}_{sex}`` columns."""
    melted = long.melt(
        id_vars=["unit_id", "prof_id"],
        value_vars=["t", "f", "m"],
        var_name="sex",
        value_name="value",
    )
    melted["column"] = "p_" + melted["prof_id"].astype(str) + "_" + melted["sex"]
    wide = melted.pivot_table(
        index="unit_id",
        columns="column",
        values="value",
        aggfunc="first",
        dropna=False,
    )
    wide.columns.name = None
    return wide.reset_index()


def read_census_profile(
    paths: str | Path | list[str | Path],
    vintage: int,
    encoding: str = "latin-1",
) -> pd.DataFrame:
    """Read a 2016 or 2021 census profile released as long CSV chunks.

    Keeps dissemination area rows and the characteristics the variable table
    needs, then spreads them to a raw wide profile (``p_{id}_{sex}`` with
    the release's own characteristic ids).
    """
    if vintage not in PROFILE_COLUMNS:
        raise ValueError(f"No census profile layout for {vintage}")
    columns = PROFILE_COLUMNS[vintage]
    wanted = source_ids(vintage)
    raw_columns = set(columns.values())
    if isinstance(paths, (str, Path)):
        paths = [paths]

    chunks = []
    for path in paths:
        raw = pd.read_csv(
            path,
            usecols=lambda c: c in raw_columns,
            dtype=str,
            keep_default_na=False,
            encoding=encoding,
        )
        _require_columns(raw, columns.values(), f"Census profile {path}")
        raw = raw.rename(columns={v: k for k, v in columns.items()})
        raw = raw[raw["geo_level"].str.strip() == PROFILE_DA_LEVEL[vintage]]
        prof_id = pd.to_numeric(raw["prof_id"], errors="coerce")
        raw = raw.assign(prof_id=prof_id)[prof_id.isin(wanted)]
        logger.debug("  {}: {:,} DA rows kept", Path(path).name, len(raw))
        chunks.append(raw)

    long = pd.concat(chunks, ignore_index=True)
    long = long.assign(
        unit_id=clean_geo_codes(long["geo_code"], "da"),
        prof_id=long["prof_id"].astype(int),
        **{s: parse_numeric(long[s], f"{vintage} profile") for s in ("t", "f", "m")},
    )
    long = long[long["unit_id"].notna()]
    wide = _long_profile_to_wide(long[["unit_id", "prof_id", "t", "f", "m"]])
    logger.info("Census profile {}: {:,} DAs", vintage, len(wide))
    return wide


def read_census_profile_2011(
    short_form_paths: str | Path | list[str | Path],
    nhs_path: str | Path | None = None,
    encoding: str = "latin-1",
) -> pd.DataFrame:
    """Read the 2011 short-form profile and attach the NHS profile.

    Short-form characteristics carry no id; they are identified by their
    position within each DA block. The NHS extract is already wide with
    ``da_id`` and ``p_{id}_{sex}`` columns and is left-joined on the DA.
    """
    columns = PROFILE_2011_SHORT_FORM_COLUMNS
    if isinstance(short_form_paths, (str, Path)):
        short_form_paths = [short_form_paths]

    chunks = []
    for path in short_form_paths:
        raw = pd.read_csv(path, dtype=str, keep_default_na=False, encoding=encoding)
        _require_columns(raw, columns.values(), f"Census profile {path}")
        raw = raw.rename(columns={v: k for k, v in columns.items()})
        position = raw.groupby("geo_code", sort=False).cumcount() + 1
        raw = raw.assign(prof_id=position.map(PROFILE_2011_SHORT_FORM_IDS))
        chunks.append(raw[raw["prof_id"].notna()])

    long = pd.concat(chunks, ignore_index=True)
    long = long.assign(
        unit_id=clean_geo_codes(long["geo_code"], "da"),
        prof_id=long["prof_id"].astype(int),
        **{s: parse_numeric(long[s], "2011 short-form") for s in ("t", "f", "m")},
    )
    long = long[long["unit_id"].notna()]
    wide = _long_profile_to_wide(long[["unit_id", "prof_id", "t", "f", "m"]])

    if nhs_path is None:
        logger.warning("  No NHS profile given, 2011 NHS variables will be missing")
        return wide

    nhs = read_table(nhs_path)
    _require_columns(nhs, ["da_id"], f"NHS profile {nhs_path}")
    nhs = nhs.rename(columns={"da_id": "unit_id"})
    nhs["unit_id"] = clean_geo_codes(nhs["unit_id"], "da")
    value_columns = [c for c in nhs.columns if c.startswith("p_")]
    for column in value_columns:
        nhs[column] = parse_numeric(nhs[column], f"NHS column {column}")
    nhs = nhs[["unit_id", *value_columns]]

    overlap = [c for c in value_columns if c in wide.columns]
    if overlap:
        nhs = nhs.drop(columns=overlap)
    wide = wide.merge(nhs, on="unit_id", how="left")
    logger.info(
        "Census profile 2011: {:,} DAs ({} NHS columns)", len(wide), len(value_columns)
    )
    return wide


def _normalize_sex(values: pd.Series) -> pd.Series:
    return values.astype("string").str.strip().map(_SEX_CODES).astype("string")


def read_events(path: str | Path) -> pd.DataFrame:
    """Read an event extract (one row per death or hospitalization).

    Returns year, age, sex (f/m/<NA>), geo_id (nullable) and icd_code, plus
    event_id when present.
    """
    raw = read_table(path)
    _require_columns(raw, EVENT_COLUMNS, f"Event file {path}")

    df = pd.DataFrame(
        {
            "year": parse_numeric(raw["year"], "event year"),
            "age": parse_numeric(raw["age"], "event age"),
            "sex": _normalize_sex(raw["sex"]),
            "geo_id": clean_geo_codes(raw["geo_id"], "da"),
            "icd_code": raw["icd_code"].astype("string"),
        }
    )
    if "event_id" in raw.columns:
        df.insert(0, "event_id", raw["event_id"].astype("string"))
    if df["year"].isna().any():
        raise InputContractError(f"Event file {path} has rows without a year")
    df["year"] = df["year"].astype(int)

    no_geo = int(df["geo_id"].isna().sum())
    if no_geo:
        logger.warning("  {:,} events without a usable geography", no_geo)
    logger.debug("  Events: {:,} rows from {}", len(df), Path(path).name)
    return df


def read_census_persons(path: str | Path) -> pd.DataFrame:
    """Read person-level census records used for rate denominators."""
    raw = read_table(path)
    _require_columns(raw, PERSON_COLUMNS, f"Census person file {path}")

    df = pd.DataFrame(
        {
            "geo_id": clean_geo_codes(raw["geo_id"], "da"),
            "age": parse_numeric(raw["age"], "person age"),
            "sex": _normalize_sex(raw["sex"]),
            "weight": parse_numeric(raw["weight"], "person weight"),
            "dwelling_code": raw["dwelling_code"].astype("string").str.strip(),
        }
    )
    logger.debug("  Census persons: {:,} rows from {}", len(df), Path(path).name)
    return df


def read_population_denominators(path: str | Path) -> pd.DataFrame:
    """Read pre-aggregated stratum populations."""
    raw = read_table(path)
    _require_columns(raw, DENOMINATOR_COLUMNS, f"Denominator file {path}")

    unknown = set(raw["age_group"]) - set(AGE_GROUPS)
    if unknown:
        raise InputContractError(f"Unknown age groups in {path}: {sorted(unknown)}")

    years = parse_numeric(raw["year"], "denominator year")
    if years.isna().any():
        raise InputContractError(
            f"Denominator file {path} has {int(years.isna().sum())} rows "
            "without a year"
        )

    df = pd.DataFrame(
        {
            "geo_id": clean_geo_codes(raw["geo_id"], "da"),
            "year": years.astype(int),
            "sex": _normalize_sex(raw["sex"]),
            "age_group": raw["age_group"].astype("string"),
            "population": parse_numeric(raw["population"], "population"),
        }
    )
    logger.debug("  Denominators: {:,} rows from {}", len(df), Path(path).name)
    return df
