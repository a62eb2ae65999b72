"""Declarative census profile variable table.

Every profile variable used downstream is declared once, keyed by its 2016
characteristic id. An entry carries the variable class that drives areal
reweighting, whether only the total-sex stratum exists, the characteristic id
used by the 2011 and 2021 releases, and for 2011 the recipe of variables
derived from other characteristics.

Wide profiles use ``p_{id}_{sex}`` columns; long profiles use
``unit_id, variable, sex, value`` rows where ``variable`` is ``p_{id}``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import pandas as pd
from loguru import logger

from shrf.data.area_indicators.constants import (
    CENSUS_VINTAGES,
    SEX_STRATA,
    STRATUM_POPULATION_VARIABLES,
)
from shrf.data.area_indicators.errors import InputContractError


class VariableClass(str, Enum):
    """How a variable is redistributed across boundaries."""

    EXTENSIVE = "extensive"
    INTENSIVE = "intensive"
    MEDIAN = "median"


@dataclass(frozen=True)
class ProfileVariable:
    """One harmonized profile characteristic.

    Attributes:
        profile_id: 2016 characteristic id (the harmonized key)
        variable_class: Reweighting class
        source_id: Characteristic id in the 2011 and 2021 releases
        total_only: Only the total-sex stratum is published
        vintages: Census vintages releasing the characteristic
        sum_2011: 2011 characteristic ids summed to derive the variable
        share_2011: (numerator, denominator) 2011 ids of a derived percentage
    """

    profile_id: int
    variable_class: VariableClass
    source_id: int | None = None
    total_only: bool = False
    vintages: tuple[int, ...] = CENSUS_VINTAGES
    sum_2011: tuple[int, ...] = ()
    share_2011: tuple[int, int] | None = None

    @property
    def name(self) -> str:
        return f"p_{self.profile_id}"

    @property
    def sexes(self) -> tuple[str, ...]:
        return ("t",) if self.total_only else SEX_STRATA

    def source_name(self, vintage: int) -> str:
        """Column stem of this variable in a raw profile of ``vintage``."""
        if vintage == 2016 or self.source_id is None:
            return self.name
        return f"p_{self.source_id}"

    @property
    def is_derived_2011(self) -> bool:
        return bool(self.sum_2011) or self.share_2011 is not None


_E = VariableClass.EXTENSIVE
_I = VariableClass.INTENSIVE
_M = VariableClass.MEDIAN
_SINCE_2016 = (2016, 2021)


def _renumbered(
    first_id: int, first_source: int, count: int, variable_class: VariableClass
) -> tuple[ProfileVariable, ...]:
    """Consecutive characteristics whose ids shift by a constant offset."""
    return tuple(
        ProfileVariable(first_id + i, variable_class, source_id=first_source + i)
        for i in range(count)
    )


PROFILE_VARIABLES: tuple[ProfileVariable, ...] = (
    # Population and age structure
    ProfileVariable(1, _E),
    ProfileVariable(6, _E),
    ProfileVariable(8, _E),
    ProfileVariable(9, _E, sum_2011=(10, 11, 12)),
    ProfileVariable(10, _E),
    ProfileVariable(11, _E),
    ProfileVariable(12, _E),
    ProfileVariable(13, _E, sum_2011=tuple(range(90, 99))),
    ProfileVariable(24, _E, sum_2011=tuple(range(25, 30))),
    ProfileVariable(35, _I, share_2011=(9, 8)),
    ProfileVariable(37, _I, share_2011=(24, 8)),
    ProfileVariable(39, _I, vintages=_SINCE_2016),
    ProfileVariable(40, _M),
    # Dwellings and households
    ProfileVariable(41, _E),
    ProfileVariable(43, _E, source_id=47),
    ProfileVariable(52, _E, source_id=51),
    ProfileVariable(57, _E, source_id=89),
    ProfileVariable(58, _I, source_id=57),
    ProfileVariable(59, _E, source_id=58),
    ProfileVariable(60, _E, source_id=59),
    *_renumbered(64, 67, 4, _E),
    ProfileVariable(74, _E, source_id=78),
    *_renumbered(78, 86, 3, _E),
    # Language
    ProfileVariable(100, _E, source_id=383),
    ProfileVariable(104, _E, source_id=387),
    # Income
    ProfileVariable(661, _E, source_id=111, vintages=_SINCE_2016),
    ProfileVariable(663, _M, source_id=113),
    ProfileVariable(665, _M, source_id=115),
    ProfileVariable(668, _E, source_id=120, vintages=_SINCE_2016),
    ProfileVariable(674, _I, source_id=128),
    ProfileVariable(676, _I, source_id=130),
    ProfileVariable(690, _I, source_id=151),
    ProfileVariable(742, _M, source_id=243, total_only=True),
    ProfileVariable(743, _M, source_id=244, total_only=True),
    ProfileVariable(751, _I, source_id=252, total_only=True),
    ProfileVariable(752, _I, source_id=253, total_only=True),
    ProfileVariable(857, _I, source_id=345),
    ProfileVariable(867, _I, source_id=360, vintages=_SINCE_2016),
    # Immigration and Indigenous identity
    ProfileVariable(1140, _E, source_id=1527),
    ProfileVariable(1141, _E, source_id=1528),
    ProfileVariable(1142, _E, source_id=1529),
    ProfileVariable(1149, _E, source_id=1536),
    ProfileVariable(1150, _E, source_id=1537),
    ProfileVariable(1289, _E, source_id=1402),
    ProfileVariable(1290, _E, source_id=1403),
    # Visible minorities
    *_renumbered(1323, 1683, 12, _E),
    # Housing tenure and condition
    *(
        ProfileVariable(pid, _E, source_id=src, total_only=True)
        for pid, src in (
            (1617, 1414),
            (1618, 1415),
            (1619, 1416),
            (1620, 1417),
            (1640, 1437),
            (1642, 1439),
            (1651, 1449),
            (1653, 1451),
            (1667, 1465),
            (1669, 1467),
        )
    ),
    ProfileVariable(1673, _I, source_id=1484, total_only=True),
    ProfileVariable(1676, _M, source_id=1488, total_only=True),
    ProfileVariable(1677, _I, source_id=1489, total_only=True),
    ProfileVariable(1680, _I, source_id=1492, total_only=True),
    # Education and field of study
    ProfileVariable(1683, _E, source_id=1998),
    ProfileVariable(1684, _E, source_id=1993),
    ProfileVariable(1692, _E, source_id=2008),
    *(
        ProfileVariable(pid, _E, source_id=src)
        for pid, src in (
            (1713, 2030),
            (1715, 2032),
            (1717, 2034),
            (1720, 2037),
            (1729, 2046),
            (1737, 2054),
            (1741, 2058),
            (1747, 2064),
            (1752, 2069),
            (1760, 2077),
            (1763, 2080),
            (1767, 2086),
        )
    ),
    # Labour
    ProfileVariable(1870, _I, source_id=2228),
    ProfileVariable(1871, _I, source_id=2229),
    ProfileVariable(1872, _I, source_id=2230),
    ProfileVariable(1879, _E, source_id=2237),
    ProfileVariable(1883, _E, source_id=2245),
    ProfileVariable(1884, _E, source_id=2246),
    *_renumbered(1887, 2249, 11, _E),
    *_renumbered(1900, 2262, 20, _E),
    # Mobility
    ProfileVariable(2230, _E, source_id=1974),
    ProfileVariable(2232, _E, source_id=1976),
    ProfileVariable(2239, _E, source_id=1983),
    ProfileVariable(2241, _E, source_id=1985),
)


def profile_columns(vintage: int | None = None) -> list[str]:
    """Harmonized wide column names, optionally limited to one vintage."""
    return [
        f"{v.name}_{s}"
        for v in PROFILE_VARIABLES
        if vintage is None or vintage in v.vintages
        for s in v.sexes
    ]


def source_ids(vintage: int) -> set[int]:
    """Raw characteristic ids a profile of ``vintage`` must supply."""
    ids = set()
    for variable in PROFILE_VARIABLES:
        if vintage not in variable.vintages:
            continue
        if vintage == 2011 and variable.is_derived_2011:
            ids.update(variable.sum_2011)
        else:
            ids.add(int(variable.source_name(vintage).removeprefix("p_")))
    return ids


def variable_classes_frame(
    variables: tuple[ProfileVariable, ...] = PROFILE_VARIABLES,
) -> pd.DataFrame:
    """Build the ``variable, variable_class`` frame used by reweighting."""
    return pd.DataFrame(
        {
            "variable": [v.name for v in variables],
            "variable_class": [v.variable_class.value for v in variables],
        }
    )


def require_classified(profile: pd.DataFrame, variable_classes: pd.DataFrame) -> None:
    """Raise if a long profile carries a variable with no declared class."""
    known = set(variable_classes["variable"])
    unknown = sorted(set(profile["variable"]) - known)
    if unknown:
        raise InputContractError(
            f"Profile variables without a variable class: {unknown}"
        )
    invalid = set(variable_classes["variable_class"]) - {c.value for c in VariableClass}
    if invalid:
        raise InputContractError(f"Unknown variable classes: {sorted(invalid)}")


def _derive_2011(raw: pd.DataFrame) -> pd.DataFrame:
    """Add the 2011 variables built from other characteristics.

    Sums are computed before shares so a share may use a derived sum.
    """
    derived = {}
    for variable in PROFILE_VARIABLES:
        if not variable.sum_2011:
            continue
        for sex in variable.sexes:
            columns = [f"p_{pid}_{sex}" for pid in variable.sum_2011]
            _require_raw_columns(raw, columns, 2011)
            derived[f"{variable.name}_{sex}"] = raw[columns].sum(
                axis=1, min_count=len(columns)
            )
    raw = raw.assign(**derived)

    shares = {}
    for variable in PROFILE_VARIABLES:
        if variable.share_2011 is None:
            continue
        numerator, denominator = variable.share_2011
        for sex in variable.sexes:
            num = raw[f"p_{numerator}_{sex}"]
            den = raw[f"p_{denominator}_{sex}"].where(
                raw[f"p_{denominator}_{sex}"] != 0
            )
            shares[f"{variable.name}_{sex}"] = num / den * 100
    return raw.assign(**shares)


def _require_raw_columns(raw: pd.DataFrame, columns: list[str], vintage: int) -> None:
    missing = [c for c in columns if c not in raw.columns]
    if missing:
        raise InputContractError(
            f"{vintage} profile is missing columns needed for derived "
            f"variables: {missing}"
        )


def harmonize_profile(
    raw: pd.DataFrame, vintage: int, id_column: str = "unit_id"
) -> pd.DataFrame:
    """Map a raw wide profile onto harmonized 2016 variable names.

    Variables not released in ``vintage`` are left out. Declared variables
    absent from ``raw`` are added as missing and reported.

    Args:
        raw: Wide profile with ``id_column`` and ``p_{id}_{sex}`` columns
        vintage: Census vintage of ``raw`` (2011, 2016 or 2021)
        id_column: Geographic key column

    Returns:
        Wide profile with harmonized ``p_{id}_{sex}`` columns
    """
    if vintage not in CENSUS_VINTAGES:
        raise ValueError(f"Unsupported census vintage: {vintage}")
    if id_column not in raw.columns:
        raise InputContractError(f"Profile is missing key column: {id_column}")

    if vintage == 2011:
        raw = _derive_2011(raw)

    columns = {id_column: raw[id_column]}
    missing = []
    for variable in PROFILE_VARIABLES:
        if vintage not in variable.vintages:
            continue
        # Derived 2011 variables already carry their harmonized name
        stem = (
            variable.name
            if vintage == 2011 and variable.is_derived_2011
            else variable.source_name(vintage)
        )
        for sex in variable.sexes:
            source = f"{stem}_{sex}"
            if source in raw.columns:
                columns[f"{variable.name}_{sex}"] = pd.to_numeric(raw[source])
            else:
                missing.append(source)
                columns[f"{variable.name}_{sex}"] = pd.Series(
                    float("nan"), index=raw.index
                )

    if missing:
        logger.warning(
            "  {} profile: {} declared columns absent, filled as missing: {}",
            vintage,
            len(missing),
            missing[:10],
        )

    harmonized = pd.DataFrame(columns)
    logger.debug(
        "  Harmonized {} profile: {:,} units x {} columns",
        vintage,
        len(harmonized),
        len(harmonized.columns) - 1,
    )
    return harmonized


def profile_to_long(
    wide: pd.DataFrame, id_columns: tuple[str, ...] = ("unit_id",)
) -> pd.DataFrame:
    """Melt ``p_{id}_{sex}`` columns into ``variable, sex, value`` rows.

    Missing values are kept so that units without data stay distinguishable
    from zero counts.
    """
    value_columns = [c for c in wide.columns if c.startswith("p_")]
    long = wide.melt(
        id_vars=list(id_columns),
        value_vars=value_columns,
        var_name="column",
        value_name="value",
    )
    parts = long["column"].str.rsplit("_", n=1, expand=True)
    long = long.assign(variable=parts[0], sex=parts[1]).drop(columns="column")
    long["value"] = long["value"].astype("float64")
    return long[[*id_columns, "variable", "sex", "value"]]


def profile_to_wide(
    long: pd.DataFrame, id_columns: tuple[str, ...] = ("unit_id",)
) -> pd.DataFrame:
    """Pivot a long profile back to ``p_{id}_{sex}`` columns."""
    keyed = long.assign(column=long["variable"] + "_" + long["sex"])
    wide = keyed.set_index([*id_columns, "column"])["value"].unstack("column")
    wide.columns.name = None
    return wide.reset_index()


def stratum_population(
    profile: pd.DataFrame, id_column: str = "unit_id"
) -> pd.DataFrame:
    """Extract ``unit_id, sex, population`` strata from a wide profile.

    Total population comes from ``p_1_t``; female and male populations from
    the age-by-sex totals ``p_8_f`` and ``p_8_m``.
    """
    frames = []
    for sex, column in STRATUM_POPULATION_VARIABLES.items():
        if column not in profile.columns:
            raise InputContractError(f"Profile is missing population column {column}")
        frames.append(
            pd.DataFrame(
                {
                    "unit_id": profile[id_column].astype("string"),
                    "sex": sex,
                    "population": pd.to_numeric(profile[column]).astype("float64"),
                }
            )
        )
    return pd.concat(frames, ignore_index=True)
