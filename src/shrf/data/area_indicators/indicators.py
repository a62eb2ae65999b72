"""CASDOHI indicator definitions and their derivation from census profiles.

Each indicator is declared once as an ``IndicatorDefinition``. Expressions
name harmonized profile variables as ``p_{id}``; the sex suffix is appended
when the indicator is rendered for each sex stratum, unless the variable is
written with an explicit suffix (``p_1_t``). All definitions are rendered by
one loop into a single DuckDB SELECT.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

import pandas as pd
from loguru import logger

from shrf.data.area_indicators import sql
from shrf.data.area_indicators.constants import SEX_STRATA
from shrf.data.area_indicators.frames import fetch_table, register_frame, row_count
from shrf.data.area_indicators.variables import VariableClass

if TYPE_CHECKING:
    from collections.abc import Mapping

    import duckdb

# Indicator kind -> variable class used if the indicator is ever reweighted
INDICATOR_KINDS = {
    "count": VariableClass.EXTENSIVE,
    "percentage": VariableClass.INTENSIVE,
    "mean": VariableClass.INTENSIVE,
    "median": VariableClass.MEDIAN,
    "rate": VariableClass.INTENSIVE,
}

_UNSUFFIXED = re.compile(r"\bp_(\d+)(?![\d_])")
_REFERENCED = re.compile(r"\bp_\d+_[tfm]\b")


@dataclass(frozen=True)
class IndicatorDefinition:
    """One output indicator.

    Attributes:
        name: Output column stem
        kind: count, percentage, mean, median or rate
        numerator: Expression, or one expression per sex stratum
        denominator: Optional expression; a zero denominator gives null
        scale: Multiplier applied to the ratio (100 for percentages)
        sexes: Sex strata produced
        suffixed: Append ``_{sex}`` to the output name
    """

    name: str
    kind: str
    numerator: str | Mapping[str, str]
    denominator: str | Mapping[str, str] | None = None
    scale: float = 1.0
    sexes: tuple[str, ...] = SEX_STRATA
    suffixed: bool = True

    def __post_init__(self) -> None:
        if self.kind not in INDICATOR_KINDS:
            raise ValueError(f"Unknown indicator kind '{self.kind}' for {self.name}")

    def column(self, sex: str) -> str:
        return f"{self.name}_{sex}" if self.suffixed else self.name

    def render(self, sex: str) -> str:
        """SQL expression of this indicator for one sex stratum."""
        numerator = _resolve(self.numerator, sex)
        if self.denominator is None:
            expression = f"CAST({numerator} AS DOUBLE)"
        else:
            denominator = _resolve(self.denominator, sex)
            expression = f"CAST({numerator} AS DOUBLE) / NULLIF({denominator}, 0)"
        if self.scale != 1:
            expression = f"{expression} * {self.scale:g}"
        return expression

    def referenced_columns(self) -> set[str]:
        return {
            column
            for sex in self.sexes
            for column in _REFERENCED.findall(self.render(sex))
        }


def _resolve(expression: str | Mapping[str, str], sex: str) -> str:
    if not isinstance(expression, str):
        expression = expression[sex]
    return _UNSUFFIXED.sub(lambda m: f"p_{m.group(1)}_{sex}", expression)


# Per-sex population: total population for t, age-by-sex totals for f and m
_POP = {"t": "p_1_t", "f": "p_8_f", "m": "p_8_m"}


def _pct(
    name: str, numerator: str, denominator: str, total_only: bool = False
) -> IndicatorDefinition:
    if total_only:
        return IndicatorDefinition(
            name, "percentage", numerator, denominator, 100, ("t",), suffixed=False
        )
    return IndicatorDefinition(name, "percentage", numerator, denominator, 100)


def _share_of(
    prefix: str, denominator: str, numerators: dict[str, str]
) -> list[IndicatorDefinition]:
    return [
        _pct(f"{prefix}_{key}", num, denominator) for key, num in numerators.items()
    ]


def _total(name: str, kind: str, expression: str) -> IndicatorDefinition:
    return IndicatorDefinition(name, kind, expression, sexes=("t",), suffixed=False)


CASDOHI_INDICATORS: tuple[IndicatorDefinition, ...] = (
    # Population
    IndicatorDefinition("pop", "count", _POP),
    _pct("pct_pop_f", "p_8_f", "p_1_t", total_only=True),
    _total("pop_density", "rate", "p_6_t"),
    IndicatorDefinition("mean_age", "mean", "p_39"),
    IndicatorDefinition("med_age", "median", "p_40"),
    # Age structure
    _pct("pct_age_under5", "p_10", _POP),
    IndicatorDefinition("pct_age_under15", "percentage", "p_35"),
    _pct("pct_age_5to14", "p_11 + p_12", _POP),
    IndicatorDefinition("pct_age_65plus", "percentage", "p_37"),
    IndicatorDefinition("ratio_dep", "rate", "p_9 + p_24", "p_13"),
    # Households and families
    _total("mean_hh_size", "mean", "p_58_t"),
    _pct("pct_mcl", "p_60", "p_59"),
    _pct("pct_nm", "p_64", "p_59"),
    _pct("pct_sdw", "p_65 + p_66 + p_67", "p_59"),
    _pct("pct_single_parent", {"t": "p_78", "f": "p_79", "m": "p_80"}, "p_74"),
    _pct("pct_alone", "p_52", "p_57"),
    # Language, immigration and identity
    _pct("pct_no_eng_fr", "p_104", "p_100"),
    _pct("pct_non_immig", "p_1141", "p_1140"),
    _pct("pct_immig", "p_1142", "p_1140"),
    _pct("pct_non_pr", "p_1150", "p_1140"),
    _pct("pct_recent_immig", "p_1149", "p_1140"),
    _pct("pct_indigenous", "p_1290", "p_1289"),
    _pct("pct_vm", "p_1324", "p_1323"),
    *_share_of(
        "pct",
        "p_1323",
        {
            "south_asian": "p_1325",
            "east_asian": "p_1326 + p_1333 + p_1334",
            "black": "p_1327",
            "southeast_asian": "p_1328 + p_1331",
            "latin_american": "p_1329",
            "middle_eastern": "p_1330 + p_1332",
        },
    ),
    # Income
    _total("med_ttinc_hh", "median", "p_742_t"),
    _total("med_atinc_hh", "median", "p_743_t"),
    _total("mean_ttinc_hh", "mean", "p_751_t"),
    _total("mean_atinc_hh", "mean", "p_752_t"),
    IndicatorDefinition("med_ttinc_ind", "median", "p_663"),
    IndicatorDefinition("mean_ttinc_ind", "mean", "p_674"),
    IndicatorDefinition("med_atinc_ind", "median", "p_665"),
    IndicatorDefinition("mean_atinc_ind", "mean", "p_676"),
    _pct("pct_pop_gtransfer", "p_668", "p_661"),
    IndicatorDefinition("pct_inc_gtransfer", "percentage", "p_690"),
    IndicatorDefinition("pct_lico_at", "percentage", "p_867"),
    IndicatorDefinition("pct_lim_at", "percentage", "p_857"),
    IndicatorDefinition(
        "med_atinc_hh_adj",
        "median",
        "p_743_t",
        "SQRT(p_58_t)",
        sexes=("t",),
        suffixed=False,
    ),
    # Education
    _pct("pct_no_diploma", "p_1684", "p_1683"),
    _pct("pct_uni_diploma", "p_1692", "p_1683"),
    *_share_of(
        "pct_cip",
        "p_1713",
        {
            "education": "p_1715",
            "art": "p_1717",
            "humanities": "p_1720",
            "social": "p_1729",
            "buisiness": "p_1737",
            "physical": "p_1741",
            "math": "p_1747",
            "architecture": "p_1752",
            "agriculture": "p_1760",
            "health": "p_1763",
            "personal": "p_1767",
        },
    ),
    # Labour
    IndicatorDefinition("pct_lf_participation", "percentage", "p_1870"),
    IndicatorDefinition("pct_emp", "percentage", "p_1871"),
    IndicatorDefinition("pct_unemp", "percentage", "p_1872"),
    _pct("pct_self_emp", "p_1883", "p_1879"),
    *_share_of("pct_noc", "p_1884", {str(i): f"p_{1887 + i}" for i in range(10)}),
    *_share_of(
        "pct_naics",
        "p_1897",
        {
            code: f"p_{1900 + i}"
            for i, code in enumerate(
                (
                    "11",
                    "21",
                    "22",
                    "23",
                    "31to33",
                    "41",
                    "44to45",
                    "48to49",
                    "51",
                    "52",
                    "53",
                    "54",
                    "55",
                    "56",
                    "61",
                    "62",
                    "71",
                    "72",
                    "81",
                    "91",
                )
            )
        },
    ),
    # Housing
    _pct("pct_apt_5plus", "p_43_t", "p_41_t", total_only=True),
    _pct("pct_major_repair", "p_1653_t", "p_1651_t", total_only=True),
    _pct("pct_not_suitable", "p_1642_t", "p_1640_t", total_only=True),
    _total("pct_shelter_cost_30plus_tenant", "percentage", "p_1680_t"),
    _total("pct_shelter_cost_30plus_owner", "percentage", "p_1673_t"),
    _pct(
        "pct_shelter_cost_30plus_tenant_owner", "p_1669_t", "p_1667_t", total_only=True
    ),
    _total("med_dwelling_value", "median", "p_1676_t"),
    _total("mean_dwelling_value", "mean", "p_1677_t"),
    _pct("pct_owner", "p_1618_t", "p_1617_t", total_only=True),
    _pct("pct_renter", "p_1619_t", "p_1617_t", total_only=True),
    _pct("pct_band_housing", "p_1620_t", "p_1617_t", total_only=True),
    # Mobility
    _pct("pct_mover_1y", "p_2232", "p_2230"),
    _pct("pct_mover_5y", "p_2241", "p_2239"),
)


def indicator_columns(
    definitions: tuple[IndicatorDefinition, ...] = CASDOHI_INDICATORS,
) -> list[str]:
    """Output column names in declaration order."""
    return [d.column(s) for d in definitions for s in d.sexes]


def indicator_tags(
    definitions: tuple[IndicatorDefinition, ...] = CASDOHI_INDICATORS,
) -> pd.DataFrame:
    """Kind tag and reinterpolation class of every output column."""
    return pd.DataFrame(
        [
            {
                "indicator": d.column(s),
                "kind": d.kind,
                "variable_class": INDICATOR_KINDS[d.kind].value,
            }
            for d in definitions
            for s in d.sexes
        ]
    )


def derive_indicators(
    conn: duckdb.DuckDBPyConnection,
    profile: pd.DataFrame,
    definitions: tuple[IndicatorDefinition, ...] = CASDOHI_INDICATORS,
    key_columns: tuple[str, ...] = ("unit_id",),
    output: str = "indicators",
) -> pd.DataFrame:
    """Evaluate indicator definitions over a wide harmonized profile.

    Profile columns referenced by a definition but absent from ``profile``
    are treated as missing, so the indicators using them are null.

    Args:
        conn: DuckDB connection
        profile: Wide profile with key columns and ``p_{id}_{sex}`` columns
        definitions: Indicators to derive
        key_columns: Columns carried through unchanged
        output: DuckDB result table

    Returns:
        DataFrame with the key columns followed by one column per indicator
        and sex stratum
    """
    referenced = set().union(*(d.referenced_columns() for d in definitions))
    absent = sorted(referenced - set(profile.columns))
    if absent:
        logger.warning(
            "  {} profile columns absent, dependent indicators will be null: {}",
            len(absent),
            absent[:10],
        )
        profile = profile.assign(**{c: float("nan") for c in absent})

    expressions = ",\n    ".join(
        f"{d.render(s)} AS {d.column(s)}" for d in definitions for s in d.sexes
    )
    source = f"{output}_profile"
    register_frame(conn, source, profile[[*key_columns, *sorted(referenced)]])
    conn.execute(
        sql.CREATE_INDICATORS.format(
            output=output,
            profile=source,
            key_columns=", ".join(key_columns),
            expressions=expressions,
        )
    )
    logger.debug(
        "  Indicators: {:,} rows x {} columns",
        row_count(conn, output),
        len(indicator_columns(definitions)),
    )
    return fetch_table(conn, output)
