"""Small-area indicator CLI.

Builds yearly DA/CT population counts, CASDOHI indicators and
age-standardized event rates from local census and event extracts.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="area-indicators",
    help="Small-area population counts, CASDOHI indicators and event rates",
)
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Warnings only"),
) -> None:
    """Configure logging before any command runs."""
    from shrf.data.area_indicators.logging import configure_logging

    configure_logging(1 if verbose else -1 if quiet else 0)


@contextmanager
def _pipeline_errors() -> Iterator[None]:
    """Turn input and integrity failures into a red message and exit code 1."""
    from shrf.data.area_indicators.errors import InputContractError, IntegrityError

    try:
        yield
    except (InputContractError, IntegrityError) as e:
        console.print(f"[red bold]Error: {e}[/red bold]")
        raise typer.Exit(code=1) from e


def _run_stage(processor, stage: str, method, stages_dir: Path | None) -> None:
    """Run a stage unless a snapshot already holds it, then snapshot."""
    if processor.is_complete(stage):
        console.print(f"[dim]Skipping {stage} (resumed)[/dim]")
        return
    method()
    if stages_dir is not None:
        processor.save_stages(stages_dir)


@app.command("population-counts")
def population_counts(
    input_dir: str = typer.Option(
        "data/input",
        "--input-dir",
        "-i",
        help="Directory holding attribute and correspondence files",
    ),
    output_dir: str = typer.Option(
        "data/output",
        "--output",
        "-o",
        help="Output directory for CSV files",
    ),
    start_year: int = typer.Option(2011, "--start-year", help="First year"),
    end_year: int = typer.Option(2021, "--end-year", help="Last year"),
    check_totals: bool = typer.Option(
        False,
        "--check-totals/--no-check-totals",
        help="Compare censal totals with published national totals",
    ),
    xlsx: bool = typer.Option(False, "--xlsx", help="Also write a labelled workbook"),
    stages_dir: str | None = typer.Option(
        None,
        "--stages-dir",
        help="Snapshot stages to parquet here and resume from existing ones",
    ),
    cache_dir: str = typer.Option("data/cache", help="DuckDB spill directory"),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Preview only, no file output",
    ),
) -> None:
    """Build yearly population counts on DA and CT.

    Censal years use their own DA boundary; intercensal years are estimated
    on the previous census boundary.

    Examples:

        # Preview (dry run)
        uv run area-indicators population-counts --dry-run

        # 2011-2021 with the published total check
        uv run area-indicators population-counts --check-totals
    """
    from shrf.data.area_indicators.constants import PUBLISHED_NATIONAL_POPULATION
    from shrf.data.area_indicators.duckdb_processor import PopulationCountProcessor

    console.print("[bold blue]Population Counts[/bold blue]")
    console.print(f"Years: {start_year}-{end_year} | Input: {input_dir}")

    with _pipeline_errors():
        try:
            processor = PopulationCountProcessor(
                start_year=start_year, end_year=end_year, cache_dir=cache_dir
            )
        except ValueError as e:
            console.print(f"[red bold]Error: {e}[/red bold]")
            raise typer.Exit(code=1) from e

        stages = Path(stages_dir) if stages_dir else None
        if stages is not None:
            processor.load_stages(stages)
        _run_stage(
            processor, "attributes", lambda: processor.load_inputs(input_dir), stages
        )
        _run_stage(
            processor, "population_da", processor.create_population_counts, stages
        )

        expected = None
        if check_totals:
            expected = {
                y: t
                for y, t in PUBLISHED_NATIONAL_POPULATION.items()
                if y in processor.censal_years
            }
        results = processor.validate(expected_totals=expected, strict=check_totals)

    _print_validation(results)
    _print_population_summary(results)

    if dry_run:
        _print_preview(processor, ["population_da", "population_ct"])
        return

    paths = processor.save_outputs(output_dir, xlsx=xlsx)
    _print_saved(output_dir, paths)


@app.command()
def casdohi(
    input_dir: str = typer.Option(
        "data/input",
        "--input-dir",
        "-i",
        help="Directory holding census profiles, attribute and correspondence files",
    ),
    output_dir: str = typer.Option(
        "data/output",
        "--output",
        "-o",
        help="Output directory for CSV files",
    ),
    start_year: int = typer.Option(2011, "--start-year", help="First year"),
    end_year: int = typer.Option(2021, "--end-year", help="Last year"),
    xlsx: bool = typer.Option(False, "--xlsx", help="Also write a labelled workbook"),
    stages_dir: str | None = typer.Option(
        None,
        "--stages-dir",
        help="Snapshot stages to parquet here and resume from existing ones",
    ),
    cache_dir: str = typer.Option("data/cache", help="DuckDB spill directory"),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Preview only, no file output",
    ),
) -> None:
    """Build yearly CASDOHI indicators on dissemination areas.

    Examples:

        uv run area-indicators casdohi --start-year 2016 --end-year 2021
    """
    from shrf.data.area_indicators.duckdb_processor import CasdohiProcessor

    console.print("[bold blue]CASDOHI Indicators[/bold blue]")
    console.print(f"Years: {start_year}-{end_year} | Input: {input_dir}")

    with _pipeline_errors():
        try:
            processor = CasdohiProcessor(
                start_year=start_year, end_year=end_year, cache_dir=cache_dir
            )
        except ValueError as e:
            console.print(f"[red bold]Error: {e}[/red bold]")
            raise typer.Exit(code=1) from e

        stages = Path(stages_dir) if stages_dir else None
        if stages is not None:
            processor.load_stages(stages)
        _run_stage(
            processor, "profiles", lambda: processor.load_inputs(input_dir), stages
        )
        _run_stage(
            processor,
            "indicator_profiles",
            processor.create_indicator_profiles,
            stages,
        )
        _run_stage(processor, "indicators", processor.create_indicators, stages)
        results = processor.validate()

    _print_validation(results)
    console.print(f"\n[bold]Indicators:[/bold] {results['stats']['rows']:,} DA-years")

    if dry_run:
        _print_preview(processor, ["indicators"])
        return

    paths = processor.save_outputs(output_dir, xlsx=xlsx)
    _print_saved(output_dir, paths)


@app.command("event-rates")
def event_rates(
    events: str = typer.Option(..., "--events", "-e", help="Event extract"),
    denominators: str | None = typer.Option(
        None,
        "--denominators",
        "-d",
        help="Pre-aggregated stratum populations",
    ),
    persons: list[str] = typer.Option(
        [],
        "--persons",
        help="Census person records as YEAR=PATH (repeatable)",
    ),
    standard: str | None = typer.Option(
        None,
        "--standard",
        help="Standard population (defaults to national totals of each year)",
    ),
    standard_year: int | None = typer.Option(
        None,
        "--standard-year",
        help="Standardize every year against this year's national totals",
    ),
    rules: str | None = typer.Option(
        None,
        "--rules",
        help="ICD-10 classification rule file (JSON)",
    ),
    rounding_base: int = typer.Option(
        5, "--rounding-base", help="Round counts to multiples of this base"
    ),
    output_dir: str = typer.Option(
        "data/output",
        "--output",
        "-o",
        help="Output directory for CSV files",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Preview only, no file output",
    ),
) -> None:
    """Compute age-standardized event rates per 100,000.

    Examples:

        uv run area-indicators event-rates -e deaths.csv -d population.csv

        uv run area-indicators event-rates -e deaths.csv \\
            --persons 2016=census_2016.csv --persons 2021=census_2021.csv
    """
    from shrf.data.area_indicators.duckdb_processor import EventRateProcessor

    if denominators is None and not persons:
        console.print("[red bold]Error: give --denominators or --persons[/red bold]")
        raise typer.Exit(code=1)

    persons_paths = {}
    for item in persons:
        year, sep, path = item.partition("=")
        if not sep or not year.isdigit():
            console.print(f"[red bold]Error: expected YEAR=PATH, got {item}[/red bold]")
            raise typer.Exit(code=1)
        persons_paths[int(year)] = path

    console.print("[bold blue]Event Rates[/bold blue]")
    console.print(f"Events: {events} | Rounding base: {rounding_base}")

    with _pipeline_errors():
        processor = EventRateProcessor(
            rules_path=rules,
            standard_year=standard_year,
            rounding_base=rounding_base,
        )
        console.print(
            f"Rules: {processor.rules.name} v{processor.rules.version} "
            f"({len(processor.rules.output_categories)} categories)"
        )
        processor.load_inputs(
            events,
            denominators_path=denominators,
            persons_paths=persons_paths,
            standard_path=standard,
        )
        processor.create_rates()
        results = processor.validate()

    _print_validation(results)
    _print_rate_summary(results["stats"]["by_category"])

    if dry_run:
        _print_preview(processor, ["event_rates"])
        return

    paths = processor.save_outputs(output_dir)
    _print_saved(output_dir, paths)


def _print_validation(results: dict) -> None:
    """Print validation errors and warnings."""
    for error in results["errors"]:
        console.print(f"[red]  {error}[/red]")
    for warning in results["warnings"]:
        console.print(f"[yellow]  {warning}[/yellow]")


def _print_population_summary(results: dict) -> None:
    """Print national totals per year."""
    console.print("\n[bold]Population by year:[/bold]")
    totals = results["stats"]["total_population"]
    for year, total in totals.items():
        console.print(f"  {year}: {total:,.0f}")


def _print_rate_summary(summary: list[dict]) -> None:
    """Print events and rate range per category and sex."""
    table = Table(title="Rates by category")
    for column in ("category", "sex", "geographies", "events", "min", "max"):
        table.add_column(column)
    for row in summary:
        table.add_row(
            str(row["category"]),
            str(row["sex"]),
            f"{row['geographies']:,}",
            f"{row['events']:,.0f}",
            f"{row['min_rate']:,.1f}",
            f"{row['max_rate']:,.1f}",
        )
    console.print(table)


def _print_preview(processor, stages: list[str]) -> None:
    """Print the first 10 rows of each stage."""
    for stage in stages:
        console.print(f"\n[bold]Preview - {stage} (first 10 rows):[/bold]")
        console.print(processor.to_pandas(stage).head(10).to_string(index=False))

    console.print(
        "\n[yellow]Dry run - no files written. Remove --dry-run to save.[/yellow]"
    )


def _print_saved(output_dir: str, paths: dict) -> None:
    console.print(f"\n[green]Saved to {output_dir}/[/green]")
    for path in paths.values():
        size_mb = path.stat().st_size / 1024 / 1024
        console.print(f"  {path.name} ({size_mb:.1f} MB)")


@app.command()
def info() -> None:
    """Show census vintages, expected input files and output tables."""
    from shrf.data.area_indicators.classification import load_category_rules
    from shrf.data.area_indicators.constants import (
        CENSUS_VINTAGES,
        INPUT_FILES,
        OUTPUT_SCHEMAS,
    )
    from shrf.data.area_indicators.indicators import indicator_tags

    console.print("[bold blue]Census Vintages[/bold blue]")
    for vintage in CENSUS_VINTAGES:
        console.print(f"  {vintage}")

    console.print("\n[bold blue]Input Files (under --input-dir)[/bold blue]")
    for kind, files in INPUT_FILES.items():
        for vintage, pattern in files.items():
            console.print(f"  {kind} {vintage}: {pattern}")

    console.print("\n[bold blue]Output Tables[/bold blue]")
    for name, schema in OUTPUT_SCHEMAS.items():
        columns = ", ".join(column["name"] for column in schema)
        console.print(f"\n  [bold]{name}[/bold]")
        console.print(f"    {columns}")

    tags = indicator_tags()
    console.print(f"\n[bold blue]CASDOHI Indicators[/bold blue] ({len(tags)})")
    for kind, count in tags["kind"].value_counts().sort_index().items():
        console.print(f"  {kind}: {count}")

    rules = load_category_rules()
    console.print("\n[bold blue]Default Classification Rules[/bold blue]")
    console.print(f"  {rules.name} v{rules.version}")
    console.print(f"  Categories: {', '.join(rules.output_categories)}")


if __name__ == "__main__":
    app()
