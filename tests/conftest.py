"""Pytest configuration and fixtures."""

import duckdb
import pandas as pd
import pytest
from loguru import logger


def pytest_addoption(parser):
    """Add --run-integration CLI option."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (reads full census extracts in data/input)",
    )


def pytest_collection_modifyitems(config, items):
    """Auto-skip integration tests unless --run-integration is passed."""
    if not config.getoption("--run-integration"):
        skip_marker = pytest.mark.skip(reason="need --run-integration to run")
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_marker)


@pytest.fixture
def conn():
    """In-memory DuckDB connection."""
    connection = duckdb.connect()
    yield connection
    connection.close()


@pytest.fixture
def warnings_logged():
    """Messages logged at WARNING or above while the test runs."""
    messages = []
    handler_id = logger.add(messages.append, level="WARNING", format="{message}")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def variable_classes():
    """One variable per reweighting class."""
    return pd.DataFrame(
        {
            "variable": ["p_1", "p_58", "p_40"],
            "variable_class": ["extensive", "intensive", "median"],
        }
    )


@pytest.fixture
def two_block_profile():
    """Two source DAs B1 (pop 100) and B2 (pop 200) feeding target A."""
    return pd.DataFrame(
        {
            "unit_id": ["B1", "B2", "B1", "B2"],
            "variable": ["p_1", "p_1", "p_58", "p_58"],
            "sex": ["t", "t", "t", "t"],
            "value": [50.0, 80.0, 50.0, 80.0],
        }
    )


@pytest.fixture
def two_block_population():
    """Stratum populations of the two source DAs."""
    return pd.DataFrame(
        {"unit_id": ["B1", "B2"], "sex": ["t", "t"], "population": [100.0, 200.0]}
    )


@pytest.fixture
def full_correspondence():
    """Both source DAs map fully into target A."""
    return pd.DataFrame(
        {"source_id": ["B1", "B2"], "target_id": ["A", "A"], "weight": [1.0, 1.0]}
    )


@pytest.fixture
def sample_blocks():
    """Block-level attribute rows for two DAs in one census tract."""
    return pd.DataFrame(
        {
            "row_idx": [0, 1, 2, 3],
            "db_id": ["3501000101", "3501000102", "3501000201", "3501000202"],
            "db_pop": [60.0, 40.0, 150.0, 50.0],
            "da_id": ["35010001", "35010001", "35010002", "35010002"],
            "pr_id": ["35", "35", "35", "35"],
            "pr_name": ["Ontario"] * 4,
            "cd_id": ["3501"] * 4,
            "csd_id": ["3501005"] * 4,
            "csd_name": ["South Glengarry"] * 4,
            "sactype": ["1"] * 4,
            "cma_id": ["535", "535", "535", None],
            "ct_id": ["5350001.00", "5350001.00", "5350001.00", "5350002.00"],
        }
    )


@pytest.fixture
def sample_events():
    """Death records across the classification edge cases."""
    return pd.DataFrame(
        {
            "event_id": ["e1", "e2", "e3", "e4", "e5", "e6"],
            "year": [2016] * 6,
            "age": [60.0, 50.0, 30.0, 50.0, 70.0, None],
            "sex": ["f", "m", "f", "f", "m", "f"],
            "geo_id": ["35010001"] * 6,
            "icd_code": ["I60.1", "C50", "C91.0", "C91.0", "Z99", "C920"],
        }
    )
