"""Indicator derivation template."""

__all__ = [
    "CREATE_INDICATORS",
]

# {key_columns}: comma-separated identifiers kept as-is
# {expressions}: rendered indicator expressions, one per output column
CREATE_INDICATORS = """
CREATE OR REPLACE TABLE {output} AS
SELECT
    {key_columns},
    {expressions}
FROM {profile}
ORDER BY {key_columns}
"""
