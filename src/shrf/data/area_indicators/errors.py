"""Exceptions raised by the area indicator pipelines."""


class InputContractError(ValueError):
    """Raised when an input extract does not match its expected schema.

    Covers missing columns, unparseable numeric fields, profile variables
    without a declared class and malformed classification rule files.
    """


class IntegrityError(RuntimeError):
    """Raised when a validation check on pipeline output fails.

    Examples are national totals that differ before and after reweighting,
    or correspondence weights that do not sum to one per source unit.
    """
