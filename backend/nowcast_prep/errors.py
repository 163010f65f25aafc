"""Errors raised by the preprocessing core.

All of them subclass ``ValueError`` so callers that already guard input
parsing with ``except ValueError`` keep working.
"""

from __future__ import annotations


class PreprocessError(ValueError):
    """Base class for input and numeric-contract failures."""


class InvalidDelay(PreprocessError):
    """A record was reported before its reference date."""

    def __init__(self, group, reference_date, report_date, n_records: int = 1):
        self.group = group
        self.reference_date = reference_date
        self.report_date = report_date
        self.n_records = n_records
        super().__init__(
            f"report_date {report_date} precedes reference_date {reference_date} "
            f"(group={group}); {n_records} record(s) affected"
        )


class IncompleteGroupKey(PreprocessError):
    """A grouping column is absent, or null in some records."""

    def __init__(self, column: str, n_missing: int | None = None):
        self.column = column
        self.n_missing = n_missing
        if n_missing is None:
            msg = f"Grouping column '{column}' not found in observations"
        else:
            msg = f"Grouping column '{column}' is missing in {n_missing} record(s)"
        super().__init__(msg)


class NonContiguousDateRange(PreprocessError):
    """The densified date grid would be implausibly long."""

    def __init__(self, start, end, span_days: int, max_span_days: int):
        self.start = start
        self.end = end
        self.span_days = span_days
        self.max_span_days = max_span_days
        super().__init__(
            f"Date range {start} .. {end} spans {span_days} days, more than the "
            f"allowed {max_span_days}; check date parsing"
        )


class InvalidDelayDistribution(PreprocessError):
    """A delay pmf is negative somewhere or sums to more than one."""

    def __init__(self, reason: str, block=None, total: float | None = None):
        self.reason = reason
        self.block = block
        self.total = total
        where = f" (block={block})" if block is not None else ""
        super().__init__(f"Invalid delay distribution{where}: {reason}")
