"""Bulk insert with bounded retry."""

import logging
import typing as t

from rdbms_to_clickhouse.clickhouse_utils import TargetSink
from rdbms_to_clickhouse.errors import InsertError
from rdbms_to_clickhouse.types import FailedBatch, InsertTemplate, Row


class RetryingInserter:
    """Writes one batch with up to ``attempts`` tries.

    A batch that fails every attempt is returned as a :class:`FailedBatch`, or
    raised as :class:`InsertError` when ``strict`` is set.
    """

    ATTEMPTS: int = 5

    def __init__(self, logger: logging.Logger, attempts: int = ATTEMPTS, strict: bool = False) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self._logger = logger
        self._attempts = attempts
        self._strict = strict

    def insert(
        self,
        sink: TargetSink,
        template: InsertTemplate,
        rows: t.Sequence[Row],
        batch_index: int,
    ) -> t.Optional[FailedBatch]:
        if not rows:
            return None

        error: t.Optional[Exception] = None
        for attempt in range(1, self._attempts + 1):
            try:
                sink.insert(template, rows)
                return None
            except Exception as err:
                error = err
                self._logger.warning(
                    "Insert of batch %d failed (attempt %d/%d): %s", batch_index, attempt, self._attempts, err
                )

        assert error is not None
        self._logger.error(
            "Giving up on batch %d after %d attempts, %d rows were not migrated: %s",
            batch_index,
            self._attempts,
            len(rows),
            error,
        )
        if self._strict:
            raise InsertError(batch_index, len(rows), self._attempts, error) from error
        return FailedBatch(batch_index=batch_index, rows=len(rows), error=str(error))
