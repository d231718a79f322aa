"""
Row streaming and DataFrame loading for query cursors.
"""
from typing import TYPE_CHECKING, Any

import pandas as pd
from dbexec.types import ColumnMetadata

if TYPE_CHECKING:
    from dbexec.cursor import Cursor

__all__ = [
    'RowIterator',
    'load_frame',
]


class RowIterator:
    """Lazy, forward-only iterator over the rows of an executed query.

    Each step fetches one row through the cursor; once the result set is
    exhausted every further step stops immediately. The iterator cannot be
    restarted.
    """

    def __init__(self, cursor: 'Cursor') -> None:
        self._cursor = cursor
        self._exhausted = False

    def __iter__(self) -> 'RowIterator':
        return self

    def __next__(self) -> list[Any]:
        if self._exhausted:
            raise StopIteration
        row = self._cursor.fetch()
        if row is None:
            self._exhausted = True
            raise StopIteration
        return row

    @property
    def exhausted(self) -> bool:
        return self._exhausted


def _empty_dataframe(columns: list[ColumnMetadata]) -> pd.DataFrame:
    """Create empty DataFrame with column metadata."""
    df = pd.DataFrame(columns=ColumnMetadata.get_names(columns))
    df.attrs['column_types'] = ColumnMetadata.get_column_types_dict(columns)
    return df


def load_frame(data: list[list[Any]], columns: list[ColumnMetadata]) -> pd.DataFrame:
    """Standard pandas DataFrame loader.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    Includes type information in the DataFrame.attrs attribute.
    """
    if not data:
        return _empty_dataframe(columns)

    df = pd.DataFrame.from_records(data, columns=ColumnMetadata.get_names(columns))
    df.attrs['column_types'] = ColumnMetadata.get_column_types_dict(columns)
    return df
