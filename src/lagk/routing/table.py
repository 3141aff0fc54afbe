"""Two-column lookup tables used for lag, K and storage-indication curves"""

import logging
from collections.abc import Iterable, Sequence

import numpy as np

log = logging.getLogger(__name__)

# Sentinel flow used to bound K and storage-indication tables at the top
BIG_DATA_VALUE = 1.0e20

# Sentinel key for the lag table row added when expanding a single negative-lag row
MAX_KEY_VALUE = float(np.finfo(np.float64).max)


class LookupTable:
    """An ordered numeric table supporting exact and interpolated lookup in either direction.

    Rows are stored in a ``(n_rows, n_columns)`` float array. Cells that have not been
    populated are NaN. Callers building a table are responsible for filling every cell and
    for ordering the rows by the column they intend to look up on.
    """

    def __init__(self, data: np.ndarray | None = None, n_columns: int = 2) -> None:
        if data is None:
            data = np.empty((0, n_columns), dtype=np.float64)
        data = np.array(data, dtype=np.float64)
        if data.ndim != 2:
            raise ValueError(f"Table data must be two dimensional, got shape {data.shape}")
        self._data = data
        self._frozen = False

    @classmethod
    def allocate(cls, n_rows: int, n_columns: int = 2) -> "LookupTable":
        """Create a table with ``n_rows`` rows filled with NaN"""
        return cls(np.full((n_rows, n_columns), np.nan, dtype=np.float64))

    @classmethod
    def from_rows(cls, rows: Iterable[Sequence[float]]) -> "LookupTable":
        """Create a table from an iterable of equal-length numeric rows"""
        data = np.array([[float(v) for v in row] for row in rows], dtype=np.float64)
        if data.size == 0:
            return cls()
        return cls(data)

    @property
    def n_rows(self) -> int:
        return self._data.shape[0]

    @property
    def n_columns(self) -> int:
        return self._data.shape[1]

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return self.n_rows

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.rows()})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LookupTable):
            return NotImplemented
        return self._data.shape == other._data.shape and bool(
            np.array_equal(self._data, other._data, equal_nan=True)
        )

    def populate(self, row: int, column: int, value: float) -> None:
        """Set a single cell. The table is never resized."""
        if self._frozen:
            raise ValueError(f"{type(self).__name__} is read-only once built")
        if not 0 <= row < self.n_rows:
            raise IndexError(f"Row {row} requested for table - must be in range 0 - {self.n_rows - 1}")
        if not 0 <= column < self.n_columns:
            raise IndexError(f"Column {column} requested for table - must be in range 0 - {self.n_columns - 1}")
        self._data[row, column] = value

    def get(self, row: int, column: int) -> float:
        if not 0 <= row < self.n_rows:
            raise IndexError(f"Row {row} requested for table - must be in range 0 - {self.n_rows - 1}")
        if not 0 <= column < self.n_columns:
            raise IndexError(f"Column {column} requested for table - must be in range 0 - {self.n_columns - 1}")
        return float(self._data[row, column])

    def column(self, column: int) -> np.ndarray:
        """Return a copy of one column"""
        return self._data[:, column].copy()

    def rows(self) -> list[tuple[float, ...]]:
        return [tuple(float(v) for v in row) for row in self._data]

    def sorted_by(self, column: int = 0) -> "LookupTable":
        """Return a new table of the same type with rows ordered by ``column`` (stable)"""
        order = np.argsort(self._data[:, column], kind="stable")
        return type(self)(self._data[order].copy())

    def freeze(self) -> "LookupTable":
        """Mark the table read-only. Returns ``self`` for chaining."""
        self._data.setflags(write=False)
        self._frozen = True
        return self

    def lookup(
        self,
        key: float,
        key_column: int = 0,
        value_column: int = 1,
        interpolate: bool = True,
    ) -> float:
        """Look up the value in ``value_column`` for ``key`` found in ``key_column``.

        Parameters
        ----------
        key : float
            The value to search for in the key column
        key_column : int, optional
            The column searched, by default 0
        value_column : int, optional
            The column returned, by default 1
        interpolate : bool, optional
            Linearly interpolate between bracketing rows and clamp keys outside the
            table domain to the nearest boundary row, by default True

        Returns
        -------
        float
            The matching or interpolated value

        Raises
        ------
        KeyError
            If ``interpolate`` is False and no row matches ``key`` exactly
        ValueError
            If the table is empty
        """
        if self.n_rows == 0:
            raise ValueError("Cannot look up a value in an empty table")
        keys = self._data[:, key_column]
        values = self._data[:, value_column]

        if not interpolate:
            matches = np.flatnonzero(keys == key)
            if matches.size == 0:
                raise KeyError(f"No row with key {key} in column {key_column}")
            return float(values[matches[0]])

        if key <= keys[0]:
            return float(values[0])
        last = self.n_rows - 1
        if key >= keys[last]:
            return float(values[last])
        for i in range(last):
            x_min = keys[i]
            if key == x_min:
                return float(values[i])
            x_max = keys[i + 1]
            if x_min < key < x_max:
                y_min = values[i]
                y_max = values[i + 1]
                return float(y_min + (y_max - y_min) * (key - x_min) / (x_max - x_min))
        # Keys are not ordered, fall back to the row with the closest key
        log.debug(f"Key {key} not bracketed in unordered column {key_column}, using nearest row")
        return float(values[int(np.argmin(np.abs(keys - key)))])


class LagTable(LookupTable):
    """Lag table with columns ``(flow, lag)``"""

    FLOW_COLUMN = 0
    LAG_COLUMN = 1

    def lag_at(self, flow: float) -> float:
        return self.lookup(flow, self.FLOW_COLUMN, self.LAG_COLUMN, interpolate=True)

    @property
    def lags(self) -> np.ndarray:
        return self.column(self.LAG_COLUMN)


class KTable(LookupTable):
    """K table with columns ``(outflow, K)``"""

    OUTFLOW_COLUMN = 0
    K_COLUMN = 1

    def k_at(self, outflow: float) -> float:
        return self.lookup(outflow, self.OUTFLOW_COLUMN, self.K_COLUMN, interpolate=True)

    @property
    def k_values(self) -> np.ndarray:
        return self.column(self.K_COLUMN)


class StorageOutflowTable(LookupTable):
    """Storage-indication table with columns ``(outflow, 2S/dt + outflow)``"""

    OUTFLOW_COLUMN = 0
    INDICATION_COLUMN = 1

    def outflow_at(self, indication: float) -> float:
        """Outflow for a storage-indication value ``2S/dt + O``"""
        return self.lookup(indication, self.INDICATION_COLUMN, self.OUTFLOW_COLUMN, interpolate=True)

    def indication_at(self, outflow: float) -> float:
        return self.lookup(outflow, self.OUTFLOW_COLUMN, self.INDICATION_COLUMN, interpolate=True)
