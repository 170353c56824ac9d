"""Value sources: the per-round weight each client submits."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union
import logging
import math

import numpy as np
import pandas as pd


def coerce_value(raw: Any) -> Optional[Union[int, float]]:
    """Normalize a raw value; None for missing, NaN or non-numeric input"""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, np.integer)):
        return int(raw)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


class ValueSource(ABC):
    """Supplies the value a client submits in a given round"""

    @abstractmethod
    def value_for(self, round_num: int, client_index: int) -> Optional[Any]:
        """Get a client's value for a round.

        Args:
            round_num: Round number (>= 1)
            client_index: ClientIdentity.index of the client

        Returns:
            The value, or None if no value is available
        """
        pass


class StaticValueSource(ValueSource):
    """Values from a mapping or a callable.

    A mapping may be keyed by client_index (same value every round) or by
    (round_num, client_index).
    """

    def __init__(
        self,
        values: Union[Mapping, Callable[[int, int], Any]]
    ):
        self._values = values

    def value_for(self, round_num: int, client_index: int) -> Optional[Any]:
        if callable(self._values):
            raw = self._values(round_num, client_index)
        elif (round_num, client_index) in self._values:
            raw = self._values[(round_num, client_index)]
        else:
            raw = self._values.get(client_index)
        return coerce_value(raw)


class CsvValueSource(ValueSource):
    """Per-client NMSE weights from a CSV file.

    Row ``round_num - 1`` holds the round's weights, one column per client
    named after ``column_template``. Values are multiplied by ``scale`` and
    truncated to int, since the contract stores integers.
    """

    def __init__(
        self,
        path: str,
        column_template: str = 'Client {index} NMSE',
        scale: float = 1000.0,
        logger: Optional[logging.Logger] = None
    ):
        self.path = path
        self.column_template = column_template
        self.scale = scale
        self.logger = logger or logging.getLogger("fedledger.values")
        self._frame: Optional[pd.DataFrame] = None
        self._cache: Dict[Tuple[int, int], Optional[int]] = {}

    @property
    def frame(self) -> pd.DataFrame:
        if self._frame is None:
            self._frame = pd.read_csv(self.path)
            self.logger.info(f"Loaded {len(self._frame)} weight rows from {self.path}")
        return self._frame

    def value_for(self, round_num: int, client_index: int) -> Optional[int]:
        key = (round_num, client_index)
        if key not in self._cache:
            self._cache[key] = self._lookup(round_num, client_index)
        return self._cache[key]

    def _lookup(self, round_num: int, client_index: int) -> Optional[int]:
        column = self.column_template.format(index=client_index)
        row = round_num - 1
        if column not in self.frame.columns or not 0 <= row < len(self.frame):
            return None

        value = coerce_value(self.frame[column].iloc[row])
        if value is None:
            return None
        return int(value * self.scale)
