"""
Time-series store: an append-only, timestamp-ordered log per metric.
"""

from typing import Any, Dict, List, Optional

from ..models.core import MetricPoint
from ..utils.config import StoreConfig
from ..utils.kv_substrate import KeyValueSubstrate, create_substrate
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

NEWEST_FIRST = 'newest_first'
OLDEST_FIRST = 'oldest_first'

# Sort keys are zero-padded so lexical order equals numeric order
TIMESTAMP_WIDTH = 12


def _sort_key(timestamp: int) -> str:
    if timestamp < 0:
        raise ValueError(f'Negative timestamp not supported: {timestamp}')
    return str(timestamp).zfill(TIMESTAMP_WIDTH)


class TimeSeriesStore:
    """Per-metric ordered log of (timestamp, value, attributes)."""

    def __init__(self, config: StoreConfig, substrate: Optional[KeyValueSubstrate] = None):
        """
        Initialize the time-series store.

        Args:
            config: StoreConfig naming the backing table
            substrate: Explicit substrate, built from config if None
        """
        self.config = config
        self.substrate = substrate or create_substrate(config, config.timeseries_table)

    def append(self, metric_id: str, timestamp: int, value: float, attributes: Optional[Dict[str, Any]] = None) -> None:
        """
        Append a point, overwriting any point already stored at the same timestamp.

        Args:
            metric_id: Composite metric key
            timestamp: Unix seconds
            value: Numeric value
            attributes: Free-form attributes
        """
        item = {'metric_id': metric_id, 'timestamp': int(timestamp), 'value': float(value), 'attributes': attributes or {}}
        self.substrate.put(metric_id, _sort_key(int(timestamp)), item)
        logger.debug(f'Appended point {metric_id}@{timestamp}')

    def query(self, metric_id: str, limit: int, order: str = NEWEST_FIRST) -> List[MetricPoint]:
        """
        Return the most recent or the oldest ``limit`` points of a metric.

        Args:
            metric_id: Composite metric key
            limit: Maximum number of points
            order: newest_first or oldest_first

        Returns:
            List of MetricPoint in the requested order
        """
        if order not in (NEWEST_FIRST, OLDEST_FIRST):
            raise ValueError(f'Unknown order: {order}')
        if limit <= 0:
            return []

        items = self.substrate.query(metric_id, limit=limit, descending=(order == NEWEST_FIRST))
        return [
            MetricPoint(metric_id=item['metric_id'],
                        timestamp=int(item['timestamp']),
                        value=float(item['value']),
                        attributes=item.get('attributes') or {}) for item in items
        ]
