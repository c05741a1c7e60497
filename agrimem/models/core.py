"""
Core data models for the agricultural knowledge store.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

# Source kinds accepted by the normalizer
WEATHER = 'weather'
MARKET = 'market'
CROP = 'crop'
SCHEME = 'scheme'
LOCATION = 'location'
SOURCE_KINDS = (WEATHER, MARKET, CROP, SCHEME, LOCATION)

# Destination stores for normalized facts
TIMESERIES = 'timeseries'
GRAPH = 'graph'
EMBEDDING = 'embedding'

# Per-record outcomes in a batch report
SUCCESS = 'success'
SKIPPED = 'skipped'
FAILED = 'failed'


@dataclass
class MetricPoint:
    """One reading of a metric (weather:combined:<district>, market:price:<crop>:<area>)."""
    metric_id: str
    timestamp: int  # Unix seconds, unique within metric_id
    value: float
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GraphEdge:
    """Directed labeled edge between namespaced nodes (crop:<id>, location:<district>, ...).

    The (source_node_id, relationship_type, target_node_id) triple is unique;
    re-ingesting the same triple overwrites properties only.
    """
    source_node_id: str
    relationship_type: str
    target_node_id: str
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EmbeddingCandidate:
    """Embeddable text produced by the normalizer, before a vector is computed."""
    id: str  # Deterministic function of the source record identity
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EmbeddingEntry:
    """Stored embedding with its source text and searchable metadata."""
    id: str
    text: str
    vector: List[float]
    metadata: Dict[str, Any]
    last_updated: str  # ISO-8601 UTC


@dataclass
class Fact:
    """A normalized fact tagged with the store it belongs to."""
    store: str  # timeseries, graph or embedding
    payload: Union[MetricPoint, GraphEdge, EmbeddingCandidate]


@dataclass
class RecordOutcome:
    """Result of ingesting one raw record."""
    index: int
    status: str  # success, skipped or failed
    record_id: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    facts_written: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'recordId': self.record_id,
            'status': self.status,
            'errorKind': self.error_kind,
            'message': self.message
        }


@dataclass
class BatchReport:
    """Accumulated outcomes of one ingestion batch."""
    outcomes: List[RecordOutcome] = field(default_factory=list)
    feed_failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == SUCCESS)

    @property
    def skipped_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == SKIPPED)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == FAILED) + len(self.feed_failures)

    @property
    def status(self) -> str:
        if not self.failed_count and not self.skipped_count:
            return 'success'
        if not self.processed_count:
            return 'failed'
        return 'partial_failure'

    def merge(self, other: 'BatchReport') -> None:
        """Append another report's outcomes, renumbering record indexes."""
        offset = len(self.outcomes)
        for outcome in other.outcomes:
            outcome.index += offset
            self.outcomes.append(outcome)
        self.feed_failures.extend(other.feed_failures)

    def to_dict(self) -> Dict[str, Any]:
        failures = [o.to_dict() for o in self.outcomes if o.status != SUCCESS]
        return {
            'status': self.status,
            'processedCount': self.processed_count,
            'skippedCount': self.skipped_count,
            'failedCount': self.failed_count,
            'failures': self.feed_failures + failures
        }
