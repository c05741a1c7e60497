"""
Ingestion Pipeline: raw record batches -> normalizer -> time-series, graph and
embedding stores.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from ..models.core import EMBEDDING, FAILED, GRAPH, SKIPPED, SUCCESS, TIMESERIES, BatchReport, EmbeddingCandidate, RecordOutcome
from ..stores.embedding_index import EmbeddingIndex
from ..stores.graph_store import GraphStore
from ..stores.timeseries_store import TimeSeriesStore
from ..utils.bedrock_embed import BedrockEmbed, EmbeddingServiceFailure
from ..utils.config import IngestionConfig, config
from ..utils.feed_client import UpstreamFeedClient, UpstreamFeedFailure
from ..utils.kv_substrate import SubstrateError
from ..utils.logging_config import get_logger
from ..utils.record_loader import RecordLoader, RecordLoadError
from ..utils.retry import call_with_retry
from .normalizer import MalformedRecordError, UnsupportedSourceKindError, normalize, record_identity

logger = get_logger(__name__)

# Failures of a generic embedding function that are worth another attempt
RETRYABLE_EMBED_ERRORS = (EmbeddingServiceFailure, TimeoutError, ConnectionError)


class IngestionPipeline:
    """Idempotent ingestion of raw records into the three stores.

    Every write is an upsert keyed by a deterministic id, so a redelivered batch
    leaves the stores exactly as a single delivery would.
    """

    def __init__(self,
                 timeseries: Optional[TimeSeriesStore] = None,
                 graph: Optional[GraphStore] = None,
                 index: Optional[EmbeddingIndex] = None,
                 embed_fn: Optional[Callable[[str], List[float]]] = None,
                 feed_client: Optional[UpstreamFeedClient] = None,
                 record_loader: Optional[RecordLoader] = None,
                 ingestion_config: Optional[IngestionConfig] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the pipeline, building any collaborator not given from the global config.

        Args:
            timeseries: Time-series store
            graph: Relationship graph store
            index: Embedding index
            embed_fn: External embedding function for document text
            feed_client: Upstream feed client for scheduled refreshes
            record_loader: Loader for raw-record batch notifications
            ingestion_config: Worker and retry settings
            sleep: Sleep function used between retries
        """
        if embed_fn is None or index is None:
            embedder = BedrockEmbed(config.bedrock_embed)
            embed_fn = embed_fn or embedder.embed_document
            index = index or EmbeddingIndex(config.store, embedder.embed_query, config.bedrock_embed.dimension)

        self.timeseries = timeseries or TimeSeriesStore(config.store)
        self.graph = graph or GraphStore(config.store)
        self.index = index
        self.embed_fn = embed_fn
        self.feed_client = feed_client or UpstreamFeedClient(config.feeds)
        self.record_loader = record_loader or RecordLoader()
        self.ingestion_config = ingestion_config or config.ingestion
        self._sleep = sleep

        logger.info('Initialized IngestionPipeline')

    def process_batch(self, source_kind: str, records: List[Dict[str, Any]]) -> BatchReport:
        """
        Normalize and store a batch of raw records of one source kind.

        Records are independent and processed concurrently. A failing record is
        reported and never aborts the rest of the batch.

        Args:
            source_kind: weather, market, crop, scheme or location
            records: Raw records

        Returns:
            BatchReport with one outcome per record
        """
        report = BatchReport()
        if not records:
            logger.debug(f'Empty {source_kind} batch')
            return report

        workers = max(1, min(self.ingestion_config.max_workers, len(records)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='ingest') as executor:
            outcomes = executor.map(lambda pair: self._process_record(pair[0], source_kind, pair[1]), enumerate(records))
            report.outcomes.extend(outcomes)

        logger.info(f'Ingested {source_kind} batch: {report.processed_count} processed, '
                    f'{report.skipped_count} skipped, {report.failed_count} failed')
        return report

    def process_location(self, source_kind: str, location: str) -> BatchReport:
        """
        Load a raw-record batch from S3 or a local path and ingest it.

        Args:
            source_kind: Source kind of every record in the batch
            location: ``s3://bucket/key`` or a local file path

        Returns:
            BatchReport; an unreadable location is reported as a single failure
        """
        try:
            records = self.record_loader.load(location)
        except RecordLoadError as e:
            logger.error(f'Could not load {source_kind} batch from {location}: {e}')
            report = BatchReport()
            report.feed_failures.append({
                'source': location,
                'status': FAILED,
                'errorKind': RecordLoadError.error_kind,
                'message': str(e)
            })
            return report

        return self.process_batch(source_kind, records)

    def run_daily_refresh(self) -> BatchReport:
        """
        Pull fresh snapshots from every configured upstream feed and ingest them.

        Each feed fetch is retried with backoff; a feed that stays unavailable is
        reported as a failure while the other feeds are still ingested. The next
        scheduled run re-fetches it.

        Returns:
            Combined BatchReport of all feeds
        """
        report = BatchReport()
        feeds = self.feed_client.feeds()
        if not feeds:
            logger.warning('No upstream feeds configured for daily refresh')
            return report

        for source_kind in feeds:
            try:
                records = call_with_retry(lambda: self.feed_client.fetch(source_kind),
                                          attempts=self.feed_client.config.retry_attempts,
                                          delay=self.feed_client.config.retry_delay,
                                          retry_on=(UpstreamFeedFailure, ),
                                          description=f'{source_kind} feed fetch',
                                          sleep=self._sleep)
            except UpstreamFeedFailure as e:
                logger.error(f'Upstream {source_kind} feed unavailable after retries: {e}')
                report.feed_failures.append({
                    'source': source_kind,
                    'status': FAILED,
                    'errorKind': UpstreamFeedFailure.error_kind,
                    'message': str(e)
                })
                continue

            report.merge(self.process_batch(source_kind, records))

        return report

    def _process_record(self, index: int, source_kind: str, record: Dict[str, Any]) -> RecordOutcome:
        outcome = RecordOutcome(index=index, status=SUCCESS, record_id=record_identity(source_kind, record))

        try:
            facts = normalize(source_kind, record)

            by_store = {TIMESERIES: [], GRAPH: [], EMBEDDING: []}
            for fact in facts:
                by_store[fact.store].append(fact.payload)

            for point in by_store[TIMESERIES]:
                self.timeseries.append(point.metric_id, point.timestamp, point.value, point.attributes)
            for edge in by_store[GRAPH]:
                self.graph.upsert(edge.source_node_id, edge.relationship_type, edge.target_node_id, edge.properties)
            for candidate in by_store[EMBEDDING]:
                self._upsert_embedding(candidate)

            outcome.facts_written = len(facts)

        except UnsupportedSourceKindError as e:
            logger.warning(f'Skipping record {index}: {e}')
            outcome.status, outcome.error_kind, outcome.message = SKIPPED, e.error_kind, str(e)
        except (MalformedRecordError, EmbeddingServiceFailure, SubstrateError) as e:
            logger.error(f'Failed to ingest {source_kind} record {index} ({outcome.record_id}): {e}')
            outcome.status, outcome.error_kind, outcome.message = FAILED, e.error_kind, str(e)
        except Exception as e:
            logger.error(f'Unexpected error ingesting {source_kind} record {index}: {e}')
            outcome.status, outcome.error_kind, outcome.message = FAILED, 'InternalError', str(e)

        return outcome

    def _upsert_embedding(self, candidate: EmbeddingCandidate) -> None:
        """Upsert an embedding entry, regenerating the vector only when the text changed."""
        existing = self.index.get(candidate.id)
        if existing is not None and existing.text == candidate.text and len(existing.vector) == self.index.dimension:
            if existing.metadata != candidate.metadata:
                self.index.upsert(candidate.id, candidate.text, existing.vector, candidate.metadata, existing.last_updated)
            logger.debug(f'Embedding {candidate.id} unchanged, skipping regeneration')
            return

        try:
            vector = call_with_retry(lambda: self.embed_fn(candidate.text),
                                     attempts=self.ingestion_config.embed_retry_attempts,
                                     delay=self.ingestion_config.embed_retry_delay,
                                     retry_on=RETRYABLE_EMBED_ERRORS,
                                     description=f'Embedding {candidate.id}',
                                     sleep=self._sleep)
        except (TimeoutError, ConnectionError) as e:
            raise EmbeddingServiceFailure(f'Embedding service unavailable: {e}') from e

        if len(vector) != self.index.dimension:
            raise EmbeddingServiceFailure(f'Embedding for {candidate.id} has length {len(vector)}, expected {self.index.dimension}')

        self.index.upsert(candidate.id, candidate.text, vector, candidate.metadata)
