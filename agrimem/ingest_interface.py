"""
Ingestion entry point for scheduled refreshes and new raw-record batches.

Accepted events:
    {"operation": "process_daily_data"}
    {"sourceKind": "crop", "recordsLocation": "s3://bucket/crops/2024.json"}
    S3 object-created notifications ({"Records": [{"s3": {...}}]})
"""
import json
import sys
from typing import Any, Dict, Optional

from agrimem.models.core import SKIPPED, BatchReport, RecordOutcome
from agrimem.services.ingestion_pipeline import IngestionPipeline
from agrimem.utils.logging_config import get_logger
from agrimem.utils.record_loader import source_kind_for_key

logger = get_logger(__name__)

DAILY_REFRESH = 'process_daily_data'

_pipeline: Optional[IngestionPipeline] = None


def get_pipeline() -> IngestionPipeline:
    """Return the process-wide pipeline, created on first use."""
    global _pipeline
    if _pipeline is None:
        _pipeline = IngestionPipeline()
    return _pipeline


def handle_event(event: Dict[str, Any], pipeline: Optional[IngestionPipeline] = None) -> Dict[str, Any]:
    """
    Route an ingestion trigger to the pipeline.

    Args:
        event: Trigger payload
        pipeline: Pipeline to use, the process-wide one if None

    Returns:
        Batch report dict, or a structured error for unrecognized events
    """
    pipeline = pipeline or get_pipeline()

    if not isinstance(event, dict):
        return {'status': 'error', 'errorKind': 'InvalidEvent', 'message': 'Event must be an object'}

    if event.get('operation') == DAILY_REFRESH:
        logger.info('Running scheduled daily refresh')
        return pipeline.run_daily_refresh().to_dict()

    if event.get('sourceKind') and event.get('recordsLocation'):
        return pipeline.process_location(event['sourceKind'], event['recordsLocation']).to_dict()

    if isinstance(event.get('Records'), list):
        report = BatchReport()
        for notification in event['Records']:
            s3 = notification.get('s3', {}) if isinstance(notification, dict) else {}
            bucket = s3.get('bucket', {}).get('name')
            key = s3.get('object', {}).get('key')
            if not bucket or not key:
                logger.warning(f'Ignoring malformed S3 notification: {notification}')
                continue

            source_kind = source_kind_for_key(key)
            if source_kind is None:
                logger.warning(f'Cannot infer source kind for s3://{bucket}/{key}, skipping')
                report.outcomes.append(
                    RecordOutcome(index=len(report.outcomes),
                                  status=SKIPPED,
                                  record_id=f's3://{bucket}/{key}',
                                  error_kind='UnsupportedSourceKind',
                                  message='Object key is not under a known source folder'))
                continue

            report.merge(pipeline.process_location(source_kind, f's3://{bucket}/{key}'))
        return report.to_dict()

    logger.warning(f'Unrecognized ingestion event: {event}')
    return {'status': 'error', 'errorKind': 'InvalidEvent', 'message': 'Unrecognized ingestion event'}


def lambda_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """AWS Lambda entry point."""
    return handle_event(event)


if __name__ == '__main__':
    if len(sys.argv) != 2:
        print('Usage: python -m agrimem.ingest_interface <event.json>')
        sys.exit(2)
    with open(sys.argv[1], encoding='utf-8') as f:
        print(json.dumps(handle_event(json.load(f)), indent=2))
