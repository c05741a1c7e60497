"""
Upstream feed client pulling fresh weather and market snapshots over HTTP.
"""

from typing import Any, Dict, List, Optional

import requests

from .config import FeedConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class UpstreamFeedFailure(Exception):
    """Raised when an upstream feed cannot be fetched. Retryable."""
    error_kind = 'UpstreamFeedFailure'


class UpstreamFeedClient:
    """Fetches raw records for a source kind from its configured feed URL.

    Feeds answer with either a JSON list of records or an envelope with a
    ``records`` list, the format used by the data.gov.in open data APIs.
    """

    def __init__(self, config: FeedConfig, session: Optional[requests.Session] = None):
        """
        Initialize the feed client.

        Args:
            config: FeedConfig instance with feed URLs and timeouts
            session: Optional requests session, created if None
        """
        self.config = config
        self.session = session or requests.Session()
        self.urls: Dict[str, str] = {'weather': config.weather_url, 'market': config.market_url}

    def feeds(self) -> List[str]:
        """Source kinds that have a feed URL configured."""
        return [kind for kind, url in self.urls.items() if url]

    def fetch(self, source_kind: str) -> List[Dict[str, Any]]:
        """
        Fetch the current snapshot of one feed (single attempt).

        Args:
            source_kind: weather or market

        Returns:
            List of raw records

        Raises:
            UpstreamFeedFailure: On network errors, timeouts, bad status or bad payload
        """
        url = self.urls.get(source_kind)
        if not url:
            raise UpstreamFeedFailure(f'No feed configured for source kind {source_kind!r}')

        params = {'format': 'json'}
        if self.config.api_key:
            params['api-key'] = self.config.api_key

        try:
            response = self.session.get(url, params=params, timeout=self.config.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise UpstreamFeedFailure(f'Fetching {source_kind} feed failed: {e}') from e

        records = payload.get('records') if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            raise UpstreamFeedFailure(f'Unexpected {source_kind} feed payload shape')

        logger.info(f'Fetched {len(records)} {source_kind} records from upstream feed')
        return records
