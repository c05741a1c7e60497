"""
Retrieval Tool Layer: forecast, crop recommendation, market price trend and
scheme search over the knowledge store.

Handlers are stateless: every call reads the stores and returns a
JSON-serializable dict. "Nothing found" outcomes that callers must tell apart
from failures are raised as NoDataForLocationError / InsufficientDataError.
"""

import textwrap
from typing import Any, Dict, List, Optional

from ..stores.embedding_index import EmbeddingIndex, is_wildcard
from ..stores.graph_store import GraphStore
from ..stores.timeseries_store import NEWEST_FIRST, OLDEST_FIRST, TimeSeriesStore
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import RetrievalConfig, config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import to_date_str
from .normalizer import WILDCARD, market_metric_id, normalize_crop_name, normalize_identifier, weather_metric_id

logger = get_logger(__name__)

UNIVERSAL_SOIL = 'medium'
SUMMARY_WIDTH = 160


class NoDataForLocationError(Exception):
    """No weather data stored for the requested location."""
    error_kind = 'NoDataForLocation'


class InsufficientDataError(Exception):
    """Too few points stored to compute the requested analysis."""
    error_kind = 'InsufficientData'


def _season_matches(declared: Any, wanted: str) -> bool:
    # Crops without a declared season never match
    if not declared:
        return False
    seasons = declared if isinstance(declared, (list, tuple)) else [declared]
    return any(normalize_identifier(s) == wanted for s in seasons)


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class RetrievalTools:
    """The four query handlers exposed to the conversational agent."""

    def __init__(self,
                 timeseries: Optional[TimeSeriesStore] = None,
                 graph: Optional[GraphStore] = None,
                 index: Optional[EmbeddingIndex] = None,
                 retrieval_config: Optional[RetrievalConfig] = None):
        """
        Initialize the retrieval tools, building any store not given from the global config.

        Args:
            timeseries: Time-series store
            graph: Relationship graph store
            index: Embedding index
            retrieval_config: Ranking and analysis settings
        """
        self.config = retrieval_config or config.retrieval
        self.timeseries = timeseries or TimeSeriesStore(config.store)
        self.graph = graph or GraphStore(config.store)
        if index is None:
            embedder = BedrockEmbed(config.bedrock_embed)
            index = EmbeddingIndex(config.store, embedder.embed_query, config.bedrock_embed.dimension, retrieval_config=self.config)
        self.index = index

    def forecast(self, district: str, days: Optional[int] = None) -> Dict[str, Any]:
        """
        Day-indexed weather forecast for a district.

        Args:
            district: District name, any casing
            days: Number of days, defaults to the configured window

        Returns:
            Dict with the district and a list of day entries, oldest first

        Raises:
            NoDataForLocationError: If no weather points are stored for the district
        """
        name = normalize_identifier(district)
        days = days or self.config.default_forecast_days

        points = self.timeseries.query(weather_metric_id(name), days, OLDEST_FIRST) if name else []
        if not points:
            raise NoDataForLocationError(f'No forecast available for {district}')

        entries = []
        for day, point in enumerate(points, start=1):
            entry = {'day': day, 'date': to_date_str(point.timestamp), 'temperature': point.value}
            entry.update({k: v for k, v in point.attributes.items() if k != 'temperature'})
            entries.append(entry)

        logger.debug(f'Forecast for {name}: {len(entries)} days')
        return {'status': 'ok', 'district': name, 'days': len(entries), 'forecast': entries}

    def recommend_crops(self, district: str, season: str, soil_type: str = UNIVERSAL_SOIL, top_k: int = 5) -> Dict[str, Any]:
        """
        Rank the crops suited to a district for a season, adjusted for weather risk and soil.

        Args:
            district: District name
            season: Growing season (kharif, rabi, zaid, ...)
            soil_type: Farmer's soil type; ``medium`` is the universal fallback
            top_k: Maximum number of crops returned

        Returns:
            Dict with ranked recommendations, or status ``no_match`` when no crop fits
        """
        name = normalize_identifier(district)
        wanted_season = normalize_identifier(season)
        soil = normalize_identifier(soil_type) or UNIVERSAL_SOIL
        cfg = self.config

        weather = self._weather_outlook(name)

        edges = self.graph.query(f'location:{name}', 'suitable_for')
        candidates = [edge for edge in edges if _season_matches(edge.properties.get('season'), wanted_season)]
        if not candidates:
            logger.debug(f'No {wanted_season} crops suited to {name} ({len(edges)} suitable overall)')
            return {
                'status': 'no_match',
                'district': name,
                'season': wanted_season,
                'message': f'No crops found for {district} in the {season} season',
                'recommendations': []
            }

        recommendations = []
        for edge in candidates:
            props = edge.properties
            score = 1.0
            reasons = []

            soil_types = [normalize_identifier(s) for s in props.get('soil_types', [])]
            if soil in soil_types:
                score += cfg.soil_exact_bonus
                reasons.append(f'suited to {soil} soil')
            elif UNIVERSAL_SOIL in soil_types:
                score += cfg.soil_fallback_bonus
                reasons.append('tolerates medium soil')

            if weather['drought_risk']:
                if props.get('drought_sensitive'):
                    score -= cfg.drought_penalty
                    reasons.append('drought sensitive while recent rainfall is low')
                elif props.get('water_requirement') == 'high':
                    score -= cfg.high_water_penalty
                    reasons.append('high water requirement while recent rainfall is low')

            pests = [pest.properties.get('name') or pest.target_node_id.split(':', 1)[-1]
                     for pest in self.graph.query(edge.target_node_id, 'susceptible_to')]
            score -= cfg.pest_penalty * len(pests)

            crop_id = edge.target_node_id.split(':', 1)[-1]
            recommendations.append({
                'crop_id': crop_id,
                'name': props.get('name', crop_id),
                'score': round(score, 3),
                'reasons': reasons,
                'pests': pests
            })

        recommendations.sort(key=lambda r: (-r['score'], r['crop_id']))
        return {
            'status': 'ok',
            'district': name,
            'season': wanted_season,
            'soil_type': soil,
            'weather': weather,
            'recommendations': recommendations[:top_k]
        }

    def _weather_outlook(self, district: str) -> Dict[str, Any]:
        # Risk follows the most recent days; stored history only grows
        points = self.timeseries.query(weather_metric_id(district), self.config.recommendation_weather_days,
                                       NEWEST_FIRST) if district else []
        if not points:
            return {'available': False, 'avg_rainfall_mm': None, 'drought_risk': False}

        points.reverse()
        rainfall = _mean([p.attributes['rainfall_mm'] for p in points if p.attributes.get('rainfall_mm') is not None])
        return {
            'available': True,
            'from_date': to_date_str(points[0].timestamp),
            'to_date': to_date_str(points[-1].timestamp),
            'avg_rainfall_mm': None if rainfall is None else round(rainfall, 2),
            'drought_risk': rainfall is not None and rainfall < self.config.drought_rainfall_threshold_mm
        }

    def market_price_trend(self, crop: str, market_area: str = WILDCARD) -> Dict[str, Any]:
        """
        Price trend and moving average over the most recent window of a crop's prices.

        Args:
            crop: Crop name; aliases such as ``gehun`` resolve to ``wheat``
            market_area: Market area, ``all`` for the aggregated series

        Returns:
            Dict with trend direction, percentage change and moving average

        Raises:
            InsufficientDataError: If fewer than two price points are stored
        """
        crop_name = normalize_crop_name(crop)
        metric_id = market_metric_id(crop_name, market_area)

        points = self.timeseries.query(metric_id, self.config.market_window, NEWEST_FIRST)
        if len(points) < 2:
            raise InsufficientDataError(f'Not enough price data for {crop_name} ({len(points)} points)')

        latest, oldest = points[0], points[-1]
        change = latest.value - oldest.value
        change_pct = change * 100 / oldest.value if oldest.value else None

        band = self.config.trend_stable_band_pct
        if change_pct is None:
            trend = 'up' if change > 0 else 'down' if change < 0 else 'stable'
        else:
            trend = 'up' if change_pct > band else 'down' if change_pct < -band else 'stable'

        window = points[:self.config.moving_average_window]
        values = [p.value for p in points]
        return {
            'status': 'ok',
            'crop': crop_name,
            'market_area': normalize_identifier(market_area) or WILDCARD,
            'points': len(points),
            'latest_price': latest.value,
            'latest_date': to_date_str(latest.timestamp),
            'oldest_price': oldest.value,
            'oldest_date': to_date_str(oldest.timestamp),
            'change': round(change, 2),
            'change_pct': None if change_pct is None else round(change_pct, 2),
            'trend': trend,
            'moving_average': round(_mean([p.value for p in window]), 2),
            'moving_average_window': len(window),
            'min_price': min(values),
            'max_price': max(values),
            'unit': latest.attributes.get('unit', 'INR/quintal')
        }

    def search_schemes(self,
                       query: str = '',
                       farmer_type: str = WILDCARD,
                       crop_type: str = WILDCARD,
                       state: str = WILDCARD,
                       top_k: int = 5) -> Dict[str, Any]:
        """
        Find government schemes for a farmer profile.

        Args:
            query: Free-text description of what the farmer needs
            farmer_type: e.g. small, marginal, tenant; ``all`` to not filter
            crop_type: Crop name; ``all`` to not filter
            state: State name; ``all`` to not filter
            top_k: Maximum number of schemes returned

        Returns:
            Dict with formatted scheme matches, or status ``no_match``
        """
        filters = {
            'kind': 'scheme',
            'farmer_type': WILDCARD if is_wildcard(farmer_type) else normalize_identifier(farmer_type),
            'crop_type': WILDCARD if is_wildcard(crop_type) else normalize_crop_name(crop_type),
            'state': WILDCARD if is_wildcard(state) else normalize_identifier(state)
        }

        text = (query or '').strip()
        if not text:
            parts = ['government schemes']
            if filters['farmer_type'] != WILDCARD:
                parts.append(f"for {filters['farmer_type']} farmers")
            if filters['crop_type'] != WILDCARD:
                parts.append(f"growing {filters['crop_type']}")
            if filters['state'] != WILDCARD:
                parts.append(f"in {filters['state']}")
            text = ' '.join(parts)

        results = self.index.search(text, filters, top_k)
        schemes = [self._format_scheme(result) for result in results]

        if not schemes:
            return {'status': 'no_match', 'filters': filters, 'message': 'No matching schemes found', 'schemes': []}
        return {'status': 'ok', 'filters': filters, 'schemes': schemes}

    @staticmethod
    def _format_scheme(result: Dict[str, Any]) -> Dict[str, Any]:
        meta = result['entry'].metadata
        name = meta.get('name', result['id'])

        summary = name
        if meta.get('benefits'):
            summary += f": {textwrap.shorten(meta['benefits'], SUMMARY_WIDTH, placeholder='...')}"
        if meta.get('eligibility'):
            summary += f" Eligibility: {textwrap.shorten(meta['eligibility'], SUMMARY_WIDTH, placeholder='...')}"

        scheme = {
            'scheme_id': meta.get('scheme_id', result['id']),
            'name': name,
            'state': meta.get('state', WILDCARD),
            'summary': summary,
            'score': round(result['score'], 4)
        }
        for optional in ('how_to_apply', 'url'):
            if meta.get(optional):
                scheme[optional] = meta[optional]
        return scheme
