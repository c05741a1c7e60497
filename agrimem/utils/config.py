"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    connect_timeout: float
    read_timeout: float


@dataclass
class StoreConfig:
    """Configuration for the key-value substrate backing the three stores."""
    backend: str  # memory or dynamodb
    region: str
    endpoint_url: Optional[str]
    timeseries_table: str
    graph_table: str
    embedding_table: str


@dataclass
class FeedConfig:
    """Configuration for upstream weather and market feeds."""
    weather_url: str
    market_url: str
    api_key: str
    timeout: float
    retry_attempts: int
    retry_delay: float


@dataclass
class IngestionConfig:
    """Configuration for the ingestion pipeline."""
    max_workers: int
    embed_retry_attempts: int
    embed_retry_delay: float


@dataclass
class RetrievalConfig:
    """Configuration for retrieval tool ranking and analysis."""
    default_forecast_days: int
    recommendation_weather_days: int
    drought_rainfall_threshold_mm: float
    drought_penalty: float
    high_water_penalty: float
    pest_penalty: float
    soil_exact_bonus: float
    soil_fallback_bonus: float
    market_window: int
    moving_average_window: int
    trend_stable_band_pct: float
    vector_weight: float
    keyword_weight: float
    structured_boost: float


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_embed: BedrockEmbedConfig
    store: StoreConfig
    feeds: FeedConfig
    ingestion: IngestionConfig
    retrieval: RetrievalConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              connect_timeout=float(os.getenv('BEDROCK_EMBED_CONNECT_TIMEOUT', '5')),
                                              read_timeout=float(os.getenv('BEDROCK_EMBED_READ_TIMEOUT', '30')))

    # Key-value substrate configuration
    store_config = StoreConfig(backend=os.getenv('STORE_BACKEND', 'memory'),
                               region=os.getenv('STORE_AWS_REGION', 'us-east-1'),
                               endpoint_url=os.getenv('STORE_ENDPOINT_URL') or None,
                               timeseries_table=os.getenv('TIMESERIES_TABLE', 'agrimem_timeseries'),
                               graph_table=os.getenv('GRAPH_TABLE', 'agrimem_graph'),
                               embedding_table=os.getenv('EMBEDDING_TABLE', 'agrimem_embeddings'))

    # Upstream feed configuration
    feed_config = FeedConfig(weather_url=os.getenv('WEATHER_FEED_URL', ''),
                             market_url=os.getenv('MARKET_FEED_URL', ''),
                             api_key=os.getenv('FEED_API_KEY', ''),
                             timeout=float(os.getenv('FEED_TIMEOUT', '30')),
                             retry_attempts=int(os.getenv('FEED_RETRY_ATTEMPTS', '3')),
                             retry_delay=float(os.getenv('FEED_RETRY_DELAY', '1.0')))

    # Ingestion configuration
    ingestion_config = IngestionConfig(max_workers=int(os.getenv('INGESTION_MAX_WORKERS', '8')),
                                       embed_retry_attempts=int(os.getenv('EMBED_RETRY_ATTEMPTS', '3')),
                                       embed_retry_delay=float(os.getenv('EMBED_RETRY_DELAY', '1.0')))

    # Retrieval configuration
    retrieval_config = RetrievalConfig(
        default_forecast_days=int(os.getenv('FORECAST_DEFAULT_DAYS', '7')),
        recommendation_weather_days=int(os.getenv('RECOMMENDATION_WEATHER_DAYS', '5')),
        drought_rainfall_threshold_mm=float(os.getenv('DROUGHT_RAINFALL_THRESHOLD_MM', '2.0')),
        drought_penalty=float(os.getenv('DROUGHT_PENALTY', '0.4')),
        high_water_penalty=float(os.getenv('HIGH_WATER_PENALTY', '0.2')),
        pest_penalty=float(os.getenv('PEST_PENALTY', '0.05')),
        soil_exact_bonus=float(os.getenv('SOIL_EXACT_BONUS', '0.3')),
        soil_fallback_bonus=float(os.getenv('SOIL_FALLBACK_BONUS', '0.1')),
        market_window=int(os.getenv('MARKET_WINDOW', '30')),
        moving_average_window=int(os.getenv('MOVING_AVERAGE_WINDOW', '7')),
        trend_stable_band_pct=float(os.getenv('TREND_STABLE_BAND_PCT', '1.0')),
        vector_weight=float(os.getenv('SEARCH_VECTOR_WEIGHT', '0.5')),
        keyword_weight=float(os.getenv('SEARCH_KEYWORD_WEIGHT', '0.5')),
        structured_boost=float(os.getenv('SEARCH_STRUCTURED_BOOST', '2.0')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_embed=bedrock_embed_config,
                     store=store_config,
                     feeds=feed_config,
                     ingestion=ingestion_config,
                     retrieval=retrieval_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
