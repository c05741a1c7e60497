"""Shared pytest fixtures for AgriMem tests."""

import re
import uuid
import zlib

import pytest

from agrimem.services.ingestion_pipeline import IngestionPipeline
from agrimem.services.retrieval_tools import RetrievalTools
from agrimem.services.tool_dispatcher import ToolDispatcher
from agrimem.stores.embedding_index import EmbeddingIndex
from agrimem.stores.graph_store import GraphStore
from agrimem.stores.timeseries_store import TimeSeriesStore
from agrimem.utils.config import IngestionConfig, RetrievalConfig, StoreConfig
from agrimem.utils.kv_substrate import reset_memory_tables

EMBED_DIM = 16


class FakeEmbedder:
    """Deterministic bag-of-words embedding that counts its calls.

    Texts sharing words get similar vectors, so similarity ranking is meaningful.
    """

    def __init__(self, dimension: int = EMBED_DIM):
        self.dimension = dimension
        self.calls = []

    def __call__(self, text: str) -> list:
        self.calls.append(text)
        vector = [0.0] * self.dimension
        for token in re.findall(r'[a-z0-9]+', text.lower()):
            vector[zlib.crc32(token.encode()) % self.dimension] += 1.0
        return vector


@pytest.fixture(autouse=True)
def clean_memory_tables():
    """Drop in-process tables after each test."""
    yield
    reset_memory_tables()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store_config():
    """In-memory store config with table names unique to the test."""
    suffix = uuid.uuid4().hex[:8]
    return StoreConfig(backend='memory',
                       region='us-east-1',
                       endpoint_url=None,
                       timeseries_table=f'ts_{suffix}',
                       graph_table=f'graph_{suffix}',
                       embedding_table=f'emb_{suffix}')


@pytest.fixture
def retrieval_config():
    return RetrievalConfig(default_forecast_days=7,
                           recommendation_weather_days=5,
                           drought_rainfall_threshold_mm=2.0,
                           drought_penalty=0.4,
                           high_water_penalty=0.2,
                           pest_penalty=0.05,
                           soil_exact_bonus=0.3,
                           soil_fallback_bonus=0.1,
                           market_window=30,
                           moving_average_window=7,
                           trend_stable_band_pct=1.0,
                           vector_weight=0.5,
                           keyword_weight=0.5,
                           structured_boost=2.0)


@pytest.fixture
def timeseries(store_config):
    return TimeSeriesStore(store_config)


@pytest.fixture
def graph(store_config):
    return GraphStore(store_config)


@pytest.fixture
def index(store_config, embedder, retrieval_config):
    return EmbeddingIndex(store_config, embedder, EMBED_DIM, retrieval_config=retrieval_config)


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture
def pipeline(timeseries, graph, index, embedder, sleeps):
    return IngestionPipeline(timeseries=timeseries,
                             graph=graph,
                             index=index,
                             embed_fn=embedder,
                             ingestion_config=IngestionConfig(max_workers=4, embed_retry_attempts=3, embed_retry_delay=0.01),
                             sleep=sleeps.append)


@pytest.fixture
def tools(timeseries, graph, index, retrieval_config):
    return RetrievalTools(timeseries=timeseries, graph=graph, index=index, retrieval_config=retrieval_config)


@pytest.fixture
def dispatcher(tools):
    return ToolDispatcher(tools)


@pytest.fixture
def crop_records():
    return [
        {
            'id': 'wheat',
            'name': 'Wheat',
            'seasons': ['Rabi'],
            'soil_types': ['loamy', 'medium'],
            'pests': ['Aphid'],
            'diseases': [{'id': 'rust', 'name': 'Leaf Rust'}],
            'districts': ['Pune'],
            'drought_sensitive': False
        },
        {
            'id': 'rice',
            'name': 'Rice',
            'seasons': ['Kharif'],
            'soil_types': ['clay'],
            'pests': ['Stem Borer', 'Brown Planthopper'],
            'districts': ['Pune'],
            'drought_sensitive': True,
            'water_requirement': 'high'
        },
        {
            'id': 'bajra',
            'name': 'Pearl Millet',
            'seasons': ['kharif'],
            'soil_types': ['sandy', 'medium'],
            'districts': ['Pune'],
            'drought_sensitive': False
        },
    ]


@pytest.fixture
def scheme_records():
    return [
        {
            'scheme_id': 'mh-drip',
            'name': 'Maharashtra Drip Irrigation Subsidy',
            'state': 'Maharashtra',
            'farmer_types': ['small', 'marginal'],
            'crops': ['sugarcane', 'cotton'],
            'eligibility': 'Small and marginal farmers with land records in Maharashtra',
            'benefits': '80 percent subsidy on drip irrigation equipment'
        },
        {
            'scheme_id': 'pm-kisan',
            'name': 'PM-KISAN',
            'farmer_types': ['all'],
            'eligibility': 'All landholding farmer families',
            'benefits': 'Income support of 6000 rupees per year in three instalments'
        },
        {
            'scheme_id': 'gj-solar',
            'name': 'Gujarat Solar Pump Scheme',
            'state': 'Gujarat',
            'farmer_types': 'small',
            'eligibility': 'Farmers with an agricultural electricity connection in Gujarat',
            'benefits': 'Subsidy on solar irrigation pumps'
        },
    ]
