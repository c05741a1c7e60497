"""Tests for the record normalizer.

The normalizer is pure, so every test works on plain dicts without stores.
"""

import pytest

from agrimem.models.core import EMBEDDING, GRAPH, TIMESERIES
from agrimem.services.normalizer import (MalformedRecordError, UnsupportedSourceKindError, entry_id, market_metric_id,
                                         normalize, normalize_crop_name, normalize_identifier, weather_metric_id)


def _payloads(facts, store):
    return [f.payload for f in facts if f.store == store]


class TestIdentifiers:
    """Test free-text identifier normalization."""

    def test_lower_case_and_trim(self):
        assert normalize_identifier('  Pune ') == 'pune'

    def test_collapses_inner_whitespace(self):
        assert normalize_identifier('New   Delhi') == 'new delhi'

    def test_crop_alias_resolution(self):
        assert normalize_crop_name('Gehun') == 'wheat'
        assert normalize_crop_name(' PADDY') == 'rice'
        assert normalize_crop_name('tomato') == 'tomato'

    def test_metric_ids(self):
        assert weather_metric_id(' Pune') == 'weather:combined:pune'
        assert market_metric_id('Gehun') == 'market:price:wheat:all'
        assert market_metric_id('Onion', 'Lasalgaon ') == 'market:price:onion:lasalgaon'

    def test_entry_id_is_deterministic(self):
        """Same identity always maps to the same entry id."""
        assert entry_id('crop', 'wheat') == entry_id('crop', ' Wheat ')
        assert entry_id('crop', 'wheat') != entry_id('scheme', 'wheat')
        assert entry_id('crop', 'wheat').startswith('crop:')


class TestWeatherRecords:
    """Test weather record normalization."""

    def test_single_reading(self):
        facts = normalize('weather', {
            'district': ' Pune ',
            'date': '2024-06-01',
            'temp_max': 32,
            'temp_min': 22,
            'rainfall_mm': '4.5',
            'condition': 'Light rain'
        })

        points = _payloads(facts, TIMESERIES)
        assert len(points) == 1
        point = points[0]
        assert point.metric_id == 'weather:combined:pune'
        assert point.value == 27.0
        assert point.attributes['rainfall_mm'] == 4.5
        assert point.attributes['condition'] == 'Light rain'

    def test_readings_list_yields_one_point_each(self):
        facts = normalize('weather', {
            'district': 'Nashik',
            'readings': [{'date': '2024-06-01', 'temperature': 25}, {'date': '2024-06-02', 'temperature': 26}]
        })

        points = _payloads(facts, TIMESERIES)
        assert [p.value for p in points] == [25.0, 26.0]
        assert points[0].timestamp < points[1].timestamp

    def test_missing_date_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize('weather', {'district': 'Pune', 'temperature': 25})

    def test_missing_temperature_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize('weather', {'district': 'Pune', 'date': '2024-06-01', 'rainfall_mm': 3})


class TestMarketRecords:
    """Test market price normalization."""

    def test_price_point_with_alias(self):
        facts = normalize('market', {'commodity': 'Gehun', 'arrival_date': '01/06/2024', 'modal_price': '2250'})

        point = _payloads(facts, TIMESERIES)[0]
        assert point.metric_id == 'market:price:wheat:all'
        assert point.value == 2250.0
        assert point.attributes['unit'] == 'INR/quintal'

    def test_non_numeric_price_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize('market', {'crop': 'wheat', 'date': '2024-06-01', 'price': 'n/a'})

    @pytest.mark.parametrize('price', ['nan', 'inf', '-Infinity', float('nan')])
    def test_non_finite_price_is_malformed(self, price):
        with pytest.raises(MalformedRecordError):
            normalize('market', {'crop': 'wheat', 'date': '2024-06-01', 'price': price})

    def test_non_finite_rainfall_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize('weather', {'district': 'Pune', 'date': '2024-06-01', 'temperature': 25, 'rainfall_mm': 'NaN'})


class TestCropRecords:
    """Test crop profile normalization."""

    def test_edges_for_seasons_pests_diseases_and_districts(self, crop_records):
        facts = normalize('crop', crop_records[0])

        edges = {(e.source_node_id, e.relationship_type, e.target_node_id) for e in _payloads(facts, GRAPH)}
        assert ('crop:wheat', 'grown_during', 'season:rabi') in edges
        assert ('crop:wheat', 'susceptible_to', 'pest:aphid') in edges
        assert ('crop:wheat', 'affected_by', 'disease:rust') in edges
        assert ('location:pune', 'suitable_for', 'crop:wheat') in edges

    def test_suitability_edge_carries_season(self, crop_records):
        facts = normalize('crop', crop_records[0])

        suitable = [e for e in _payloads(facts, GRAPH) if e.relationship_type == 'suitable_for'][0]
        assert suitable.properties['season'] == ['rabi']
        assert suitable.properties['soil_types'] == ['loamy', 'medium']

    def test_embedding_candidate_id_is_stable(self, crop_records):
        first = _payloads(normalize('crop', crop_records[0]), EMBEDDING)[0]
        second = _payloads(normalize('crop', dict(crop_records[0])), EMBEDDING)[0]
        assert first.id == second.id == entry_id('crop', 'wheat')

    def test_crop_without_id_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize('crop', {'name': 'Mystery crop', 'seasons': ['kharif']})


class TestSchemeRecords:
    """Test scheme document normalization."""

    def test_candidate_text_and_metadata(self, scheme_records):
        facts = normalize('scheme', scheme_records[0])

        candidate = _payloads(facts, EMBEDDING)[0]
        assert 'Maharashtra Drip Irrigation Subsidy' in candidate.text
        assert 'Eligibility:' in candidate.text
        assert candidate.metadata['state'] == 'maharashtra'
        assert candidate.metadata['farmer_type'] == ['small', 'marginal']

    def test_state_scheme_gets_offers_edge(self, scheme_records):
        edges = _payloads(normalize('scheme', scheme_records[0]), GRAPH)
        assert len(edges) == 1
        assert edges[0].source_node_id == 'state:maharashtra'
        assert edges[0].relationship_type == 'offers_scheme'
        assert edges[0].target_node_id == 'scheme:mh-drip'

    def test_national_scheme_has_no_state_edge(self, scheme_records):
        facts = normalize('scheme', scheme_records[1])
        assert _payloads(facts, GRAPH) == []
        assert _payloads(facts, EMBEDDING)[0].metadata['state'] == 'all'

    def test_scheme_without_name_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize('scheme', {'scheme_id': 'x'})


class TestLocationRecords:
    """Test location suitability files."""

    def test_suitable_for_edges(self):
        facts = normalize('location', {
            'district': 'Pune',
            'crops': [{'crop_id': 'jowar', 'season': 'Rabi', 'soil_type': 'black'}, 'onion']
        })

        edges = _payloads(facts, GRAPH)
        assert [e.target_node_id for e in edges] == ['crop:jowar', 'crop:onion']
        assert edges[0].properties['season'] == ['rabi']
        assert 'season' not in edges[1].properties

    def test_location_without_district_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize('location', {'crops': ['onion']})


class TestUnsupported:
    """Test rejection of unknown inputs."""

    def test_unknown_source_kind(self):
        with pytest.raises(UnsupportedSourceKindError):
            normalize('satellite', {'district': 'Pune'})

    def test_non_object_record(self):
        with pytest.raises(MalformedRecordError):
            normalize('weather', ['not', 'a', 'dict'])
