"""Tests for the key-value substrate and the three stores built on it."""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from agrimem.stores.timeseries_store import NEWEST_FIRST, OLDEST_FIRST
from agrimem.utils.kv_substrate import DynamoDBSubstrate, InMemorySubstrate, SubstrateError, create_substrate


class TestInMemorySubstrate:
    """Test the in-process substrate."""

    def test_query_is_ordered_by_sort_key(self):
        substrate = InMemorySubstrate()
        for key in ('b', 'c', 'a'):
            substrate.put('p', key, {'k': key})

        assert [i['k'] for i in substrate.query('p')] == ['a', 'b', 'c']
        assert [i['k'] for i in substrate.query('p', descending=True, limit=2)] == ['c', 'b']

    def test_prefix_query(self):
        substrate = InMemorySubstrate()
        substrate.put('p', 'x#1', {'v': 1})
        substrate.put('p', 'y#1', {'v': 2})

        assert substrate.query('p', prefix='x#') == [{'v': 1}]

    def test_items_are_copied(self):
        """Mutating a returned item must not change the stored one."""
        substrate = InMemorySubstrate()
        substrate.put('p', 'k', {'nested': {'a': 1}})

        item = substrate.get('p', 'k')
        item['nested']['a'] = 2
        assert substrate.get('p', 'k') == {'nested': {'a': 1}}

    def test_same_table_name_shares_substrate(self, store_config):
        assert create_substrate(store_config, 'shared_x') is create_substrate(store_config, 'shared_x')

    def test_unknown_backend(self, store_config):
        store_config.backend = 'cassandra'
        with pytest.raises(SubstrateError):
            create_substrate(store_config, 'any')


class TestDynamoDBSubstrate:
    """Test the DynamoDB backend against a mocked boto3 client."""

    @pytest.fixture
    def client(self):
        with patch('agrimem.utils.kv_substrate.boto3.client') as factory:
            client = MagicMock()
            factory.return_value = client
            yield client

    def test_put_serializes_floats_as_numbers(self, client, store_config):
        substrate = DynamoDBSubstrate('table', store_config)
        substrate.put('weather:combined:pune', '000000000001', {'value': 27.5, 'attributes': {'rainfall_mm': 4.0}})

        item = client.put_item.call_args.kwargs['Item']
        assert item['pk'] == {'S': 'weather:combined:pune'}
        assert item['value'] == {'N': '27.5'}
        assert item['attributes'] == {'M': {'rainfall_mm': {'N': '4.0'}}}

    def test_query_follows_pagination_and_decodes(self, client, store_config):
        client.query.side_effect = [
            {'Items': [{'pk': {'S': 'p'}, 'sk': {'S': '1'}, 'value': {'N': '1.5'}}], 'LastEvaluatedKey': {'sk': {'S': '1'}}},
            {'Items': [{'pk': {'S': 'p'}, 'sk': {'S': '2'}, 'value': {'N': '2'}}]},
        ]
        substrate = DynamoDBSubstrate('table', store_config)

        items = substrate.query('p', descending=True)

        assert items == [{'value': 1.5}, {'value': 2}]
        first_request = client.query.call_args_list[0].kwargs
        assert first_request['ScanIndexForward'] is False
        assert client.query.call_args_list[1].kwargs['ExclusiveStartKey'] == {'sk': {'S': '1'}}

    def test_prefix_uses_begins_with(self, client, store_config):
        client.query.return_value = {'Items': []}
        DynamoDBSubstrate('table', store_config).query('p', prefix='abc', limit=5)

        request = client.query.call_args.kwargs
        assert 'begins_with(#sk, :prefix)' in request['KeyConditionExpression']
        assert request['Limit'] == 5

    def test_client_error_becomes_substrate_error(self, client, store_config):
        client.get_item.side_effect = ClientError({'Error': {'Code': 'ProvisionedThroughputExceededException'}}, 'GetItem')

        with pytest.raises(SubstrateError):
            DynamoDBSubstrate('table', store_config).get('p', 'k')


class TestTimeSeriesStore:
    """Test append/query semantics of the time-series store."""

    def test_query_orders(self, timeseries):
        for ts, value in ((300, 3.0), (100, 1.0), (200, 2.0)):
            timeseries.append('m', ts, value)

        assert [p.value for p in timeseries.query('m', 10, OLDEST_FIRST)] == [1.0, 2.0, 3.0]
        assert [p.value for p in timeseries.query('m', 2, NEWEST_FIRST)] == [3.0, 2.0]
        assert [p.value for p in timeseries.query('m', 2, OLDEST_FIRST)] == [1.0, 2.0]

    def test_same_timestamp_last_write_wins(self, timeseries):
        timeseries.append('m', 100, 1.0, {'v': 'first'})
        timeseries.append('m', 100, 5.0, {'v': 'second'})

        points = timeseries.query('m', 10, NEWEST_FIRST)
        assert len(points) == 1
        assert points[0].value == 5.0
        assert points[0].attributes == {'v': 'second'}

    def test_numeric_not_lexical_ordering(self, timeseries):
        """Timestamps of different digit counts still sort numerically."""
        timeseries.append('m', 99, 1.0)
        timeseries.append('m', 1000, 2.0)

        assert [p.timestamp for p in timeseries.query('m', 10, OLDEST_FIRST)] == [99, 1000]

    def test_unknown_metric_is_empty(self, timeseries):
        assert timeseries.query('missing', 5, NEWEST_FIRST) == []

    def test_invalid_order(self, timeseries):
        with pytest.raises(ValueError):
            timeseries.query('m', 5, 'sideways')


class TestGraphStore:
    """Test edge upsert and one-hop queries."""

    def test_triple_is_unique_and_properties_overwritten(self, graph):
        graph.upsert('location:pune', 'suitable_for', 'crop:wheat', {'season': ['rabi']})
        graph.upsert('location:pune', 'suitable_for', 'crop:wheat', {'season': ['zaid']})

        edges = graph.query('location:pune', 'suitable_for')
        assert len(edges) == 1
        assert edges[0].properties == {'season': ['zaid']}

    def test_query_is_scoped_to_relationship(self, graph):
        graph.upsert('crop:rice', 'susceptible_to', 'pest:stem borer')
        graph.upsert('crop:rice', 'affected_by', 'disease:blast')

        assert [e.target_node_id for e in graph.query('crop:rice', 'susceptible_to')] == ['pest:stem borer']

    def test_targets_are_ordered(self, graph):
        for crop in ('crop:rice', 'crop:bajra', 'crop:onion'):
            graph.upsert('location:pune', 'suitable_for', crop)

        assert [e.target_node_id for e in graph.query('location:pune', 'suitable_for')] == [
            'crop:bajra', 'crop:onion', 'crop:rice'
        ]


class TestEmbeddingIndex:
    """Test embedding upsert and hybrid search."""

    def _add(self, index, embedder, entry_id, text, metadata, last_updated=None):
        return index.upsert(entry_id, text, embedder(text), metadata, last_updated)

    def test_rejects_wrong_dimension(self, index):
        with pytest.raises(ValueError):
            index.upsert('x', 'text', [1.0, 2.0])

    def test_upsert_replaces_entry(self, index, embedder):
        self._add(index, embedder, 'x', 'old text', {'kind': 'scheme'})
        self._add(index, embedder, 'x', 'new text', {'kind': 'scheme'})

        assert index.get('x').text == 'new text'
        assert len(index.search('text', {}, 10)) == 1

    def test_filter_excludes_conflicting_state(self, index, embedder):
        self._add(index, embedder, 'mh', 'irrigation subsidy', {'state': 'maharashtra'})
        self._add(index, embedder, 'gj', 'irrigation subsidy', {'state': 'gujarat'})

        ids = [r['id'] for r in index.search('irrigation', {'state': 'gujarat'}, 10)]
        assert ids == ['gj']

    def test_wildcard_filter_is_ignored(self, index, embedder):
        self._add(index, embedder, 'mh', 'irrigation subsidy', {'state': 'maharashtra'})
        self._add(index, embedder, 'gj', 'irrigation subsidy', {'state': 'gujarat'})

        assert len(index.search('irrigation', {'state': 'all'}, 10)) == 2

    def test_explicit_match_ranks_ahead_of_wildcard_entry(self, index, embedder):
        """A concrete state match beats a national entry with better text similarity."""
        self._add(index, embedder, 'national', 'crop insurance for farmers', {'state': 'all'})
        self._add(index, embedder, 'state', 'pump subsidy', {'state': 'gujarat'})

        results = index.search('crop insurance for farmers', {'state': 'Gujarat'}, 10)
        assert [r['id'] for r in results] == ['state', 'national']

    def test_partial_list_match(self, index, embedder):
        self._add(index, embedder, 's', 'support', {'farmer_type': ['small and marginal', 'tenant']})

        assert [r['id'] for r in index.search('support', {'farmer_type': 'small'}, 10)] == ['s']
        assert index.search('support', {'farmer_type': 'large'}, 10) == []

    def test_crop_names_match_whole(self, index, embedder):
        """'gram' (chickpea) must not match 'green gram' (moong)."""
        self._add(index, embedder, 'moong', 'pulse mission', {'crop_type': ['green gram']})
        self._add(index, embedder, 'chana', 'pulse mission', {'crop_type': ['gram']})

        assert [r['id'] for r in index.search('pulse', {'crop_type': 'gram'}, 10)] == ['chana']
        assert [r['id'] for r in index.search('pulse', {'crop_type': 'green gram'}, 10)] == ['moong']

    def test_state_names_match_whole(self, index, embedder):
        self._add(index, embedder, 'wb', 'subsidy', {'state': 'west bengal'})

        assert index.search('subsidy', {'state': 'bengal'}, 10) == []

    def test_kind_filter_reads_only_that_kind(self, index, embedder):
        self._add(index, embedder, 'scheme:1', 'drip subsidy', {'kind': 'scheme'})
        self._add(index, embedder, 'crop:1', 'drip irrigated wheat', {'kind': 'crop'})
        index.substrate.query = MagicMock(wraps=index.substrate.query)

        results = index.search('drip', {'kind': 'scheme'}, 10)

        assert [r['id'] for r in results] == ['scheme:1']
        index.substrate.query.assert_called_once_with('entries', prefix='scheme:')

    def test_ties_broken_by_most_recent_update(self, index, embedder):
        self._add(index, embedder, 'older', 'same text', {}, '2024-01-01T00:00:00+00:00')
        self._add(index, embedder, 'newer', 'same text', {}, '2024-06-01T00:00:00+00:00')

        assert [r['id'] for r in index.search('same text', {}, 10)] == ['newer', 'older']

    def test_top_k_limits_results(self, index, embedder):
        for i in range(5):
            self._add(index, embedder, f'e{i}', f'entry {i}', {})

        assert len(index.search('entry', {}, 3)) == 3

    def test_stored_values_survive_decimal_round_trip(self):
        """DynamoDB numbers come back as Decimal and are converted to floats."""
        from agrimem.utils.json_utils import from_dynamo, to_dynamo

        stored = to_dynamo({'vector': [0.1, 2.0], 'flag': True})
        assert stored['vector'][0] == Decimal('0.1')
        assert from_dynamo(stored) == {'vector': [0.1, 2], 'flag': True}
