"""
Relationship graph store: directed labeled edges between namespaced nodes.
"""

from typing import Any, Dict, List, Optional

from ..models.core import GraphEdge
from ..utils.config import StoreConfig
from ..utils.kv_substrate import KeyValueSubstrate, create_substrate
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


def _partition(source_node_id: str, relationship_type: str) -> str:
    return f'{source_node_id}|{relationship_type}'


class GraphStore:
    """One-hop adjacency lists keyed by (source node, relationship type).

    Each edge is a single substrate item keyed by its target, so the
    (source, relationship, target) triple is unique by construction.
    """

    def __init__(self, config: StoreConfig, substrate: Optional[KeyValueSubstrate] = None):
        """
        Initialize the graph store.

        Args:
            config: StoreConfig naming the backing table
            substrate: Explicit substrate, built from config if None
        """
        self.config = config
        self.substrate = substrate or create_substrate(config, config.graph_table)

    def upsert(self,
               source_node_id: str,
               relationship_type: str,
               target_node_id: str,
               properties: Optional[Dict[str, Any]] = None) -> None:
        """
        Create an edge or overwrite the properties of an existing one.

        Args:
            source_node_id: Namespaced source node (e.g. location:pune)
            relationship_type: Edge label (e.g. suitable_for)
            target_node_id: Namespaced target node (e.g. crop:wheat)
            properties: Edge properties
        """
        item = {
            'source_node_id': source_node_id,
            'relationship_type': relationship_type,
            'target_node_id': target_node_id,
            'properties': properties or {}
        }
        self.substrate.put(_partition(source_node_id, relationship_type), target_node_id, item)
        logger.debug(f'Upserted edge {source_node_id} -[{relationship_type}]-> {target_node_id}')

    def query(self, source_node_id: str, relationship_type: str) -> List[GraphEdge]:
        """
        Return the outgoing edges of a node with a given label, ordered by target id.

        Args:
            source_node_id: Namespaced source node
            relationship_type: Edge label

        Returns:
            List of GraphEdge
        """
        items = self.substrate.query(_partition(source_node_id, relationship_type))
        return [
            GraphEdge(source_node_id=item['source_node_id'],
                      relationship_type=item['relationship_type'],
                      target_node_id=item['target_node_id'],
                      properties=item.get('properties') or {}) for item in items
        ]
