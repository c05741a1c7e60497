"""
Amazon Bedrock embedding client used as the external text -> vector function.
"""

import json
from typing import List

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingServiceFailure(Exception):
    """Raised when the embedding service cannot produce a vector. Retryable."""
    error_kind = 'EmbeddingServiceFailure'


class BedrockEmbed:
    """Amazon Bedrock embedding client with bounded timeouts.

    A single call makes a single attempt; callers own the retry policy so a slow
    record can be failed on its own without stalling a whole ingestion batch.
    """

    def __init__(self, config: BedrockEmbedConfig):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        # Create Bedrock runtime client with timeout configuration
        self.bedrock = boto3.client(
            service_name='bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=config.connect_timeout,
                read_timeout=config.read_timeout,
                retries={'max_attempts': 0}  # We handle retries in the pipeline
            ))

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _invoke(self, data: dict) -> dict:
        """
        Make a single Bedrock API call.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            EmbeddingServiceFailure: If the call fails or times out
        """
        try:
            response = self.bedrock.invoke_model(body=json.dumps(data),
                                                 modelId=self.model_id,
                                                 accept='application/json',
                                                 contentType='application/json')
            return json.loads(response.get('body').read())

        except (ClientError, BotoCoreError) as e:
            raise EmbeddingServiceFailure(f'Bedrock Embed call failed: {e}') from e

    def _embed(self, text: str, input_type: str) -> List[float]:
        if not text or not text.strip():
            logger.warning('Empty text provided for embedding')
            return [0.0] * self.output_embedding_length

        model = self.model_id.lower()
        if 'titan' in model:
            response = self._invoke({'inputText': text, 'dimensions': self.output_embedding_length})
            vector = response.get('embedding')

        elif 'cohere' in model:
            if self.output_embedding_length != 1024:
                raise EmbeddingServiceFailure(f'Cohere models only support 1024 dimensions, got {self.output_embedding_length}')

            response = self._invoke({'input_type': input_type, 'texts': [text]})
            embeddings = response.get('embeddings') or []
            vector = embeddings[0] if embeddings else None

        else:
            raise EmbeddingServiceFailure(f'Unsupported model for embedding: {self.model_id}')

        if not vector or len(vector) != self.output_embedding_length:
            raise EmbeddingServiceFailure(f'Bedrock Embed returned a malformed vector for model {self.model_id}')

        return [float(v) for v in vector]

    def embed_document(self, text: str) -> List[float]:
        """
        Generate embeddings for document text.

        Args:
            text: Text to embed

        Returns:
            List of embedding values

        Raises:
            EmbeddingServiceFailure: If embedding generation fails
        """
        return self._embed(text, 'search_document')

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embeddings for query text.

        Args:
            text: Query text to embed

        Returns:
            List of embedding values

        Raises:
            EmbeddingServiceFailure: If embedding generation fails
        """
        return self._embed(text, 'search_query')
