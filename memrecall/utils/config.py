"""
Configuration management for AWS services and retrieval settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class OpenSearchConfig:
    """Configuration for the OpenSearch memory store."""
    endpoint: str
    port: int
    region: str
    index_prefix: str
    dimension: int
    auth_service: str  # 'es' for managed domains, 'aoss' for serverless
    retry_attempts: int
    retry_delay: float


@dataclass
class RetrievalConfig:
    """Configuration for retrieval and ranking."""
    default_limit: int
    semantic_threshold: float
    entity_threshold: float
    embed_timeout_seconds: float
    recency_half_life_days: float
    candidate_multiplier: int
    embed_workers: int
    recall_log_size: int
    entity_cache_seconds: float


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
    opensearch: OpenSearchConfig
    retrieval: RetrievalConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # Memory store configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_prefix=os.getenv('OPENSEARCH_INDEX_PREFIX', 'memrecall'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         auth_service=os.getenv('OPENSEARCH_AUTH_SERVICE', 'es'),
                                         retry_attempts=int(os.getenv('OPENSEARCH_RETRY_ATTEMPTS', '3')),
                                         retry_delay=float(os.getenv('OPENSEARCH_RETRY_DELAY', '0.5')))

    # Retrieval configuration
    retrieval_config = RetrievalConfig(default_limit=int(os.getenv('RETRIEVAL_DEFAULT_LIMIT', '5')),
                                       semantic_threshold=float(os.getenv('RETRIEVAL_SEMANTIC_THRESHOLD', '0.4')),
                                       entity_threshold=float(os.getenv('RETRIEVAL_ENTITY_THRESHOLD', '0.5')),
                                       embed_timeout_seconds=float(os.getenv('RETRIEVAL_EMBED_TIMEOUT_SECONDS', '10.0')),
                                       recency_half_life_days=float(os.getenv('RETRIEVAL_RECENCY_HALF_LIFE_DAYS', '28')),
                                       candidate_multiplier=int(os.getenv('RETRIEVAL_CANDIDATE_MULTIPLIER', '2')),
                                       embed_workers=int(os.getenv('RETRIEVAL_EMBED_WORKERS', '8')),
                                       recall_log_size=int(os.getenv('RETRIEVAL_RECALL_LOG_SIZE', '10000')),
                                       entity_cache_seconds=float(os.getenv('RETRIEVAL_ENTITY_CACHE_SECONDS', '300')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_embed=bedrock_embed_config,
                     opensearch=opensearch_config,
                     retrieval=retrieval_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
