"""
OpenSearch-backed memory store with AWS authentication.
"""

import random
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection, helpers
from opensearchpy.exceptions import ConflictError, NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from ..models.core import Entity, FeedbackRecord, FeedbackType, Memory
from ..models.errors import MemoryNotFoundError, StoreUnavailableError
from .config import OpenSearchConfig
from .logging_config import get_logger
from .memory_store import MemoryStore
from .timestamp_utils import to_datetime

logger = get_logger(__name__)

FEEDBACK_COUNTER_FIELDS = {
    FeedbackType.POSITIVE: 'positive_feedback_count',
    FeedbackType.NEGATIVE: 'negative_feedback_count',
}

# Painless scripts guarded by feedback id: each id moves a counter at most once.
# The update API applies them under the document's version check.
INCREMENT_SCRIPT = ('if (ctx._source.applied_feedback_ids == null) { ctx._source.applied_feedback_ids = [] } '
                    'if (ctx._source.applied_feedback_ids.contains(params.feedback_id)) { ctx.op = "none" } '
                    'else { ctx._source.applied_feedback_ids.add(params.feedback_id); '
                    'if (ctx._source[params.field] == null) { ctx._source[params.field] = 1 } '
                    'else { ctx._source[params.field] += 1 } }')

REVERT_SCRIPT = ('int i = ctx._source.applied_feedback_ids == null ? -1 : '
                 'ctx._source.applied_feedback_ids.indexOf(params.feedback_id); '
                 'if (i >= 0) { ctx._source.applied_feedback_ids.remove(i); ctx._source[params.field] -= 1 } '
                 'else { ctx.op = "none" }')


class OpenSearchError(StoreUnavailableError):
    """Custom exception for OpenSearch errors."""
    pass


def memory_to_document(memory: Memory) -> Dict[str, Any]:
    return {
        'id': memory.id,
        'type': memory.type.value,
        'title': memory.title,
        'content': memory.content,
        'source_chunk': memory.source_chunk,
        'embedding': list(memory.embedding),
        'related_entities': sorted(memory.related_entities),
        'confidence_score': memory.confidence_score,
        'times_observed': memory.times_observed,
        'first_observed_at': memory.first_observed_at.isoformat(),
        'last_observed_at': memory.last_observed_at.isoformat(),
        'positive_feedback_count': memory.positive_feedback_count,
        'negative_feedback_count': memory.negative_feedback_count
    }


def document_to_memory(doc: Dict[str, Any]) -> Memory:
    last_observed_at = to_datetime(doc.get('last_observed_at') or 0)
    first_observed_at = doc.get('first_observed_at')
    return Memory(id=doc['id'],
                  type=doc['type'],
                  title=doc.get('title', ''),
                  content=doc.get('content', ''),
                  source_chunk=doc.get('source_chunk', ''),
                  embedding=[float(value) for value in doc.get('embedding') or []],
                  related_entities=frozenset(doc.get('related_entities') or []),
                  confidence_score=float(doc.get('confidence_score', 0.0)),
                  times_observed=int(doc.get('times_observed', 1)),
                  first_observed_at=to_datetime(first_observed_at) if first_observed_at else last_observed_at,
                  last_observed_at=last_observed_at,
                  positive_feedback_count=int(doc.get('positive_feedback_count') or 0),
                  negative_feedback_count=int(doc.get('negative_feedback_count') or 0))


def feedback_document_id(record: FeedbackRecord) -> str:
    """Stable id for a feedback record; the same record always maps to the same id."""
    key = f'{record.memory_id}|{record.session_id}|{record.feedback_type.value}|{record.created_at.isoformat()}'
    return str(uuid.uuid5(uuid.NAMESPACE_URL, key))


def entity_to_document(entity: Entity) -> Dict[str, Any]:
    return {
        'id': entity.id,
        'type': entity.type.value,
        'canonical_name': entity.canonical_name,
        'aliases': sorted(entity.aliases),
        'external_ref': entity.external_ref
    }


def document_to_entity(doc: Dict[str, Any]) -> Entity:
    return Entity(id=doc['id'],
                  type=doc.get('type', 'other'),
                  canonical_name=doc['canonical_name'],
                  aliases=frozenset(doc.get('aliases') or []),
                  external_ref=doc.get('external_ref'))


class OpenSearchClient(MemoryStore):
    """OpenSearch client with AWS authentication, retries and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built OpenSearch client, mostly for tests
        """
        self.config = config
        self.memory_index = f'{config.index_prefix}_memories'
        self.entity_index = f'{config.index_prefix}_entities'
        self.feedback_index = f'{config.index_prefix}_feedback'

        if client is None:
            # Get AWS credentials and create auth
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service=config.auth_service, refreshable_credentials=credentials)
            endpoint = config.endpoint
            if '://' in endpoint:
                # Remove protocol if present
                endpoint = endpoint.split('://', 1)[1]

            client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                http_auth=auth,
                                use_ssl=True,
                                verify_certs=True,
                                connection_class=RequestsHttpConnection)
        self.client = client

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def _call_with_retry(self, description: str, operation: Callable[[], Any]) -> Any:
        """
        Run an OpenSearch operation with retry logic.

        Args:
            description: Human-readable operation name for logs
            operation: Zero-argument callable performing the request

        Returns:
            Whatever the operation returns

        Raises:
            OpenSearchError: If all retry attempts fail
            NotFoundError: Passed through untouched, a missing document is not an outage
        """
        for attempt in range(self.config.retry_attempts):
            try:
                return operation()

            except NotFoundError:
                raise

            except OpenSearchException as e:
                logger.warning(f'OpenSearch {description} attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, self.config.retry_delay)
                    time.sleep(delay)
                else:
                    raise OpenSearchError(f'OpenSearch {description} failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in OpenSearch {description}: {e}')
                raise OpenSearchError(f'Unexpected error in OpenSearch {description}: {e}')

        raise OpenSearchError(f'OpenSearch {description} failed after {self.config.retry_attempts} attempts')

    def create_indices_if_not_exists(self) -> Dict[str, str]:
        """
        Create the memory, entity and feedback indices if missing.

        Returns:
            Mapping of index name to 'exists' or 'created'
        """
        bodies = {
            self.memory_index: {
                'mappings': {
                    'properties': {
                        'id': {'type': 'keyword'},
                        'type': {'type': 'keyword'},
                        'title': {'type': 'text'},
                        'content': {'type': 'text'},
                        'source_chunk': {'type': 'text'},
                        'embedding': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'cosinesimil',
                                'engine': 'nmslib'
                            }
                        },
                        'related_entities': {'type': 'keyword'},
                        'confidence_score': {'type': 'float'},
                        'times_observed': {'type': 'integer'},
                        'first_observed_at': {'type': 'date'},
                        'last_observed_at': {'type': 'date'},
                        'positive_feedback_count': {'type': 'integer'},
                        'negative_feedback_count': {'type': 'integer'},
                        'applied_feedback_ids': {'type': 'keyword', 'index': False}
                    }
                },
                'settings': {
                    'index': {
                        'knn': True
                    }
                }
            },
            self.entity_index: {
                'mappings': {
                    'properties': {
                        'id': {'type': 'keyword'},
                        'type': {'type': 'keyword'},
                        'canonical_name': {'type': 'keyword'},
                        'aliases': {'type': 'keyword'},
                        'external_ref': {'type': 'keyword'}
                    }
                }
            },
            self.feedback_index: {
                'mappings': {
                    'properties': {
                        'memory_id': {'type': 'keyword'},
                        'session_id': {'type': 'keyword'},
                        'feedback_type': {'type': 'keyword'},
                        'created_at': {'type': 'date'}
                    }
                }
            }
        }

        status = {}
        for index_name, body in bodies.items():
            if self._call_with_retry('index lookup', lambda: self.client.indices.exists(index=index_name)):
                logger.debug(f'Index {index_name} already exists')
                status[index_name] = 'exists'
                continue
            self._call_with_retry('index creation', lambda: self.client.indices.create(index=index_name, body=body))
            logger.info(f'Created index {index_name}')
            status[index_name] = 'created'
        return status

    def index_memory(self, memory: Memory) -> None:
        """Write a memory document (used by the ingestion side and for seeding)."""
        document = memory_to_document(memory)
        self._call_with_retry('memory indexing',
                              lambda: self.client.index(index=self.memory_index, id=memory.id, body=document))
        logger.debug(f'Indexed memory {memory.id}')

    def index_entity(self, entity: Entity) -> None:
        document = entity_to_document(entity)
        self._call_with_retry('entity indexing',
                              lambda: self.client.index(index=self.entity_index, id=entity.id, body=document))
        logger.debug(f'Indexed entity {entity.id}')

    def _scan(self, index_name: str, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        hits = self._call_with_retry(f'scan of {index_name}',
                                     lambda: list(helpers.scan(self.client, index=index_name, query=query)))
        return [hit['_source'] for hit in hits]

    def _get(self, index_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self._call_with_retry('document lookup', lambda: self.client.get(index=index_name, id=doc_id))
        except NotFoundError:
            return None
        if not response.get('found', False):
            return None
        return response['_source']

    def list_memories(self) -> List[Memory]:
        documents = self._scan(self.memory_index, {'query': {'match_all': {}}})
        logger.debug(f'Scanned {len(documents)} memories')
        return [document_to_memory(doc) for doc in documents]

    def memories_for_entities(self, entity_ids: Set[str]) -> List[Memory]:
        if not entity_ids:
            return []
        documents = self._scan(self.memory_index, {'query': {'terms': {'related_entities': sorted(entity_ids)}}})
        return [document_to_memory(doc) for doc in documents]

    def memories_with_embeddings(self) -> List[Memory]:
        documents = self._scan(self.memory_index, {'query': {'exists': {'field': 'embedding'}}})
        return [document_to_memory(doc) for doc in documents if doc.get('embedding')]

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        doc = self._get(self.memory_index, memory_id)
        return document_to_memory(doc) if doc else None

    def list_entities(self) -> List[Entity]:
        return [document_to_entity(doc) for doc in self._scan(self.entity_index, {'query': {'match_all': {}}})]

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        doc = self._get(self.entity_index, entity_id)
        return document_to_entity(doc) if doc else None

    def _run_feedback_script(self, description: str, source: str, record: FeedbackRecord, feedback_id: str) -> Dict[str, Any]:
        body = {
            'script': {
                'source': source,
                'lang': 'painless',
                'params': {
                    'field': FEEDBACK_COUNTER_FIELDS[record.feedback_type],
                    'feedback_id': feedback_id
                }
            }
        }
        return self._call_with_retry(description,
                                     lambda: self.client.update(index=self.memory_index,
                                                                id=record.memory_id,
                                                                body=body,
                                                                retry_on_conflict=self.config.retry_attempts * 3,
                                                                _source=True))

    def _create_feedback_document(self, record: FeedbackRecord, feedback_id: str) -> None:
        document = {
            'memory_id': record.memory_id,
            'session_id': record.session_id,
            'feedback_type': record.feedback_type.value,
            'created_at': record.created_at.isoformat()
        }

        def create():
            try:
                self.client.create(index=self.feedback_index, id=feedback_id, body=document)
            except ConflictError:
                # An earlier attempt already stored this record
                logger.debug(f'Feedback record {feedback_id} already exists')

        self._call_with_retry('feedback indexing', create)

    def apply_feedback(self, record: FeedbackRecord) -> Memory:
        """
        Count one vote on the memory and append its feedback record.

        Both writes are keyed by feedback_document_id(record), so retrying
        either request after a timeout leaves the counter and the feedback
        index exactly as one successful attempt would. If the record cannot
        be stored, the increment is reverted before the error is raised.

        Args:
            record: Feedback to apply

        Returns:
            The memory as it is after the increment

        Raises:
            MemoryNotFoundError: If the memory does not exist
            OpenSearchError: If either write fails after all retries
        """
        feedback_id = feedback_document_id(record)

        try:
            response = self._run_feedback_script('feedback increment', INCREMENT_SCRIPT, record, feedback_id)
        except NotFoundError:
            raise MemoryNotFoundError(f'Memory not found: {record.memory_id}')

        try:
            self._create_feedback_document(record, feedback_id)
        except OpenSearchError as e:
            logger.error(f'Feedback record {feedback_id} not stored, reverting counter on memory {record.memory_id}')
            try:
                self._run_feedback_script('feedback revert', REVERT_SCRIPT, record, feedback_id)
            except (OpenSearchError, NotFoundError) as revert_error:
                logger.error(f'Failed to revert feedback {feedback_id} on memory {record.memory_id}: {revert_error}')
            raise e

        logger.debug(f'Applied {record.feedback_type.value} feedback {feedback_id} to memory {record.memory_id}')
        updated = response.get('get', {}).get('_source')
        if updated:
            return document_to_memory(updated)
        return self.get_memory(record.memory_id)

    def list_feedback(self, memory_id: Optional[str] = None) -> List[FeedbackRecord]:
        if memory_id is None:
            query = {'query': {'match_all': {}}}
        else:
            query = {'query': {'term': {'memory_id': memory_id}}}

        records = [
            FeedbackRecord(memory_id=doc['memory_id'],
                           session_id=doc['session_id'],
                           feedback_type=FeedbackType(doc['feedback_type']),
                           created_at=to_datetime(doc['created_at'])) for doc in self._scan(self.feedback_index, query)
        ]
        records.sort(key=lambda record: record.created_at)
        return records

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return bool(self.client.ping())

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
