"""SQL gateway engine.

Key Components:

- Gateway: Owns one tenant's data source, policies, cache and pipeline
- QueryPipeline: security -> cache lookup -> dispatch -> cache write
- SecurityEnforcer: Allowlist check, then row-level security rewrite
- CacheManager / CacheSweeper: TTL result cache and its periodic expiry sweep
- BackendDispatcher / AdapterRegistry: internal engine, hosted proxy, or a
  registered external adapter keyed by provider or dialect
- HostedProxyClient: Named-parameter forwarding to the hosted execution API
- RestTranslator: Resource paths and verbs to SQL through the same pipeline
- transform: RawResult <-> ObjectResult conversion
- GatewayConfigLoader: sqlgate.yml + environment into GatewaySettings

Architecture:
- Every statement, REST-generated ones included, passes through the
  SecurityEnforcer before it reaches a cache or a backend
- Results of RLS-rewritten statements are never cached
- Transactions run sequentially without rollback
- Caller-visible failures derive from GatewayError and carry an HTTP status
"""

from .cache import (
    CacheEntry,
    CacheManager,
    CacheStore,
    CacheSweeper,
    EngineCacheStore,
    MemoryCacheStore,
    fingerprint,
)
from .config import (
    FEATURE_DEFAULTS,
    AllowlistPolicy,
    Configuration,
    DataSource,
    ExternalSource,
    FeatureFlags,
    GatewayConfigLoader,
    GatewaySettings,
    RlsPolicy,
)
from .dispatch import AdapterRegistry, BackendDispatcher, DriverConnection, create_default_registry
from .exceptions import (
    BackendExecutionError,
    CacheFailure,
    ConfigurationError,
    GatewayError,
    HostedResponseError,
    InternalSourceOnlyError,
    RequestValidationError,
    RestError,
    SecurityRejection,
    UnsupportedBackendError,
)
from .gateway import Gateway
from .hosted import HostedProxyClient, HostedResponse, prepare_statement
from .internal import InternalEngine
from .pipeline import QueryPipeline
from .request import QueryDescriptor, TransactionBatch, parse_payload, parse_query_request
from .rest import RestTranslator
from .security import SecuredStatement, SecurityEnforcer
from .transform import ObjectResult, RawResult, ResultMeta, serialize, to_object, to_raw

__all__ = [
    # Gateway
    "Gateway",
    "QueryPipeline",
    "RestTranslator",
    # Configuration
    "FEATURE_DEFAULTS",
    "AllowlistPolicy",
    "Configuration",
    "DataSource",
    "ExternalSource",
    "FeatureFlags",
    "GatewayConfigLoader",
    "GatewaySettings",
    "RlsPolicy",
    # Requests and results
    "QueryDescriptor",
    "TransactionBatch",
    "parse_payload",
    "parse_query_request",
    "ObjectResult",
    "RawResult",
    "ResultMeta",
    "serialize",
    "to_object",
    "to_raw",
    # Security
    "SecuredStatement",
    "SecurityEnforcer",
    # Cache
    "CacheEntry",
    "CacheManager",
    "CacheStore",
    "CacheSweeper",
    "EngineCacheStore",
    "MemoryCacheStore",
    "fingerprint",
    # Dispatch
    "AdapterRegistry",
    "BackendDispatcher",
    "DriverConnection",
    "HostedProxyClient",
    "HostedResponse",
    "InternalEngine",
    "create_default_registry",
    "prepare_statement",
    # Errors
    "BackendExecutionError",
    "CacheFailure",
    "ConfigurationError",
    "GatewayError",
    "HostedResponseError",
    "InternalSourceOnlyError",
    "RequestValidationError",
    "RestError",
    "SecurityRejection",
    "UnsupportedBackendError",
]
