"""
Store Configuration
===================

Connection configuration for the four stores, plus factories that build
and connect the matching adapter. Each config is derived from Settings so
environment handling lives in one place.
"""
from typing import Optional
from dataclasses import dataclass

from .settings import Settings, get_settings


@dataclass
class PostgresConfig:
    """PostgreSQL connection configuration."""
    host: str
    port: int
    user: str
    password: str
    database: str
    min_size: int = 2
    max_size: int = 10
    command_timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'PostgresConfig':
        settings = settings or get_settings()
        return cls(
            host=settings.postgres_host,
            port=settings.postgres_port,
            user=settings.postgres_user,
            password=settings.postgres_password,
            database=settings.postgres_db,
            min_size=settings.postgres_pool_min_size,
            max_size=settings.postgres_pool_max_size,
            command_timeout=settings.store_timeout_seconds,
        )

    def to_asyncpg_kwargs(self) -> dict:
        """Convert to asyncpg.create_pool kwargs."""
        return {
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': self.password,
            'database': self.database,
            'min_size': self.min_size,
            'max_size': self.max_size,
            'command_timeout': self.command_timeout,
        }


@dataclass
class Neo4jConfig:
    """Neo4j connection configuration."""
    uri: str
    user: str
    password: str
    database: str = "datec"
    timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'Neo4jConfig':
        settings = settings or get_settings()
        return cls(
            uri=settings.neo4j_uri,
            user=settings.neo4j_user,
            password=settings.neo4j_password,
            database=settings.neo4j_database,
            timeout=settings.store_timeout_seconds,
        )


@dataclass
class RedisConfig:
    """Redis primary/replica configuration."""
    primary_url: str
    replica_url: str
    timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'RedisConfig':
        settings = settings or get_settings()
        return cls(
            primary_url=settings.redis_url,
            replica_url=settings.redis_replica_url or settings.redis_url,
            timeout=settings.store_timeout_seconds,
        )


@dataclass
class CouchDBConfig:
    """CouchDB connection configuration."""
    url: str
    database: str
    user: str = ""
    password: str = ""
    timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'CouchDBConfig':
        settings = settings or get_settings()
        return cls(
            url=settings.couchdb_url,
            database=settings.couchdb_database,
            user=settings.couchdb_user,
            password=settings.couchdb_password,
            timeout=settings.store_timeout_seconds,
        )


def build_metadata_store(settings: Optional[Settings] = None):
    from datec.repositories.metadata_store import MetadataStore
    return MetadataStore(**PostgresConfig.from_settings(settings).to_asyncpg_kwargs())


def build_graph_store(settings: Optional[Settings] = None):
    from datec.services.graph_store import GraphStore
    config = Neo4jConfig.from_settings(settings)
    return GraphStore(
        uri=config.uri,
        user=config.user,
        password=config.password,
        database=config.database,
        timeout=config.timeout,
    )


def build_ephemeral_store(settings: Optional[Settings] = None):
    from datec.services.ephemeral_store import EphemeralStore
    config = RedisConfig.from_settings(settings)
    return EphemeralStore(config.primary_url, config.replica_url, timeout=config.timeout)


def build_blob_store(settings: Optional[Settings] = None):
    from datec.services.blob_store import BlobStore
    config = CouchDBConfig.from_settings(settings)
    return BlobStore(
        url=config.url,
        database=config.database,
        user=config.user,
        password=config.password,
        timeout=config.timeout,
    )


async def create_metadata_store(settings: Optional[Settings] = None):
    """Create and connect the PostgreSQL metadata store."""
    store = build_metadata_store(settings)
    await store.connect()
    return store


async def create_graph_store(settings: Optional[Settings] = None):
    """Create and connect the Neo4j graph store."""
    store = build_graph_store(settings)
    await store.connect()
    return store


async def create_ephemeral_store(settings: Optional[Settings] = None):
    """Create and connect the Redis ephemeral store."""
    store = build_ephemeral_store(settings)
    await store.connect()
    return store


async def create_blob_store(settings: Optional[Settings] = None):
    """Create and connect the CouchDB blob store."""
    store = build_blob_store(settings)
    await store.connect()
    return store
