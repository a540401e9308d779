from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables can come from:
    - docker-compose.yml environment section
    - .env file (for credentials)
    - System environment

    Variable names follow the store they configure:
    - POSTGRES_HOST, POSTGRES_PORT, etc. (metadata store)
    - NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD (graph store)
    - REDIS_URL, REDIS_REPLICA_URL (ephemeral store)
    - COUCHDB_URL, COUCHDB_USER, COUCHDB_PASSWORD (blob store)
    """

    # Environment
    environment: str = "development"

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "datec_user"
    postgres_password: str = "datec_pass"
    postgres_db: str = "datec"
    postgres_pool_min_size: int = 2
    postgres_pool_max_size: int = 10
    database_url: Optional[str] = Field(default=None, validate_default=True)

    # Neo4j
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = "datec_neo4j_pass"
    neo4j_database: str = "datec"

    # Redis (writes go to the primary, reads to the replica)
    redis_url: str = "redis://localhost:6379"
    redis_replica_url: Optional[str] = Field(default=None, validate_default=True)

    # CouchDB
    couchdb_url: str = "http://localhost:5984"
    couchdb_user: str = "admin"
    couchdb_password: str = ""
    couchdb_database: str = "datec"

    # Per-store-call timeout; sagas are unbounded unless saga_timeout_seconds is set
    store_timeout_seconds: float = 10.0
    saga_timeout_seconds: Optional[float] = None

    # Business limits
    max_dataset_files: int = 10
    max_comment_depth: int = 5
    max_comment_length: int = 2000
    max_message_length: int = 5000
    notification_queue_size: int = 50
    dataset_id_attempts: int = 3
    search_limit: int = 20
    download_history_limit: int = 100
    orphan_blob_grace_minutes: int = 60

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra env vars

    @field_validator('database_url', mode='before')
    @classmethod
    def construct_database_url(cls, v, info):
        """Construct database URL from components if not explicitly set"""
        if v:
            return v

        data = info.data
        return (
            f"postgresql://{data.get('postgres_user')}:{data.get('postgres_password')}"
            f"@{data.get('postgres_host')}:{data.get('postgres_port')}/{data.get('postgres_db')}"
        )

    @field_validator('redis_replica_url', mode='before')
    @classmethod
    def default_replica_to_primary(cls, v, info):
        """Read from the primary when no replica is configured"""
        return v or info.data.get('redis_url')


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
