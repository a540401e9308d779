"""
Datec - dataset catalogue core.

Coordinates dataset, user, comment, vote and notification state across
PostgreSQL (metadata), CouchDB (blobs), Neo4j (relationships) and Redis
(counters and notification queues).
"""

__version__ = "0.4.0"
