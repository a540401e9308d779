"""
Neo4j Graph Store - social and provenance relationships

Neo4j is derived state: the metadata store decides whether a user or
dataset exists. Every relationship operation MERGEs its endpoint nodes, so
a node lost to a failed best-effort step is recreated on first use.

Node Types:
- User: {user_id, username}
- Dataset: {dataset_id, dataset_name, owner_user_id}

Relationships:
- (User)-[:FOLLOWS {created_at}]->(User)
- (User)-[:DOWNLOADED {downloaded_at, last_downloaded_at}]->(Dataset)
"""
import asyncio
import logging
from typing import Dict, List, Optional

from neo4j import AsyncDriver, AsyncGraphDatabase, Query
from neo4j.exceptions import DriverError, Neo4jError

from datec.errors import translate_store_errors
from datec.utils.datetime_utils import neo4j_datetime_to_python

logger = logging.getLogger(__name__)

GRAPH_STORE = "graph"

DRIVER_ERRORS = (Neo4jError, DriverError, OSError, asyncio.TimeoutError)

CONSTRAINTS = [
    "CREATE CONSTRAINT user_id_unique IF NOT EXISTS FOR (u:User) REQUIRE u.user_id IS UNIQUE",
    "CREATE CONSTRAINT dataset_id_unique IF NOT EXISTS FOR (d:Dataset) REQUIRE d.dataset_id IS UNIQUE",
]


class GraphStore:
    """Service for Neo4j graph operations"""

    def __init__(
        self,
        uri: str = "bolt://localhost:7687",
        user: str = "neo4j",
        password: str = "",
        database: str = "datec",
        timeout: float = 10.0,
    ):
        self.uri = uri
        self.user = user
        self.password = password
        self.database = database
        self.timeout = timeout

        self.driver: Optional[AsyncDriver] = None

    async def connect(self):
        """Establish connection to Neo4j"""
        if not self.driver:
            with translate_store_errors(GRAPH_STORE, "connect", DRIVER_ERRORS):
                self.driver = AsyncGraphDatabase.driver(
                    self.uri,
                    auth=(self.user, self.password)
                )
                await self.driver.verify_connectivity()
            logger.info(f"✅ Connected to Neo4j at {self.uri}")

    async def close(self):
        """Close Neo4j connection"""
        if self.driver:
            await self.driver.close()
            self.driver = None
            logger.info("🔌 Closed Neo4j connection")

    async def _execute_write(self, operation: str, query: str, parameters: Dict = None):
        """Execute write query, returning the single result record (or None)"""
        with translate_store_errors(GRAPH_STORE, operation, DRIVER_ERRORS):
            async with self.driver.session(database=self.database) as session:
                result = await session.run(Query(query, timeout=self.timeout), parameters or {})
                return await result.single()

    async def _execute_read(self, operation: str, query: str, parameters: Dict = None) -> List[Dict]:
        """Execute read query"""
        with translate_store_errors(GRAPH_STORE, operation, DRIVER_ERRORS):
            async with self.driver.session(database=self.database) as session:
                result = await session.run(Query(query, timeout=self.timeout), parameters or {})
                return await result.data()

    async def ensure_constraints(self):
        for statement in CONSTRAINTS:
            await self._execute_write("ensure_constraints", statement)
        logger.info("Neo4j constraints ready")

    # ===== Node Operations =====

    async def upsert_user(self, user_id: str, username: str):
        await self._execute_write("upsert_user", """
            MERGE (u:User {user_id: $user_id})
            ON CREATE SET u.created_at = datetime()
            SET u.username = $username
        """, {'user_id': user_id, 'username': username})

    async def upsert_dataset(self, dataset_id: str, dataset_name: str, owner_user_id: str):
        await self._execute_write("upsert_dataset", """
            MERGE (d:Dataset {dataset_id: $dataset_id})
            ON CREATE SET d.created_at = datetime()
            SET d.dataset_name = $dataset_name,
                d.owner_user_id = $owner_user_id
        """, {
            'dataset_id': dataset_id,
            'dataset_name': dataset_name,
            'owner_user_id': owner_user_id,
        })

    async def delete_dataset(self, dataset_id: str) -> bool:
        """Remove the dataset node and all its edges"""
        record = await self._execute_write("delete_dataset", """
            MATCH (d:Dataset {dataset_id: $dataset_id})
            DETACH DELETE d
            RETURN count(d) AS deleted
        """, {'dataset_id': dataset_id})
        return bool(record and record['deleted'])

    async def dataset_ids(self) -> List[str]:
        rows = await self._execute_read("dataset_ids", """
            MATCH (d:Dataset) RETURN d.dataset_id AS dataset_id
        """)
        return [row['dataset_id'] for row in rows]

    # ===== FOLLOWS =====

    async def follow(self, follower_id: str, follower_username: str,
                     followed_id: str, followed_username: str):
        """Create FOLLOWS edge; an existing edge is left untouched"""
        await self._execute_write("follow", """
            MERGE (a:User {user_id: $follower_id})
            ON CREATE SET a.username = $follower_username, a.created_at = datetime()
            MERGE (b:User {user_id: $followed_id})
            ON CREATE SET b.username = $followed_username, b.created_at = datetime()
            MERGE (a)-[r:FOLLOWS]->(b)
            ON CREATE SET r.created_at = datetime()
        """, {
            'follower_id': follower_id,
            'follower_username': follower_username,
            'followed_id': followed_id,
            'followed_username': followed_username,
        })

    async def unfollow(self, follower_id: str, followed_id: str) -> bool:
        record = await self._execute_write("unfollow", """
            MATCH (:User {user_id: $follower_id})-[r:FOLLOWS]->(:User {user_id: $followed_id})
            DELETE r
            RETURN count(r) AS removed
        """, {'follower_id': follower_id, 'followed_id': followed_id})
        return bool(record and record['removed'])

    async def is_following(self, follower_id: str, followed_id: str) -> bool:
        rows = await self._execute_read("is_following", """
            MATCH (:User {user_id: $follower_id})-[r:FOLLOWS]->(:User {user_id: $followed_id})
            RETURN count(r) AS edges
        """, {'follower_id': follower_id, 'followed_id': followed_id})
        return bool(rows and rows[0]['edges'])

    async def followers(self, user_id: str) -> List[Dict]:
        """Users following `user_id`, most recent first"""
        rows = await self._execute_read("followers", """
            MATCH (f:User)-[r:FOLLOWS]->(:User {user_id: $user_id})
            RETURN f.user_id AS user_id, f.username AS username, r.created_at AS since
            ORDER BY r.created_at DESC
        """, {'user_id': user_id})
        return [self._with_native_time(row, 'since') for row in rows]

    async def following(self, user_id: str) -> List[Dict]:
        """Users `user_id` follows, most recent first"""
        rows = await self._execute_read("following", """
            MATCH (:User {user_id: $user_id})-[r:FOLLOWS]->(f:User)
            RETURN f.user_id AS user_id, f.username AS username, r.created_at AS since
            ORDER BY r.created_at DESC
        """, {'user_id': user_id})
        return [self._with_native_time(row, 'since') for row in rows]

    async def follower_ids(self, user_id: str) -> List[str]:
        return [row['user_id'] for row in await self.followers(user_id)]

    # ===== DOWNLOADED =====

    async def record_download(self, user_id: str, dataset_id: str, username: Optional[str] = None):
        """Merge a DOWNLOADED edge, stamping first and latest download time"""
        await self._execute_write("record_download", """
            MERGE (u:User {user_id: $user_id})
            ON CREATE SET u.username = $username, u.created_at = datetime()
            MERGE (d:Dataset {dataset_id: $dataset_id})
            ON CREATE SET d.created_at = datetime()
            MERGE (u)-[r:DOWNLOADED]->(d)
            ON CREATE SET r.downloaded_at = datetime(), r.last_downloaded_at = datetime()
            ON MATCH SET r.last_downloaded_at = datetime()
        """, {'user_id': user_id, 'dataset_id': dataset_id, 'username': username})

    async def download_history(self, dataset_id: str, limit: int = 100) -> List[Dict]:
        rows = await self._execute_read("download_history", """
            MATCH (u:User)-[r:DOWNLOADED]->(:Dataset {dataset_id: $dataset_id})
            RETURN u.user_id AS user_id, u.username AS username,
                   r.downloaded_at AS downloaded_at,
                   r.last_downloaded_at AS last_downloaded_at
            ORDER BY r.last_downloaded_at DESC
            LIMIT $limit
        """, {'dataset_id': dataset_id, 'limit': limit})
        return [
            self._with_native_time(self._with_native_time(row, 'downloaded_at'), 'last_downloaded_at')
            for row in rows
        ]

    async def unique_downloaders(self, dataset_id: str) -> int:
        rows = await self._execute_read("unique_downloaders", """
            MATCH (u:User)-[:DOWNLOADED]->(:Dataset {dataset_id: $dataset_id})
            RETURN count(DISTINCT u) AS downloaders
        """, {'dataset_id': dataset_id})
        return rows[0]['downloaders'] if rows else 0

    @staticmethod
    def _with_native_time(row: Dict, key: str) -> Dict:
        row = dict(row)
        row[key] = neo4j_datetime_to_python(row.get(key))
        return row
