"""
CouchDB blob store

One CouchDB document per blob: the binary travels as an inline base64
attachment and the document body carries the metadata (type, owner,
dataset, index, provenance). Document ids encode what the blob belongs to,
see utils.id_generator.
"""
import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import quote

import httpx

from datec.errors import ConflictError, NotFoundError, translate_store_errors
from datec.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

BLOB_STORE = "blob"
BLOB_ID_CONSTRAINT = "blob_document_id"

DRIVER_ERRORS = (httpx.HTTPError, OSError, asyncio.TimeoutError)


@dataclass
class BlobContent:
    """A blob read back from the store"""
    document_id: str
    content: bytes
    filename: str
    mime_type: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.content)


class BlobStore:
    """Async CouchDB client for dataset files, header photos and avatars"""

    def __init__(
        self,
        url: str = "http://localhost:5984",
        database: str = "datec",
        user: str = "",
        password: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip('/')
        self.database = database
        self.user = user
        self.password = password
        self.timeout = timeout
        self.transport = transport

        self.client: Optional[httpx.AsyncClient] = None

    async def connect(self):
        if self.client:
            return
        self.client = httpx.AsyncClient(
            base_url=self.url,
            auth=(self.user, self.password) if self.user else None,
            timeout=self.timeout,
            transport=self.transport,
        )
        with translate_store_errors(BLOB_STORE, "connect", DRIVER_ERRORS):
            response = await self.client.get("/")
            response.raise_for_status()
        logger.info(f"✅ Connected to CouchDB at {self.url}/{self.database}")

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("🔌 Closed CouchDB client")

    def _doc_path(self, document_id: str) -> str:
        return f"/{self.database}/{quote(document_id, safe='')}"

    async def ensure_database(self) -> bool:
        """
        Create the database if missing.

        Returns:
            True if it was created
        """
        with translate_store_errors(BLOB_STORE, "ensure_database", DRIVER_ERRORS):
            response = await self.client.put(f"/{self.database}")
            if response.status_code == 412:
                return False
            response.raise_for_status()
        logger.info(f"Created CouchDB database {self.database}")
        return True

    async def _current_rev(self, document_id: str) -> Optional[str]:
        response = await self.client.head(self._doc_path(document_id))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.headers.get('etag', '').strip('"') or None

    async def put(
        self,
        document_id: str,
        content: bytes,
        filename: str,
        mime_type: str,
        metadata: Optional[Dict[str, Any]] = None,
        overwrite: bool = False,
    ) -> str:
        """
        Store a blob document.

        Uploads are create-only unless `overwrite` is set, so two writers that
        minted the same document id cannot silently replace each other.

        Returns:
            New document revision

        Raises:
            ConflictError: document exists and overwrite is False (retryable)
        """
        body: Dict[str, Any] = dict(metadata or {})
        body.update({
            '_id': document_id,
            'filename': filename,
            'mime_type': mime_type,
            'size': len(content),
            'uploaded_at': body.get('uploaded_at') or utc_now().isoformat(),
            '_attachments': {
                filename: {
                    'content_type': mime_type,
                    'data': base64.b64encode(content).decode('ascii'),
                }
            },
        })

        with translate_store_errors(BLOB_STORE, "put", DRIVER_ERRORS):
            if overwrite:
                rev = await self._current_rev(document_id)
                if rev:
                    body['_rev'] = rev
            response = await self.client.put(self._doc_path(document_id), json=body)
            if response.status_code == 409:
                raise ConflictError(
                    f"Blob document {document_id} already exists",
                    constraint=BLOB_ID_CONSTRAINT,
                    retryable=True,
                )
            response.raise_for_status()
            rev = response.json().get('rev')

        logger.debug(f"Stored blob {document_id} ({len(content)} bytes)")
        return rev

    async def get(self, document_id: str) -> BlobContent:
        """
        Read a blob with its attachment inlined.

        Raises:
            NotFoundError: no such document
        """
        with translate_store_errors(BLOB_STORE, "get", DRIVER_ERRORS):
            response = await self.client.get(
                self._doc_path(document_id),
                params={'attachments': 'true'},
                headers={'Accept': 'application/json'},
            )
            if response.status_code == 404:
                raise NotFoundError(f"Blob {document_id} not found")
            response.raise_for_status()
            doc = response.json()

        attachments = doc.pop('_attachments', None) or {}
        if not attachments:
            raise NotFoundError(f"Blob {document_id} has no attachment")
        name, attachment = next(iter(attachments.items()))
        metadata = {k: v for k, v in doc.items() if not k.startswith('_')}
        return BlobContent(
            document_id=document_id,
            content=base64.b64decode(attachment.get('data', '')),
            filename=metadata.get('filename') or name,
            mime_type=attachment.get('content_type') or metadata.get('mime_type') or 'application/octet-stream',
            metadata=metadata,
        )

    async def delete(self, document_id: str) -> bool:
        """
        Delete a blob document. A missing document counts as deleted.

        Returns:
            True if a document was removed
        """
        with translate_store_errors(BLOB_STORE, "delete", DRIVER_ERRORS):
            rev = await self._current_rev(document_id)
            if rev is None:
                return False
            response = await self.client.delete(self._doc_path(document_id), params={'rev': rev})
            if response.status_code == 404:
                return False
            response.raise_for_status()
        logger.debug(f"Deleted blob {document_id}")
        return True

    async def iter_documents(self, batch_size: int = 500) -> AsyncIterator[Dict[str, Any]]:
        """Yield every document's metadata (attachment stubs only), in id order"""
        start_key = None
        while True:
            params = {'include_docs': 'true', 'limit': str(batch_size + 1)}
            if start_key is not None:
                params['startkey'] = json.dumps(start_key)
            with translate_store_errors(BLOB_STORE, "iter_documents", DRIVER_ERRORS):
                response = await self.client.get(f"/{self.database}/_all_docs", params=params)
                response.raise_for_status()
                rows = response.json().get('rows', [])

            for row in rows[:batch_size]:
                if row['id'].startswith('_design/'):
                    continue
                yield row.get('doc') or {'_id': row['id']}

            if len(rows) <= batch_size:
                return
            start_key = rows[batch_size]['id']
