from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional, Tuple

from loguru import logger
from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from ingestor.storage.models.document_model import IngestedDocument


# Optional metadata keeps its stored value when a fetch produced nothing for it.
OPTIONAL_FIELDS = (
    "title",
    "description",
    "content_type",
    "content_hash",
    "lang",
    "etag",
    "last_modified",
)


@dataclass
class Document:
    url: str
    fetched_at: datetime
    body_text: str
    http_status: int
    title: Optional[str] = None
    description: Optional[str] = None
    content_type: Optional[str] = None
    content_hash: Optional[str] = None
    lang: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None


def _to_document(row: IngestedDocument) -> Document:
    return Document(
        url=row.url,
        fetched_at=row.fetched_at,
        body_text=row.body_text,
        http_status=row.http_status,
        **{name: getattr(row, name) for name in OPTIONAL_FIELDS},
    )


class TortoiseDocumentStore:
    """Idempotent, last-write-wins document persistence keyed by URL."""

    async def upsert(self, document: Document) -> None:
        try:
            await self._upsert(document)
        except IntegrityError:
            # A concurrent writer inserted the same URL first; retry as an update.
            logger.debug(f"Insert race on {document.url}, retrying as update")
            await self._upsert(document)

    async def _upsert(self, document: Document) -> None:
        async with in_transaction() as conn:
            row = (
                await IngestedDocument.filter(url=document.url)
                .using_db(conn)
                .select_for_update()
                .first()
            )

            if row is None:
                await IngestedDocument.create(using_db=conn, **asdict(document))
                return

            row.fetched_at = document.fetched_at
            row.body_text = document.body_text
            row.http_status = document.http_status
            for name in OPTIONAL_FIELDS:
                value = getattr(document, name)
                if value is not None:
                    setattr(row, name, value)
            await row.save(using_db=conn)

    async def get(self, url: str) -> Optional[Document]:
        row = await IngestedDocument.get_or_none(url=url)
        return _to_document(row) if row else None

    async def get_validators(self, url: str) -> Tuple[Optional[str], Optional[str]]:
        """(etag, last_modified) stored for ``url``, for a conditional GET."""
        row = await IngestedDocument.get_or_none(url=url)
        if row is None:
            return None, None
        return row.etag, row.last_modified
