"""
SQL-backed article and quota-usage stores.

Both wrap every SQLAlchemy failure in PersistenceError so callers deal
with a single exception type. The article upsert is idempotent and is
retried on transient operational errors.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from newspulse.core.errors import PersistenceError
from newspulse.models.database import Database, DBArticle, DBProviderUsage
from newspulse.models.domain import Article, ContentOrigin
from newspulse.services.ingestion.interfaces import ArticleStore, QuotaUsageStore

logger = structlog.get_logger(__name__)

# Columns refreshed when an external id is seen again
MUTABLE_COLUMNS = (
    "title",
    "description",
    "content",
    "author",
    "published_at",
    "content_hash",
    "word_count",
    "reading_time_minutes",
    "relevance_score",
    "content_origin",
    "fetched_at",
)


def to_db_time(moment: Optional[datetime]) -> Optional[datetime]:
    """Aware datetime -> naive UTC for storage."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_time(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=timezone.utc)


def _insert_for(dialect: str):
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise PersistenceError(f"Unsupported database dialect for upsert: {dialect}")


class SqlArticleStore(ArticleStore):
    """Article store on SQLAlchemy async (SQLite or PostgreSQL)."""

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def _to_row(article: Article) -> dict:
        return {
            "external_id": article.external_id,
            "title": article.title,
            "description": article.description,
            "content": article.content,
            "url": article.url,
            "canonical_url": article.canonical_url,
            "source_name": article.source_name,
            "provider": article.provider,
            "author": article.author,
            "category": article.category,
            "published_at": to_db_time(article.published_at),
            "content_hash": article.content_hash,
            "word_count": article.word_count,
            "reading_time_minutes": article.reading_time_minutes,
            "relevance_score": article.relevance_score,
            "content_origin": article.content_origin.value,
            "fetched_at": to_db_time(article.fetched_at),
        }

    @staticmethod
    def _to_article(row: DBArticle) -> Article:
        return Article(
            external_id=row.external_id,
            title=row.title,
            description=row.description,
            content=row.content,
            url=row.url,
            canonical_url=row.canonical_url,
            source_name=row.source_name,
            provider=row.provider,
            author=row.author,
            published_at=from_db_time(row.published_at),
            category=row.category,
            content_hash=row.content_hash,
            word_count=row.word_count or 0,
            reading_time_minutes=row.reading_time_minutes or 1,
            relevance_score=row.relevance_score if row.relevance_score is not None else 0.5,
            content_origin=ContentOrigin(row.content_origin or ContentOrigin.GLOBAL.value),
            fetched_at=from_db_time(row.fetched_at),
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(OperationalError),
        reraise=True,
    )
    async def _upsert(self, rows: list[dict]) -> None:
        insert = _insert_for(self.database.dialect)
        stmt = insert(DBArticle).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DBArticle.external_id],
            set_={name: stmt.excluded[name] for name in MUTABLE_COLUMNS},
        )
        async with self.database.async_session() as session:
            async with session.begin():
                await session.execute(stmt)

    async def upsert_articles(self, batch: list[Article]) -> int:
        if not batch:
            return 0
        try:
            await self._upsert([self._to_row(a) for a in batch])
        except SQLAlchemyError as e:
            logger.error("Article upsert failed", count=len(batch), error=str(e))
            raise PersistenceError(f"Upsert of {len(batch)} articles failed: {e}") from e

        logger.debug("Articles upserted", count=len(batch))
        return len(batch)

    async def find_recent_by_window(self, category: Optional[str], since: datetime) -> list[Article]:
        cutoff = to_db_time(since)
        query = select(DBArticle).where(
            or_(
                DBArticle.published_at >= cutoff,
                and_(DBArticle.published_at.is_(None), DBArticle.fetched_at >= cutoff),
            )
        )
        if category:
            query = query.where(DBArticle.category == category)

        try:
            async with self.database.async_session() as session:
                result = await session.execute(query)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Recent-article lookup failed: {e}") from e
        return [self._to_article(row) for row in rows]

    async def article_exists_by_url(self, url: str) -> bool:
        try:
            async with self.database.async_session() as session:
                result = await session.execute(
                    select(exists().where(DBArticle.canonical_url == url))
                )
                return bool(result.scalar())
        except SQLAlchemyError as e:
            raise PersistenceError(f"URL lookup failed: {e}") from e

    async def find_latest(
        self,
        category: Optional[str],
        limit: int,
        offset: int = 0,
        origin: Optional[str] = None,
    ) -> list[Article]:
        query = select(DBArticle)
        if category:
            query = query.where(DBArticle.category == category)
        if origin:
            query = query.where(DBArticle.content_origin == origin)
        query = (
            query.order_by(
                DBArticle.published_at.desc().nulls_last(),
                DBArticle.relevance_score.desc(),
                DBArticle.id.desc(),
            )
            .offset(offset)
            .limit(limit)
        )

        try:
            async with self.database.async_session() as session:
                result = await session.execute(query)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Latest-article lookup failed: {e}") from e
        return [self._to_article(row) for row in rows]

    async def count(self) -> int:
        try:
            async with self.database.async_session() as session:
                result = await session.execute(select(func.count(DBArticle.id)))
                return result.scalar() or 0
        except SQLAlchemyError as e:
            raise PersistenceError(f"Article count failed: {e}") from e


class SqlQuotaStore(QuotaUsageStore):
    """One row per provider holding its last persisted counters."""

    def __init__(self, database: Database):
        self.database = database

    async def save_usage(self, rows: list[dict]) -> None:
        if not rows:
            return
        try:
            async with self.database.async_session() as session:
                async with session.begin():
                    for row in rows:
                        await session.merge(DBProviderUsage(
                            source=row["source"],
                            used_today=row.get("used_today", 0),
                            used_hour=row.get("used_hour", 0),
                            error_count=row.get("error_count", 0),
                            last_reset=to_db_time(row.get("last_reset")),
                        ))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Saving quota usage failed: {e}") from e
        logger.debug("Quota usage saved", providers=len(rows))

    async def load_usage(self) -> list[dict]:
        try:
            async with self.database.async_session() as session:
                result = await session.execute(select(DBProviderUsage))
                usage = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Loading quota usage failed: {e}") from e

        return [
            {
                "source": u.source,
                "used_today": u.used_today,
                "used_hour": u.used_hour,
                "error_count": u.error_count,
                "last_reset": from_db_time(u.last_reset),
            }
            for u in usage
        ]
