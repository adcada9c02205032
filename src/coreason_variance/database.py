from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

from sqlalchemy import DateTime, Integer, Numeric, String, Text, UniqueConstraint, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from coreason_variance.config import settings
from coreason_variance.models import AnalysisResult
from coreason_variance.utils.logger import logger

# Setup Engine
engine = create_async_engine(settings.DATABASE_URL, echo=False)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


class Base(DeclarativeBase):  # type: ignore[misc]
    pass


class VarianceSnapshot(Base):
    """The latest analysis result of one organization, board and period."""

    __tablename__ = "variance_snapshots"
    __table_args__ = (UniqueConstraint("organization_id", "board_id", "period", name="uq_variance_snapshot_scope"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, index=True)
    board_id: Mapped[str] = mapped_column(String)
    period: Mapped[str] = mapped_column(String)
    total_budget: Mapped[Decimal] = mapped_column(Numeric(18, 4))
    total_actual: Mapped[Decimal] = mapped_column(Numeric(18, 4))
    total_variance: Mapped[Decimal] = mapped_column(Numeric(18, 4))
    critical_count: Mapped[int] = mapped_column(Integer, default=0)
    payload: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    def to_result(self) -> AnalysisResult:
        return AnalysisResult.model_validate_json(self.payload)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


async def get_snapshot(
    session: AsyncSession, organization_id: str, board_id: str, period: str
) -> Optional[VarianceSnapshot]:
    stmt = select(VarianceSnapshot).where(
        VarianceSnapshot.organization_id == organization_id,
        VarianceSnapshot.board_id == board_id,
        VarianceSnapshot.period == period,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_previous_snapshot(
    session: AsyncSession, organization_id: str, board_id: str, period: str
) -> Optional[VarianceSnapshot]:
    """
    Returns the stored snapshot with the latest period label before `period`.
    Labels compare as strings, which orders labels of one format chronologically.
    """
    stmt = (
        select(VarianceSnapshot)
        .where(
            VarianceSnapshot.organization_id == organization_id,
            VarianceSnapshot.board_id == board_id,
            VarianceSnapshot.period < period,
        )
        .order_by(VarianceSnapshot.period.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def save_snapshot(
    session: AsyncSession, organization_id: str, board_id: str, period: str, result: AnalysisResult
) -> VarianceSnapshot:
    """
    Stores a result, replacing any snapshot already stored for the same scope.
    The caller owns the transaction.
    """
    stmt = (
        select(VarianceSnapshot)
        .where(
            VarianceSnapshot.organization_id == organization_id,
            VarianceSnapshot.board_id == board_id,
            VarianceSnapshot.period == period,
        )
        .with_for_update()
    )
    existing = (await session.execute(stmt)).scalar_one_or_none()

    snapshot = existing if existing is not None else VarianceSnapshot(
        organization_id=organization_id, board_id=board_id, period=period
    )
    snapshot.total_budget = result.summary.total_budget
    snapshot.total_actual = result.summary.total_actual
    snapshot.total_variance = result.summary.total_variance
    snapshot.critical_count = result.summary.critical_count
    snapshot.payload = result.model_dump_json()

    if existing is None:
        session.add(snapshot)
    await session.flush()

    logger.info(f"Stored variance snapshot for {organization_id}/{board_id}/{period}.")
    return snapshot
