from datetime import datetime
from decimal import Decimal

from sqlalchemy import DECIMAL, Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
	pass


class UsdtNgnRateDB(Base):
	__tablename__ = 'usdt_ngn_rates'

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	rate: Mapped[Decimal] = mapped_column(DECIMAL(precision=18, scale=6), nullable=False)
	source: Mapped[str] = mapped_column(String(50), nullable=False, default='manual')
	created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

	__table_args__ = (Index('idx_usdt_ngn_source_created', 'source', 'created_at'),)


class CurrencyRateDB(Base):
	__tablename__ = 'currency_rates'

	currency_code: Mapped[str] = mapped_column(String(5), primary_key=True)
	rate: Mapped[Decimal] = mapped_column(DECIMAL(precision=18, scale=8), nullable=False)
	source: Mapped[str] = mapped_column(String(50), nullable=False, default='api')
	is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
	updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class MarginSettingsDB(Base):
	__tablename__ = 'margin_settings'

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	usd_margin: Mapped[Decimal] = mapped_column(DECIMAL(precision=8, scale=4), nullable=False)
	other_currencies_margin: Mapped[Decimal] = mapped_column(DECIMAL(precision=8, scale=4), nullable=False)
	created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
	updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class HistoricalRateDB(Base):
	"""One row per persisted rate snapshot."""

	__tablename__ = 'historical_rates'

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	usdt_ngn_rate: Mapped[Decimal] = mapped_column(DECIMAL(precision=18, scale=6), nullable=False)
	usd_price: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	eur_price: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	gbp_price: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	cad_price: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	eur_usd: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=8), nullable=True)
	gbp_usd: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=8), nullable=True)
	cad_usd: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=8), nullable=True)
	margin_usd: Mapped[Decimal] = mapped_column(DECIMAL(precision=8, scale=4), nullable=False)
	margin_others: Mapped[Decimal] = mapped_column(DECIMAL(precision=8, scale=4), nullable=False)
	source: Mapped[str] = mapped_column(String(50), nullable=False, default='refresh')
	created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class CostPriceDB(Base):
	__tablename__ = 'fx_prices'

	id: Mapped[int] = mapped_column(Integer, primary_key=True)
	usd_price: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	eur_price: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	gbp_price: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	cad_price: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class VertoFxCurrentRateDB(Base):
	__tablename__ = 'vertofx_current_rates'

	id: Mapped[int] = mapped_column(Integer, primary_key=True)
	usd_rate: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	eur_rate: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	gbp_rate: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	cad_rate: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	usd_buy: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	eur_buy: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	gbp_buy: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	cad_buy: Mapped[Decimal | None] = mapped_column(DECIMAL(precision=18, scale=6), nullable=True)
	updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
