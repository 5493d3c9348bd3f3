import logging
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select

from domain.models.rates import MarginSettings, RateQuote, RateSnapshot
from infrastructure.persistence.database import Database
from infrastructure.persistence.models.rates import (
	CostPriceDB,
	CurrencyRateDB,
	HistoricalRateDB,
	MarginSettingsDB,
	UsdtNgnRateDB,
	VertoFxCurrentRateDB,
)

logger = logging.getLogger(__name__)

SINGLE_ROW_ID = 1
# Buy side stand-in when only VertoFX sell rates were stored
VERTOFX_BUY_APPROXIMATION = Decimal('1.015')


def _as_naive_utc(value: datetime | None) -> datetime:
	value = value or datetime.now(UTC)
	if value.tzinfo is not None:
		value = value.astimezone(UTC).replace(tzinfo=None)
	return value


def _as_aware_utc(value: datetime) -> datetime:
	return value.replace(tzinfo=UTC) if value.tzinfo is None else value


class RatesRepository:
	"""Record store for rates, margins and snapshots. Opens one session per call."""

	def __init__(self, db: Database):
		self.db = db

	# USDT/NGN

	async def get_latest_usdt_ngn_rate(self) -> Decimal | None:
		stmt = select(UsdtNgnRateDB).order_by(UsdtNgnRateDB.created_at.desc(), UsdtNgnRateDB.id.desc()).limit(1)
		async with self.db.session() as session:
			row = (await session.execute(stmt)).scalars().first()
		return row.rate if row else None

	async def save_usdt_ngn_rate(
		self,
		rate: Decimal,
		source: str,
		now: datetime | None = None,
		dedup_window: timedelta | None = timedelta(hours=6),
	) -> bool:
		"""Insert a USDT/NGN rate unless ``source`` already wrote one inside ``dedup_window``."""
		created_at = _as_naive_utc(now)

		async with self.db.session() as session:
			if dedup_window is not None:
				stmt = (
					select(UsdtNgnRateDB.id)
					.filter(
						UsdtNgnRateDB.source == source,
						UsdtNgnRateDB.created_at >= created_at - dedup_window,
					)
					.limit(1)
				)
				if (await session.execute(stmt)).first() is not None:
					logger.debug(f'Skipping USDT/NGN save for {source}, one exists in the last {dedup_window}')
					return False

			session.add(UsdtNgnRateDB(rate=rate, source=source, created_at=created_at))

		logger.info(f'Saved USDT/NGN rate {rate} from {source}')
		return True

	# FX cross rates

	async def get_currency_rates(self) -> dict[str, Decimal]:
		stmt = select(CurrencyRateDB).filter(CurrencyRateDB.is_active.is_(True))
		async with self.db.session() as session:
			rows = (await session.execute(stmt)).scalars().all()
		return {row.currency_code: row.rate for row in rows}

	async def save_currency_rates(
		self, rates: Mapping[str, Decimal], source: str = 'api', now: datetime | None = None
	) -> None:
		updated_at = _as_naive_utc(now)
		async with self.db.session() as session:
			for code, rate in rates.items():
				row = await session.get(CurrencyRateDB, code)
				if row is None:
					session.add(
						CurrencyRateDB(currency_code=code, rate=rate, source=source, is_active=True, updated_at=updated_at)
					)
				else:
					row.rate = rate
					row.source = source
					row.is_active = True
					row.updated_at = updated_at

	# Margins

	async def get_latest_margin_settings(self) -> MarginSettings | None:
		stmt = select(MarginSettingsDB).order_by(MarginSettingsDB.updated_at.desc(), MarginSettingsDB.id.desc()).limit(1)
		async with self.db.session() as session:
			row = (await session.execute(stmt)).scalars().first()
		if row is None:
			return None
		return MarginSettings(usd_margin=row.usd_margin, other_currencies_margin=row.other_currencies_margin)

	async def save_margin_settings(self, settings: MarginSettings, now: datetime | None = None) -> None:
		updated_at = _as_naive_utc(now)
		stmt = select(MarginSettingsDB).order_by(MarginSettingsDB.updated_at.desc(), MarginSettingsDB.id.desc()).limit(1)
		async with self.db.session() as session:
			row = (await session.execute(stmt)).scalars().first()
			if row is None:
				session.add(
					MarginSettingsDB(
						usd_margin=settings.usd_margin,
						other_currencies_margin=settings.other_currencies_margin,
						created_at=updated_at,
						updated_at=updated_at,
					)
				)
			else:
				row.usd_margin = settings.usd_margin
				row.other_currencies_margin = settings.other_currencies_margin
				row.updated_at = updated_at

	# Historical snapshots

	async def has_snapshot_since(self, since: datetime) -> bool:
		stmt = select(HistoricalRateDB.id).filter(HistoricalRateDB.created_at >= _as_naive_utc(since)).limit(1)
		async with self.db.session() as session:
			return (await session.execute(stmt)).first() is not None

	async def add_snapshot(self, snapshot: RateSnapshot, source: str) -> None:
		prices = snapshot.cost_prices
		fx = snapshot.fx_rates
		async with self.db.session() as session:
			session.add(
				HistoricalRateDB(
					usdt_ngn_rate=snapshot.usdt_ngn_rate,
					usd_price=prices.get('USD'),
					eur_price=prices.get('EUR'),
					gbp_price=prices.get('GBP'),
					cad_price=prices.get('CAD'),
					eur_usd=fx.get('EUR'),
					gbp_usd=fx.get('GBP'),
					cad_usd=fx.get('CAD'),
					margin_usd=snapshot.margins.usd_margin,
					margin_others=snapshot.margins.other_currencies_margin,
					source=source,
					created_at=_as_naive_utc(snapshot.timestamp),
				)
			)

	async def get_snapshots(self, limit: int = 30) -> list[RateSnapshot]:
		stmt = select(HistoricalRateDB).order_by(HistoricalRateDB.created_at.desc()).limit(limit)
		async with self.db.session() as session:
			rows = (await session.execute(stmt)).scalars().all()

		snapshots = []
		for row in rows:
			fx_rates = {'USD': Decimal('1.0')}
			fx_rates.update(
				{code: value for code, value in (('EUR', row.eur_usd), ('GBP', row.gbp_usd), ('CAD', row.cad_usd)) if value}
			)
			cost_prices = {
				code: value
				for code, value in (
					('USD', row.usd_price),
					('EUR', row.eur_price),
					('GBP', row.gbp_price),
					('CAD', row.cad_price),
				)
				if value
			}
			snapshots.append(
				RateSnapshot(
					usdt_ngn_rate=row.usdt_ngn_rate,
					fx_rates=fx_rates,
					vertofx_rates={},
					cost_prices=cost_prices,
					margins=MarginSettings(usd_margin=row.margin_usd, other_currencies_margin=row.margin_others),
					timestamp=_as_aware_utc(row.created_at),
					sources={'snapshot': row.source},
				)
			)
		return snapshots

	# Current cost prices

	async def get_cost_prices(self) -> dict[str, Decimal]:
		async with self.db.session() as session:
			row = await session.get(CostPriceDB, SINGLE_ROW_ID)
		if row is None:
			return {}
		return {
			code: value
			for code, value in (
				('USD', row.usd_price),
				('EUR', row.eur_price),
				('GBP', row.gbp_price),
				('CAD', row.cad_price),
			)
			if value is not None
		}

	async def save_cost_prices(self, prices: Mapping[str, Decimal], now: datetime | None = None) -> None:
		updated_at = _as_naive_utc(now)
		async with self.db.session() as session:
			row = await session.get(CostPriceDB, SINGLE_ROW_ID)
			if row is None:
				row = CostPriceDB(id=SINGLE_ROW_ID, updated_at=updated_at)
				session.add(row)
			row.usd_price = prices.get('USD')
			row.eur_price = prices.get('EUR')
			row.gbp_price = prices.get('GBP')
			row.cad_price = prices.get('CAD')
			row.updated_at = updated_at

	# VertoFX current rates

	async def get_vertofx_current_rates(self) -> dict[str, RateQuote] | None:
		async with self.db.session() as session:
			row = await session.get(VertoFxCurrentRateDB, SINGLE_ROW_ID)
		if row is None:
			return None

		rates = {}
		for code in ('USD', 'EUR', 'GBP', 'CAD'):
			sell = getattr(row, f'{code.lower()}_rate') or Decimal('0')
			buy = getattr(row, f'{code.lower()}_buy')
			if buy is None:
				buy = sell * VERTOFX_BUY_APPROXIMATION
			rates[code] = RateQuote(buy=buy, sell=sell)
		return rates

	async def save_vertofx_current_rates(self, rates: Mapping[str, RateQuote], now: datetime | None = None) -> None:
		updated_at = _as_naive_utc(now)
		async with self.db.session() as session:
			row = await session.get(VertoFxCurrentRateDB, SINGLE_ROW_ID)
			if row is None:
				row = VertoFxCurrentRateDB(id=SINGLE_ROW_ID, updated_at=updated_at)
				session.add(row)
			for code, quote in rates.items():
				prefix = code.lower()
				if not hasattr(row, f'{prefix}_rate'):
					continue
				setattr(row, f'{prefix}_rate', quote.sell or None)
				setattr(row, f'{prefix}_buy', quote.buy or None)
			row.updated_at = updated_at
