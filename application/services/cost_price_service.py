import logging
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.exc import SQLAlchemyError

from domain.cost_price import calculate_cost_prices, have_prices_changed
from domain.models.rates import MarginSettings
from infrastructure.persistence.repositories.rates import RatesRepository

logger = logging.getLogger(__name__)

# Scale of the stored price columns
PRICE_QUANTUM = Decimal('0.000001')


def _quantize(prices: Mapping[str, Decimal]) -> dict[str, Decimal]:
	return {code: Decimal(value).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP) for code, value in prices.items()}


@dataclass(frozen=True)
class CostPriceUpdate:
	prices: dict[str, Decimal]
	changed: bool
	persisted: bool


class CostPriceService:
	def __init__(self, repository: RatesRepository):
		self.repository = repository

	async def _stored_prices(self) -> dict[str, Decimal]:
		try:
			return await self.repository.get_cost_prices()
		except SQLAlchemyError as e:
			logger.warning(f'Could not read stored cost prices: {e}')
			return {}

	async def recalculate(
		self,
		usdt_ngn_rate: Decimal,
		fx_rates: Mapping[str, Decimal],
		margins: MarginSettings,
		previous: Mapping[str, Decimal] | None = None,
	) -> CostPriceUpdate:
		"""Price every supported currency and store the result only if it moved.

		Prices are rounded to the stored column scale, so a table read back from
		the database compares equal to the one that was written. With no
		``previous`` table the stored prices are used for the comparison.
		"""
		prices = _quantize(
			calculate_cost_prices(
				usdt_ngn_rate,
				fx_rates,
				margins.usd_margin,
				margins.other_currencies_margin,
			)
		)

		if previous is None:
			previous = await self._stored_prices()

		if not have_prices_changed(prices, _quantize(previous)):
			logger.debug('Cost prices unchanged, skipping save')
			return CostPriceUpdate(prices=prices, changed=False, persisted=False)

		try:
			await self.repository.save_cost_prices(prices)
		except SQLAlchemyError as e:
			logger.error(f'Failed to save cost prices: {e}')
			return CostPriceUpdate(prices=prices, changed=True, persisted=False)

		logger.info(f'Cost prices updated: {", ".join(f"{k}={v:.2f}" for k, v in prices.items())}')
		return CostPriceUpdate(prices=prices, changed=True, persisted=True)
