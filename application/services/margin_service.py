import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import SQLAlchemyError

from domain.exceptions.rates import InvalidMarginError
from domain.models.rates import MarginSettings
from infrastructure.persistence.repositories.rates import RatesRepository

logger = logging.getLogger(__name__)

MAX_MARGIN_PCT = Decimal('100')


class MarginService:
	def __init__(self, repository: RatesRepository, defaults: MarginSettings | None = None):
		self.repository = repository
		self.defaults = defaults or MarginSettings.defaults()

	async def load(self) -> MarginSettings:
		try:
			settings = await self.repository.get_latest_margin_settings()
		except SQLAlchemyError as e:
			logger.error(f'Failed to load margin settings, using defaults: {e}')
			return self.defaults

		if settings is None:
			logger.info('No margin settings stored, using defaults')
			return self.defaults
		return settings

	@staticmethod
	def _validate(name: str, value: Decimal | float | str) -> Decimal:
		try:
			margin = Decimal(str(value))
		except InvalidOperation as e:
			raise InvalidMarginError(f'{name} must be a number, got {value!r}') from e

		if not margin.is_finite() or margin < 0 or margin > MAX_MARGIN_PCT:
			raise InvalidMarginError(f'{name} must be between 0 and {MAX_MARGIN_PCT}, got {value}')
		return margin

	async def update(self, usd_margin: Decimal | float | str, other_margin: Decimal | float | str) -> MarginSettings:
		settings = MarginSettings(
			usd_margin=self._validate('usd_margin', usd_margin),
			other_currencies_margin=self._validate('other_currencies_margin', other_margin),
		)
		await self.repository.save_margin_settings(settings)
		logger.info(
			f'Margins updated: USD {settings.usd_margin}%, others {settings.other_currencies_margin}%'
		)
		return settings
