import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from domain.models.rates import RateSnapshot
from infrastructure.persistence.repositories.rates import RatesRepository
from infrastructure.utils.time import utc_now

logger = logging.getLogger(__name__)


class SnapshotService:
	"""Writes historical snapshots, at most one per dedup window."""

	def __init__(
		self,
		repository: RatesRepository,
		dedup_window: timedelta = timedelta(hours=6),
		clock: Callable[[], datetime] = utc_now,
	):
		self.repository = repository
		self.dedup_window = dedup_window
		self._clock = clock

	async def save_if_due(self, snapshot: RateSnapshot, source: str = 'refresh') -> bool:
		if snapshot.usdt_ngn_rate <= 0 or not snapshot.cost_prices:
			logger.warning('Refusing to store a snapshot without a rate or prices')
			return False

		since = self._clock() - self.dedup_window
		try:
			if await self.repository.has_snapshot_since(since):
				logger.info(f'Snapshot already stored since {since.isoformat()}, skipping')
				return False

			await self.repository.add_snapshot(snapshot, source)
		except SQLAlchemyError as e:
			logger.error(f'Failed to store rate snapshot: {e}')
			return False

		logger.info(f'Stored {source} snapshot at USDT/NGN {snapshot.usdt_ngn_rate}')
		return True

	async def history(self, limit: int = 30) -> list[RateSnapshot]:
		return await self.repository.get_snapshots(limit)
