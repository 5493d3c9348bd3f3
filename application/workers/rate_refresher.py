import asyncio
import logging
import signal
from datetime import datetime

from application.services.rates_loader import RatesLoader
from application.services.service_factory import ServiceFactory
from config.logging_config import setup_logging
from config.settings import get_settings

logger = logging.getLogger(__name__)


class RateRefresherWorker:
	"""
	Background worker that reloads the rate snapshot on a fixed interval.

	A failed cycle is logged and the loop carries on with the next one.
	"""

	def __init__(self, loader: RatesLoader, interval: float = 300):
		self.loader = loader
		self.interval = interval
		self.is_running = False
		self.cycle_count = 0

	async def refresh_once(self) -> bool:
		cycle_start = datetime.now()
		self.cycle_count += 1

		snapshot = await self.loader.load_all()
		duration = (datetime.now() - cycle_start).total_seconds()

		if snapshot is None:
			logger.warning(f'Refresh cycle #{self.cycle_count} produced no snapshot ({duration:.2f}s)')
			return False

		logger.info(
			f'Refresh cycle #{self.cycle_count} completed in {duration:.2f}s, '
			f'USDT/NGN {snapshot.usdt_ngn_rate} from {snapshot.sources.get("usdt_ngn")}'
		)
		return True

	async def run(self):
		self.is_running = True
		logger.info(f'Rate refresher started, interval {self.interval}s')

		while self.is_running:
			try:
				await self.refresh_once()
			except asyncio.CancelledError:
				logger.info('Rate refresher received cancellation signal')
				break
			except Exception as e:
				logger.error(f'Error in refresh cycle: {e}', exc_info=True)

			try:
				await asyncio.sleep(self.interval)
			except asyncio.CancelledError:
				break

		self.is_running = False
		logger.info('Rate refresher stopped')

	def stop(self):
		logger.info('Stopping rate refresher...')
		self.is_running = False


async def main():
	settings = get_settings()
	setup_logging(settings.LOG_LEVEL, settings.LOG_DIRECTORY)

	factory = ServiceFactory(settings)
	await factory.startup()

	worker = RateRefresherWorker(factory.rates_loader, interval=settings.REFRESH_INTERVAL_SECONDS or 300)

	def signal_handler(sig, frame):
		logger.info(f'Received signal {sig}, shutting down gracefully...')
		worker.stop()

	signal.signal(signal.SIGINT, signal_handler)
	signal.signal(signal.SIGTERM, signal_handler)

	try:
		await worker.run()
	finally:
		await factory.close()
		logger.info('Cleanup completed')


def run():
	asyncio.run(main())


if __name__ == '__main__':
	run()
