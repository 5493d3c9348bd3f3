import logging

from application.services import MarginService, RatesLoader, SnapshotService
from application.services.service_factory import ServiceFactory
from config.settings import Settings, get_settings
from infrastructure.providers import BybitP2PClient
from infrastructure.rate_limit.tracker import RateLimitTracker

logger = logging.getLogger(__name__)


class AppDependencies:
	"""Container for application-wide singleton dependencies."""

	factory: ServiceFactory | None = None


deps = AppDependencies()


def init_dependencies(settings: Settings | None = None) -> ServiceFactory:
	"""Initialize all singleton dependencies. Called at app startup."""
	logger.info('Initializing dependencies...')
	deps.factory = ServiceFactory(settings or get_settings())
	logger.info('Dependencies initialized')
	return deps.factory


async def cleanup_dependencies() -> None:
	logger.info('Cleaning up dependencies...')
	if deps.factory:
		await deps.factory.close()
		deps.factory = None
	logger.info('Cleanup complete')


def get_factory() -> ServiceFactory:
	if deps.factory is None:
		raise RuntimeError('Services are not initialized')
	return deps.factory


def get_rates_loader() -> RatesLoader:
	return get_factory().rates_loader


def get_margin_service() -> MarginService:
	return get_factory().margin_service


def get_snapshot_service() -> SnapshotService:
	return get_factory().snapshot_service


def get_rate_limit_tracker() -> RateLimitTracker:
	return get_factory().rate_limits


def get_bybit_client() -> BybitP2PClient:
	return get_factory().bybit_client
