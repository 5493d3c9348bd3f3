import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.dependencies import cleanup_dependencies, init_dependencies
from api.error_handlers import register_exception_handlers
from api.routes import orders, rates
from application.workers.rate_refresher import RateRefresherWorker
from config.logging_config import setup_logging
from config.settings import get_settings

logger = logging.getLogger(__name__)


settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
	setup_logging(settings.LOG_LEVEL, settings.LOG_DIRECTORY)
	logger.info(f'Starting {settings.APP_NAME}...')

	factory = init_dependencies(settings)
	await factory.startup()

	worker = None
	worker_task = None
	if settings.REFRESH_INTERVAL_SECONDS > 0:
		worker = RateRefresherWorker(factory.rates_loader, interval=settings.REFRESH_INTERVAL_SECONDS)
		worker_task = asyncio.create_task(worker.run())

	logger.info('Application ready')

	yield

	logger.info('Shutting down...')
	if worker and worker_task:
		worker.stop()
		worker_task.cancel()
		with contextlib.suppress(asyncio.CancelledError):
			await worker_task
	await cleanup_dependencies()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
	logger.error(f'Unhandled exception: {exc}', exc_info=True)
	return JSONResponse(status_code=500, content={'detail': 'Internal server error'})


app.include_router(rates.router)
app.include_router(orders.router)
register_exception_handlers(app)
