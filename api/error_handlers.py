import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from domain.exceptions.rates import (
	InvalidCurrencyError,
	InvalidMarginError,
	OrderNotFoundError,
	ProviderError,
	RatesUnavailableError,
)

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
	@app.exception_handler(InvalidCurrencyError)
	async def invalid_currency_handler(request: Request, exc: InvalidCurrencyError):
		return JSONResponse(status_code=400, content={'detail': str(exc)})

	@app.exception_handler(InvalidMarginError)
	async def invalid_margin_handler(request: Request, exc: InvalidMarginError):
		return JSONResponse(status_code=400, content={'detail': str(exc)})

	@app.exception_handler(OrderNotFoundError)
	async def order_not_found_handler(request: Request, exc: OrderNotFoundError):
		return JSONResponse(status_code=404, content={'detail': str(exc)})

	@app.exception_handler(RatesUnavailableError)
	async def rates_unavailable_handler(request: Request, exc: RatesUnavailableError):
		logger.error(f'Rates unavailable: {exc}')
		return JSONResponse(status_code=503, content={'detail': str(exc)})

	@app.exception_handler(ProviderError)
	async def provider_error_handler(request: Request, exc: ProviderError):
		logger.error(f'Provider error from {exc.provider}: {exc}')
		return JSONResponse(status_code=503, content={'detail': 'Rate provider unavailable'})
