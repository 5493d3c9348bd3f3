from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, status

from api.dependencies import (
	get_margin_service,
	get_rate_limit_tracker,
	get_rates_loader,
	get_snapshot_service,
)
from api.schemas import (
	CostPriceResponse,
	CostPricesResponse,
	MarginsResponse,
	MarginUpdateRequest,
	RateHistoryResponse,
	RateLimitStatusResponse,
	RateSnapshotResponse,
)
from application.services import MarginService, RatesLoader, SnapshotService
from domain.exceptions.rates import InvalidCurrencyError, RatesUnavailableError
from domain.models.rates import SUPPORTED_CURRENCIES
from infrastructure.rate_limit.tracker import RateLimitTracker

router = APIRouter(prefix='/api', tags=['rates'])


@router.get(
	'/rates',
	response_model=RateSnapshotResponse,
	status_code=status.HTTP_200_OK,
	summary='Latest rate snapshot',
)
async def get_rates(
	loader: Annotated[RatesLoader, Depends(get_rates_loader)],
) -> RateSnapshotResponse:
	snapshot = await loader.latest_snapshot()
	return RateSnapshotResponse.from_domain(snapshot)


@router.post(
	'/rates/refresh',
	response_model=RateSnapshotResponse,
	status_code=status.HTTP_200_OK,
	summary='Reload every rate source now',
)
async def refresh_rates(
	loader: Annotated[RatesLoader, Depends(get_rates_loader)],
) -> RateSnapshotResponse:
	snapshot = await loader.load_all(force_refresh=True)
	if snapshot is None:
		raise RatesUnavailableError('A refresh is already running, try again shortly')
	return RateSnapshotResponse.from_domain(snapshot)


@router.get(
	'/rates/history',
	response_model=RateHistoryResponse,
	status_code=status.HTTP_200_OK,
	summary='Stored rate snapshots, newest first',
)
async def get_rate_history(
	snapshots: Annotated[SnapshotService, Depends(get_snapshot_service)],
	limit: Annotated[int, Query(ge=1, le=500)] = 30,
) -> RateHistoryResponse:
	history = await snapshots.history(limit)
	return RateHistoryResponse(
		snapshots=[RateSnapshotResponse.from_domain(s) for s in history],
		count=len(history),
	)


@router.get(
	'/cost-prices',
	response_model=CostPricesResponse,
	status_code=status.HTTP_200_OK,
	summary='Current NGN cost price for every currency',
)
async def get_cost_prices(
	loader: Annotated[RatesLoader, Depends(get_rates_loader)],
) -> CostPricesResponse:
	snapshot = await loader.latest_snapshot()
	return CostPricesResponse(
		cost_prices=dict(snapshot.cost_prices),
		usdt_ngn_rate=snapshot.usdt_ngn_rate,
		timestamp=snapshot.timestamp,
	)


@router.get(
	'/cost-prices/{currency}',
	response_model=CostPriceResponse,
	status_code=status.HTTP_200_OK,
	summary='Current NGN cost price for one currency',
)
async def get_cost_price(
	currency: Annotated[str, Path(min_length=3, max_length=5)],
	loader: Annotated[RatesLoader, Depends(get_rates_loader)],
) -> CostPriceResponse:
	currency = currency.upper()
	if currency not in SUPPORTED_CURRENCIES:
		raise InvalidCurrencyError(f'Unsupported currency: {currency}')

	snapshot = await loader.latest_snapshot()
	price = snapshot.cost_prices.get(currency)
	if price is None:
		raise RatesUnavailableError(f'No cost price available for {currency}')
	return CostPriceResponse(currency=currency, cost_price=price, timestamp=snapshot.timestamp)


@router.get(
	'/margins',
	response_model=MarginsResponse,
	status_code=status.HTTP_200_OK,
	summary='Current margin settings',
)
async def get_margins(
	margins: Annotated[MarginService, Depends(get_margin_service)],
) -> MarginsResponse:
	return MarginsResponse.from_domain(await margins.load())


@router.put(
	'/margins',
	response_model=RateSnapshotResponse,
	status_code=status.HTTP_200_OK,
	summary='Update margins and re-price the latest snapshot',
)
async def update_margins(
	request: MarginUpdateRequest,
	loader: Annotated[RatesLoader, Depends(get_rates_loader)],
) -> RateSnapshotResponse:
	snapshot = await loader.apply_margins(request.usd_margin, request.other_currencies_margin)
	return RateSnapshotResponse.from_domain(snapshot)


@router.get(
	'/rate-limits/{provider}',
	response_model=RateLimitStatusResponse,
	status_code=status.HTTP_200_OK,
	summary='Rate-limit state of a provider',
)
async def get_rate_limit_status(
	provider: Annotated[str, Path(min_length=1, max_length=50)],
	tracker: Annotated[RateLimitTracker, Depends(get_rate_limit_tracker)],
) -> RateLimitStatusResponse:
	return await _rate_limit_status(tracker, provider)


@router.post(
	'/rate-limits/{provider}/reset',
	response_model=RateLimitStatusResponse,
	status_code=status.HTTP_200_OK,
	summary='Clear the backoff state of a provider',
)
async def reset_rate_limit(
	provider: Annotated[str, Path(min_length=1, max_length=50)],
	tracker: Annotated[RateLimitTracker, Depends(get_rate_limit_tracker)],
) -> RateLimitStatusResponse:
	await tracker.reset(provider)
	return await _rate_limit_status(tracker, provider)


async def _rate_limit_status(tracker: RateLimitTracker, provider: str) -> RateLimitStatusResponse:
	state = await tracker.get_state(provider)
	return RateLimitStatusResponse(
		provider=provider,
		is_limited=await tracker.is_limited(provider),
		seconds_until_reset=await tracker.time_until_reset(provider),
		consecutive_failures=state.consecutive_failures,
	)
