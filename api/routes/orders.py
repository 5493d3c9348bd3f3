import logging
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, status

from api.dependencies import get_bybit_client
from api.schemas import OrderResponse, OrdersResponse, P2PStatusResponse
from domain.exceptions.rates import ProviderError
from domain.models.orders import OrderFilter
from infrastructure.providers import BybitP2PClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api/p2p', tags=['p2p'])


@router.get(
	'/orders',
	response_model=OrdersResponse,
	status_code=status.HTTP_200_OK,
	summary='Bybit P2P orders newer than the cutoff date',
)
async def get_orders(
	cutoff: Annotated[date, Query(description='Orders on or before this date are excluded')],
	client: Annotated[BybitP2PClient, Depends(get_bybit_client)],
	order_status: Annotated[int | None, Query(alias='status')] = None,
	token_id: Annotated[str | None, Query(max_length=10)] = None,
) -> OrdersResponse:
	filters = OrderFilter(status=order_status, token_id=token_id)
	orders = await client.fetch_all_orders(cutoff, filters)
	return OrdersResponse(
		cutoff=cutoff,
		orders=[OrderResponse.from_domain(order) for order in orders],
		count=len(orders),
	)


@router.get(
	'/orders/{order_id}',
	response_model=OrderResponse,
	status_code=status.HTTP_200_OK,
	summary='A single Bybit P2P order',
)
async def get_order(
	order_id: Annotated[str, Path(min_length=1, max_length=64)],
	client: Annotated[BybitP2PClient, Depends(get_bybit_client)],
) -> OrderResponse:
	order = await client.get_order(order_id)
	return OrderResponse.from_domain(order)


@router.get(
	'/status',
	response_model=P2PStatusResponse,
	status_code=status.HTTP_200_OK,
	summary='Bybit P2P API access check and server time',
)
async def get_p2p_status(
	client: Annotated[BybitP2PClient, Depends(get_bybit_client)],
) -> P2PStatusResponse:
	has_access, message = await client.check_p2p_access()

	server_time = None
	try:
		server_time = await client.get_server_time()
	except ProviderError as e:
		logger.warning(f'Bybit server time unavailable: {e}')

	return P2PStatusResponse(
		has_access=has_access,
		message=message,
		base_url=client.current_base_url,
		server_time=server_time,
	)
