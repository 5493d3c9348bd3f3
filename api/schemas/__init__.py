from .requests import MarginUpdateRequest
from .responses import (
	CostPriceResponse,
	CostPricesResponse,
	MarginsResponse,
	OrderResponse,
	OrdersResponse,
	P2PStatusResponse,
	RateHistoryResponse,
	RateLimitStatusResponse,
	RateQuoteResponse,
	RateSnapshotResponse,
)

__all__ = [
	'CostPriceResponse',
	'CostPricesResponse',
	'MarginUpdateRequest',
	'MarginsResponse',
	'OrderResponse',
	'OrdersResponse',
	'P2PStatusResponse',
	'RateHistoryResponse',
	'RateLimitStatusResponse',
	'RateQuoteResponse',
	'RateSnapshotResponse',
]
