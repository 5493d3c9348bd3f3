from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from domain.models.orders import Order
from domain.models.rates import MarginSettings, RateQuote, RateSnapshot


class RateQuoteResponse(BaseModel):
	buy: Decimal
	sell: Decimal

	@classmethod
	def from_domain(cls, quote: RateQuote) -> 'RateQuoteResponse':
		return cls(buy=quote.buy, sell=quote.sell)


class MarginsResponse(BaseModel):
	usd_margin: Decimal = Field(..., description='USD margin in percent')
	other_currencies_margin: Decimal = Field(..., description='Margin for other currencies in percent')

	@classmethod
	def from_domain(cls, margins: MarginSettings) -> 'MarginsResponse':
		return cls(usd_margin=margins.usd_margin, other_currencies_margin=margins.other_currencies_margin)


class RateSnapshotResponse(BaseModel):
	usdt_ngn_rate: Decimal = Field(..., description='Base USDT/NGN rate')
	fx_rates: dict[str, Decimal] = Field(..., description='Value of 1 USD in each currency')
	vertofx_rates: dict[str, RateQuoteResponse] = Field(default_factory=dict)
	cost_prices: dict[str, Decimal] = Field(..., description='NGN cost price per currency')
	margins: MarginsResponse
	timestamp: datetime
	sources: dict[str, str] = Field(default_factory=dict, description='Where each input came from')

	@classmethod
	def from_domain(cls, snapshot: RateSnapshot) -> 'RateSnapshotResponse':
		return cls(
			usdt_ngn_rate=snapshot.usdt_ngn_rate,
			fx_rates=dict(snapshot.fx_rates),
			vertofx_rates={code: RateQuoteResponse.from_domain(q) for code, q in snapshot.vertofx_rates.items()},
			cost_prices=dict(snapshot.cost_prices),
			margins=MarginsResponse.from_domain(snapshot.margins),
			timestamp=snapshot.timestamp,
			sources=dict(snapshot.sources),
		)

	class ConfigDict:
		json_schema_extra = {
			'example': {
				'usdt_ngn_rate': 1500,
				'fx_rates': {'USD': 1.0, 'EUR': 0.92},
				'cost_prices': {'USD': 1537.5, 'EUR': 1679.35},
				'margins': {'usd_margin': 2.5, 'other_currencies_margin': 3.0},
				'timestamp': '2025-09-27T10:30:00Z',
				'sources': {'usdt_ngn': 'live', 'fx': 'live', 'vertofx': 'default'},
			}
		}


class RateHistoryResponse(BaseModel):
	snapshots: list[RateSnapshotResponse]
	count: int


class CostPricesResponse(BaseModel):
	cost_prices: dict[str, Decimal]
	usdt_ngn_rate: Decimal
	timestamp: datetime


class CostPriceResponse(BaseModel):
	currency: str
	cost_price: Decimal
	timestamp: datetime


class RateLimitStatusResponse(BaseModel):
	provider: str
	is_limited: bool
	seconds_until_reset: int
	consecutive_failures: int


class OrderResponse(BaseModel):
	order_number: int
	id: str
	side: str
	status: str
	token_id: str
	price: Decimal | None = None
	quantity: Decimal | None = None
	amount: Decimal | None = None
	counterparty_nickname: str
	create_date: datetime

	@classmethod
	def from_domain(cls, order: Order) -> 'OrderResponse':
		return cls(
			order_number=order.order_number,
			id=order.id,
			side=order.side.name,
			status=order.status,
			token_id=order.token_id,
			price=order.price,
			quantity=order.quantity,
			amount=order.amount,
			counterparty_nickname=order.counterparty_nickname,
			create_date=order.create_date,
		)


class OrdersResponse(BaseModel):
	cutoff: date
	orders: list[OrderResponse]
	count: int


class P2PStatusResponse(BaseModel):
	has_access: bool
	message: str
	base_url: str
	server_time: datetime | None = None
