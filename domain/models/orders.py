from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class OrderSide(Enum):
    BUY = 0
    SELL = 1

    @classmethod
    def from_code(cls, code: int | str | None) -> "OrderSide":
        # Bybit only documents 0 as BUY; every other code is treated as SELL
        try:
            return cls.BUY if int(code) == 0 else cls.SELL
        except (TypeError, ValueError):
            return cls.SELL


# Bybit P2P order status codes, still unverified against the published API docs
ORDER_STATUS_LABELS: dict[int, str] = {
    10: "Waiting for buyer to pay",
    20: "Waiting for seller to release",
    30: "Appealing",
    40: "Order canceled",
    50: "Order finished",
}


def status_label(code: int | str | None) -> str:
    try:
        return ORDER_STATUS_LABELS.get(int(code), str(code))
    except (TypeError, ValueError):
        return str(code)


@dataclass(frozen=True)
class Order:
    order_number: int
    id: str
    side: OrderSide
    status: str
    token_id: str
    price: Decimal | None
    quantity: Decimal | None
    counterparty_nickname: str
    create_date: datetime
    amount: Decimal | None


@dataclass(frozen=True)
class OrderFilter:
    status: int | None = None
    begin_time: int | None = None
    end_time: int | None = None
    token_id: str | None = None
    side: list[int] | None = None

    def to_params(self) -> dict:
        return {
            "status": self.status,
            "beginTime": self.begin_time,
            "endTime": self.end_time,
            "tokenId": self.token_id,
            "side": self.side,
        }
