"""Saga messages: transaction actions, HTTP payloads and RPC messages."""

import dataclasses
import json
import types
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Optional, Union, get_args, get_origin

FLAG_TRUE = "T"
FLAG_FALSE = "F"
TX_EXPIRATION = timedelta(seconds=30)

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


class Action(str, Enum):
    """What to do with a local transaction."""

    ROLLBACK = "R"
    COMMIT = "C"


@dataclass
class TransactionInfo:
    """Message published on a transaction topic."""

    correlation_id: str = ""
    action: str = ""

    def to_json(self) -> str:
        action = self.action.value if isinstance(self.action, Action) else self.action
        return json.dumps(
            {"correlationID": self.correlation_id, "action": action},
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, payload: Union[str, bytes]) -> "TransactionInfo":
        """Parse a message payload; raise ValueError when it is not a valid one."""
        data = json.loads(payload)
        obj = _mapping(data, "transaction info")
        return cls(
            correlation_id=_str(obj, "correlationID", "transaction info"),
            action=_str(obj, "action", "transaction info"),
        )


# --- JSON helpers -----------------------------------------------------------


def _mapping(data: Any, where: str) -> Mapping:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{where}: expected a JSON object")
    return data


def _str(data: Mapping, key: str, where: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{where}.{key}: expected a string")
    return value


def _int(data: Mapping, key: str, where: str, int32: bool = True) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{where}.{key}: expected an integer")
    if int32 and not _INT32_MIN <= value <= _INT32_MAX:
        raise ValueError(f"{where}.{key}: integer out of range")
    return value


def _float(data: Mapping, key: str, where: str) -> float:
    value = data.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{where}.{key}: expected a number")
    return float(value)


def _header(data: Any) -> "Header":
    obj = _mapping(data, "header")
    return Header(correlation_id=_str(obj, "correlationID", "header"))


# --- HTTP payloads ----------------------------------------------------------


@dataclass
class Header:
    correlation_id: str = ""


@dataclass
class OrderDetail:
    product_id: int = 0
    price: float = 0.0
    total_price: float = 0.0
    quantity: int = 0


@dataclass
class Order:
    id: Optional[str] = None
    phone_number: str = ""
    name: str = ""
    address: str = ""
    order_details: list[OrderDetail] = field(default_factory=list)
    total_price: float = 0.0


@dataclass
class OrderRequest:
    header: Header = field(default_factory=Header)
    body: Order = field(default_factory=Order)

    @classmethod
    def from_dict(cls, data: Any) -> "OrderRequest":
        """Build from a decoded JSON document; raise ValueError on a bad shape."""
        obj = _mapping(data, "order request")
        body = _mapping(obj.get("body"), "body")
        raw_details = body.get("orderDetails")
        if raw_details is None:
            raw_details = []
        if not isinstance(raw_details, list):
            raise ValueError("body.orderDetails: expected a JSON array")
        details = []
        for raw in raw_details:
            if not isinstance(raw, Mapping):
                raise ValueError("body.orderDetails: expected JSON objects")
            where = "orderDetail"
            details.append(
                OrderDetail(
                    product_id=_int(raw, "productID", where) or 0,
                    price=_float(raw, "price", where),
                    total_price=_float(raw, "totalPrice", where),
                    quantity=_int(raw, "quantity", where) or 0,
                )
            )
        order_id = body.get("id")
        if order_id is not None and not isinstance(order_id, str):
            raise ValueError("body.id: expected a string")
        order = Order(
            id=order_id,
            phone_number=_str(body, "phoneNumber", "body"),
            name=_str(body, "name", "body"),
            address=_str(body, "address", "body"),
            order_details=details,
            total_price=_float(body, "totalPrice", "body"),
        )
        return cls(header=_header(obj.get("header")), body=order)


@dataclass
class Product:
    id: int = 0
    quantity: int = 0


@dataclass
class ProductRequest:
    header: Header = field(default_factory=Header)
    body: Product = field(default_factory=Product)

    def to_dict(self) -> dict[str, Any]:
        return {
            "header": {"correlationID": self.header.correlation_id},
            "body": {"id": self.body.id, "quantity": self.body.quantity},
        }


@dataclass
class ProductUpdate:
    id: Optional[int] = None
    quantity: int = 0


@dataclass
class UpdateProductRequest:
    header: Header = field(default_factory=Header)
    body: ProductUpdate = field(default_factory=ProductUpdate)

    @classmethod
    def from_dict(cls, data: Any) -> "UpdateProductRequest":
        """Build from a decoded JSON document; raise ValueError on a bad shape."""
        obj = _mapping(data, "product request")
        body = _mapping(obj.get("body"), "body")
        update = ProductUpdate(
            id=_int(body, "id", "body", int32=False),
            quantity=_int(body, "quantity", "body") or 0,
        )
        return cls(header=_header(obj.get("header")), body=update)


# --- RPC messages -----------------------------------------------------------


@dataclass
class BeginTxRequest:
    correlation_id: str = ""


@dataclass
class BeginTxResponse:
    is_renew: bool = False
    tx_random_id: str = ""


@dataclass
class CommonTxDoActionRequest:
    correlation_id: str = ""
    begin_tx_res: Optional[BeginTxResponse] = None


@dataclass
class CommonTxResponse:
    ok: bool = False


@dataclass
class RpcOrderDetail:
    order_id: str = ""
    product_id: int = 0
    quantity: int = 0
    price: float = 0.0
    total_price: float = 0.0


@dataclass
class InsertOrderRequest:
    correlation_id: str = ""
    phone_number: str = ""
    address: str = ""
    name: str = ""
    total_price: float = 0.0
    begin_tx_res: Optional[BeginTxResponse] = None


@dataclass
class InsertOrderResponse:
    id: str = ""


@dataclass
class InsertOrderDetailRequest:
    correlation_id: str = ""
    order_details: list[RpcOrderDetail] = field(default_factory=list)
    begin_tx_res: Optional[BeginTxResponse] = None


@dataclass
class InsertOrderDetailResponse:
    row_affected: int = 0


@dataclass
class RpcUpdateProductRequest:
    correlation_id: str = ""
    id: int = 0
    quantity: int = 0
    begin_tx_res: Optional[BeginTxResponse] = None


@dataclass
class RpcUpdateProductResponse:
    row_affected: int = 0


def message_to_dict(message: Any) -> dict[str, Any]:
    """Turn a message dataclass into plain nested dicts and lists."""
    if not dataclasses.is_dataclass(message) or isinstance(message, type):
        raise TypeError(f"not a message: {message!r}")
    return dataclasses.asdict(message)


def message_from_dict(cls: type, data: Mapping[str, Any]) -> Any:
    """Build a message of type cls from plain nested dicts; unknown keys are ignored."""
    if not (isinstance(cls, type) and dataclasses.is_dataclass(cls)):
        raise TypeError(f"not a message type: {cls!r}")
    if not isinstance(data, Mapping):
        raise TypeError(f"{cls.__name__}: expected a mapping")
    kwargs = {
        f.name: _convert(f.type, data[f.name])
        for f in dataclasses.fields(cls)
        if f.name in data
    }
    return cls(**kwargs)


def _convert(tp: Any, value: Any) -> Any:
    if value is None:
        return None
    origin = get_origin(tp)
    if origin is Union or origin is types.UnionType:
        inner = [arg for arg in get_args(tp) if arg is not type(None)]
        return _convert(inner[0], value) if len(inner) == 1 else value
    if origin is list:
        if not isinstance(value, list):
            raise TypeError("expected a list")
        (item_type,) = get_args(tp)
        return [_convert(item_type, item) for item in value]
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        return message_from_dict(tp, value)
    return value