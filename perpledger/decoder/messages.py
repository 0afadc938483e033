"""
Protocol log messages

Each program-data payload starts with a one-byte tag that selects a fixed
little-endian layout. The set of messages is closed: MESSAGE_TYPES maps
every known tag to its message class, anything else is ignored.

Layouts:
    tag 10/18  order placed   <BBBxIQqq  side, order_type, instr_id, order_id, price, qty
    tag 11/19  fill           <BBBBIQqq  side, order_type, ioc, instr_id, order_id, price, qty
    tag 15     spot fees      <Bxxxq     fees
    tag 23     perp fees      <Bxxxqq    fees, rebates
    tag 24     perp funding   <BxxxIq    instr_id, funding
    tag 27     perp soc loss  <BxxxIq    instr_id, soc_loss
"""
import struct
from dataclasses import dataclass, astuple
from typing import ClassVar, Optional, Union


NO_INSTR_ID = 0xFFFFFFFF
NO_ORDER_TYPE = 0xFF


class MessageTag:
    """Numeric tags"""
    SPOT_ORDER_PLACED = 10
    SPOT_FILL = 11
    SPOT_FEES = 15
    PERP_ORDER_PLACED = 18
    PERP_FILL = 19
    PERP_FEES = 23
    PERP_FUNDING = 24
    PERP_SOC_LOSS = 27


@dataclass(frozen=True)
class _Message:
    """Base for fixed-layout messages; the tag is always the first field"""
    LAYOUT: ClassVar[struct.Struct]

    tag: int

    @classmethod
    def unpack(cls, data: bytes) -> Optional["_Message"]:
        if len(data) < cls.LAYOUT.size:
            return None
        return cls(*cls.LAYOUT.unpack_from(data))

    def pack(self) -> bytes:
        return self.LAYOUT.pack(*astuple(self))


@dataclass(frozen=True)
class OrderPlaced(_Message):
    """New order; carries the order id to market id association"""
    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<BBBxIQqq")

    side: int
    order_type: int
    instr_id: int
    order_id: int
    price: int
    qty: int


@dataclass(frozen=True)
class FillMessage(_Message):
    """Executed fill"""
    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<BBBBIQqq")

    side: int
    order_type: int
    ioc: int
    instr_id: int
    order_id: int
    price: int
    qty: int

    @property
    def is_perp(self) -> bool:
        return self.tag == MessageTag.PERP_FILL

    @property
    def has_instr_id(self) -> bool:
        return self.instr_id != NO_INSTR_ID


@dataclass(frozen=True)
class SpotFees(_Message):
    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<Bxxxq")

    fees: int


@dataclass(frozen=True)
class PerpFees(_Message):
    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<Bxxxqq")

    fees: int
    rebates: int


@dataclass(frozen=True)
class PerpFunding(_Message):
    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<BxxxIq")

    instr_id: int
    funding: int


@dataclass(frozen=True)
class PerpSocLoss(_Message):
    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<BxxxIq")

    instr_id: int
    soc_loss: int


Message = Union[OrderPlaced, FillMessage, SpotFees, PerpFees, PerpFunding, PerpSocLoss]

MESSAGE_TYPES: dict[int, type] = {
    MessageTag.SPOT_ORDER_PLACED: OrderPlaced,
    MessageTag.PERP_ORDER_PLACED: OrderPlaced,
    MessageTag.SPOT_FILL: FillMessage,
    MessageTag.PERP_FILL: FillMessage,
    MessageTag.SPOT_FEES: SpotFees,
    MessageTag.PERP_FEES: PerpFees,
    MessageTag.PERP_FUNDING: PerpFunding,
    MessageTag.PERP_SOC_LOSS: PerpSocLoss,
}


def parse_message(data: bytes) -> Optional[Message]:
    """
    Parse one payload

    Returns:
        The message, or None for empty, truncated or unknown-tag payloads
    """
    if not data:
        return None
    message_cls = MESSAGE_TYPES.get(data[0])
    if message_cls is None:
        return None
    return message_cls.unpack(data)
