from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from typing import Generic, Iterator, Self, Sequence, TypeVar

import reactivex
from reactivex import operators as ops

A = TypeVar("A")


@dataclass
class PeripheralTag:
    # PeripheralTag(name="sensor", variant="heart_rate", metadata={"transport": "ble"})
    name: str
    variant: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class PeripheralInfo:
    id: str | None = None
    tags: Sequence[PeripheralTag] = field(default_factory=list)


@dataclass
class PeripheralMessageEnvelope(Generic[A]):
    peripheral_info: PeripheralInfo
    data: A

    @classmethod
    def unwrap_peripheral(cls, wrapper: PeripheralMessageEnvelope[A]) -> A:
        return wrapper.data


class Peripheral(Generic[A]):
    """Abstract base class for all peripherals."""

    def _event_stream(self) -> reactivex.Observable[A]:
        return reactivex.empty()

    def peripheral_info(self) -> PeripheralInfo:
        return PeripheralInfo()

    @cached_property
    def observe(self) -> reactivex.Observable[PeripheralMessageEnvelope[A]]:
        def wrap(a: A) -> PeripheralMessageEnvelope[A]:
            return PeripheralMessageEnvelope[A](
                data=a,
                peripheral_info=self.peripheral_info(),
            )

        return self._event_stream().pipe(ops.map(wrap), ops.share())

    @classmethod
    def detect(cls) -> Iterator[Self]:
        raise NotImplementedError("'detect' is not implemented")

    def run(self) -> None:
        pass

    def close(self) -> None:
        pass
