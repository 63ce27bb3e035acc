from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union


@dataclass(frozen=True)
class PlainValue:
    text: str

    def display(self) -> str:
        return self.text

    def first(self) -> str:
        return self.text

    def addresses(self) -> Tuple[str, ...]:
        return (self.text,) if "@" in self.text else ()


@dataclass(frozen=True)
class AddressedValue:
    name: str
    address: str

    def display(self) -> str:
        if self.name and self.address:
            return f"{self.name} <{self.address}>"
        return self.address or self.name

    def first(self) -> str:
        return self.display()

    def addresses(self) -> Tuple[str, ...]:
        return (self.address,) if self.address else ()


@dataclass(frozen=True)
class MultipleValue:
    values: Tuple["HeaderValue", ...]

    def display(self) -> str:
        return ", ".join(v.display() for v in self.values if v.display())

    def first(self) -> str:
        return self.values[0].display() if self.values else ""

    def addresses(self) -> Tuple[str, ...]:
        out: Tuple[str, ...] = ()
        for v in self.values:
            out += v.addresses()
        return out


HeaderValue = Union[PlainValue, AddressedValue, MultipleValue]

EMPTY = PlainValue("")
