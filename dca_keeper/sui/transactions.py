"""
Programmable transaction builder.

Collects inputs and commands the way a Sui PTB does, resolves shared-object
versions and gas, and serializes the result to `TransactionData` bytes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from .bcs import (
    BcsWriter,
    base58_decode,
    encode_address,
    encode_bool,
    encode_option_u64,
    encode_u8,
    encode_u64,
    normalize_address,
    parse_type_tag,
    write_type_tag,
    write_vector,
)

CLOCK_OBJECT_ID = normalize_address("0x6")


@dataclass(frozen=True)
class Argument:
    """Reference to a PTB value: the gas coin, an input, or a command result."""

    kind: str  # "GasCoin" | "Input" | "Result" | "NestedResult"
    index: int = 0
    sub_index: int = 0

    def __getitem__(self, item: int) -> "Argument":
        if self.kind != "Result":
            raise TypeError("Only command results can be indexed")
        return Argument("NestedResult", self.index, item)

    def to_json(self) -> Any:
        if self.kind == "GasCoin":
            return "GasCoin"
        if self.kind == "NestedResult":
            return {"NestedResult": [self.index, self.sub_index]}
        return {self.kind: self.index}


GAS_COIN = Argument("GasCoin")


@dataclass(frozen=True)
class ObjectRef:
    object_id: str
    version: int
    digest: str  # base58


@dataclass
class PureInput:
    value: bytes
    label: str = ""


@dataclass
class SharedObjectInput:
    object_id: str
    mutable: bool
    initial_shared_version: Optional[int] = None


@dataclass
class OwnedObjectInput:
    ref: ObjectRef


InputArg = Union[PureInput, SharedObjectInput, OwnedObjectInput]


@dataclass
class MoveCall:
    target: str
    type_arguments: List[str]
    arguments: List[Argument]

    @property
    def package(self) -> str:
        return self.target.split("::")[0]

    @property
    def module(self) -> str:
        return self.target.split("::")[1]

    @property
    def function(self) -> str:
        return self.target.split("::")[2]


@dataclass
class TransferObjects:
    objects: List[Argument]
    recipient: Argument


@dataclass
class SplitCoins:
    coin: Argument
    amounts: List[Argument]


@dataclass
class MergeCoins:
    destination: Argument
    sources: List[Argument]


Command = Union[MoveCall, TransferObjects, SplitCoins, MergeCoins]


@dataclass
class GasConfig:
    payment: List[ObjectRef]
    owner: str
    price: int
    budget: int


class ProgrammableTransaction:
    """Mutable PTB under construction."""

    def __init__(self) -> None:
        self.inputs: List[InputArg] = []
        self.commands: List[Command] = []
        self._object_inputs: Dict[str, int] = {}

    # Inputs
    def pure(self, value: bytes, label: str = "") -> Argument:
        self.inputs.append(PureInput(value, label))
        return Argument("Input", len(self.inputs) - 1)

    def pure_u8(self, value: int) -> Argument:
        return self.pure(encode_u8(value), f"u8:{value}")

    def pure_u64(self, value: int) -> Argument:
        return self.pure(encode_u64(value), f"u64:{value}")

    def pure_bool(self, value: bool) -> Argument:
        return self.pure(encode_bool(value), f"bool:{value}")

    def pure_address(self, value: str) -> Argument:
        return self.pure(encode_address(value), f"address:{normalize_address(value)}")

    def pure_option_u64(self, value: Optional[int]) -> Argument:
        return self.pure(encode_option_u64(value), f"option<u64>:{value}")

    def shared_object(self, object_id: str, mutable: bool = True) -> Argument:
        """Add (or reuse) a shared object input; mutability is widened on reuse."""
        object_id = normalize_address(object_id)
        if object_id in self._object_inputs:
            index = self._object_inputs[object_id]
            existing = self.inputs[index]
            if isinstance(existing, SharedObjectInput):
                existing.mutable = existing.mutable or mutable
            return Argument("Input", index)
        version = 1 if object_id == CLOCK_OBJECT_ID else None
        self.inputs.append(SharedObjectInput(object_id, mutable and object_id != CLOCK_OBJECT_ID, version))
        self._object_inputs[object_id] = len(self.inputs) - 1
        return Argument("Input", len(self.inputs) - 1)

    def owned_object(self, ref: ObjectRef) -> Argument:
        object_id = normalize_address(ref.object_id)
        if object_id in self._object_inputs:
            return Argument("Input", self._object_inputs[object_id])
        self.inputs.append(OwnedObjectInput(ObjectRef(object_id, ref.version, ref.digest)))
        self._object_inputs[object_id] = len(self.inputs) - 1
        return Argument("Input", len(self.inputs) - 1)

    # Commands
    def move_call(
        self,
        target: str,
        arguments: Sequence[Argument] = (),
        type_arguments: Sequence[str] = (),
    ) -> Argument:
        package, module, function = target.split("::")
        self.commands.append(
            MoveCall(f"{normalize_address(package)}::{module}::{function}", list(type_arguments), list(arguments))
        )
        return Argument("Result", len(self.commands) - 1)

    def transfer_objects(self, objects: Sequence[Argument], recipient: str) -> None:
        address = self.pure_address(recipient)
        self.commands.append(TransferObjects(list(objects), address))

    def split_coins(self, coin: Argument, amounts: Sequence[int]) -> Argument:
        self.commands.append(SplitCoins(coin, [self.pure_u64(a) for a in amounts]))
        return Argument("Result", len(self.commands) - 1)

    def merge_coins(self, destination: Argument, sources: Sequence[Argument]) -> None:
        self.commands.append(MergeCoins(destination, list(sources)))

    # Resolution
    def unresolved_shared_objects(self) -> List[str]:
        return [
            arg.object_id
            for arg in self.inputs
            if isinstance(arg, SharedObjectInput) and arg.initial_shared_version is None
        ]

    def resolve_shared_versions(self, versions: Dict[str, int]) -> None:
        for arg in self.inputs:
            if isinstance(arg, SharedObjectInput) and arg.initial_shared_version is None:
                version = versions.get(arg.object_id)
                if version is None:
                    raise ValueError(f"Object {arg.object_id} is not shared or was not found")
                arg.initial_shared_version = version

    def move_calls(self) -> List[MoveCall]:
        return [c for c in self.commands if isinstance(c, MoveCall)]

    def describe(self) -> Dict[str, Any]:
        """JSON-friendly summary for logs and dry-run output."""
        commands: List[Dict[str, Any]] = []
        for command in self.commands:
            if isinstance(command, MoveCall):
                commands.append({
                    "MoveCall": {
                        "target": command.target,
                        "type_arguments": command.type_arguments,
                        "arguments": [a.to_json() for a in command.arguments],
                    }
                })
            elif isinstance(command, TransferObjects):
                commands.append({
                    "TransferObjects": {
                        "objects": [a.to_json() for a in command.objects],
                        "recipient": command.recipient.to_json(),
                    }
                })
            elif isinstance(command, SplitCoins):
                commands.append({
                    "SplitCoins": {"coin": command.coin.to_json(), "amounts": [a.to_json() for a in command.amounts]}
                })
            else:
                commands.append({
                    "MergeCoins": {
                        "destination": command.destination.to_json(),
                        "sources": [a.to_json() for a in command.sources],
                    }
                })
        inputs: List[Dict[str, Any]] = []
        for arg in self.inputs:
            if isinstance(arg, PureInput):
                inputs.append({"pure": arg.label or arg.value.hex()})
            elif isinstance(arg, SharedObjectInput):
                inputs.append({"shared": arg.object_id, "mutable": arg.mutable})
            else:
                inputs.append({"owned": arg.ref.object_id})
        return {"inputs": inputs, "commands": commands}

    # Serialization
    def to_bytes(self, sender: str, gas: GasConfig) -> bytes:
        """Serialize as `TransactionData::V1` with a programmable transaction kind."""
        unresolved = self.unresolved_shared_objects()
        if unresolved:
            raise ValueError(f"Shared object versions not resolved: {unresolved}")

        writer = BcsWriter()
        writer.u8(0)  # TransactionData::V1
        writer.u8(0)  # TransactionKind::ProgrammableTransaction
        write_vector(writer, self.inputs, _write_input)
        write_vector(writer, self.commands, _write_command)
        writer.address(sender)
        write_vector(writer, gas.payment, _write_object_ref)
        writer.address(gas.owner)
        writer.u64(gas.price)
        writer.u64(gas.budget)
        writer.u8(0)  # TransactionExpiration::None
        return writer.getvalue()


def _write_object_ref(writer: BcsWriter, ref: ObjectRef) -> None:
    writer.address(ref.object_id)
    writer.u64(ref.version)
    digest = base58_decode(ref.digest)
    if len(digest) != 32:
        raise ValueError(f"Object digest must be 32 bytes, got {len(digest)}")
    writer.bytes(digest)


def _write_input(writer: BcsWriter, arg: InputArg) -> None:
    if isinstance(arg, PureInput):
        writer.u8(0)
        writer.bytes(arg.value)
    elif isinstance(arg, OwnedObjectInput):
        writer.u8(1)
        writer.u8(0)
        _write_object_ref(writer, arg.ref)
    else:
        writer.u8(1)
        writer.u8(1)
        writer.address(arg.object_id)
        writer.u64(arg.initial_shared_version or 0)
        writer.bool(arg.mutable)


def _write_argument(writer: BcsWriter, arg: Argument) -> None:
    if arg.kind == "GasCoin":
        writer.u8(0)
    elif arg.kind == "Input":
        writer.u8(1).u16(arg.index)
    elif arg.kind == "Result":
        writer.u8(2).u16(arg.index)
    else:
        writer.u8(3).u16(arg.index).u16(arg.sub_index)


def _write_command(writer: BcsWriter, command: Command) -> None:
    if isinstance(command, MoveCall):
        writer.u8(0)
        writer.address(command.package)
        writer.string(command.module)
        writer.string(command.function)
        write_vector(writer, [parse_type_tag(t) for t in command.type_arguments], write_type_tag)
        write_vector(writer, command.arguments, _write_argument)
    elif isinstance(command, TransferObjects):
        writer.u8(1)
        write_vector(writer, command.objects, _write_argument)
        _write_argument(writer, command.recipient)
    elif isinstance(command, SplitCoins):
        writer.u8(2)
        _write_argument(writer, command.coin)
        write_vector(writer, command.amounts, _write_argument)
    else:
        writer.u8(3)
        _write_argument(writer, command.destination)
        write_vector(writer, command.sources, _write_argument)
