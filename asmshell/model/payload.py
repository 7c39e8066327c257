from dataclasses import dataclass, field
from typing import Optional, Tuple

from asmshell.error import InvalidStateError

# Address given to symbols that cannot be resolved while assembling
PLACEHOLDER_ADDRESS = 0


@dataclass(frozen=True)
class Relocation:
    """
    A field in encoded bytes whose final value depends on a symbol that was not resolved.

    :ivar offset: offset of the first byte of the field, or None if the encoding does not vary
        with the symbol's value
    :ivar target: name of the unresolved symbol
    :ivar size: number of bytes in the field
    :ivar placeholder: the field's bytes when the symbol is at `PLACEHOLDER_ADDRESS`, written
        by [EncodedPayload.fill][asmshell.model.payload.EncodedPayload.fill]
    """

    offset: Optional[int]
    target: str
    size: int = 0
    placeholder: bytes = b""


@dataclass
class EncodedPayload:
    """
    Machine code produced by an assembler, along with the relocations it could not resolve.

    The bytes are always fully allocated. Filling writes each relocation's placeholder into its
    field, so that every unresolved symbol refers to `PLACEHOLDER_ADDRESS`. The bytes may only be
    read after `fill` has been called.
    """

    _encoded: bytes
    relocations: Tuple[Relocation, ...] = ()
    _filled: Optional[bytes] = field(default=None, init=False)

    @property
    def is_filled(self) -> bool:
        return self._filled is not None

    @property
    def unresolved_targets(self) -> Tuple[str, ...]:
        """
        Names of the unresolved symbols, each listed once, in the order they are first referenced.
        """
        return tuple(dict.fromkeys(relocation.target for relocation in self.relocations))

    def fill(self) -> bytes:
        """
        Write placeholder values into every unresolved field. Calling this more than once returns
        the same bytes.

        :return: the filled bytes
        """
        if self._filled is None:
            filled = bytearray(self._encoded)
            for relocation in self.relocations:
                if relocation.offset is None or len(relocation.placeholder) != relocation.size:
                    continue
                end = relocation.offset + relocation.size
                filled[relocation.offset : end] = relocation.placeholder
            self._filled = bytes(filled)
        return self._filled

    @property
    def data(self) -> bytes:
        if self._filled is None:
            raise InvalidStateError("Encoded payload must be filled before its bytes are read")
        return self._filled

    def __len__(self) -> int:
        return len(self._encoded)
