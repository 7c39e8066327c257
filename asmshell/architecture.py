from dataclasses import dataclass
from enum import Enum
from typing import Dict, List

from asmshell.error import UnknownArchitecture

__all__ = [
    "InstructionSet",
    "InstructionSetMode",
    "BitWidth",
    "Endianness",
    "ArchInfo",
    "ARCHITECTURES",
    "DEFAULT_ARCHITECTURE",
    "get_architecture",
    "available_architectures",
]


class InstructionSet(Enum):
    """
    Enumeration of the instruction sets the shell can assemble and disassemble.

    :ivar ARM: ARM
    :ivar AARCH64: ARM 64-bit
    :ivar X86: Intel x86
    :ivar MIPS: MIPS
    :ivar PPC: PowerPC
    """

    ARM = "arm"
    AARCH64 = "aarch64"
    X86 = "x86"
    MIPS = "mips"
    PPC = "ppc"


class InstructionSetMode(Enum):
    """
    Instruction set mode. Useful for architectures which have multiple encodings it can switch
    between on the fly, in particular the Thumb mode for ARM.

    :ivar NONE: None
    :ivar THUMB: Thumb (ARM)
    """

    NONE = 0
    THUMB = 1


class BitWidth(Enum):
    """
    The number of bits which can be used to represent a number.
    """

    BIT_16 = 16
    BIT_32 = 32
    BIT_64 = 64

    def get_word_size(self) -> int:
        return int(self.value / 8)


class Endianness(Enum):
    """
    The order in which bytes are stored.
    """

    BIG_ENDIAN = "big"
    LITTLE_ENDIAN = "little"


@dataclass(frozen=True)
class ArchInfo:
    """
    Descriptor of the architecture that governs how text and bytes are interpreted.

    :ivar isa: the instruction set
    :ivar bit_width: the word size of the target
    :ivar endianness: the byte order of encoded instructions
    :ivar mode: the instruction set mode (e.g. Thumb)
    """

    isa: InstructionSet
    bit_width: BitWidth
    endianness: Endianness
    mode: InstructionSetMode = InstructionSetMode.NONE

    def __str__(self) -> str:
        description = f"{self.isa.value}-{self.bit_width.value}-{self.endianness.value}"
        if self.mode is not InstructionSetMode.NONE:
            description += f"-{self.mode.name.lower()}"
        return description


X86_32 = ArchInfo(InstructionSet.X86, BitWidth.BIT_32, Endianness.LITTLE_ENDIAN)
X86_16 = ArchInfo(InstructionSet.X86, BitWidth.BIT_16, Endianness.LITTLE_ENDIAN)
X86_64 = ArchInfo(InstructionSet.X86, BitWidth.BIT_64, Endianness.LITTLE_ENDIAN)
ARM32 = ArchInfo(InstructionSet.ARM, BitWidth.BIT_32, Endianness.LITTLE_ENDIAN)
ARM32_BE = ArchInfo(InstructionSet.ARM, BitWidth.BIT_32, Endianness.BIG_ENDIAN)
THUMB = ArchInfo(
    InstructionSet.ARM, BitWidth.BIT_32, Endianness.LITTLE_ENDIAN, InstructionSetMode.THUMB
)
AARCH64 = ArchInfo(InstructionSet.AARCH64, BitWidth.BIT_64, Endianness.LITTLE_ENDIAN)
MIPS32_BE = ArchInfo(InstructionSet.MIPS, BitWidth.BIT_32, Endianness.BIG_ENDIAN)
MIPS32_LE = ArchInfo(InstructionSet.MIPS, BitWidth.BIT_32, Endianness.LITTLE_ENDIAN)
MIPS64_BE = ArchInfo(InstructionSet.MIPS, BitWidth.BIT_64, Endianness.BIG_ENDIAN)
MIPS64_LE = ArchInfo(InstructionSet.MIPS, BitWidth.BIT_64, Endianness.LITTLE_ENDIAN)
PPC32 = ArchInfo(InstructionSet.PPC, BitWidth.BIT_32, Endianness.BIG_ENDIAN)
PPC64 = ArchInfo(InstructionSet.PPC, BitWidth.BIT_64, Endianness.BIG_ENDIAN)

ARCHITECTURES: Dict[str, ArchInfo] = {
    "x86": X86_32,
    "i386": X86_32,
    "ia32": X86_32,
    "x86_16": X86_16,
    "i8086": X86_16,
    "x86_64": X86_64,
    "amd64": X86_64,
    "x64": X86_64,
    "arm": ARM32,
    "armel": ARM32,
    "armbe": ARM32_BE,
    "thumb": THUMB,
    "aarch64": AARCH64,
    "arm64": AARCH64,
    "mips": MIPS32_BE,
    "mipsel": MIPS32_LE,
    "mips64": MIPS64_BE,
    "mips64el": MIPS64_LE,
    "ppc": PPC32,
    "powerpc": PPC32,
    "ppc64": PPC64,
}

DEFAULT_ARCHITECTURE = X86_32


def get_architecture(name: str) -> ArchInfo:
    """
    Look up a supported architecture by its symbolic name.

    Names are case-insensitive and `-` is accepted in place of `_` (`x86-64` is `x86_64`).

    :param name: symbolic architecture name, e.g. `x86_64` or `mipsel`

    :raises UnknownArchitecture: if the name is not a supported architecture
    :return: the matching descriptor
    """
    key = name.strip().lower().replace("-", "_")
    try:
        return ARCHITECTURES[key]
    except KeyError:
        raise UnknownArchitecture(name) from None


def available_architectures() -> List[str]:
    return sorted(ARCHITECTURES.keys())
