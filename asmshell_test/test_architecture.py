import pytest

from asmshell.architecture import (
    ARCHITECTURES,
    ArchInfo,
    BitWidth,
    DEFAULT_ARCHITECTURE,
    Endianness,
    InstructionSet,
    InstructionSetMode,
    available_architectures,
    get_architecture,
)
from asmshell.error import UnknownArchitecture


@pytest.mark.parametrize(
    "bitwidth,expected_word_size",
    [(BitWidth.BIT_16, 2), (BitWidth.BIT_32, 4), (BitWidth.BIT_64, 8)],
)
def test_bitwidth_get_word_size(bitwidth: BitWidth, expected_word_size: int):
    assert bitwidth.get_word_size() == expected_word_size


def test_default_architecture_is_32_bit_little_endian_x86():
    assert DEFAULT_ARCHITECTURE == ArchInfo(
        InstructionSet.X86, BitWidth.BIT_32, Endianness.LITTLE_ENDIAN
    )
    assert DEFAULT_ARCHITECTURE.mode is InstructionSetMode.NONE


@pytest.mark.parametrize(
    "name, expected_isa, expected_bit_width, expected_endianness",
    [
        ("x86", InstructionSet.X86, BitWidth.BIT_32, Endianness.LITTLE_ENDIAN),
        ("X86_64", InstructionSet.X86, BitWidth.BIT_64, Endianness.LITTLE_ENDIAN),
        ("x86-64", InstructionSet.X86, BitWidth.BIT_64, Endianness.LITTLE_ENDIAN),
        ("i8086", InstructionSet.X86, BitWidth.BIT_16, Endianness.LITTLE_ENDIAN),
        ("arm64", InstructionSet.AARCH64, BitWidth.BIT_64, Endianness.LITTLE_ENDIAN),
        ("mips", InstructionSet.MIPS, BitWidth.BIT_32, Endianness.BIG_ENDIAN),
        ("mipsel", InstructionSet.MIPS, BitWidth.BIT_32, Endianness.LITTLE_ENDIAN),
        (" PowerPC ", InstructionSet.PPC, BitWidth.BIT_32, Endianness.BIG_ENDIAN),
    ],
)
def test_get_architecture(
    name: str,
    expected_isa: InstructionSet,
    expected_bit_width: BitWidth,
    expected_endianness: Endianness,
):
    arch = get_architecture(name)
    assert arch.isa is expected_isa
    assert arch.bit_width is expected_bit_width
    assert arch.endianness is expected_endianness


def test_thumb_is_an_arm_mode():
    arch = get_architecture("thumb")
    assert arch.isa is InstructionSet.ARM
    assert arch.mode is InstructionSetMode.THUMB
    assert str(arch) == "arm-32-little-thumb"


@pytest.mark.parametrize("name", ["sparc", "", "x87", "arm_"])
def test_unknown_architecture(name: str):
    with pytest.raises(UnknownArchitecture) as exc_info:
        get_architecture(name)
    assert exc_info.value.name == name


def test_available_architectures_are_sorted_and_resolvable():
    names = available_architectures()
    assert names == sorted(names)
    assert set(names) == set(ARCHITECTURES)
    for name in names:
        assert get_architecture(name) is ARCHITECTURES[name]


def test_descriptors_are_hashable():
    assert len({get_architecture("x86"), get_architecture("i386"), get_architecture("ia32")}) == 1
