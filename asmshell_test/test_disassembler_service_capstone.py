from typing import List

import pytest

from asmshell.architecture import InstructionSet, get_architecture
from asmshell.error import DecodeError
from asmshell.service.disassembler.disassembler_service_capstone import (
    CapstoneDisassemblerService,
    _asm_fixups,
    _parse_branch_target,
)
from asmshell.service.disassembler.disassembler_service_i import (
    ControlFlow,
    DisassemblerServiceRequest,
)

X86 = get_architecture("x86")


@pytest.fixture
def disassembler_service() -> CapstoneDisassemblerService:
    return CapstoneDisassemblerService()


def _lines(text: str) -> List[str]:
    return text.splitlines()


def test_disassemble_linear(disassembler_service):
    request = DisassemblerServiceRequest(X86, b"\x31\xc0\x90", 0x1000)
    results = list(disassembler_service.disassemble(request))
    assert [(result.address, result.size) for result in results] == [(0x1000, 2), (0x1002, 1)]
    assert results[0].mnemonic == "xor"
    assert results[0].operands == "eax, eax"
    assert results[0].raw == b"\x31\xc0"
    assert results[1].mnemonic == "nop"


def test_control_flow_classification_x86(disassembler_service):
    data = b"\xe8\x00\x00\x00\x00" + b"\x74\x00" + b"\xeb\x00" + b"\xc3" + b"\x90"
    results = list(disassembler_service.disassemble(DisassemblerServiceRequest(X86, data, 0)))
    assert [(result.flow, result.branch_target) for result in results] == [
        (ControlFlow.CALL, 5),
        (ControlFlow.CONDITIONAL_JUMP, 7),
        (ControlFlow.JUMP, 9),
        (ControlFlow.RETURN, None),
        (ControlFlow.NONE, None),
    ]


@pytest.mark.parametrize(
    "arch_name, data",
    [
        ("aarch64", b"\xc0\x03\x5f\xd6"),
        ("thumb", b"\x70\x47"),
        ("mips", b"\x03\xe0\x00\x08"),
        ("ppc", b"\x4e\x80\x00\x20"),
    ],
)
def test_returns_on_other_architectures(disassembler_service, arch_name: str, data: bytes):
    request = DisassemblerServiceRequest(get_architecture(arch_name), data, 0)
    (result,) = disassembler_service.disassemble(request)
    assert result.flow is ControlFlow.RETURN


def test_asm_fixups():
    assert _asm_fixups("mov", "eax, 1", InstructionSet.X86) == ("mov", "eax, 0x1")
    assert _asm_fixups("push", "{fp, lr}", InstructionSet.ARM) == ("push", "{r11, lr}")


@pytest.mark.parametrize(
    "operands, expected",
    [
        ("0x10", 0x10),
        ("#0x20", 0x20),
        ("$a0, $zero, 0x40", 0x40),
        ("3", 3),
        ("eax", None),
        ("dword ptr [eax]", None),
        ("", None),
    ],
)
def test_parse_branch_target(operands: str, expected):
    assert _parse_branch_target(operands) == expected


def test_graph_straight_line(disassembler_service):
    builder = disassembler_service.decode(b"\x90\x90\xc3", X86)
    graph = builder.disassemble()
    assert str(graph) == "nop\nnop\nret"
    (block,) = graph.get_blocks()
    assert block.is_exit_point
    assert block.size == 3


def test_graph_conditional_branch(disassembler_service):
    graph = disassembler_service.decode(b"\x74\x01\x90\xc3", X86).disassemble(0)
    assert sorted(graph.blocks) == [0, 2, 3]
    assert graph.xrefs == {3: {0}}
    assert graph.blocks[0].exit_vaddr == 2
    assert graph.blocks[0].branch_targets == [3]
    assert graph.blocks[2].exit_vaddr == 3
    lines = _lines(str(graph))
    assert lines[0].startswith("je ")
    assert lines[1:] == ["nop", "loc_3:", "ret"]


def test_graph_skips_unreachable_bytes(disassembler_service):
    """
    Bytes jumped over are never decoded.
    """
    graph = disassembler_service.decode(b"\xeb\x01\xff\xc3", X86).disassemble(0)
    assert sorted(graph.blocks) == [0, 3]
    assert [instruction.mnemonic for instruction in graph.get_instructions()] == ["jmp", "ret"]


def test_graph_splits_block_at_call_target(disassembler_service):
    graph = disassembler_service.decode(b"\xe8\x00\x00\x00\x00\xc3", X86).disassemble(0)
    assert sorted(graph.blocks) == [0, 5]
    head, tail = graph.get_blocks()
    assert [instruction.mnemonic for instruction in head.instructions] == ["call"]
    assert head.exit_vaddr == 5
    assert not head.is_exit_point
    assert head.branch_targets == [5]
    assert [instruction.mnemonic for instruction in tail.instructions] == ["ret"]
    assert tail.is_exit_point
    assert tail.branch_targets == []
    assert _lines(str(graph))[1:] == ["loc_5:", "ret"]


def test_graph_self_loop(disassembler_service):
    graph = disassembler_service.decode(b"\xeb\xfe", X86).disassemble(0)
    (block,) = graph.get_blocks()
    assert block.branch_targets == [0]
    assert not block.is_exit_point
    # The entry block is never labelled
    assert not str(graph).startswith("loc_")


def test_graph_jump_outside_buffer(disassembler_service):
    graph = disassembler_service.decode(b"\xe9\x00\x10\x00\x00", X86).disassemble(0)
    assert list(graph.blocks) == [0]
    assert graph.xrefs == {0x1005: {0}}


def test_graph_base_and_entry_addresses(disassembler_service):
    builder = disassembler_service.decode(b"\xcc\x90\xc3", X86)
    builder.set_base_address(0x1000)
    graph = builder.disassemble(0x1001)
    assert graph.base_address == 0x1000
    assert graph.entry_address == 0x1001
    assert str(graph) == "nop\nret"
    assert [instruction.address for instruction in graph.get_instructions()] == [0x1001, 0x1002]
    assert graph.get_block_containing(0x1002) is graph.blocks[0x1001]
    assert graph.get_block_containing(0x1000) is None


def test_graph_dump(disassembler_service):
    graph = disassembler_service.decode(b"\x74\x00\xc3", X86).disassemble(0)
    dump = _lines(graph.dump())
    assert dump[0].startswith("0x00000000  7400")
    assert dump[1] == "loc_2:  ; xrefs: 0x0"
    assert dump[2].startswith("0x00000002  c3")
    assert dump[2].endswith("ret")


def test_entry_outside_buffer(disassembler_service):
    builder = disassembler_service.decode(b"\x90", X86)
    builder.set_base_address(0x1000)
    with pytest.raises(DecodeError) as exc_info:
        builder.disassemble(0x2000)
    assert exc_info.value.error_class == "EntryPointError"


def test_truncated_instruction(disassembler_service):
    with pytest.raises(DecodeError) as exc_info:
        disassembler_service.decode(b"\x90\xe8\x00", X86).disassemble(0)
    assert exc_info.value.error_class == "InvalidInstructionError"
    assert "0x1" in exc_info.value.message


def test_empty_buffer(disassembler_service):
    builder = disassembler_service.decode(b"", X86)
    builder.set_base_address(0x1000)
    graph = builder.disassemble()
    assert graph.blocks == {}
    assert str(graph) == ""
    with pytest.raises(DecodeError):
        builder.disassemble(0x1001)
