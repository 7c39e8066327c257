import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Iterable, List, Optional

from asmshell.architecture import ArchInfo
from asmshell.error import DecodeError
from asmshell.model.graph import BasicBlock, Instruction, InstructionGraph

LOGGER = logging.getLogger(__name__)


class ControlFlow(Enum):
    """
    How an instruction transfers control.
    """

    NONE = "none"
    JUMP = "jump"
    CONDITIONAL_JUMP = "conditional_jump"
    CALL = "call"
    RETURN = "return"


@dataclass
class DisassemblerServiceRequest:
    arch: ArchInfo
    data: bytes
    virtual_address: int


@dataclass
class DisassemblyResult:
    address: int
    size: int
    mnemonic: str
    operands: str
    raw: bytes = b""
    flow: ControlFlow = ControlFlow.NONE
    branch_target: Optional[int] = None

    def to_instruction(self) -> Instruction:
        return Instruction(self.address, self.size, self.mnemonic, self.operands, self.raw)


class DisassemblerServiceInterface(ABC):
    @abstractmethod
    def disassemble(self, request: DisassemblerServiceRequest) -> Iterable[DisassemblyResult]:
        """
        Linearly disassemble the request's data, stopping at the end of the data or at the first
        bytes that do not form a valid instruction.
        """
        raise NotImplementedError

    def decode(self, data: bytes, arch: ArchInfo) -> "InstructionGraphBuilder":
        """
        Prepare a buffer for disassembly.

        :param data: the machine code
        :param arch: the architecture the machine code is for

        :return: a builder whose base address can be set before disassembling
        """
        return InstructionGraphBuilder(self, data, arch)


class InstructionGraphBuilder:
    """
    Recursively disassembles a buffer into an
    [instruction graph][asmshell.model.graph.InstructionGraph], following control flow from
    an entry address.
    """

    def __init__(self, disassembler: DisassemblerServiceInterface, data: bytes, arch: ArchInfo):
        self._disassembler = disassembler
        self.data = data
        self.arch = arch
        self.base_address = 0

    def set_base_address(self, base_address: int):
        self.base_address = base_address

    def contains(self, address: int) -> bool:
        return self.base_address <= address < self.base_address + len(self.data)

    def disassemble(self, entry_address: Optional[int] = None) -> InstructionGraph:
        """
        Disassemble every block reachable from the entry address.

        :param entry_address: where to start; defaults to the base address

        :raises DecodeError: if the entry address is outside the buffer, or bytes at a reachable
            address do not decode to an instruction
        :return: the instruction graph
        """
        if entry_address is None:
            entry_address = self.base_address
        if not self.data and entry_address == self.base_address:
            # Nothing to decode
            return InstructionGraph(self.base_address, entry_address)
        if not self.contains(entry_address):
            raise DecodeError(
                "EntryPointError",
                f"Entry address {entry_address:#x} is outside the decoded buffer "
                f"[{self.base_address:#x}, {self.base_address + len(self.data):#x})",
            )

        graph = InstructionGraph(self.base_address, entry_address)
        pending: Deque[int] = deque([entry_address])
        while pending:
            address = pending.popleft()
            if address in graph.blocks:
                continue
            if self._split_block(graph, address):
                continue
            block = self._decode_block(graph, address)
            graph.blocks[address] = block
            for successor in self._get_successors(block):
                if self.contains(successor) and successor not in graph.blocks:
                    pending.append(successor)

        LOGGER.debug(
            f"Disassembled {len(graph.blocks)} blocks for {self.arch} from {entry_address:#x}"
        )
        return graph

    @staticmethod
    def _get_successors(block: BasicBlock) -> List[int]:
        successors = list(block.branch_targets)
        if block.exit_vaddr is not None:
            successors.append(block.exit_vaddr)
        return successors

    def _decode_block(self, graph: InstructionGraph, address: int) -> BasicBlock:
        offset = address - self.base_address
        request = DisassemblerServiceRequest(self.arch, self.data[offset:], address)
        block = BasicBlock(address)
        next_address = address

        for result in self._disassembler.disassemble(request):
            if result.address != next_address:
                break
            if block.instructions and result.address in graph.blocks:
                # Ran into a block that was already decoded
                block.exit_vaddr = result.address
                return block

            instruction = result.to_instruction()
            block.instructions.append(instruction)
            next_address = instruction.end_address
            if result.branch_target is not None:
                graph.add_xref(result.branch_target, result.address)
                block.branch_targets.append(result.branch_target)

            if result.flow is ControlFlow.RETURN:
                block.is_exit_point = True
                return block
            elif result.flow is ControlFlow.JUMP:
                # Indirect jumps cannot be followed
                block.is_exit_point = result.branch_target is None
                return block
            elif result.flow is ControlFlow.CONDITIONAL_JUMP:
                if self.contains(next_address):
                    block.exit_vaddr = next_address
                else:
                    block.is_exit_point = True
                return block

        if not self.contains(next_address):
            # Ran off the end of the buffer
            block.is_exit_point = True
            return block

        raise DecodeError(
            "InvalidInstructionError",
            f"Cannot decode a {self.arch} instruction at {next_address:#x} from bytes "
            f"{self.data[next_address - self.base_address:][:16].hex()}",
        )

    @staticmethod
    def _split_block(graph: InstructionGraph, address: int) -> bool:
        """
        If the address is an instruction boundary inside an existing block, split that block.
        """
        block = graph.get_block_containing(address)
        if block is None:
            return False
        for index, instruction in enumerate(block.instructions):
            if instruction.address == address:
                break
        else:
            # Lands in the middle of an instruction; decoded as an overlapping block
            return False

        end_address = block.end_address

        def referenced_from(target: int, start: int, end: int) -> bool:
            return any(start <= source < end for source in graph.xrefs.get(target, ()))

        tail = BasicBlock(
            address,
            block.instructions[index:],
            block.is_exit_point,
            block.exit_vaddr,
            [
                target
                for target in block.branch_targets
                if referenced_from(target, address, end_address)
            ],
        )
        block.branch_targets = [
            target
            for target in block.branch_targets
            if referenced_from(target, block.virtual_address, address)
        ]
        block.instructions = block.instructions[:index]
        block.is_exit_point = False
        block.exit_vaddr = address
        graph.blocks[address] = tail
        return True


class DisassemblerArchSupportError(Exception):
    pass
