from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set


@dataclass(frozen=True)
class Instruction:
    """
    A single decoded instruction.

    :ivar address: virtual address of the instruction
    :ivar size: number of bytes the instruction occupies
    :ivar mnemonic: the instruction's mnemonic, e.g. `nop`
    :ivar operands: the instruction's operands as text
    :ivar raw: the bytes the instruction was decoded from
    """

    address: int
    size: int
    mnemonic: str
    operands: str
    raw: bytes = b""

    @property
    def assembly(self) -> str:
        return f"{self.mnemonic} {self.operands}".strip()

    @property
    def end_address(self) -> int:
        return self.address + self.size


@dataclass
class BasicBlock:
    """
    A run of instructions with one entry point and one exit point.

    :ivar virtual_address: the virtual address of the block's first instruction
    :ivar instructions: the block's instructions in address order
    :ivar is_exit_point: true if control does not continue to another block in the buffer
    :ivar exit_vaddr: the address execution falls through to, if not an exit point
    :ivar branch_targets: immediate branch or call targets of the block's instructions
    """

    virtual_address: int
    instructions: List[Instruction] = field(default_factory=list)
    is_exit_point: bool = False
    exit_vaddr: Optional[int] = None
    branch_targets: List[int] = field(default_factory=list)

    @property
    def size(self) -> int:
        return sum(instruction.size for instruction in self.instructions)

    @property
    def end_address(self) -> int:
        return self.virtual_address + self.size

    def get_assembly(self) -> str:
        return "\n".join(instruction.assembly for instruction in self.instructions)


@dataclass
class InstructionGraph:
    """
    The structured result of disassembling a buffer: basic blocks reached from an entry address,
    plus the cross-references between them.

    :ivar base_address: the address of the first byte of the decoded buffer
    :ivar entry_address: the address disassembly started from
    :ivar blocks: basic blocks keyed by their start address
    :ivar xrefs: maps a referenced address to the addresses of the instructions referencing it
    """

    base_address: int
    entry_address: int
    blocks: Dict[int, BasicBlock] = field(default_factory=dict)
    xrefs: Dict[int, Set[int]] = field(default_factory=dict)

    def add_xref(self, target: int, source: int):
        self.xrefs.setdefault(target, set()).add(source)

    def get_blocks(self) -> List[BasicBlock]:
        return [self.blocks[address] for address in sorted(self.blocks)]

    def get_instructions(self) -> Iterable[Instruction]:
        for block in self.get_blocks():
            yield from block.instructions

    def get_block_containing(self, address: int) -> Optional[BasicBlock]:
        for block in self.blocks.values():
            if block.virtual_address <= address < block.end_address:
                return block
        return None

    def _needs_label(self, block: BasicBlock) -> bool:
        if block.virtual_address == self.entry_address:
            return False
        return bool(self.xrefs.get(block.virtual_address))

    def dump(self) -> str:
        """
        Render the graph with the address and raw bytes of every instruction.
        """
        lines = []
        for block in self.get_blocks():
            if self._needs_label(block):
                sources = sorted(self.xrefs[block.virtual_address])
                lines.append(
                    f"loc_{block.virtual_address:x}:  ; xrefs: "
                    + ", ".join(f"{source:#x}" for source in sources)
                )
            for instruction in block.instructions:
                raw = instruction.raw.hex()
                lines.append(f"{instruction.address:#010x}  {raw:<20}  {instruction.assembly}")
        return "\n".join(lines)

    def __str__(self) -> str:
        lines = []
        for block in self.get_blocks():
            if self._needs_label(block):
                lines.append(f"loc_{block.virtual_address:x}:")
            lines.append(block.get_assembly())
        return "\n".join(lines)
