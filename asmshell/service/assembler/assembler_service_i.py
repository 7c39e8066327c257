"""
Assembler services used to turn assembly text into machine code.
"""
from abc import ABC, abstractmethod
from typing import Iterable, Iterator

from asmshell.architecture import ArchInfo
from asmshell.model.payload import EncodedPayload


class AssemblerServiceInterface(ABC):
    """An interface for assembler services."""

    @abstractmethod
    def assemble(self, assembly: str, arch: ArchInfo, vm_addr: int = 0) -> EncodedPayload:
        """
        Assemble the given assembly code.

        :param str assembly: The assembly to assemble, one or more statements separated by newlines
        :param ArchInfo arch: The architecture targeted by the assembly
        :param int vm_addr: The virtual address at which the assembly should be assembled

        :raises EncodeError: if the assembly cannot be encoded for `arch`
        :return: The encoded payload, not yet filled
        """
        raise NotImplementedError

    def assemble_many(
        self,
        assembly_list: Iterable[str],
        arch: ArchInfo,
        vm_addrs: Iterable[int],
    ) -> Iterator[EncodedPayload]:
        for assembly, vm_addr in zip(assembly_list, vm_addrs):
            yield self.assemble(assembly, arch, vm_addr)

    def assemble_file(self, assembly_file: str, arch: ArchInfo, vm_addr: int = 0) -> EncodedPayload:
        """
        Assemble the given assembly file.

        :param str assembly_file: The path to the assembly file
        :param ArchInfo arch: The architecture targeted by the assembly
        :param int vm_addr: The virtual address at which the file should be assembled

        :return: The encoded payload, not yet filled
        """
        with open(assembly_file) as file_handle:
            assembly = file_handle.read()
        # Section directives are meaningless for a flat shellcode buffer
        assembly = assembly.replace(".text\n", "")
        return self.assemble(assembly, arch, vm_addr)
