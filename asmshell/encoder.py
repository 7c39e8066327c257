import logging
import warnings
from typing import Optional

from asmshell.model.graph import InstructionGraph
from asmshell.model.payload import EncodedPayload
from asmshell.error import UnresolvedRelocationWarning
from asmshell.service.assembler.assembler_service_i import AssemblerServiceInterface
from asmshell.service.assembler.assembler_service_keystone import KeystoneAssemblerService
from asmshell.service.disassembler.disassembler_service_capstone import (
    CapstoneDisassemblerService,
)
from asmshell.service.disassembler.disassembler_service_i import DisassemblerServiceInterface
from asmshell.target import TargetConfig

LOGGER = logging.getLogger(__name__)


class ConfigurableEncoder:
    """
    Assembles text and disassembles bytes for the architecture currently selected in a
    [TargetConfig][asmshell.target.TargetConfig].

    Errors from the engines are never suppressed: `EncodeError` and `DecodeError` reach the
    caller.
    """

    def __init__(
        self,
        target: Optional[TargetConfig] = None,
        assembler_service: Optional[AssemblerServiceInterface] = None,
        disassembler_service: Optional[DisassemblerServiceInterface] = None,
    ):
        self.target = target if target is not None else TargetConfig()
        self._assembler_service = (
            assembler_service if assembler_service is not None else KeystoneAssemblerService()
        )
        self._disassembler_service = (
            disassembler_service
            if disassembler_service is not None
            else CapstoneDisassemblerService()
        )

    def encode(self, text: str) -> bytes:
        """
        Assemble text into machine code.

        If the text references symbols that cannot be resolved, an
        `UnresolvedRelocationWarning` naming them is issued and the returned bytes use a
        placeholder address for them.

        :param text: one or more assembly statements separated by newlines

        :raises EncodeError: if the assembler rejects the text
        :return: the filled machine code
        """
        payload = self.encode_raw(text)
        if payload.relocations:
            warning = UnresolvedRelocationWarning(payload.unresolved_targets)
            LOGGER.debug(str(warning))
            warnings.warn(warning, stacklevel=2)
        return payload.fill()

    def encode_raw(self, text: str) -> EncodedPayload:
        """
        Assemble text, returning the payload before it is filled so that relocation details
        can be inspected.
        """
        return self._assembler_service.assemble(text, self.target.get())

    def decode(self, data: bytes, base_addr: int = 0, entry_addr: Optional[int] = None) -> str:
        """
        Disassemble machine code into assembly text.

        :param data: the machine code
        :param base_addr: the address of the first byte of `data`
        :param entry_addr: the address to start disassembling from; defaults to `base_addr`

        :raises DecodeError: if the bytes cannot be disassembled
        :return: the disassembly listing
        """
        return str(self.decode_to_graph(data, base_addr, entry_addr))

    def decode_to_graph(
        self, data: bytes, base_addr: int = 0, entry_addr: Optional[int] = None
    ) -> InstructionGraph:
        if entry_addr is None:
            entry_addr = base_addr
        builder = self._disassembler_service.decode(data, self.target.get())
        builder.set_base_address(base_addr)
        return builder.disassemble(entry_addr)
