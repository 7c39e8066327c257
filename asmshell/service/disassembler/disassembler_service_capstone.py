import logging
import re
from typing import Dict, Iterable, Optional, Tuple

from capstone import (
    Cs,
    CsInsn,
    CS_ARCH_ARM64,
    CS_ARCH_ARM,
    CS_ARCH_X86,
    CS_ARCH_PPC,
    CS_ARCH_MIPS,
    CS_GRP_CALL,
    CS_GRP_IRET,
    CS_GRP_RET,
    CS_MODE_BIG_ENDIAN,
    CS_MODE_LITTLE_ENDIAN,
    CS_MODE_THUMB,
    CS_MODE_ARM,
    CS_MODE_32,
    CS_MODE_64,
    CS_MODE_16,
    CsError,
)

from asmshell.architecture import ArchInfo, BitWidth, Endianness, InstructionSet, InstructionSetMode
from asmshell.error import DecodeError
from asmshell.service.disassembler.disassembler_service_i import (
    ControlFlow,
    DisassemblerArchSupportError,
    DisassemblerServiceInterface,
    DisassemblerServiceRequest,
    DisassemblyResult,
)

LOGGER = logging.getLogger(__name__)


RE_REPRESENT_CONSTANTS_HEX = re.compile(r"(\W-?)([0-9]([^0-9x]|$))")
RE_RENAME_FP_TO_R11 = re.compile(r"(\W?)fp(\W?)")

ARM_CONDITIONS = "eq|ne|cs|hs|cc|lo|mi|pl|vs|vc|hi|ls|ge|lt|gt|le"

UNCONDITIONAL_JUMPS = {
    InstructionSet.X86: {"jmp", "ljmp"},
    InstructionSet.ARM: {"b", "b.w", "b.n", "bx"},
    InstructionSet.AARCH64: {"b", "br"},
    InstructionSet.MIPS: {"j", "jr", "b"},
    InstructionSet.PPC: {"b", "ba", "bctr"},
}

CALLS = {
    InstructionSet.X86: {"call", "lcall"},
    InstructionSet.ARM: {"bl", "blx"},
    InstructionSet.AARCH64: {"bl", "blr"},
    InstructionSet.MIPS: {"jal", "jalr", "bal"},
    InstructionSet.PPC: {"bl", "bla", "bctrl", "blrl"},
}

CONDITIONAL_JUMPS = {
    InstructionSet.X86: re.compile(r"^(j(?!mp$)\w+|loop\w*)$"),
    InstructionSet.ARM: re.compile(rf"^(b({ARM_CONDITIONS})(\.[wn])?|cbn?z)$"),
    InstructionSet.AARCH64: re.compile(r"^(b\.\w+|cbn?z|tbn?z)$"),
    InstructionSet.MIPS: re.compile(r"^(b(eq|ne|gez|gtz|lez|ltz)z?l?|b(eq|ne)z|bc1[ft]l?)$"),
    InstructionSet.PPC: re.compile(r"^b(?!lr$|ctr$|l$|a$|la$|ctrl$|lrl$)\w+$"),
}


class CapstoneDisassemblerService(DisassemblerServiceInterface):
    def __init__(self):
        self._cs_instance_by_arch: Dict[ArchInfo, Cs] = dict()

    def _cs_disassemble(self, request: DisassemblerServiceRequest) -> Iterable[CsInsn]:
        cs = self._get_cs(request.arch)
        try:
            return list(cs.disasm(request.data, request.virtual_address))
        except CsError as error:
            raise DecodeError(type(error).__name__, str(error))

    def disassemble(self, request: DisassemblerServiceRequest) -> Iterable[DisassemblyResult]:
        res = []

        for cs_instruction in self._cs_disassemble(request):
            mnemonic, operands = _asm_fixups(
                cs_instruction.mnemonic, cs_instruction.op_str, request.arch.isa
            )
            flow = _get_control_flow(cs_instruction, mnemonic, operands, request.arch.isa)
            branch_target = None
            if flow in (ControlFlow.JUMP, ControlFlow.CONDITIONAL_JUMP, ControlFlow.CALL):
                branch_target = _parse_branch_target(operands)

            res.append(
                DisassemblyResult(
                    cs_instruction.address,
                    cs_instruction.size,
                    mnemonic,
                    operands,
                    bytes(cs_instruction.bytes),
                    flow,
                    branch_target,
                )
            )
        return res

    def _get_cs(self, arch: ArchInfo) -> Cs:
        cs = self._cs_instance_by_arch.get(arch)
        if cs is None:
            try:
                cs = Cs(self._get_cs_arch_flag(arch), self._get_cs_mode_flag(arch))
            except DisassemblerArchSupportError as error:
                raise DecodeError(type(error).__name__, str(error))
            except CsError as error:
                raise DecodeError(
                    type(error).__name__, f"Capstone does not support {arch}: {error}"
                )
            cs.detail = True
            LOGGER.debug(f"Created capstone instance for {arch}")
            self._cs_instance_by_arch[arch] = cs

        return cs

    @staticmethod
    def _get_cs_arch_flag(arch: ArchInfo) -> int:
        isa = arch.isa

        if isa is InstructionSet.ARM:
            return CS_ARCH_ARM
        elif isa is InstructionSet.X86:
            return CS_ARCH_X86
        elif isa is InstructionSet.PPC:
            return CS_ARCH_PPC
        elif isa is InstructionSet.MIPS:
            return CS_ARCH_MIPS
        elif isa is InstructionSet.AARCH64:
            return CS_ARCH_ARM64
        raise DisassemblerArchSupportError(
            f"Cannot generate the capstone architecture flag for {arch}"
        )

    @staticmethod
    def _get_cs_mode_flag(arch: ArchInfo) -> int:
        isa = arch.isa
        bit_width = arch.bit_width

        if arch.endianness is Endianness.BIG_ENDIAN:
            cs_endian_flag = CS_MODE_BIG_ENDIAN
        else:
            cs_endian_flag = CS_MODE_LITTLE_ENDIAN

        if isa is InstructionSet.AARCH64:
            return cs_endian_flag

        if isa is InstructionSet.ARM:
            if arch.mode is InstructionSetMode.THUMB:
                return CS_MODE_THUMB | cs_endian_flag
            return CS_MODE_ARM | cs_endian_flag

        elif isa is InstructionSet.X86:
            if bit_width is BitWidth.BIT_64:
                return CS_MODE_64 | cs_endian_flag
            elif bit_width is BitWidth.BIT_32:
                return CS_MODE_32 | cs_endian_flag
            elif bit_width is BitWidth.BIT_16:
                return CS_MODE_16 | cs_endian_flag

        elif isa in (InstructionSet.PPC, InstructionSet.MIPS):
            if bit_width is BitWidth.BIT_64:
                return CS_MODE_64 | cs_endian_flag
            elif bit_width is BitWidth.BIT_32:
                return CS_MODE_32 | cs_endian_flag

        raise DisassemblerArchSupportError(f"Cannot generate the capstone mode flag for {arch}")


def _asm_fixups(base_mnemonic: str, base_operands: str, isa: InstructionSet) -> Tuple[str, str]:
    operands = re.sub(RE_REPRESENT_CONSTANTS_HEX, r"\g<1>0x\g<2>", base_operands)
    if isa is InstructionSet.ARM:
        operands = re.sub(RE_RENAME_FP_TO_R11, r"\1r11\2", operands)

    mnemonic = base_mnemonic

    return mnemonic, operands


def _is_return(
    cs_instruction: CsInsn, mnemonic: str, operands: str, isa: InstructionSet
) -> bool:
    if cs_instruction.group(CS_GRP_RET) or cs_instruction.group(CS_GRP_IRET):
        return True
    if isa is InstructionSet.X86:
        return mnemonic.startswith("ret") or mnemonic.startswith("iret")
    if isa is InstructionSet.ARM:
        if mnemonic == "bx" and operands == "lr":
            return True
        return mnemonic.startswith("pop") and "pc" in operands
    if isa is InstructionSet.AARCH64:
        return mnemonic == "ret"
    if isa is InstructionSet.MIPS:
        return mnemonic == "jr" and operands == "$ra"
    if isa is InstructionSet.PPC:
        return mnemonic == "blr"
    return False


def _get_control_flow(
    cs_instruction: CsInsn, mnemonic: str, operands: str, isa: InstructionSet
) -> ControlFlow:
    if _is_return(cs_instruction, mnemonic, operands, isa):
        return ControlFlow.RETURN
    if mnemonic in CALLS[isa] or cs_instruction.group(CS_GRP_CALL):
        return ControlFlow.CALL
    if mnemonic in UNCONDITIONAL_JUMPS[isa]:
        return ControlFlow.JUMP
    if CONDITIONAL_JUMPS[isa].match(mnemonic):
        return ControlFlow.CONDITIONAL_JUMP
    return ControlFlow.NONE


def _parse_branch_target(operands: str) -> Optional[int]:
    """
    Read the target of a branch whose last operand is an immediate address.
    """
    if not operands:
        return None
    target = operands.split(",")[-1].strip().lstrip("#$")
    try:
        return int(target, 0)
    except ValueError:
        return None
