import logging
import re
import sys
from dataclasses import replace
from typing import Dict, List, Optional, Tuple, Union

from keystone import (
    KS_ARCH_ARM64,
    KS_ARCH_ARM,
    KS_ARCH_MIPS,
    KS_ARCH_PPC,
    KS_ARCH_X86,
    KS_MODE_THUMB,
    KS_MODE_ARM,
    KS_MODE_64,
    KS_MODE_32,
    KS_MODE_16,
    KS_MODE_BIG_ENDIAN,
    KS_MODE_LITTLE_ENDIAN,
    Ks,
    KsError,
)

from asmshell.architecture import ArchInfo, BitWidth, Endianness, InstructionSet, InstructionSetMode
from asmshell.error import EncodeError
from asmshell.model.payload import EncodedPayload, PLACEHOLDER_ADDRESS, Relocation
from asmshell.service.assembler.assembler_service_i import AssemblerServiceInterface
from asmshell.stream_capture import StreamCapture

LOGGER = logging.getLogger(__name__)

# Keystone mis-encodes these segment-relative accesses, which are common in x86-64 stack
# canary code, so they are substituted with known-good encodings.
X86_64_SPECIAL_CASES = {
    "mov rax, qword ptr fs:[0x28]": b"\x64\x48\x8B\x04\x25\x28\x00\x00\x00",
    "xor rdi, qword ptr fs:[0x28]": b"\x64\x48\x33\x3C\x25\x28\x00\x00\x00",
    "mov rcx, qword ptr fs:[0x28]": b"\x64\x48\x8B\x0C\x25\x28\x00\x00\x00",
    "xor rbx, qword ptr fs:[0x28]": b"\x64\x48\x33\x1C\x25\x28\x00\x00\x00",
    "xor rsi, qword ptr fs:[0x28]": b"\x64\x48\x33\x34\x25\x28\x00\x00\x00",
    "xor rdx, qword ptr fs:[0x28]": b"\x64\x48\x33\x14\x25\x28\x00\x00\x00",
    "xor rcx, qword ptr fs:[0x28]": b"\x64\x48\x33\x0C\x25\x28\x00\x00\x00",
    "xor rax, qword ptr fs:[0x28]": b"\x64\x48\x33\x04\x25\x28\x00\x00\x00",
}


# Pairs of symbol values that, between them, change every byte of a field that depends on the
# symbol. Widest first; the narrower pairs keep short branch forms from being relaxed.
RELOCATION_SENTINELS = (
    (0x5555555555555550, -0x5555555555555560),
    (0x55555550, -0x55555560),
    (0x5550, -0x5560),
    (0x50, -0x60),
)

# Distances (in bytes) keystone may place a resolved symbol from the value it is given
SYMBOL_DISTANCE_CANDIDATES = sorted(range(-16, 17), key=abs)

# Gap left between a label and the code when checking an encoding against a distant label
LABEL_PADDING = 0x100

_UINT64_MASK = 0xFFFFFFFFFFFFFFFF

RE_PPC_REGISTER_OPERAND = re.compile(r"\b[rfv]([12]?[0-9]|3[01])\b")


class _SymbolRecorder:
    """
    Keystone symbol resolver that records every symbol keystone could not resolve on its own
    and gives it the placeholder address as its value (or an override, when locating fields).
    """

    def __init__(self, overrides: Optional[Dict[str, int]] = None):
        self.symbols: List[str] = []
        self._overrides = overrides or {}

    def __call__(self, symbol: bytes, value) -> bool:
        name = symbol.decode(errors="replace")
        # Keystone may ask for the same symbol several times
        if name not in self.symbols:
            self.symbols.append(name)
        value[0] = self._overrides.get(name, PLACEHOLDER_ADDRESS) & _UINT64_MASK
        return True


class KeystoneAssemblerService(AssemblerServiceInterface):
    """
    An assembler service implementation using the keystone engine.
    """

    def __init__(self):
        self._ks_by_arch: Dict[ArchInfo, Ks] = {}

    @staticmethod
    def _get_keystone_arch_flag(arch: ArchInfo) -> int:
        if arch.isa is InstructionSet.ARM:
            return KS_ARCH_ARM
        elif arch.isa is InstructionSet.AARCH64:
            return KS_ARCH_ARM64
        elif arch.isa is InstructionSet.X86:
            return KS_ARCH_X86
        elif arch.isa is InstructionSet.MIPS:
            return KS_ARCH_MIPS
        elif arch.isa is InstructionSet.PPC:
            return KS_ARCH_PPC
        raise EncodeError(
            "AssemblerArchSupportError",
            f"Cannot generate the keystone architecture flag for {arch}",
        )

    @staticmethod
    def _get_keystone_mode_flag(arch: ArchInfo) -> int:
        if arch.endianness is Endianness.BIG_ENDIAN:
            ks_endian_flag = KS_MODE_BIG_ENDIAN
        else:
            ks_endian_flag = KS_MODE_LITTLE_ENDIAN

        if arch.isa is InstructionSet.AARCH64:
            return ks_endian_flag

        elif arch.isa is InstructionSet.ARM:
            if arch.mode is InstructionSetMode.THUMB:
                return KS_MODE_THUMB | ks_endian_flag
            return KS_MODE_ARM | ks_endian_flag

        elif arch.isa is InstructionSet.X86:
            if arch.bit_width is BitWidth.BIT_64:
                return KS_MODE_64 | ks_endian_flag
            elif arch.bit_width is BitWidth.BIT_32:
                return KS_MODE_32 | ks_endian_flag
            elif arch.bit_width is BitWidth.BIT_16:
                return KS_MODE_16 | ks_endian_flag

        elif arch.isa in (InstructionSet.PPC, InstructionSet.MIPS):
            if arch.bit_width is BitWidth.BIT_64:
                return KS_MODE_64 | ks_endian_flag
            elif arch.bit_width is BitWidth.BIT_32:
                return KS_MODE_32 | ks_endian_flag

        raise EncodeError(
            "AssemblerArchSupportError", f"Cannot generate the keystone mode flag for {arch}"
        )

    def _get_keystone_instance(self, arch: ArchInfo) -> Ks:
        """
        Get or build a Keystone instance for the provided architecture.
        """
        ks = self._ks_by_arch.get(arch)
        if ks is None:
            arch_flag = self._get_keystone_arch_flag(arch)
            mode_flag = self._get_keystone_mode_flag(arch)
            try:
                ks = Ks(arch_flag, mode_flag)
            except KsError as error:
                raise EncodeError(
                    type(error).__name__, f"Keystone does not support {arch}: {error}"
                )
            LOGGER.debug(f"Created keystone instance for {arch}")
            self._ks_by_arch[arch] = ks
        return ks


    def assemble(self, assembly: str, arch: ArchInfo, vm_addr: int = 0) -> EncodedPayload:
        """
        Assemble the given assembly code using keystone.

        Symbols keystone cannot resolve are reported as relocations of the returned payload, one
        per field that depends on them. Filling the payload places them at the placeholder
        address.

        :param assembly: one or more statements separated by newlines
        :param arch: the architecture to assemble for
        :param vm_addr: the address the first statement is assembled at

        :raises EncodeError: if keystone rejects the assembly
        :return: the encoded payload, not yet filled
        """
        if arch.isa is InstructionSet.X86 and arch.bit_width is BitWidth.BIT_64:
            parts = _split_special_cases(assembly)
            if any(isinstance(part, bytes) for part in parts):
                return self._assemble_parts(parts, arch, vm_addr)

        preprocessed_assembly = assembly
        if arch.isa is InstructionSet.PPC:
            preprocessed_assembly = _strip_ppc_register_prefixes(preprocessed_assembly)

        machine_code, symbols = self._assemble_with_symbols(preprocessed_assembly, arch, vm_addr)
        relocations: List[Relocation] = []
        for symbol in symbols:
            relocations.extend(
                self._find_relocations(preprocessed_assembly, arch, vm_addr, symbol, machine_code)
            )
        relocations.sort(key=lambda relocation: (relocation.offset is None, relocation.offset or 0))
        if relocations:
            LOGGER.debug(f"Unresolved relocations for {arch}: {relocations}")
        return EncodedPayload(machine_code, tuple(relocations))

    def _asm(
        self,
        assembly: str,
        arch: ArchInfo,
        vm_addr: int,
        overrides: Optional[Dict[str, int]] = None,
    ) -> Tuple[bytes, List[str]]:
        ks = self._get_keystone_instance(arch)
        recorder = _SymbolRecorder(overrides)
        ks.sym_resolver = recorder
        if arch.isa in (InstructionSet.ARM, InstructionSet.AARCH64):
            machine_code = self._asm_watching_warnings(ks, assembly, vm_addr)
        else:
            machine_code, _ = ks.asm(assembly, addr=vm_addr, as_bytes=True)
        return bytes(machine_code or b""), recorder.symbols

    def _assemble_with_symbols(
        self, assembly: str, arch: ArchInfo, vm_addr: int
    ) -> Tuple[bytes, List[str]]:
        try:
            return self._asm(assembly, arch, vm_addr)
        except (KsError, UnicodeEncodeError) as error:
            # Keystone only accepts ASCII text
            raise self._localize_error(assembly, arch, vm_addr, error)

    def _try_asm(
        self, assembly: str, arch: ArchInfo, vm_addr: int, overrides: Dict[str, int]
    ) -> Optional[bytes]:
        """
        Assemble with the given symbol values, returning None if keystone rejects them.
        """
        try:
            machine_code, _ = self._asm(assembly, arch, vm_addr, overrides)
        except (KsError, UnicodeEncodeError):
            return None
        return machine_code

    def _asm_watching_warnings(self, ks: Ks, assembly: str, vm_addr: int) -> bytes:
        # Bugs in keystone's ARM error handling can crash later ks.asm calls after it prints a
        # warning, so cached instances are dropped whenever one shows up on stderr.
        stderr = sys.__stderr__
        if stderr is None:
            machine_code, _ = ks.asm(assembly, addr=vm_addr, as_bytes=True)
            return machine_code
        with StreamCapture(stderr) as stream_capture:
            machine_code, _ = ks.asm(assembly, addr=vm_addr, as_bytes=True)
        if "warning:" in stream_capture.get_captured_stream():
            LOGGER.warning("Keystone printed a warning, resetting keystone instances")
            self._ks_by_arch = {}
        return machine_code

    def _find_relocations(
        self, assembly: str, arch: ArchInfo, vm_addr: int, symbol: str, machine_code: bytes
    ) -> List[Relocation]:
        fields = self._find_fields(assembly, arch, vm_addr, symbol, machine_code)
        if not fields:
            return [Relocation(None, symbol)]
        placed = self._encode_at_placeholder(assembly, arch, vm_addr, symbol, machine_code, fields)
        return [
            Relocation(offset, symbol, size, placed[offset : offset + size])
            for offset, size in fields
        ]

    def _find_fields(
        self, assembly: str, arch: ArchInfo, vm_addr: int, symbol: str, machine_code: bytes
    ) -> List[Tuple[int, int]]:
        """
        Locate the fields whose bytes depend on the symbol's value.

        :return: (offset, size) of every field, in address order
        """
        for sentinels in RELOCATION_SENTINELS:
            changed = set()
            for sentinel in sentinels:
                changed_code = self._try_asm(assembly, arch, vm_addr, {symbol: sentinel})
                if changed_code is None or len(changed_code) != len(machine_code):
                    # Out of range for this instruction form
                    break
                changed.update(
                    offset
                    for offset, (original, new) in enumerate(zip(machine_code, changed_code))
                    if original != new
                )
            else:
                if changed:
                    return _contiguous_runs(sorted(changed))
        return []

    def _encode_at_placeholder(
        self,
        assembly: str,
        arch: ArchInfo,
        vm_addr: int,
        symbol: str,
        machine_code: bytes,
        fields: List[Tuple[int, int]],
    ) -> bytes:
        """
        Encode the assembly with the symbol at the placeholder address.

        Keystone places a resolved symbol a small, fixed distance away from the value returned by
        the resolver. That distance is measured against a label, whose encoding is exact, and the
        symbol is then given the value that lands it on the placeholder address. Fields whose
        distance cannot be measured keep keystone's own encoding.
        """
        labelled = self._encode_with_label(assembly, arch, vm_addr, symbol, len(machine_code))
        if labelled is None:
            LOGGER.debug(f"Cannot place {symbol!r} with a label; keeping keystone's encoding")
            return machine_code
        label_address, labelled_code = labelled
        if label_address == PLACEHOLDER_ADDRESS:
            return labelled_code

        placed = bytearray(machine_code)
        trials: Dict[int, Optional[bytes]] = {}

        def assemble_at(value: int) -> Optional[bytes]:
            if value not in trials:
                changed_code = self._try_asm(assembly, arch, vm_addr, {symbol: value})
                if changed_code is not None and len(changed_code) != len(machine_code):
                    changed_code = None
                trials[value] = changed_code
            return trials[value]

        for offset, size in fields:
            end = offset + size
            for distance in SYMBOL_DISTANCE_CANDIDATES:
                at_label = assemble_at(label_address - distance)
                if at_label is None or at_label[offset:end] != labelled_code[offset:end]:
                    continue
                at_placeholder = assemble_at(PLACEHOLDER_ADDRESS - distance)
                if at_placeholder is not None:
                    placed[offset:end] = at_placeholder[offset:end]
                break
            else:
                LOGGER.debug(f"Cannot place {symbol!r} at offset {offset:#x}")
        return bytes(placed)

    def _encode_with_label(
        self, assembly: str, arch: ArchInfo, vm_addr: int, symbol: str, size: int
    ) -> Optional[Tuple[int, bytes]]:
        """
        Encode the assembly with the symbol defined as a label, first right at the start of the
        code and otherwise a fixed gap before it.

        :return: the label's address and the encoding, if one has the expected size
        """
        at_start = self._try_asm(f"{symbol}:\n{assembly}", arch, vm_addr, {})
        if at_start is not None and len(at_start) == size:
            return vm_addr, at_start
        if vm_addr < LABEL_PADDING:
            return None
        label_address = vm_addr - LABEL_PADDING
        padded = self._try_asm(
            f"{symbol}:\n.space {LABEL_PADDING}\n{assembly}", arch, label_address, {}
        )
        if padded is None or len(padded) != LABEL_PADDING + size:
            return None
        return label_address, padded[LABEL_PADDING:]

    def _localize_error(
        self,
        assembly: str,
        arch: ArchInfo,
        vm_addr: int,
        error: Union[KsError, UnicodeEncodeError],
    ) -> EncodeError:
        assembly_vm_addr = vm_addr
        failing_instruction = None

        for assembly_line in assembly.splitlines():
            if not assembly_line.strip():
                continue
            try:
                machine_code, _ = self._asm(assembly_line, arch, assembly_vm_addr)
            except (KsError, UnicodeEncodeError):
                failing_instruction = assembly_line.strip()
                break
            assembly_vm_addr += len(machine_code)

        message = str(error)
        if failing_instruction is not None:
            message += f" (instruction '{failing_instruction}' @ {assembly_vm_addr:#x})"
        LOGGER.debug(f"Keystone failed to assemble for {arch}: {message}")
        return EncodeError(type(error).__name__, message)

    def _assemble_parts(
        self, parts: List[Union[str, bytes]], arch: ArchInfo, vm_addr: int
    ) -> EncodedPayload:
        machine_code = b""
        relocations: List[Relocation] = []
        for part in parts:
            if isinstance(part, bytes):
                machine_code += part
                continue
            payload = self.assemble(part, arch, vm_addr + len(machine_code))
            for relocation in payload.relocations:
                if relocation.offset is not None:
                    relocation = replace(relocation, offset=relocation.offset + len(machine_code))
                relocations.append(relocation)
            machine_code += payload.fill()
        return EncodedPayload(machine_code, tuple(relocations))


def _contiguous_runs(offsets: List[int]) -> List[Tuple[int, int]]:
    """
    Group sorted offsets into (start, length) runs of consecutive offsets.
    """
    runs: List[Tuple[int, int]] = []
    for offset in offsets:
        if runs and runs[-1][0] + runs[-1][1] == offset:
            start, length = runs[-1]
            runs[-1] = (start, length + 1)
        else:
            runs.append((offset, 1))
    return runs


def _split_special_cases(assembly: str) -> List[Union[str, bytes]]:
    """
    Split assembly into runs of ordinary statements and the pre-encoded special cases.
    """
    parts: List[Union[str, bytes]] = []
    pending: List[str] = []
    for line in assembly.splitlines():
        special_encoding = X86_64_SPECIAL_CASES.get(" ".join(line.split()).lower())
        if special_encoding is None:
            pending.append(line)
            continue
        if any(pending_line.strip() for pending_line in pending):
            parts.append("\n".join(pending))
        pending = []
        parts.append(special_encoding)
    if any(pending_line.strip() for pending_line in pending):
        parts.append("\n".join(pending))
    return parts


def _strip_ppc_register_prefixes(assembly: str) -> str:
    # Keystone only accepts bare register numbers for PowerPC
    return re.sub(RE_PPC_REGISTER_OPERAND, r"\g<1>", assembly)
