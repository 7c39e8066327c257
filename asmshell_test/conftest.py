from typing import Callable, List

import pytest

from asmshell.architecture import ArchInfo
from asmshell.encoder import ConfigurableEncoder
from asmshell.model.payload import EncodedPayload
from asmshell.service.assembler.assembler_service_i import AssemblerServiceInterface
from asmshell.target import TargetConfig


class RecordingAssemblerService(AssemblerServiceInterface):
    """
    Assembler that encodes every statement as a single 0x90 byte and remembers what it was asked
    to assemble.
    """

    def __init__(self):
        self.calls: List[str] = []

    def assemble(self, assembly: str, arch: ArchInfo, vm_addr: int = 0) -> EncodedPayload:
        self.calls.append(assembly)
        statements = [line for line in assembly.splitlines() if line.strip()]
        return EncodedPayload(b"\x90" * len(statements))


def make_scripted_input(*lines: str) -> Callable[[str], str]:
    remaining = iter(lines)

    def scripted_input(prompt: str) -> str:
        try:
            return next(remaining)
        except StopIteration:
            raise EOFError

    return scripted_input


@pytest.fixture
def scripted_input():
    """
    Factory for `input` replacements that return the given lines, then signal end of input.
    """
    return make_scripted_input


@pytest.fixture
def target() -> TargetConfig:
    return TargetConfig()


@pytest.fixture
def encoder(target: TargetConfig) -> ConfigurableEncoder:
    return ConfigurableEncoder(target)


@pytest.fixture
def recording_assembler() -> RecordingAssemblerService:
    return RecordingAssemblerService()


@pytest.fixture
def recording_encoder(recording_assembler, target) -> ConfigurableEncoder:
    return ConfigurableEncoder(target, assembler_service=recording_assembler)
