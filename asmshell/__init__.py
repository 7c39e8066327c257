from asmshell.architecture import (
    ArchInfo as ArchInfo,
    BitWidth as BitWidth,
    Endianness as Endianness,
    InstructionSet as InstructionSet,
    InstructionSetMode as InstructionSetMode,
    available_architectures as available_architectures,
    get_architecture as get_architecture,
)
from asmshell.encoder import ConfigurableEncoder as ConfigurableEncoder
from asmshell.error import (
    AsmShellError as AsmShellError,
    DecodeError as DecodeError,
    EncodeError as EncodeError,
    InvalidStateError as InvalidStateError,
    UnknownArchitecture as UnknownArchitecture,
    UnresolvedRelocationWarning as UnresolvedRelocationWarning,
)
from asmshell.model.graph import (
    BasicBlock as BasicBlock,
    Instruction as Instruction,
    InstructionGraph as InstructionGraph,
)
from asmshell.model.payload import EncodedPayload as EncodedPayload, Relocation as Relocation
from asmshell.shell import InteractiveShell as InteractiveShell, format_bytes as format_bytes
from asmshell.target import TargetConfig as TargetConfig
