from typing import Iterable, Tuple

__all__ = [
    "AsmShellError",
    "UnknownArchitecture",
    "EncodeError",
    "DecodeError",
    "InvalidStateError",
    "UnresolvedRelocationWarning",
]


class AsmShellError(RuntimeError):
    pass


class UnknownArchitecture(AsmShellError):
    """
    Raised when a target is selected by a name that is not a supported architecture.
    """

    def __init__(self, name: str):
        super().__init__(f"Unknown architecture {name!r}")
        self.name = name


class _EngineError(AsmShellError):
    def __init__(self, error_class: str, message: str):
        super().__init__(message)
        self.error_class = error_class
        self.message = message


class EncodeError(_EngineError):
    """
    Any failure to translate assembly text into machine code.

    :ivar error_class: name of the engine error that caused the failure, e.g. `KsError`
    :ivar message: the engine's description of the failure
    """


class DecodeError(_EngineError):
    """
    Any failure to translate machine code into instructions.

    :ivar error_class: name of the engine error that caused the failure, e.g. `CsError`
    :ivar message: the engine's description of the failure
    """


class InvalidStateError(AsmShellError):
    pass


class UnresolvedRelocationWarning(UserWarning):
    """
    Advisory issued when assembly succeeds but references symbols whose address is unknown.
    The encoded bytes use a placeholder address for these symbols.
    """

    def __init__(self, targets: Iterable[str]):
        self.targets: Tuple[str, ...] = tuple(targets)
        super().__init__(
            "encoded string has unresolved relocations: " + ", ".join(self.targets)
        )
