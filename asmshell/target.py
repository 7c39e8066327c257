import logging
from typing import Union

from asmshell.architecture import ArchInfo, DEFAULT_ARCHITECTURE, get_architecture

LOGGER = logging.getLogger(__name__)


class TargetConfig:
    """
    Holds the architecture descriptor used by every encode and decode call made through an
    encoder. Changing the target only affects later calls; bytes already returned are never
    re-encoded.
    """

    def __init__(self, initial: Union[ArchInfo, str] = DEFAULT_ARCHITECTURE):
        self._arch = self._resolve(initial)

    def get(self) -> ArchInfo:
        return self._arch

    def set(self, arch: Union[ArchInfo, str]) -> ArchInfo:
        """
        Select a new target.

        :param arch: a descriptor, or the symbolic name of a supported architecture

        :raises UnknownArchitecture: if `arch` is a name that is not supported; the current
            target is left unchanged
        :return: the newly active descriptor
        """
        new_arch = self._resolve(arch)
        LOGGER.debug(f"Target changed from {self._arch} to {new_arch}")
        self._arch = new_arch
        return new_arch

    @staticmethod
    def _resolve(arch: Union[ArchInfo, str]) -> ArchInfo:
        if isinstance(arch, ArchInfo):
            return arch
        if isinstance(arch, str):
            return get_architecture(arch)
        raise TypeError(f"Expected an ArchInfo or an architecture name, got {type(arch).__name__}")

    def __repr__(self) -> str:
        return f"TargetConfig({self._arch})"
