import logging

import pytest

import asmshell.__main__ as asmshell_main
from asmshell.architecture import get_architecture


class FakeShell:
    instances = []

    def __init__(self, encoder):
        self.encoder = encoder
        self.ran = False
        FakeShell.instances.append(self)

    def run(self):
        self.ran = True


@pytest.fixture
def fake_shell(monkeypatch):
    FakeShell.instances = []
    monkeypatch.setattr(asmshell_main, "InteractiveShell", FakeShell)
    return FakeShell


def test_parser_defaults():
    args = asmshell_main.create_parser().parse_args([])
    assert args.arch == "x86"
    assert args.logging_level == "WARNING"


@pytest.mark.parametrize(
    "argv, expected_arch",
    [
        (["--arch", "arm"], "arm"),
        (["-a", "X86_64"], "x86_64"),
        (["-a", "mipsel"], "mipsel"),
    ],
)
def test_parser_arch(argv, expected_arch: str):
    assert asmshell_main.create_parser().parse_args(argv).arch == expected_arch


def test_parser_rejects_unknown_arch():
    with pytest.raises(SystemExit):
        asmshell_main.create_parser().parse_args(["--arch", "z80"])


def test_run_starts_shell_for_selected_arch(fake_shell):
    root_logger = logging.getLogger()
    original_level = root_logger.level
    args = asmshell_main.create_parser().parse_args(["-a", "aarch64", "-l", "DEBUG"])
    try:
        asmshell_main.run(args)
        assert root_logger.level == logging.DEBUG
    finally:
        root_logger.setLevel(original_level)
    (shell,) = fake_shell.instances
    assert shell.ran
    assert shell.encoder.target.get() == get_architecture("aarch64")
