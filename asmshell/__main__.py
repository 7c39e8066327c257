import logging
from argparse import ArgumentParser, Namespace
from typing import Optional, Sequence

from asmshell.architecture import available_architectures
from asmshell.encoder import ConfigurableEncoder
from asmshell.shell import InteractiveShell
from asmshell.target import TargetConfig

DEFAULT_LOG_LEVEL = logging.WARNING


def create_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="asmshell",
        description="Interactive assembler shell: type assembly statements and see them encoded.",
    )
    parser.add_argument(
        "--arch",
        "-a",
        help="Architecture to assemble for",
        choices=available_architectures(),
        type=str.lower,
        default="x86",
    )
    parser.add_argument(
        "--logging-level",
        "-l",
        help="Minimum level of messages to print",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=logging.getLevelName(DEFAULT_LOG_LEVEL),
    )
    return parser


def run(args: Namespace):
    logging_level = getattr(logging, args.logging_level.upper())
    logging.basicConfig(level=logging_level, format="[%(filename)15s:%(lineno)5s] %(message)s")
    logging.getLogger().setLevel(logging_level)

    encoder = ConfigurableEncoder(TargetConfig(args.arch))
    InteractiveShell(encoder).run()


def main(argv: Optional[Sequence[str]] = None):  # pragma: no cover
    run(create_parser().parse_args(argv))


if __name__ == "__main__":
    main()
