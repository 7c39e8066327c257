"""
Interactive assembler shell: type assembly statements and see them encoded as an escaped byte
string.

```
asm > nop ; nop
"\\x90\\x90"
asm > exit
```
"""
import logging
import re
import sys
import warnings
from typing import Callable, Optional, TextIO

from asmshell.encoder import ConfigurableEncoder
from asmshell.error import DecodeError, EncodeError, UnresolvedRelocationWarning

try:
    import readline
except ImportError:  # pragma: no cover
    # Not available on Windows; tab completion is simply not offered there
    readline = None  # type: ignore

LOGGER = logging.getLogger(__name__)

PROMPT = "asm > "
COMMANDS = sorted(["help", "exit", "quit"])
STATEMENT_SEPARATOR = ";"
RE_QUIT = re.compile(r"^(quit|exit)", re.IGNORECASE)

BANNER = "[+] asmshell assembly shell\ntype help for usage..\n"
HELP_TEXT = """
Type in opcodes to see their binary form
You can use ';' to type multi-line stuff
e.g. 'nop ; nop' will display "\\x90\\x90"

exit/quit \t Quit the console.
help \t\t Show this screen."""


def format_bytes(data: bytes) -> str:
    """
    Render bytes as a double-quoted string literal with every byte escaped, e.g. `"\\x90\\x90"`.
    """
    return '"' + "".join(f"\\x{byte:02x}" for byte in data) + '"'


def complete(text: str, state: int) -> Optional[str]:
    """
    readline completer offering the shell's commands that start with `text`.
    """
    matches = [f"{command} " for command in COMMANDS if command.startswith(text)]
    if state < len(matches):
        return matches[state]
    return None


class InteractiveShell:
    """
    Read-eval-print loop over a [ConfigurableEncoder][asmshell.encoder.ConfigurableEncoder].

    Each line is handled in this order: a line mentioning `help` prints the usage; a line
    starting with `quit` or `exit` (any case) ends the session; a line that is blank once every
    `;` becomes a newline is ignored; anything else is assembled and printed. Encoding errors are
    printed and the session continues.
    """

    def __init__(
        self,
        encoder: Optional[ConfigurableEncoder] = None,
        input_func: Callable[[str], str] = input,
        output: Optional[TextIO] = None,
    ):
        self.encoder = encoder if encoder is not None else ConfigurableEncoder()
        self._input_func = input_func
        self._output = output
        self.running = False

    @property
    def output(self) -> TextIO:
        return self._output if self._output is not None else sys.stdout

    def _print(self, text: str = ""):
        print(text, file=self.output)

    def run(self):
        """
        Print the banner and handle lines until the user quits or input runs out.
        """
        self._print(BANNER)
        self._install_completion()
        self.running = True
        while self.running:
            try:
                line = self._input_func(PROMPT)
            except EOFError:
                LOGGER.debug("End of input")
                break
            self.running = self.handle_line(line)
        self.running = False
        self._print()

    def handle_line(self, line: str) -> bool:
        """
        Dispatch one line of input.

        :param line: the line as typed, without its trailing newline

        :return: False if the session should end, True otherwise
        """
        if "help" in line:
            self._print(HELP_TEXT)
            return True
        if RE_QUIT.match(line):
            return False

        assembly = line.replace(STATEMENT_SEPARATOR, "\n")
        if not assembly.strip():
            return True

        with warnings.catch_warnings(record=True) as caught_warnings:
            warnings.simplefilter("always", UnresolvedRelocationWarning)
            try:
                machine_code = self.encoder.encode(assembly)
            except (EncodeError, DecodeError) as error:
                self._print(f"Error: {error.error_class} {error.message}")
                return True

        for caught_warning in caught_warnings:
            if issubclass(caught_warning.category, UnresolvedRelocationWarning):
                self._print(f"W: {caught_warning.message}")
            else:
                warnings.warn_explicit(
                    caught_warning.message,
                    caught_warning.category,
                    caught_warning.filename,
                    caught_warning.lineno,
                )
        self._print(format_bytes(machine_code))
        return True

    def _install_completion(self):
        if readline is None or self._input_func is not input or not sys.stdin.isatty():
            return
        readline.set_completer(complete)
        readline.set_completer_delims(" \t\n" + STATEMENT_SEPARATOR)
        if "libedit" in (readline.__doc__ or ""):
            readline.parse_and_bind("bind ^I rl_complete")
        else:
            readline.parse_and_bind("tab: complete")
