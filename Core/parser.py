import re
from dataclasses import dataclass, field

from config import MAX_ARGS, MAX_COMMAND_LENGTH, MAX_STAGES
from Core.errors import ParseError, UnsafeCommandError

# Best-effort deny-list. Not a sandbox.
UNSAFE_SUBSTRINGS = (";;", "&&", "||", "`", "$(", "sudo", "chmod 777")
UNSAFE_PATTERNS = (
    re.compile(r">>?\s*/(etc|boot|proc)/"),
    re.compile(r">>?\s*/dev/(?!null\b)"),
    re.compile(r"\btee\s+(-a\s+)?/(etc|boot|dev|proc)/"),
    re.compile(r"\brm\s+-[a-zA-Z]*[rf][a-zA-Z]*\s+/(\s|$)"),
    re.compile(r"\bmkfs(\.\w+)?\b"),
    re.compile(r":\(\)\s*\{"),
)


@dataclass
class Command:
    """One pipeline stage."""

    argv: list
    input_file: str = None
    output_file: str = None
    append: bool = False

    @property
    def text(self):
        return " ".join(self.argv)


@dataclass
class Pipeline:
    text: str
    commands: list = field(default_factory=list)
    background: bool = False

    def __len__(self):
        return len(self.commands)

    @property
    def is_single(self):
        return len(self.commands) == 1


def is_safe_command(line):
    """Return False if the line matches a known dangerous pattern."""
    if any(bad in line for bad in UNSAFE_SUBSTRINGS):
        return False
    return not any(p.search(line) for p in UNSAFE_PATTERNS)


def split_stages(line):
    """
    Split a command line on '|' into stripped stage strings.
    Raises ParseError on an empty stage.
    """
    stages = [s.strip() for s in line.split("|")]
    if any(not s for s in stages):
        raise ParseError("syntax error near unexpected token `|'")
    return stages


def _tokenize(stage, max_args):
    tokens = stage.split()
    if len(tokens) > max_args:
        raise ParseError(f"too many arguments (max {max_args})")
    return tokens


def build_command(stage, redirect=True, max_args=MAX_ARGS):
    """
    Turn one stage into a Command.
    '<', '>' and '>>' are only treated as redirections when redirect is True,
    otherwise they stay in argv.
    """
    tokens = _tokenize(stage, max_args)
    if not redirect:
        return Command(argv=tokens)

    cmd = Command(argv=[])
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok in ("<", ">", ">>"):
            if i + 1 >= len(tokens):
                raise ParseError(f"syntax error: missing file name after '{tok}'")
            if tok == "<":
                cmd.input_file = tokens[i + 1]
            else:
                cmd.output_file = tokens[i + 1]
                cmd.append = tok == ">>"
            i += 2
        else:
            cmd.argv.append(tok)
            i += 1

    if not cmd.argv:
        raise ParseError("syntax error: redirection without a command")
    return cmd


def parse(line, max_stages=MAX_STAGES, max_args=MAX_ARGS,
          max_length=MAX_COMMAND_LENGTH):
    """
    Parse a raw command line into a Pipeline.
    Returns: Pipeline (empty when the line is blank)
    """
    line = line.strip()
    if not line:
        return Pipeline(text="")
    if len(line) > max_length:
        raise ParseError(f"command too long (max {max_length} characters)")
    if not is_safe_command(line):
        raise UnsafeCommandError(f"blocked potentially unsafe command: {line}")

    background = line.endswith("&")
    if background:
        line = line[:-1].strip()
        if not line:
            raise ParseError("syntax error near unexpected token `&'")

    stages = split_stages(line)
    if len(stages) > max_stages:
        raise ParseError(f"too many pipeline stages: {len(stages)} (max {max_stages})")

    # Redirection is only honoured for a single command
    redirect = len(stages) == 1
    commands = [build_command(s, redirect=redirect, max_args=max_args) for s in stages]
    return Pipeline(text=line, commands=commands, background=background)


def parse_quoted_args(text):
    """
    Parse strictly '"a" "b c" ...' into ['a', 'b c'].
    Every argument must be double-quoted and separated by spaces.
    """
    args = []
    i, n = 0, len(text)
    while i < n:
        if text[i] == " ":
            i += 1
            continue
        if text[i] != '"':
            raise ParseError(f"expected '\"' at position {i}, got {text[i]!r}")
        end = text.find('"', i + 1)
        if end == -1:
            raise ParseError("unterminated quote")
        arg = text[i + 1:end]
        if not arg.strip():
            raise ParseError("empty command in quotes")
        args.append(arg)
        i = end + 1
        if i < n and text[i] != " ":
            raise ParseError(f"expected space after closing quote at position {i}")
    return args
