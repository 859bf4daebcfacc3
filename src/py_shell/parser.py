"""Command-line parsing: from raw text to commands and pipelines.

A line typed at the prompt is turned into one of two shapes:

    - **ParsedCommand**: a single command: a name plus arguments.
    - **Pipeline**: an ordered chain of commands joined by ``|``,
      where each stage's output feeds the next stage's input.

Grammar (deliberately tiny):
    - Tokens are separated by whitespace.
    - A double-quoted span is one token with the quotes stripped.
      There is no escaping inside quotes.
    - A trailing ``&`` (with or without a space before it) runs the
      whole line in the background.
    - ``|`` splits the line into stages.  Empty stages are dropped.

Design choices:
    - **Frozen dataclasses**: parsed commands are values and never
      change after parsing.
    - **Tuples for arguments** so the dataclasses stay hashable.
"""

import re
from dataclasses import dataclass

# Quoted span first so ``"a b"`` wins over the bare-word alternative.
_TOKEN_PATTERN = re.compile(r'"([^"]*)"|(\S+)')

_BACKGROUND_MARKER = "&"
_PIPE = "|"


class ParseError(Exception):
    """Raised when a line cannot be turned into a command."""


@dataclass(frozen=True)
class ParsedCommand:
    """A single command ready for dispatch.

    Attributes:
        name: The command name (first token).
        args: Remaining tokens, in order.
        background: Whether a trailing ``&`` was present.
        original: The source text, used as the job's display label.

    """

    name: str
    args: tuple[str, ...] = ()
    background: bool = False
    original: str = ""

    @property
    def argv(self) -> list[str]:
        """Return the full argument vector ``[name, *args]``."""
        return [self.name, *self.args]


@dataclass(frozen=True)
class Pipeline:
    """An ordered chain of commands connected by pipes."""

    stages: tuple[ParsedCommand, ...]
    background: bool = False
    original: str = ""

    @classmethod
    def single(cls, command: ParsedCommand) -> "Pipeline":
        """Wrap a single command as a one-stage pipeline."""
        return cls(stages=(command,), background=command.background, original=command.original)

    def __len__(self) -> int:
        """Return the number of stages."""
        return len(self.stages)


def tokenize(text: str) -> list[str]:
    """Split *text* into tokens, honouring double-quoted spans.

    An unterminated quote does not start a quoted span; the quote
    character simply stays part of an ordinary token.
    """
    return [
        m.group(1) if m.group(1) is not None else m.group(2)
        for m in _TOKEN_PATTERN.finditer(text)
    ]


def _split_background(line: str) -> tuple[str, bool]:
    """Strip a trailing ``&`` from *line*, reporting whether it was there."""
    stripped = line.strip()
    if stripped.endswith(_BACKGROUND_MARKER):
        return stripped[: -len(_BACKGROUND_MARKER)].rstrip(), True
    return stripped, False


def _command_from(text: str, *, background: bool, original: str) -> ParsedCommand:
    tokens = tokenize(text)
    if not tokens:
        msg = "empty command"
        raise ParseError(msg)
    return ParsedCommand(
        name=tokens[0],
        args=tuple(tokens[1:]),
        background=background,
        original=original,
    )


def parse(line: str) -> ParsedCommand:
    """Parse *line* as a single command.

    Args:
        line: Raw input such as ``sleep 5 &``.

    Returns:
        The parsed command.

    Raises:
        ParseError: If the line holds no tokens.

    """
    body, background = _split_background(line)
    return _command_from(body, background=background, original=line.strip())


def parse_pipeline(line: str) -> Pipeline:
    """Parse *line* as a pipeline of one or more stages.

    The background marker is checked against the whole line, so
    ``a | b &`` backgrounds the entire pipeline.  Individual stages
    are never marked as background.

    Raises:
        ParseError: If no non-empty stage remains.

    """
    body, background = _split_background(line)
    segments = [seg.strip() for seg in body.split(_PIPE)]
    stages = tuple(
        _command_from(seg, background=False, original=seg)
        for seg in segments
        if seg and tokenize(seg)
    )
    if not stages:
        msg = "empty pipeline"
        raise ParseError(msg)
    return Pipeline(stages=stages, background=background, original=line.strip())


def parse_line(line: str) -> ParsedCommand | Pipeline | None:
    """Parse an input line into whatever the dispatcher should run.

    Returns:
        ``None`` when there is nothing to run (blank line, or only
        pipes and ``&``), a ``ParsedCommand`` when exactly one stage
        remains, otherwise a ``Pipeline``.

    """
    try:
        pipeline = parse_pipeline(line)
    except ParseError:
        return None
    if len(pipeline) == 1:
        stage = pipeline.stages[0]
        return ParsedCommand(
            name=stage.name,
            args=stage.args,
            background=pipeline.background,
            original=pipeline.original,
        )
    return pipeline
