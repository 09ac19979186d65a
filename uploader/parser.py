"""Command parser for CLI input."""

import shlex

from uploader.models import (
    CommandRequest,
    ForgetCommand,
    ResumeStatusCommand,
    SendCommand,
    UploadCommand,
)


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw user input from REPL

    Returns:
        CommandRequest object (one of Upload/Send/ResumeStatus/Forget)

    Raises:
        ParseError: If command syntax is invalid
    """
    if not input_line.strip():
        raise ParseError("Empty command")

    try:
        tokens = shlex.split(input_line)
    except ValueError as e:
        raise ParseError(f"Invalid syntax: {e}")

    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0]

    if command_name == "upload":
        return _parse_upload(tokens[1:])
    elif command_name == "send":
        return _parse_send(tokens[1:])
    elif command_name == "resume-status":
        return _parse_resume_status(tokens[1:])
    elif command_name == "forget":
        return _parse_forget(tokens[1:])
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_upload(args: list[str]) -> UploadCommand:
    """Parse 'upload file...' command."""
    if not args:
        raise ParseError("upload requires at least one file")

    # Same file twice would share one transfer id and race on its resume record
    file_list = list(dict.fromkeys(args))
    return UploadCommand(file_list=tuple(file_list))


def _parse_send(args: list[str]) -> SendCommand:
    """Parse 'send <file>' command."""
    if len(args) != 1:
        raise ParseError("send requires exactly 1 argument: <file>")
    return SendCommand(path=args[0])


def _parse_resume_status(args: list[str]) -> ResumeStatusCommand:
    if args:
        raise ParseError("resume-status takes no arguments")
    return ResumeStatusCommand()


def _parse_forget(args: list[str]) -> ForgetCommand:
    """Parse 'forget <file>' command."""
    if len(args) != 1:
        raise ParseError("forget requires exactly 1 argument: <file>")
    return ForgetCommand(path=args[0])
