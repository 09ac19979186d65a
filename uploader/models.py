"""Command request data types for the uploader CLI."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class UploadCommand:
    """Upload files in chunks."""

    file_list: tuple[str, ...]
    command: Literal["upload"] = "upload"


@dataclass(frozen=True)
class SendCommand:
    """Upload one file in a single request."""

    path: str
    command: Literal["send"] = "send"


@dataclass(frozen=True)
class ResumeStatusCommand:
    """List resume records."""

    command: Literal["resume-status"] = "resume-status"


@dataclass(frozen=True)
class ForgetCommand:
    """Discard the resume record of a file."""

    path: str
    command: Literal["forget"] = "forget"


CommandRequest = (
    UploadCommand
    | SendCommand
    | ResumeStatusCommand
    | ForgetCommand
)
