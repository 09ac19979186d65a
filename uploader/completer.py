"""Custom completer for the uploader CLI with local file autocompletion."""

from pathlib import Path
from typing import Iterable

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from uploader.constants import COMMANDS, FILE_COMMANDS


class UploaderCompleter(Completer):
    """
    Custom completer that provides:
    - Command name completion for the first token
    - Local path completion for upload/send/forget arguments
    """

    def get_completions(
        self, document: Document, complete_event
    ) -> Iterable[Completion]:
        text = document.text_before_cursor
        tokens = text.split()

        is_typing_new_token = text.endswith(" ") or not tokens

        if not tokens or (len(tokens) == 1 and not is_typing_new_token):
            yield from self._complete_commands(tokens[0] if tokens else "")
            return

        command = tokens[0].lower()
        if command not in FILE_COMMANDS:
            return

        current_word = "" if is_typing_new_token else tokens[-1]
        already_typed = set(tokens[1:])
        if not is_typing_new_token:
            already_typed.discard(current_word)

        yield from self._complete_paths(current_word, already_typed)

    def _complete_commands(self, partial: str) -> Iterable[Completion]:
        """Complete command names matching the partial input."""
        partial_lower = partial.lower()
        for cmd in COMMANDS:
            if cmd.startswith(partial_lower):
                yield Completion(cmd, start_position=-len(partial))

    def _complete_paths(self, partial: str, exclude: set) -> Iterable[Completion]:
        """
        Complete entries of the directory named by the partial path.

        Directories are offered with a trailing slash so completion can
        continue into them.
        """
        if "/" in partial:
            head, _, prefix = partial.rpartition("/")
            base_dir = Path(head or "/").expanduser()
            shown_head = f"{head}/"
        else:
            prefix = partial
            base_dir = Path.cwd()
            shown_head = ""

        if not base_dir.is_dir():
            return

        try:
            entries = sorted(base_dir.iterdir(), key=lambda p: p.name)
        except OSError:
            return

        for entry in entries:
            if entry.name.startswith(".") and not prefix.startswith("."):
                continue
            if not entry.name.startswith(prefix):
                continue
            candidate = f"{shown_head}{entry.name}"
            if entry.is_dir():
                candidate += "/"
            elif candidate in exclude:
                continue
            yield Completion(candidate, start_position=-len(partial))
