"""Uploader CLI constants."""

from prompt_toolkit.styles import Style

COMMANDS = ["upload", "send", "resume-status", "forget", "clear", "exit", "help"]

# Commands whose arguments are local file paths
FILE_COMMANDS = ("upload", "send", "forget")

STYLE = Style.from_dict(
    {
        "prompt": "#2E9E6B bold",
        "command": "#0088ff bold",
    }
)

GREEN = "\033[38;2;46;158;107m"
RESET = "\033[0m"

LOGO = f"""{GREEN}
  ___ _              _    __
 / __| |_ _  _ _ _  | |__/ _|___ _ _ _ _ _  _
| (__| ' \\ || | ' \\ | / /  _/ -_) '_| '_| || |
 \\___|_||_\\_,_|_||_||_\\_\\_| \\___|_| |_|  \\_, |
                                         |__/
{RESET}"""

WELCOME_TITLE = "Chunkferry - resumable chunked uploads"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "chunkferry> "

HELP_TEXT = """Available commands:
  upload <file...>                    Upload files in chunks (resumes interrupted transfers)
  send <file>                         Upload one file in a single request (no resume)
  resume-status                       List transfers with acknowledged chunks on record
  forget <file>                       Discard the resume record of a file
  clear                               Clear screen and redisplay welcome message
  help                                Show this help
  exit                                Exit REPL

Examples:
  upload photos/a.png backups/db.tar
  send notes.txt
  forget backups/db.tar"""
