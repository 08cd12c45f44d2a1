"""Command-line entry point: one-shot prompts and the interactive loop."""

import argparse
import sys
from typing import Any, Dict, List, Optional

from codr import __version__
from codr.agent import TurnResult
from codr.config import Config, apply_cli_overrides, load_config, split_cli_overrides
from codr.errors import AuthError, ConfigError
from codr.hooks import HookRegistry
from codr.session import Session
from codr.tool_handlers import FileOperationRequest

RESET, BOLD, DIM = "\033[0m", "\033[1m", "\033[2m"
BLUE, CYAN, GREEN, RED, YELLOW = "\033[34m", "\033[36m", "\033[32m", "\033[31m", "\033[33m"

EXIT_OK = 0
EXIT_TURN_FAILED = 1
EXIT_CONFIG = 2
EXIT_AUTH = 3


# ---------------------------
# Progress output
# ---------------------------

def _first_line(text: Any, limit: int = 120) -> str:
    line = str(text or "").strip().splitlines()[0] if str(text or "").strip() else ""
    return line if len(line) <= limit else line[:limit] + "..."


def _on_tool_before(data: Dict[str, Any]) -> None:
    print(f"\n{GREEN}⏺ {data.get('tool_name')}{RESET}({DIM}{data.get('path') or ''}{RESET})", flush=True)


def _on_tool_after(data: Dict[str, Any]) -> None:
    color = RED if data.get("is_error") else DIM
    if data.get("path") is None:
        # rejected before execution, so tool_before never printed
        print(f"\n{RED}⏺ {data.get('tool_name')}{RESET}", flush=True)
    print(f"  {color}⎿  {_first_line(data.get('result'))}{RESET}", flush=True)


def _on_api_retry(data: Dict[str, Any]) -> None:
    print(f"{YELLOW}↻ {_first_line(data.get('error'))}; retrying in {data.get('delay', 0):.1f}s{RESET}", flush=True)


def install_progress(hooks: HookRegistry) -> None:
    hooks.register("tool_before", _on_tool_before)
    hooks.register("tool_after", _on_tool_after)
    hooks.register("api_retry", _on_api_retry)


def prompt_confirm(tool_name: str, request: FileOperationRequest) -> str:
    size = len((request.content or "").encode("utf-8"))
    print(f"\n{YELLOW}?{RESET} {BOLD}{tool_name}{RESET} wants to overwrite {BOLD}{request.path}{RESET} ({size} bytes)")
    try:
        answer = input("  Allow? [y]es / [n]o / [a]lways: ").strip().lower()
    except EOFError:
        return "no"
    return answer or "no"


def print_turn_result(result: TurnResult) -> None:
    if result.error is not None:
        print(f"\n{RED}✗ {result.error.describe()}{RESET}")
        return
    if result.final_text:
        print(f"\n{CYAN}⏺{RESET} {result.final_text}")


# ---------------------------
# Interactive commands
# ---------------------------

def cmd_clear(session: Session) -> None:
    session.reset()
    if session.session_path:
        print(f"{GREEN}✓{RESET} New session: {DIM}{session.session_path}{RESET}")
    else:
        print(f"{GREEN}✓{RESET} New conversation")


def cmd_status(session: Session) -> None:
    status = session.status()
    metrics = status["metrics"]
    print(f"\n{BOLD}Session{RESET}")
    print(f"  Model: {status['model']}")
    print(f"  Endpoint: {status['endpoint']}")
    print(f"  Root: {status['project_root']}")
    print(f"  Confirm: {status['confirm']}")
    print(f"  Turns: {status['turn']} ({metrics['turns_failed']} failed)")
    print(f"  Messages: {status['conversation']['message_count']}")
    print(f"  API requests: {metrics['api_requests']} ({metrics['api_retries']} retries)")
    print(f"  Tool calls: {metrics['tool_calls_total']} ({metrics['tool_errors_total']} errors)")
    print(f"  Session: {status['session_path'] or '(not saved)'}")
    print(f"  Log: {status['log_path'] or '(off)'}")
    print()


def cmd_help(session: Session) -> None:
    print(f"\n{BOLD}Commands{RESET}")
    print("  /clear   - Start a new conversation")
    print("  /status  - Show session status and counters")
    print("  /help    - Show this help")
    print("  /q, exit - Quit")
    print()


COMMANDS = {
    "/clear": cmd_clear,
    "/status": cmd_status,
    "/help": cmd_help,
    "/h": cmd_help,
    "/?": cmd_help,
}


def _run_turn(session: Session, text: str, autosave: bool) -> TurnResult:
    result = session.submit(text)
    print_turn_result(result)
    if autosave:
        session.save()
    return result


def interactive(session: Session, autosave: bool) -> None:
    print(f"{BOLD}codr{RESET} {__version__} | {DIM}{session.config.model} | {session.config.project_root}{RESET}")
    print(f"{DIM}Type /help for commands{RESET}\n")

    while True:
        try:
            user_input = input(f"{BOLD}{BLUE}❯{RESET} ").strip()
        except (KeyboardInterrupt, EOFError):
            print()
            break
        if not user_input:
            continue
        if user_input in ("/q", "/quit", "exit"):
            break
        if user_input.startswith("/"):
            cmd = COMMANDS.get(user_input.split()[0])
            if cmd:
                cmd(session)
                continue
            print(f"{RED}Unknown command:{RESET} {user_input}. Type /help for available commands.")
            continue
        _run_turn(session, user_input, autosave)


# ---------------------------
# Entrypoint
# ---------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codr",
        description="codr - coding agent for OpenAI-compatible endpoints",
        epilog="Extra --key value pairs override any setting, e.g. --max-iterations 30.",
    )
    parser.add_argument("prompt", nargs="?", help="Prompt to run (non-interactive mode)")
    parser.add_argument("--root", "-r", help="Project root (default: current directory)")
    parser.add_argument("--model", "-m", help="Model name (overrides CODR_MODEL)")
    parser.add_argument("--url", help="Endpoint base URL (overrides CODR_BASE_URL)")
    parser.add_argument("--confirm", choices=["prompt", "auto", "deny"], help="Confirmation policy for overwrites")
    parser.add_argument("--yes", "-y", action="store_true", help="Same as --confirm auto")
    parser.add_argument("--continue", "-c", dest="continue_session", action="store_true",
                        help="Continue the latest saved session")
    parser.add_argument("--save", action="store_true", help="Save the conversation after every turn")
    parser.add_argument("--log-dir", dest="log_dir", help="Write a JSONL event log to this directory")
    return parser


def _load(args: argparse.Namespace, extra: List[str]) -> Config:
    config = load_config(overrides={
        "project_root": args.root,
        "model": args.model,
        "base_url": args.url,
        "confirm": "auto" if args.yes else args.confirm,
        "log_dir": args.log_dir,
    })
    return apply_cli_overrides(config, extra)


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        filtered, extra = split_cli_overrides(argv)
        args = build_parser().parse_args(filtered)
        config = _load(args, extra)
    except ConfigError as exc:
        print(f"{RED}✗ {exc.describe()}{RESET}", file=sys.stderr)
        return EXIT_CONFIG

    interactive_mode = not args.prompt
    confirm = prompt_confirm if sys.stdin.isatty() else None
    if args.continue_session:
        session = Session.resume(config, confirm=confirm)
        print(f"{DIM}Session: {session.session_path} ({len(session.conversation)} messages){RESET}")
    else:
        session = Session(config, confirm=confirm)
    install_progress(session.hooks)
    autosave = bool(args.save or args.continue_session)

    try:
        if interactive_mode:
            interactive(session, autosave)
            return EXIT_OK
        result = _run_turn(session, args.prompt, autosave)
        return EXIT_OK if result.ok else EXIT_TURN_FAILED
    except AuthError as exc:
        print(f"\n{RED}✗ {exc.describe()}{RESET}", file=sys.stderr)
        print(f"{DIM}Check CODR_API_KEY for {config.endpoint}{RESET}", file=sys.stderr)
        return EXIT_AUTH


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
