"""Config loading & CLI override parsing.

Configuration comes from CODR_* environment variables; command-line flags
and free-form `--key value` overrides are layered on top. Missing required
values raise ConfigError, which the CLI treats as a fatal startup error.
"""

import dataclasses
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from codr.errors import ConfigError

DEFAULT_SYSTEM_PROMPT = (
    "You are codr, a coding assistant working inside the user's project directory.\n"
    "Use the provided tools to inspect and change files. All paths are relative to the "
    "project root. Read a file before replacing it, create folders before writing into "
    "them, and answer briefly once the work is done."
)

SYSTEM_PROMPT_FILE = "system_prompt.md"

CONFIRM_MODES = ("prompt", "auto", "deny")

# env var -> Config field
ENV_VARS = {
    "CODR_BASE_URL": "base_url",
    "CODR_API_KEY": "api_key",
    "CODR_MODEL": "model",
    "CODR_PROJECT_ROOT": "project_root",
    "CODR_MAX_ITERATIONS": "max_iterations",
    "CODR_MAX_ATTEMPTS": "max_attempts",
    "CODR_TIMEOUT": "request_timeout",
    "CODR_MAX_TOKENS": "max_tokens",
    "CODR_TEMPERATURE": "temperature",
    "CODR_CONFIRM": "confirm",
    "CODR_TOOL_WORKERS": "tool_workers",
    "CODR_LOG_DIR": "log_dir",
    "CODR_SESSION_DIR": "session_dir",
}

REQUIRED_ENV = ("CODR_BASE_URL", "CODR_API_KEY", "CODR_MODEL")


@dataclass(frozen=True)
class Config:
    base_url: str
    api_key: str
    model: str
    project_root: str = "."
    max_iterations: int = 20
    max_attempts: int = 3
    retry_backoff: float = 1.0
    retry_backoff_max: float = 8.0
    request_timeout: float = 120.0
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    confirm: str = "prompt"
    tool_workers: int = 4
    log_dir: Optional[str] = None
    session_dir: Optional[str] = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    @property
    def endpoint(self) -> str:
        return self.base_url.rstrip("/") + "/chat/completions"

    def sessions_path(self) -> str:
        if self.session_dir:
            return self.session_dir
        return os.path.join(self.project_root, ".codr", "sessions")

    def public_dict(self) -> Dict[str, Any]:
        """Settings safe to log (no credentials, no prompt text)."""
        data = dataclasses.asdict(self)
        data.pop("api_key", None)
        data.pop("system_prompt", None)
        return data


def load_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip()


def _validate(config: Config) -> Config:
    if not config.base_url.startswith(("http://", "https://")):
        raise ConfigError(f"base URL must start with http:// or https://, got '{config.base_url}'")
    if config.confirm not in CONFIRM_MODES:
        raise ConfigError(f"confirm mode must be one of {', '.join(CONFIRM_MODES)}, got '{config.confirm}'")
    if config.max_iterations < 1:
        raise ConfigError("max_iterations must be at least 1")
    if config.max_attempts < 1:
        raise ConfigError("max_attempts must be at least 1")
    if config.tool_workers < 1:
        raise ConfigError("tool_workers must be at least 1")
    if config.request_timeout <= 0:
        raise ConfigError("request_timeout must be positive")
    if not os.path.isdir(config.project_root):
        raise ConfigError(f"project root is not a directory: {config.project_root}")
    return config


def _default_for(name: str) -> Any:
    for f in dataclasses.fields(Config):
        if f.name == name:
            return None if f.default is dataclasses.MISSING else f.default
    return None


def load_config(
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Config:
    """Build a Config from environment variables plus explicit overrides.

    Overrides win over the environment; None values in overrides are ignored.
    """
    if env is None:
        env = os.environ
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

    values: Dict[str, Any] = {}
    for var, field_name in ENV_VARS.items():
        raw = env.get(var)
        if raw is None or not raw.strip():
            continue
        values[field_name] = _coerce_cli_value(raw, _default_for(field_name), var)
    values.update(overrides)

    missing = [var for var in REQUIRED_ENV if not values.get(ENV_VARS[var])]
    if missing:
        raise ConfigError(f"missing required setting(s): {', '.join(missing)}")

    for key in ("base_url", "api_key", "model"):
        values[key] = str(values[key])

    root = values.get("project_root") or os.getcwd()
    values["project_root"] = os.path.realpath(os.path.expanduser(str(root)))

    if "system_prompt" not in values:
        values["system_prompt"] = _load_system_prompt(env.get("CODR_SYSTEM_PROMPT"), values["project_root"])

    known = {f.name for f in dataclasses.fields(Config)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"unknown setting(s): {', '.join(unknown)}")
    return _validate(Config(**values))


def _load_system_prompt(path: Optional[str], project_root: str) -> str:
    if path:
        try:
            return load_text(path)
        except OSError as exc:
            raise ConfigError(f"cannot read system prompt file '{path}'", cause=exc) from exc
    candidate = os.path.join(project_root, SYSTEM_PROMPT_FILE)
    if os.path.isfile(candidate):
        try:
            return load_text(candidate) or DEFAULT_SYSTEM_PROMPT
        except (OSError, UnicodeDecodeError):
            return DEFAULT_SYSTEM_PROMPT
    return DEFAULT_SYSTEM_PROMPT


# ---------------------------
# CLI overrides
# ---------------------------

def _coerce_cli_value(raw: str, existing: Any, key_name: str) -> Any:
    value = raw.strip()
    lowered = value.lower()
    if lowered in {"none", "null"}:
        return None

    if existing is None:
        if lowered in {"true", "false"}:
            return lowered == "true"
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    if isinstance(existing, bool):
        if lowered in {"true", "false", "1", "0", "yes", "no"}:
            return lowered in {"true", "1", "yes"}
        raise ConfigError(f"invalid boolean for {key_name}: {raw}")

    if isinstance(existing, int):
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigError(f"invalid integer for {key_name}: {raw}") from exc

    if isinstance(existing, float):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"invalid number for {key_name}: {raw}") from exc

    return value


def apply_cli_overrides(config: Config, extra_args: List[str]) -> Config:
    """Apply `--field value` pairs to any Config field, coercing to the field's type."""
    if not extra_args:
        return config
    current = dataclasses.asdict(config)
    overrides: Dict[str, Any] = {}
    idx = 0
    while idx < len(extra_args):
        arg = extra_args[idx]
        if not arg.startswith("--"):
            raise ConfigError(f"unexpected argument: {arg}")
        key = arg[2:].replace("-", "_")
        if key not in current:
            raise ConfigError(f"unknown setting: {arg}")
        if idx + 1 >= len(extra_args) or extra_args[idx + 1].startswith("--"):
            raise ConfigError(f"missing value for {arg}")
        existing = current[key] if current[key] is not None else _default_for(key)
        overrides[key] = _coerce_cli_value(extra_args[idx + 1], existing, arg)
        idx += 2

    return _validate(dataclasses.replace(config, **overrides))


KNOWN_FLAGS = {
    "--root", "-r",
    "--model", "-m",
    "--url",
    "--confirm",
    "--yes", "-y",
    "--continue", "-c",
    "--save",
    "--log-dir",
    "--help", "-h",
}
FLAGS_WITH_VALUES = {"--root", "-r", "--model", "-m", "--url", "--confirm", "--log-dir"}


def split_cli_overrides(argv: List[str]) -> Tuple[List[str], List[str]]:
    """Separate argparse-known flags from free-form `--key value` overrides."""
    filtered: List[str] = []
    overrides: List[str] = []
    idx = 0
    while idx < len(argv):
        arg = argv[idx]
        if arg in KNOWN_FLAGS:
            filtered.append(arg)
            if arg in FLAGS_WITH_VALUES:
                if idx + 1 >= len(argv):
                    raise ConfigError(f"missing value for {arg}")
                filtered.append(argv[idx + 1])
                idx += 2
            else:
                idx += 1
            continue

        if arg.startswith("--"):
            if idx + 1 >= len(argv) or argv[idx + 1].startswith("--"):
                raise ConfigError(f"missing value for {arg}")
            overrides.extend([arg, argv[idx + 1]])
            idx += 2
            continue

        filtered.append(arg)
        idx += 1

    return filtered, overrides
