"""Config loading for promptrelay.

Reads `.promptrelay/config.yaml` (or `~/.promptrelay/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field or invalid limits.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. PROMPTRELAY_CONFIG environment variable (if set)
  3. `.promptrelay/config.yaml` (working directory — for development)
  4. `~/.promptrelay/config.yaml` (home directory — for production deployments)

Environment variable overrides (applied after the file, always win):
  PROMPTRELAY_ALLOWED_ORIGIN         — allowed browser origin
  PROMPTRELAY_MAX_PROMPT_LENGTH      — limits.max_prompt_length
  PROMPTRELAY_MAX_RESPONSE_LENGTH    — limits.max_response_length
  PROMPTRELAY_UPSTREAM_URL           — upstream.url
  PROMPTRELAY_UPSTREAM_API_KEY       — upstream bearer credential
  PROMPTRELAY_UPSTREAM_API_KEY_FILE  — file holding the credential (mounted secret)
  PROMPTRELAY_PORT                   — server.port

The upstream credential is only ever sourced from the environment. It is never
read from the YAML file, never logged, and excluded from ``repr()``.

The resulting ``Config`` is frozen: it is built once in the lifespan and passed
by reference into the gate and the relay.
"""

from __future__ import annotations

import dataclasses
import os
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional

import yaml

from promptrelay.constants import (
    DEFAULT_HOST,
    DEFAULT_MAX_PROMPT_LENGTH,
    DEFAULT_MAX_REQUEST_BODY_BYTES,
    DEFAULT_MAX_RESPONSE_LENGTH,
    DEFAULT_PORT,
    DEFAULT_UPSTREAM_TIMEOUT_S,
    DEFAULT_UPSTREAM_URL,
)
from promptrelay.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# Default config search paths (PROMPTRELAY_CONFIG env var prepended at runtime)
DEFAULT_CONFIG_PATHS = [
    ".promptrelay/config.yaml",
    os.path.expanduser("~/.promptrelay/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LimitsConfig:
    """Size limits enforced by the gate (prompt, body) and the relay (response)."""

    max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH
    max_response_length: int = DEFAULT_MAX_RESPONSE_LENGTH
    max_request_body_bytes: int = DEFAULT_MAX_REQUEST_BODY_BYTES


@dataclass(frozen=True)
class UpstreamConfig:
    """Upstream generative-text endpoint.

    url:       Full endpoint URL the prompt is POSTed to.
    api_key:   Bearer credential (environment only; hidden from repr).
    timeout_s: Total httpx timeout for the upstream call.
    params:    Extra JSON fields merged into every upstream payload
               (e.g. ``{"model": "gpt-4o-mini"}``). ``prompt`` and ``stream``
               are always set by the relay and cannot be overridden here.
    """

    url: str = DEFAULT_UPSTREAM_URL
    api_key: str = field(default="", repr=False)
    timeout_s: float = DEFAULT_UPSTREAM_TIMEOUT_S
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ServerConfig:
    """uvicorn binding configuration."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


@dataclass(frozen=True)
class Config:
    """Root configuration object.

    All fields have safe defaults. ``allowed_origin`` defaults to empty, which
    makes the gate reject every request until an origin is configured.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    allowed_origin: str = ""
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    path: Optional[str] = None  # Path to the loaded config file, if any

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On a section that is not a mapping, a non-integer or
                           negative limit, a non-numeric timeout, or a
                           non-mapping ``upstream.params``.
        """
        # ── Limits ────────────────────────────────────────────────────────────
        limits_raw = _section(raw, "limits")
        limits = LimitsConfig(
            max_prompt_length=_non_negative_int(
                "limits.max_prompt_length",
                limits_raw.get("max_prompt_length", DEFAULT_MAX_PROMPT_LENGTH),
            ),
            max_response_length=_non_negative_int(
                "limits.max_response_length",
                limits_raw.get("max_response_length", DEFAULT_MAX_RESPONSE_LENGTH),
            ),
            max_request_body_bytes=_non_negative_int(
                "limits.max_request_body_bytes",
                limits_raw.get("max_request_body_bytes", DEFAULT_MAX_REQUEST_BODY_BYTES),
            ),
        )

        # ── Upstream ──────────────────────────────────────────────────────────
        upstream_raw = _section(raw, "upstream")
        if "api_key" in upstream_raw:
            logger.warning(
                "upstream.api_key in config file is ignored — "
                "set PROMPTRELAY_UPSTREAM_API_KEY instead",
                path=path,
            )
        params = upstream_raw.get("params") or {}
        if not isinstance(params, dict):
            _fail(f"CONFIG ERROR: upstream.params must be a mapping, got {type(params).__name__}.")
        timeout_raw = upstream_raw.get("timeout_s", DEFAULT_UPSTREAM_TIMEOUT_S)
        if isinstance(timeout_raw, bool) or not isinstance(timeout_raw, (int, float)) or timeout_raw <= 0:
            _fail(f"CONFIG ERROR: upstream.timeout_s must be a positive number, got {timeout_raw!r}.")
        upstream = UpstreamConfig(
            url=upstream_raw.get("url", DEFAULT_UPSTREAM_URL),
            timeout_s=float(timeout_raw),
            params=dict(params),
        )

        # ── Server ────────────────────────────────────────────────────────────
        server_raw = _section(raw, "server")
        server = ServerConfig(
            host=server_raw.get("host", DEFAULT_HOST),
            port=_non_negative_int("server.port", server_raw.get("port", DEFAULT_PORT)),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            allowed_origin=raw.get("allowed_origin", "") or "",
            limits=limits,
            upstream=upstream,
            server=server,
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate promptrelay configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).
    Environment overrides are applied in both cases.

    Returns:
        Frozen Config with all values populated (env over file over defaults).

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid limits, or an invalid env override.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("PROMPTRELAY_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = _apply_env_overrides(Config.defaults())
        _warn_incomplete(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "promptrelay refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = _apply_env_overrides(Config.from_dict(raw, path=found_path))
    _warn_incomplete(config)

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        allowed_origin=config.allowed_origin,
        upstream_url=config.upstream.url,
        max_prompt_length=config.limits.max_prompt_length,
        max_response_length=config.limits.max_response_length,
    )
    return config


def _apply_env_overrides(config: Config) -> Config:
    """Return a copy of ``config`` with environment variable overrides applied.

    Raises:
        SystemExit(1): If an integer override is not a valid non-negative integer,
                       or the credential file cannot be read.
    """
    top: dict[str, Any] = {}
    limits: dict[str, Any] = {}
    upstream: dict[str, Any] = {}
    server: dict[str, Any] = {}

    origin = os.environ.get("PROMPTRELAY_ALLOWED_ORIGIN")
    if origin is not None:
        top["allowed_origin"] = origin

    for env_name, key in (
        ("PROMPTRELAY_MAX_PROMPT_LENGTH", "max_prompt_length"),
        ("PROMPTRELAY_MAX_RESPONSE_LENGTH", "max_response_length"),
    ):
        value = os.environ.get(env_name)
        if value is not None:
            limits[key] = _env_int(env_name, value)

    url = os.environ.get("PROMPTRELAY_UPSTREAM_URL")
    if url:
        upstream["url"] = url

    api_key = os.environ.get("PROMPTRELAY_UPSTREAM_API_KEY")
    key_file = os.environ.get("PROMPTRELAY_UPSTREAM_API_KEY_FILE")
    if api_key:
        upstream["api_key"] = api_key.strip()
    elif key_file:
        try:
            with open(os.path.expanduser(key_file)) as fh:
                upstream["api_key"] = fh.read().strip()
        except OSError as exc:
            _fail(f"CONFIG ERROR: Could not read PROMPTRELAY_UPSTREAM_API_KEY_FILE: {exc}")

    port = os.environ.get("PROMPTRELAY_PORT")
    if port is not None:
        server["port"] = _env_int("PROMPTRELAY_PORT", port)

    if limits:
        top["limits"] = dataclasses.replace(config.limits, **limits)
    if upstream:
        top["upstream"] = dataclasses.replace(config.upstream, **upstream)
    if server:
        top["server"] = dataclasses.replace(config.server, **server)
    return dataclasses.replace(config, **top) if top else config


def _warn_incomplete(config: Config) -> None:
    if not config.allowed_origin:
        logger.warning("allowed_origin is not configured — every request will be rejected with 403")
    if not config.upstream.api_key:
        logger.warning("Upstream credential is not configured — upstream calls will be unauthenticated")


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        _fail(f"CONFIG ERROR: {name} must be a mapping, got {type(section).__name__}.")
    return section


def _non_negative_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        _fail(f"CONFIG ERROR: {name} must be a non-negative integer, got {value!r}.")
    return value


def _env_int(env_name: str, value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        _fail(f"CONFIG ERROR: {env_name} environment variable is not a valid integer: '{value}'")
    if parsed < 0:
        _fail(f"CONFIG ERROR: {env_name} must not be negative: '{value}'")
    return parsed


def _fail(msg: str) -> NoReturn:
    print(msg, file=sys.stderr)
    raise SystemExit(1)
