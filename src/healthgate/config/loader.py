from __future__ import annotations

import math
import re
import shlex
from pathlib import Path
from typing import Any, cast

import yaml

from healthgate.config.schema import (
    DEFAULT_INTERVAL_SEC,
    DEFAULT_MAX_FAILURES,
    DEFAULT_TIMEOUT_SEC,
    DependencySpec,
    HealthCheckSpec,
    RestartMode,
    RestartPolicy,
    StackSpec,
    UnitSpec,
)
from healthgate.dag.graph import DependencyGraph
from healthgate.util.errors import ConfigError

_SAFE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_UNIT_NAME_MAX_LEN = 128
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
# Compose top-level sections with no meaning for healthgate.
_INERT_ROOT_KEYS = {"version", "volumes", "networks", "configs", "secrets"}
_ALLOWED_ROOT_KEYS = {"name", "units", "services"} | _INERT_ROOT_KEYS
_ALLOWED_UNIT_KEYS = {
    "command",
    "cwd",
    "env",
    "environment",
    "config",
    "depends_on",
    "healthcheck",
    "restart",
}
# Compose service keys carried opaquely in UnitSpec.config for the launcher.
_PASSTHROUGH_UNIT_KEYS = {
    "image",
    "build",
    "platform",
    "ports",
    "expose",
    "volumes",
    "networks",
    "env_file",
    "profiles",
    "user",
    "labels",
    "container_name",
    "hostname",
    "entrypoint",
    "working_dir",
    "extra_hosts",
    "stop_signal",
    "stop_grace_period",
    "logging",
    "ulimits",
    "deploy",
}
_ALLOWED_HEALTHCHECK_KEYS = {"http", "tcp", "test", "disable", "interval", "timeout", "retries"}
_ALLOWED_RESTART_KEYS = {"policy", "max_restarts", "backoff", "backoff_max"}
_ALLOWED_DEPENDENCY_KEYS = {"condition", "required"}
_RESTART_ALIASES: dict[str, RestartMode] = {
    "no": "never",
    "never": "never",
    "on-failure": "on-failure",
    "always": "always",
    "unless-stopped": "always",
}
DEFAULT_MAX_RESTARTS = 3


def _is_finite_real_number(value: object) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    return math.isfinite(value)


def _is_non_blank_str(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip()) and "\x00" not in value


def _is_safe_name(value: object) -> bool:
    return isinstance(value, str) and _SAFE_ID_PATTERN.fullmatch(value) is not None


def _reject_unknown(where: str, raw: dict[str, Any], allowed: set[str]) -> None:
    unknown = {key for key in raw if not str(key).startswith("x-")} - allowed
    if unknown:
        raise ConfigError(f"{where} has unknown fields: {sorted(map(str, unknown))}")


def parse_duration(where: str, value: object, *, allow_zero: bool = False) -> float:
    """Seconds from a number or a compose-style string such as ``1m30s``."""
    if _is_finite_real_number(value):
        seconds = float(cast(float, value))
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if pos != len(text):
            raise ConfigError(f"{where} is not a valid duration: {value!r}")
    else:
        raise ConfigError(f"{where} must be a number of seconds or a duration string")
    if seconds < 0 or (seconds == 0 and not allow_zero):
        raise ConfigError(f"{where} must be " + (">= 0" if allow_zero else "> 0"))
    return seconds


def normalize_cmd(where: str, cmd: object) -> tuple[str, ...]:
    if isinstance(cmd, str):
        try:
            parts = shlex.split(cmd)
        except ValueError as exc:
            raise ConfigError(f"{where} is not a valid command string: {exc}") from exc
        if not parts:
            raise ConfigError(f"{where} must not be empty")
        return tuple(parts)
    if isinstance(cmd, list) and cmd and all(_is_non_blank_str(part) for part in cmd):
        return tuple(cmd)
    raise ConfigError(f"{where} must be str or non-empty list[str]")


def _parse_env(where: str, raw: object) -> tuple[tuple[str, str], ...]:
    if raw is None:
        return ()
    pairs: list[tuple[str, str]] = []
    if isinstance(raw, dict):
        for key, val in raw.items():
            if not _is_non_blank_str(key) or "=" in key:
                raise ConfigError(f"{where} has invalid variable name: {key!r}")
            if val is None:
                # Compose: a bare name is inherited from the environment.
                continue
            if isinstance(val, bool) or not isinstance(val, (str, int, float)):
                raise ConfigError(f"{where}.{key} must be a scalar")
            pairs.append((key, str(val)))
    elif isinstance(raw, list):
        for item in raw:
            if not isinstance(item, str) or not item or item.startswith("="):
                raise ConfigError(f"{where} list entries must look like KEY=VALUE")
            if "=" not in item:
                continue
            key, _, val = item.partition("=")
            pairs.append((key, val))
    else:
        raise ConfigError(f"{where} must be a mapping or a list of KEY=VALUE")
    return tuple(pairs)


def _parse_dependencies(unit: str, raw: object) -> tuple[DependencySpec, ...]:
    where = f"unit '{unit}' depends_on"
    if raw is None:
        return ()
    deps: list[DependencySpec] = []
    if isinstance(raw, list):
        for name in raw:
            if not _is_non_blank_str(name):
                raise ConfigError(f"{where} must contain unit names")
            deps.append(DependencySpec(name=name))
    elif isinstance(raw, dict):
        for name, options in raw.items():
            if not _is_non_blank_str(name):
                raise ConfigError(f"{where} must be keyed by unit names")
            if options is None:
                deps.append(DependencySpec(name=name))
                continue
            if not isinstance(options, dict):
                raise ConfigError(f"{where}.{name} must be a mapping")
            _reject_unknown(f"{where}.{name}", options, _ALLOWED_DEPENDENCY_KEYS)
            condition = options.get("condition", "service_healthy")
            if condition != "service_healthy":
                raise ConfigError(f"{where}.{name} condition must be service_healthy")
            required = options.get("required", True)
            if not isinstance(required, bool):
                raise ConfigError(f"{where}.{name} required must be bool")
            deps.append(DependencySpec(name=name, required=required))
    else:
        raise ConfigError(f"{where} must be a list or a mapping")

    names = [dep.name for dep in deps]
    if len(set(names)) != len(names):
        raise ConfigError(f"{where} has duplicate entries")
    return tuple(deps)


def _parse_test(where: str, raw: object) -> tuple[str, ...] | None:
    """Compose ``test`` forms: CMD, CMD-SHELL, NONE or a bare shell string."""
    if isinstance(raw, str) and raw.strip():
        return ("/bin/sh", "-c", raw)
    if not isinstance(raw, list) or not raw or not all(isinstance(p, str) for p in raw):
        raise ConfigError(f"{where}.test must be a string or a list of strings")
    head, rest = raw[0], raw[1:]
    if head == "NONE":
        return None
    if head == "CMD" and rest:
        return tuple(rest)
    if head == "CMD-SHELL" and len(rest) == 1:
        return ("/bin/sh", "-c", rest[0])
    raise ConfigError(f"{where}.test must start with CMD, CMD-SHELL or NONE")


def _parse_health_check(unit: str, raw: object) -> HealthCheckSpec:
    where = f"unit '{unit}' healthcheck"
    if raw is None:
        return HealthCheckSpec()
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be a mapping")
    _reject_unknown(where, raw, _ALLOWED_HEALTHCHECK_KEYS)

    interval = parse_duration(f"{where}.interval", raw.get("interval", DEFAULT_INTERVAL_SEC))
    timeout = parse_duration(f"{where}.timeout", raw.get("timeout", DEFAULT_TIMEOUT_SEC))
    retries = raw.get("retries", DEFAULT_MAX_FAILURES)
    if not isinstance(retries, int) or isinstance(retries, bool) or retries < 1:
        raise ConfigError(f"{where}.retries must be int >= 1")

    common: dict[str, Any] = {
        "interval_sec": interval,
        "timeout_sec": timeout,
        "max_consecutive_failures": retries,
    }
    probes = [key for key in ("http", "tcp", "test") if key in raw]
    disabled = raw.get("disable", False)
    if not isinstance(disabled, bool):
        raise ConfigError(f"{where}.disable must be bool")
    if disabled and probes:
        raise ConfigError(f"{where} cannot combine disable with a probe")
    if len(probes) > 1:
        raise ConfigError(f"{where} must declare only one of http, tcp, test")
    if not probes:
        return HealthCheckSpec(kind="process", **common)

    key = probes[0]
    if key == "test":
        argv = _parse_test(where, raw["test"])
        if argv is None:
            return HealthCheckSpec(kind="process", **common)
        return HealthCheckSpec(kind="cmd", target=argv, **common)
    target = raw[key]
    if not _is_non_blank_str(target):
        raise ConfigError(f"{where}.{key} must be non-empty string")
    return HealthCheckSpec(kind=key, target=target, **common)


def _parse_restart(unit: str, raw: object) -> RestartPolicy:
    where = f"unit '{unit}' restart"
    if raw is None:
        return RestartPolicy()
    if isinstance(raw, str):
        mode_name, _, count = raw.partition(":")
        mode = _RESTART_ALIASES.get(mode_name.strip())
        if mode is None:
            raise ConfigError(f"{where} must be one of {sorted(_RESTART_ALIASES)}")
        if count and (mode != "on-failure" or not count.strip().isdigit()):
            raise ConfigError(f"{where} only on-failure accepts a :count suffix")
        if mode == "never":
            return RestartPolicy()
        return RestartPolicy(mode=mode, max_restarts=int(count) if count else DEFAULT_MAX_RESTARTS)
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be a string or a mapping")
    _reject_unknown(where, raw, _ALLOWED_RESTART_KEYS)

    policy = raw.get("policy", "on-failure")
    mode = _RESTART_ALIASES.get(policy) if isinstance(policy, str) else None
    if mode is None:
        raise ConfigError(f"{where}.policy must be one of {sorted(_RESTART_ALIASES)}")
    default_max = 0 if mode == "never" else DEFAULT_MAX_RESTARTS
    max_restarts = raw.get("max_restarts", default_max)
    if not isinstance(max_restarts, int) or isinstance(max_restarts, bool) or max_restarts < 0:
        raise ConfigError(f"{where}.max_restarts must be int >= 0")

    raw_backoff = raw.get("backoff", [])
    if not isinstance(raw_backoff, list):
        raise ConfigError(f"{where}.backoff must be a list of durations")
    backoff = tuple(parse_duration(f"{where}.backoff", v, allow_zero=True) for v in raw_backoff)
    if len(backoff) > max_restarts:
        raise ConfigError(f"{where}.backoff length must be <= max_restarts")
    backoff_max = parse_duration(f"{where}.backoff_max", raw.get("backoff_max", 60))
    return RestartPolicy(
        mode=mode, max_restarts=max_restarts, backoff_sec=backoff, backoff_max_sec=backoff_max
    )


def _collect_config(name: str, raw: dict[str, Any]) -> Any:
    """Explicit ``config`` plus any compose service keys, never inspected."""
    config = raw.get("config")
    passthrough = {key: raw[key] for key in raw if key in _PASSTHROUGH_UNIT_KEYS}
    if not passthrough:
        return config
    if config is None:
        return passthrough
    if not isinstance(config, dict):
        raise ConfigError(f"unit '{name}' config must be a mapping when compose keys are present")
    return {**passthrough, **config}


def _parse_unit(name: object, raw: object) -> UnitSpec:
    if not _is_non_blank_str(name):
        raise ConfigError("unit name is required and must be non-empty string")
    assert isinstance(name, str)
    if len(name) > _UNIT_NAME_MAX_LEN:
        raise ConfigError(f"unit name must be <= {_UNIT_NAME_MAX_LEN} characters")
    if not _is_safe_name(name):
        raise ConfigError(f"unit name '{name}' must match ^[A-Za-z0-9][A-Za-z0-9._-]*$")
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"unit '{name}' must be a mapping")
    _reject_unknown(f"unit '{name}'", raw, _ALLOWED_UNIT_KEYS | _PASSTHROUGH_UNIT_KEYS)
    if "env" in raw and "environment" in raw:
        raise ConfigError(f"unit '{name}' must use either env or environment, not both")

    command = raw.get("command")
    cwd = raw.get("cwd")
    if cwd is not None and not _is_non_blank_str(cwd):
        raise ConfigError(f"unit '{name}' cwd must be non-empty string")

    return UnitSpec(
        name=name,
        command=None if command is None else normalize_cmd(f"unit '{name}' command", command),
        dependencies=_parse_dependencies(name, raw.get("depends_on")),
        health_check=_parse_health_check(name, raw.get("healthcheck")),
        restart=_parse_restart(name, raw.get("restart")),
        cwd=cwd,
        env=_parse_env(f"unit '{name}' env", raw.get("env", raw.get("environment"))),
        config=_collect_config(name, raw),
    )


def validate_stack(stack: StackSpec) -> DependencyGraph:
    if not stack.units:
        raise ConfigError("stack must contain at least one unit")
    folded = [unit.name.casefold() for unit in stack.units]
    if len(set(folded)) != len(folded):
        raise ConfigError("unit names must be unique (case-insensitive)")
    return DependencyGraph.build(stack.units)


def parse_stack(raw: object) -> StackSpec:
    if not isinstance(raw, dict):
        raise ConfigError("stack root must be a mapping")
    if any(not isinstance(key, str) for key in raw):
        raise ConfigError("stack root keys must be strings")
    _reject_unknown("stack", raw, _ALLOWED_ROOT_KEYS)
    if "units" in raw and "services" in raw:
        raise ConfigError("stack must use either units or services, not both")

    raw_units = raw.get("units", raw.get("services"))
    if not isinstance(raw_units, dict):
        raise ConfigError("stack.units must be a mapping of unit name to definition")
    name = raw.get("name")
    if name is not None and not _is_non_blank_str(name):
        raise ConfigError("stack.name must be non-empty string when provided")

    stack = StackSpec(
        name=name,
        units=tuple(
            _parse_unit(unit_name, unit_raw)
            for unit_name, unit_raw in raw_units.items()
            if not str(unit_name).startswith("x-")
        ),
    )
    validate_stack(stack)
    return stack


def load_stack(path: Path) -> StackSpec:
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"stack file not found: {path}") from exc
    except UnicodeError as exc:
        raise ConfigError(f"failed to decode stack file as utf-8: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"failed to read stack file: {path}") from exc

    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse yaml: {exc}") from exc
    return parse_stack(raw)
