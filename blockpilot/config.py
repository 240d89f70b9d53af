"""Application configuration helpers.

Settings are environment driven (``BP_*`` variables, optionally from a
``.env`` file next to the working directory) and collected into a frozen
:class:`AppConfig` that the bootstrap code hands to every component.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _env(key: str, default: str) -> str:
    value = os.getenv(key)
    return value if value is not None else default


def _env_int(key: str, default: int) -> int:
    try:
        return int(_env(key, str(default)))
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(_env(key, str(default)))
    except ValueError:
        return default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _load_dotenv(base_dir: Path) -> None:
    env_path = base_dir / ".env"
    if env_path.exists():
        load_dotenv(env_path)


@dataclass(frozen=True)
class MutationConfig:
    retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    factor: float = 2.0


@dataclass(frozen=True)
class GeometryConfig:
    # Fallback layout constants of the block renderer, in workspace units.
    previous_offset_x: float = 16.0
    bay_offset_x: float = 16.0
    bay_offset_y: float = 48.0
    snap_radius: float = 48.0
    grab_inset: float = 4.0


@dataclass(frozen=True)
class DragConfig:
    steps: int = 20
    step_delay_ms: int = 15
    pre_press_ms: int = 120
    pre_release_ms: int = 250
    require_highlight: bool = True


@dataclass(frozen=True)
class VerifyConfig:
    settle_timeout_s: float = 3.0
    settle_poll_s: float = 0.25


@dataclass(frozen=True)
class RuntimeConfig:
    url: str = "http://localhost:8601/"
    vm_handle: str = "window.vm"
    workspace_handle: str = "window.Blockly && window.Blockly.getMainWorkspace()"
    call_timeout_s: float = 30.0
    run_duration_s: float = 2.0


@dataclass(frozen=True)
class AppConfig:
    """Strongly typed application configuration container."""

    base_dir: Path
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    mutation: MutationConfig = field(default_factory=MutationConfig)
    geometry: GeometryConfig = field(default_factory=GeometryConfig)
    drag: DragConfig = field(default_factory=DragConfig)
    verify: VerifyConfig = field(default_factory=VerifyConfig)
    catalogue_url: str = ""
    log_level: str = "INFO"
    database_url: Optional[str] = None
    artifacts_dir: Path = field(init=False)
    logs_dir: Path = field(init=False)
    log_file_path: Path = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "artifacts_dir", self.base_dir / "artifacts")
        logs_dir = self.base_dir / "logs"
        object.__setattr__(self, "logs_dir", logs_dir)
        object.__setattr__(self, "log_file_path", logs_dir / "blockpilot.log")
        if self.database_url is None:
            object.__setattr__(self, "database_url", f"sqlite:///{self.base_dir / 'blockpilot.db'}")

    @classmethod
    def load(cls, base_dir: Optional[Path] = None) -> "AppConfig":
        base_dir = base_dir or Path(_env("BP_HOME", str(Path.cwd())))
        _load_dotenv(base_dir)

        runtime = RuntimeConfig(
            url=_env("BP_RUNTIME_URL", RuntimeConfig.url),
            vm_handle=_env("BP_VM_HANDLE", RuntimeConfig.vm_handle),
            workspace_handle=_env("BP_WORKSPACE_HANDLE", RuntimeConfig.workspace_handle),
            call_timeout_s=_env_float("BP_CALL_TIMEOUT_S", RuntimeConfig.call_timeout_s),
            run_duration_s=_env_float("BP_RUN_DURATION_S", RuntimeConfig.run_duration_s),
        )
        mutation = MutationConfig(
            retries=_env_int("BP_COMMIT_RETRIES", MutationConfig.retries),
            base_delay=_env_float("BP_RETRY_BASE", MutationConfig.base_delay),
            max_delay=_env_float("BP_RETRY_MAX", MutationConfig.max_delay),
            factor=_env_float("BP_RETRY_FACTOR", MutationConfig.factor),
        )
        geometry = GeometryConfig(
            previous_offset_x=_env_float("BP_LAYOUT_K1", GeometryConfig.previous_offset_x),
            bay_offset_x=_env_float("BP_LAYOUT_K2", GeometryConfig.bay_offset_x),
            bay_offset_y=_env_float("BP_LAYOUT_K3", GeometryConfig.bay_offset_y),
            snap_radius=_env_float("BP_SNAP_RADIUS", GeometryConfig.snap_radius),
            grab_inset=_env_float("BP_GRAB_INSET", GeometryConfig.grab_inset),
        )
        drag = DragConfig(
            steps=_env_int("BP_DRAG_STEPS", DragConfig.steps),
            step_delay_ms=_env_int("BP_DRAG_STEP_DELAY_MS", DragConfig.step_delay_ms),
            pre_press_ms=_env_int("BP_DRAG_PRE_PRESS_MS", DragConfig.pre_press_ms),
            pre_release_ms=_env_int("BP_DRAG_PRE_RELEASE_MS", DragConfig.pre_release_ms),
            require_highlight=_getenv_bool("BP_DRAG_REQUIRE_HIGHLIGHT", DragConfig.require_highlight),
        )
        verify = VerifyConfig(
            settle_timeout_s=_env_float("BP_SETTLE_TIMEOUT_S", VerifyConfig.settle_timeout_s),
            settle_poll_s=_env_float("BP_SETTLE_POLL_S", VerifyConfig.settle_poll_s),
        )
        return cls(
            base_dir=base_dir,
            runtime=runtime,
            mutation=mutation,
            geometry=geometry,
            drag=drag,
            verify=verify,
            catalogue_url=_env("BP_CATALOGUE_URL", ""),
            log_level=_env("BP_LOG_LEVEL", "INFO"),
            database_url=os.getenv("BP_DATABASE_URL") or None,
        )
