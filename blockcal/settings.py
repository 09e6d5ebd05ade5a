"""
Engine settings - explicit configuration for the resolver and pipeline.

Loaded from config/blockcal.yaml (see blockcal.paths.config_path). Falls back
to built-in defaults when the file is missing or a key is absent. Settings are
passed into each call; nothing in the engine reads them from ambient state.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml

from blockcal import config, paths
from blockcal.errors import ValidationError
from blockcal.schedule.conflicts import Policy
from blockcal.timeutil import time_string_to_minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SleepWindow:
    start: str = "23:00"
    end: str = "07:00"


@dataclass(frozen=True)
class Horizon:
    past_days: int = config.HORIZON_PAST_DAYS
    future_days: int = config.HORIZON_FUTURE_DAYS


@dataclass(frozen=True)
class PipelineSettings:
    inbox: str = config.DEFAULT_INBOX
    poll_seconds: float = config.POLL_SECONDS
    skip_seen_command_ids: bool = False


@dataclass(frozen=True)
class EngineSettings:
    policy: Policy = Policy.ALLOW
    snap_minutes: int = config.SNAP_MIN
    sleep: SleepWindow = field(default_factory=SleepWindow)
    horizon: Horizon = field(default_factory=Horizon)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)

    def with_policy(self, policy: Policy | str) -> "EngineSettings":
        return replace(self, policy=Policy(policy))

    @classmethod
    def from_dict(cls, data: dict) -> "EngineSettings":
        """
        Build settings from a parsed YAML mapping.

        Raises:
            ValidationError: on an unknown policy or malformed values
        """
        data = data or {}
        sleep = data.get("sleep") or {}
        horizon = data.get("horizon") or {}
        pipeline = data.get("pipeline") or {}
        try:
            settings = cls(
                policy=Policy(data.get("policy", Policy.ALLOW.value)),
                snap_minutes=int(data.get("snap_minutes", config.SNAP_MIN)),
                sleep=SleepWindow(
                    start=str(sleep.get("start", SleepWindow.start)),
                    end=str(sleep.get("end", SleepWindow.end)),
                ),
                horizon=Horizon(
                    past_days=int(horizon.get("past_days", config.HORIZON_PAST_DAYS)),
                    future_days=int(horizon.get("future_days", config.HORIZON_FUTURE_DAYS)),
                ),
                pipeline=PipelineSettings(
                    inbox=str(pipeline.get("inbox", config.DEFAULT_INBOX)),
                    poll_seconds=float(pipeline.get("poll_seconds", config.POLL_SECONDS)),
                    skip_seen_command_ids=bool(pipeline.get("skip_seen_command_ids", False)),
                ),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"invalid settings: {e}") from e

        # Fail early on a malformed sleep window rather than at block creation
        time_string_to_minutes(settings.sleep.start)
        time_string_to_minutes(settings.sleep.end)
        if settings.snap_minutes <= 0:
            raise ValidationError("snap_minutes must be positive")
        return settings


def load_settings(config_file: Path | None = None) -> EngineSettings:
    """Load engine settings from YAML, defaults when the file is absent."""
    config_file = config_file or paths.config_path()
    if not config_file.exists():
        logger.debug(f"No settings file at {config_file}; using defaults")
        return EngineSettings()
    with open(config_file) as f:
        data = yaml.safe_load(f) or {}
    return EngineSettings.from_dict(data)


def save_settings(settings: EngineSettings, config_file: Path) -> None:
    """Write settings back as YAML (used by `blockcal policy`)."""
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "policy": settings.policy.value,
        "snap_minutes": settings.snap_minutes,
        "sleep": {"start": settings.sleep.start, "end": settings.sleep.end},
        "horizon": {
            "past_days": settings.horizon.past_days,
            "future_days": settings.horizon.future_days,
        },
        "pipeline": {
            "inbox": settings.pipeline.inbox,
            "poll_seconds": settings.pipeline.poll_seconds,
            "skip_seen_command_ids": settings.pipeline.skip_seen_command_ids,
        },
    }
    with open(config_file, "w") as f:
        yaml.dump(data, f, default_flow_style=False)
