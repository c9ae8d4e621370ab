from __future__ import annotations

from dataclasses import asdict, dataclass, replace


@dataclass(frozen=True, slots=True)
class MigrationConfig:
    enable_next_gen: bool = True
    rollout_percentage: int = 25
    fallback_to_legacy: bool = True
    force_next_gen_in_dev: bool = False
    log_all_requests: bool = True

    def __post_init__(self) -> None:
        if not 0 <= int(self.rollout_percentage) <= 100:
            raise ValueError("rollout_percentage must be within 0..100")

    @classmethod
    def defaults(cls, env: str = "") -> "MigrationConfig":
        return cls(force_next_gen_in_dev=(env or "").strip().lower() == "development")

    def with_rollout(self, percentage: int) -> "MigrationConfig":
        return replace(self, rollout_percentage=max(0, min(100, int(percentage))))

    def to_payload(self) -> dict:
        return asdict(self)


PRESETS: dict[str, MigrationConfig] = {
    "development": MigrationConfig(True, 100, True, True, True),
    "beta": MigrationConfig(True, 10, True, False, True),
    "gradual": MigrationConfig(True, 25, True, False, True),
    "full": MigrationConfig(True, 100, False, False, False),
    "emergency": MigrationConfig(False, 0, False, False, True),
}


def preset(name: str) -> MigrationConfig:
    try:
        return PRESETS[name.strip().lower()]
    except KeyError as exc:
        raise ValueError(f"unknown migration preset: {name}") from exc


def initial_config(env: str, preset_name: str = "") -> MigrationConfig:
    if preset_name and preset_name.strip():
        return preset(preset_name)
    return MigrationConfig.defaults(env)
