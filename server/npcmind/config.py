from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def load_env_file(path: Path) -> int:
    """Export KEY=VALUE pairs from ``path`` without overriding the real environment."""
    if not path.is_file():
        return 0
    loaded = 0
    for raw in path.read_text(encoding="utf-8").splitlines():
        key, sep, value = raw.strip().partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#"):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        if key not in os.environ:
            os.environ[key] = value
            loaded += 1
    return loaded


def is_enabled(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int, low: int, high: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return max(low, min(high, value))


def env_float(name: str, default: float, low: float, high: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return max(low, min(high, value))


def env_bool(name: str, default: bool) -> bool:
    return is_enabled(os.getenv(name), default=default)


def env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip() or default


@dataclass(frozen=True)
class AgentSettings:
    decision_cooldown_sec: float = 30.0
    cooldown_jitter_sec: float = 5.0
    decision_timer_base_sec: float = 5.0
    decision_timer_random_sec: float = 5.0
    after_action_timer_base_sec: float = 3.0
    after_action_timer_random_sec: float = 4.0
    reactive_cooldown_sec: float = 20.0
    chat_follow_up_sec: float = 7.0
    interaction_distance: float = 3.0
    attack_distance: float = 3.0
    follow_distance: float = 5.0
    stopping_distance: float = 3.0
    follow_leash_factor: float = 5.0
    search_radius: float = 30.0
    roam_radius: float = 20.0
    prompt_events: int = 7
    chat_prompt_events: int = 5
    max_nearby_characters: int = 12
    max_nearby_animals: int = 12
    max_nearby_objects: int = 24
    objects_per_type: int = 3
    locale: str = "en"

    @classmethod
    def from_env(cls) -> "AgentSettings":
        return cls(
            decision_cooldown_sec=env_float("NPC_DECISION_COOLDOWN_SEC", 30.0, 1.0, 600.0),
            cooldown_jitter_sec=env_float("NPC_DECISION_COOLDOWN_JITTER_SEC", 5.0, 0.0, 60.0),
            decision_timer_base_sec=env_float("NPC_DECISION_TIMER_BASE_SEC", 5.0, 0.5, 120.0),
            decision_timer_random_sec=env_float("NPC_DECISION_TIMER_RANDOM_SEC", 5.0, 0.0, 120.0),
            reactive_cooldown_sec=env_float("NPC_REACTIVE_COOLDOWN_SEC", 20.0, 1.0, 600.0),
            chat_follow_up_sec=env_float("NPC_CHAT_FOLLOW_UP_SEC", 7.0, 0.5, 120.0),
            interaction_distance=env_float("NPC_INTERACTION_DISTANCE", 3.0, 0.5, 20.0),
            attack_distance=env_float("NPC_ATTACK_DISTANCE", 3.0, 0.5, 20.0),
            follow_distance=env_float("NPC_FOLLOW_DISTANCE", 5.0, 0.5, 30.0),
            stopping_distance=env_float("NPC_STOPPING_DISTANCE", 3.0, 0.1, 20.0),
            search_radius=env_float("NPC_SEARCH_RADIUS", 30.0, 1.0, 500.0),
            roam_radius=env_float("NPC_ROAM_RADIUS", 20.0, 1.0, 500.0),
            prompt_events=env_int("NPC_PROMPT_EVENTS", 7, 1, 10),
            chat_prompt_events=env_int("NPC_CHAT_PROMPT_EVENTS", 5, 1, 10),
            max_nearby_characters=env_int("NPC_MAX_NEARBY_CHARACTERS", 12, 1, 64),
            max_nearby_animals=env_int("NPC_MAX_NEARBY_ANIMALS", 12, 1, 64),
            max_nearby_objects=env_int("NPC_MAX_NEARBY_OBJECTS", 24, 1, 128),
            locale=env_str("NPC_LOCALE", "en"),
        )


@dataclass(frozen=True)
class AnimalSettings:
    detection_range: float = 15.0
    attack_range: float = 1.5
    roam_radius: float = 20.0
    perception_interval_min_sec: float = 0.5
    perception_interval_max_sec: float = 1.0
    lose_target_factor: float = 1.5
    arrive_distance: float = 1.0
    world_half_size: float = 48.0

    @classmethod
    def from_env(cls) -> "AnimalSettings":
        interval_min = env_float("ANIMAL_PERCEPTION_MIN_SEC", 0.5, 0.05, 10.0)
        interval_max = env_float("ANIMAL_PERCEPTION_MAX_SEC", 1.0, 0.05, 10.0)
        return cls(
            detection_range=env_float("ANIMAL_DETECTION_RANGE", 15.0, 1.0, 200.0),
            attack_range=env_float("ANIMAL_ATTACK_RANGE", 1.5, 0.1, 20.0),
            roam_radius=env_float("ANIMAL_ROAM_RADIUS", 20.0, 1.0, 500.0),
            perception_interval_min_sec=min(interval_min, interval_max),
            perception_interval_max_sec=max(interval_min, interval_max),
            world_half_size=env_float("WORLD_HALF_SIZE", 48.0, 5.0, 5000.0),
        )


@dataclass(frozen=True)
class WorldSettings:
    tick_interval_sec: float = 1.0 / 30.0
    walk_speed: float = 3.0
    sprint_speed: float = 5.5
    event_log_size: int = 50
    history_limit: int = 300
    hearing_radius: float = 30.0
    world_half_size: float = 48.0

    @classmethod
    def from_env(cls) -> "WorldSettings":
        return cls(
            tick_interval_sec=env_float("TICK_INTERVAL_SEC", 1.0 / 30.0, 0.005, 2.0),
            walk_speed=env_float("WORLD_WALK_SPEED", 3.0, 0.1, 50.0),
            sprint_speed=env_float("WORLD_SPRINT_SPEED", 5.5, 0.1, 80.0),
            event_log_size=env_int("WORLD_EVENT_LOG_SIZE", 50, 5, 1000),
            history_limit=env_int("WORLD_HISTORY_LIMIT", 300, 20, 5000),
            hearing_radius=env_float("WORLD_HEARING_RADIUS", 30.0, 1.0, 500.0),
            world_half_size=env_float("WORLD_HALF_SIZE", 48.0, 5.0, 5000.0),
        )
