"""Load settings.yaml into typed dataclasses. Checks API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class PromptsConfig:
    participant_system: str
    participant_initial: str
    participant_followup: str
    chair_system: str
    chair_decision: str
    chair_synthesis: str


@dataclass
class ToolLimitsConfig:
    max_results: int = 200
    max_file_bytes: int = 2 * 1024 * 1024
    max_read_lines: int = 400
    max_diff_lines: int = 10_000
    tool_timeout_sec: float = 120.0
    diff_timeout_sec: float = 60.0


@dataclass
class DefaultsConfig:
    max_rounds: int
    chair: str
    sessions_dir: Path
    panel: list[str] = field(default_factory=list)
    max_tool_iterations: int = 50
    participant_timeout_sec: float | None = None
    participant_retries: int = 2
    retry_base_delay_sec: float = 2.0
    parallel_tool_calls: bool = True


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    tools: ToolLimitsConfig = field(default_factory=ToolLimitsConfig)
    available_providers: set[str] = field(default_factory=set)


def _load_tool_limits(raw: dict | None) -> ToolLimitsConfig:
    raw = raw or {}
    base = ToolLimitsConfig()
    return ToolLimitsConfig(
        max_results=int(raw.get("max_results", base.max_results)),
        max_file_bytes=int(raw.get("max_file_bytes", base.max_file_bytes)),
        max_read_lines=int(raw.get("max_read_lines", base.max_read_lines)),
        max_diff_lines=int(raw.get("max_diff_lines", base.max_diff_lines)),
        tool_timeout_sec=float(raw.get("tool_timeout_sec", base.tool_timeout_sec)),
        diff_timeout_sec=float(raw.get("diff_timeout_sec", base.diff_timeout_sec)),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs missing API keys but does not raise: callers check
    available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    timeout_raw = defaults_raw.get("participant_timeout_sec")
    defaults = DefaultsConfig(
        max_rounds=int(defaults_raw["max_rounds"]),
        chair=str(defaults_raw["chair"]),
        sessions_dir=Path(os.path.expanduser(str(defaults_raw["sessions_dir"]))),
        panel=list(defaults_raw.get("panel", [])),
        max_tool_iterations=int(defaults_raw.get("max_tool_iterations", 50)),
        participant_timeout_sec=float(timeout_raw) if timeout_raw is not None else None,
        participant_retries=int(defaults_raw.get("participant_retries", 2)),
        retry_base_delay_sec=float(defaults_raw.get("retry_base_delay_sec", 2.0)),
        parallel_tool_calls=bool(defaults_raw.get("parallel_tool_calls", True)),
    )
    if defaults.max_rounds < 1:
        raise ValueError(f"defaults.max_rounds must be >= 1, got {defaults.max_rounds}")

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        participant_system=prompts_raw["participant_system"],
        participant_initial=prompts_raw["participant_initial"],
        participant_followup=prompts_raw["participant_followup"],
        chair_system=prompts_raw["chair_system"],
        chair_decision=prompts_raw["chair_decision"],
        chair_synthesis=prompts_raw["chair_synthesis"],
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s, set %s in .env",
                provider_name,
                model_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        tools=_load_tool_limits(raw.get("tools")),
        available_providers=available_providers,
    )
