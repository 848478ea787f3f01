"""
Configuration Validation Module

Validates app.yaml and policy.yaml against Pydantic schemas.
Ensures config files are correct before the agent starts.

Usage:
    from tools.config_validator import validate_all_configs

    errors = validate_all_configs("config")
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        sys.exit(1)
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator, ValidationError

logger = logging.getLogger(__name__)

TRADABLE_TOKEN_NAMES = ("ALICE", "BOB")


# ===== App Schema =====
class AppSection(BaseModel):
    mode: str = Field(default="DRY_RUN", pattern="^(DRY_RUN|LIVE)$", description="Execution mode")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    file: Optional[str] = Field(default="logs/agent.log", description="Log file path (None disables)")


class StateConfig(BaseModel):
    path: str = Field(default="data/.agent_state.json", min_length=1)
    trade_log_path: str = Field(default="logs/trades.jsonl", min_length=1)


class GatewayConfig(BaseModel):
    base_url: str = Field(min_length=1, description="Ledger/pool bridge URL")
    account: str = Field(min_length=1, description="Agent account on every ledger")
    timeout_seconds: float = Field(default=20.0, gt=0)
    max_retries: int = Field(default=3, ge=1, le=10)

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be http(s), got {v}")
        return v


class LlmConfig(BaseModel):
    provider: str = Field(default="xai", pattern="^(xai|deepseek|openai)$")
    model: Optional[str] = Field(default=None, description="Provider default when omitted")
    base_url: Optional[str] = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    mock: bool = Field(default=False, description="Answer HODL without calling any provider")
    system_context: Optional[str] = Field(default=None, description="Seeds the set-once system context")


class MonitoringConfig(BaseModel):
    metrics_enabled: bool = False
    metrics_port: int = Field(default=9100, gt=0, lt=65536)
    status_enabled: bool = True
    status_port: int = Field(default=8080, gt=0, lt=65536)


class LoopConfig(BaseModel):
    tick_seconds: float = Field(default=1.0, gt=0, le=60)


class AppSchema(BaseModel):
    """Complete app configuration schema"""
    app: AppSection = Field(default_factory=AppSection)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    gateway: GatewayConfig
    llm: LlmConfig = Field(default_factory=LlmConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)

    @model_validator(mode="after")
    def validate_ports(self) -> "AppSchema":
        m = self.monitoring
        if m.metrics_enabled and m.status_enabled and m.metrics_port == m.status_port:
            raise ValueError("monitoring.metrics_port and monitoring.status_port must differ")
        return self


# ===== Policy Schema =====
class RiskConfig(BaseModel):
    """Risk sizing constants"""
    price_history_capacity: int = Field(default=8, gt=0)
    min_price_samples: int = Field(default=4, gt=0)
    var_confidence: float = Field(default=0.95, gt=0, lt=1)
    risk_budget: float = Field(default=0.10, gt=0, le=1)
    position_cap_fraction: float = Field(default=0.10, gt=0, le=1)
    slippage_tolerance: float = Field(default=0.10, gt=0, lt=1)
    quote_staleness_seconds: int = Field(default=3600, ge=0)
    quote_retention_days: int = Field(default=30, gt=0)
    quote_probe_amount: int = Field(default=100_000_000, gt=0)

    @model_validator(mode="after")
    def validate_samples(self) -> "RiskConfig":
        if self.min_price_samples > self.price_history_capacity:
            raise ValueError(
                f"min_price_samples ({self.min_price_samples}) exceeds "
                f"price_history_capacity ({self.price_history_capacity})"
            )
        return self


class CadenceConfig(BaseModel):
    """Handler re-arm delays (seconds)"""
    refresh_context_seconds: int = Field(default=3600, gt=0)
    take_decision_seconds: int = Field(default=14_400, gt=0)
    fetch_quotes_seconds: int = Field(default=14_400, gt=0)
    process_logic_idle_seconds: int = Field(default=240, gt=0)
    process_logic_retry_seconds: int = Field(default=5, gt=0)
    miner_refresh_seconds: int = Field(default=86_400, gt=0)


class TokenDirectionConfig(BaseModel):
    sell_zero_for_one: bool = True


class PoolsConfig(BaseModel):
    derive_direction_from_pool: bool = False


class PolicySchema(BaseModel):
    """Complete policy configuration schema"""
    risk: RiskConfig = Field(default_factory=RiskConfig)
    cadence: CadenceConfig = Field(default_factory=CadenceConfig)
    tokens: Dict[str, TokenDirectionConfig] = Field(default_factory=dict)
    pools: PoolsConfig = Field(default_factory=PoolsConfig)

    @field_validator("tokens")
    @classmethod
    def validate_token_names(cls, v: Dict[str, TokenDirectionConfig]) -> Dict[str, TokenDirectionConfig]:
        for name in v:
            if name.upper() not in TRADABLE_TOKEN_NAMES:
                raise ValueError(f"Unknown tradable token {name} (expected one of {', '.join(TRADABLE_TOKEN_NAMES)})")
        return v


def _format_yaml_error(file_path: Path, error: yaml.YAMLError) -> str:
    """Return enriched message with line/column context for YAML errors."""

    message = f"Malformed YAML in {file_path}: {error}"
    mark = getattr(error, "problem_mark", None)
    if mark is None:
        return message

    line = getattr(mark, "line", None)
    column = getattr(mark, "column", None)
    if line is None or column is None:
        return message

    raw_lines = file_path.read_text().splitlines()
    start = max(line - 2, 0)
    end = min(line + 3, len(raw_lines))

    snippet_lines: List[str] = []
    for idx in range(start, end):
        pointer = "▶" if idx == line else " "
        snippet_lines.append(f"{pointer} {idx + 1:04d} | {raw_lines[idx]}")

    problem = getattr(error, "problem", str(error))
    return (
        f"Malformed YAML in {file_path}: line {line + 1}, column {column + 1}: {problem}\n"
        "Context:\n" + "\n".join(snippet_lines)
    )


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML file and return as dict.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is malformed
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r') as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(_format_yaml_error(file_path, e))


def _validate_file(config_dir: Path, filename: str, schema: type) -> List[str]:
    errors = []
    try:
        config = load_yaml_file(config_dir / filename)
        if not isinstance(config, dict):
            raise ValueError("top level must be a mapping")
        schema(**config)
        logger.info(f"✅ {filename} validation passed")
    except FileNotFoundError as e:
        errors.append(f"{filename}: {e}")
    except yaml.YAMLError as e:
        errors.append(f"{filename}: Invalid YAML - {e}")
    except ValidationError as e:
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error['loc']) or "<root>"
            errors.append(f"{filename}: {field}: {error['msg']}")
    except ValueError as e:
        errors.append(f"{filename}: {e}")
    return errors


def validate_app(config_dir: Path) -> List[str]:
    """Validate app.yaml against schema."""
    return _validate_file(config_dir, "app.yaml", AppSchema)


def validate_policy(config_dir: Path) -> List[str]:
    """Validate policy.yaml against schema."""
    return _validate_file(config_dir, "policy.yaml", PolicySchema)


def validate_all_configs(config_dir: str = "config") -> List[str]:
    """
    Validate all configuration files.

    Args:
        config_dir: Path to config directory (string or Path)

    Returns:
        List of all error messages (empty if all valid)
    """
    config_path = Path(config_dir)

    all_errors = []
    all_errors.extend(validate_app(config_path))
    all_errors.extend(validate_policy(config_path))

    if not all_errors:
        logger.info("✅ All config files validated successfully")
    else:
        logger.error(f"❌ {len(all_errors)} validation error(s) found")

    return all_errors


if __name__ == "__main__":
    """Run validation from command line"""
    import sys

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    config_dir = sys.argv[1] if len(sys.argv) > 1 else "config"
    errors = validate_all_configs(config_dir)

    if errors:
        print("\n❌ Configuration Validation Failed:\n")
        for error in errors:
            print(f"  • {error}")
        print()
        sys.exit(1)
    else:
        print("\n✅ All configuration files are valid!\n")
        sys.exit(0)
