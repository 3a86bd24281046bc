"""Global parameters and configuration loading."""
import os
from decimal import Decimal, InvalidOperation, localcontext
from pathlib import Path
from typing import Optional, Union, Dict, Any

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator

BASIS_POINTS = 10000
DECIMALS = 18
UNIT = 10 ** DECIMALS
DEFAULT_LOCK_DURATION = 7 * 24 * 60 * 60

ENV_PREFIX = "AGENT_STAKE_"
AMOUNT_FIELDS = ("min_stake", "max_stake")
INT_FIELDS = ("reward_multiplier", "slash_penalty", "lock_duration")


def to_base_units(value: Union[str, int, Decimal]) -> int:
    """Convert a decimal token amount (e.g. "0.05") into integer base units.

    Args:
        value: Token amount as a decimal string, int or Decimal

    Returns:
        Amount in base units (1 token == 10**18)
    """
    if isinstance(value, float):
        raise TypeError("Float amounts are not accepted, pass a decimal string")
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}")
    if not parsed.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    with localcontext() as ctx:
        # Wide enough that shifting by DECIMALS never rounds
        ctx.prec = len(parsed.as_tuple().digits) + DECIMALS + 1
        amount = parsed.scaleb(DECIMALS)
        if amount != amount.to_integral_value():
            raise ValueError(f"Amount {value} has more than {DECIMALS} decimals")
    if amount < 0:
        raise ValueError(f"Amount must not be negative: {value}")
    return int(amount)


def format_amount(base_units: int) -> str:
    """Render base units as a token amount without trailing zeros."""
    with localcontext() as ctx:
        ctx.prec = len(str(abs(base_units))) + DECIMALS + 1
        text = format(Decimal(base_units).scaleb(-DECIMALS), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def apply_bp(amount: int, basis_points: int) -> int:
    """floor(amount * basis_points / 10000) in exact integer arithmetic."""
    return amount * basis_points // BASIS_POINTS


class GlobalParameters(BaseModel):
    """Bounds and rates read by every mutating operation."""
    min_stake: int = Field(default=to_base_units("0.01"), ge=0)
    max_stake: int = Field(default=to_base_units("0.5"), ge=0)
    reward_multiplier: int = 1500  # basis points
    slash_penalty: int = 2000  # basis points
    lock_duration: int = Field(default=DEFAULT_LOCK_DURATION, ge=0)  # seconds

    @field_validator("reward_multiplier", "slash_penalty")
    @classmethod
    def _check_basis_points(cls, value: int) -> int:
        if not 0 <= value <= BASIS_POINTS:
            raise ValueError(f"Basis points must be within 0..{BASIS_POINTS}, got {value}")
        return value


def _parse_field(name: str, raw: Any) -> int:
    if name in AMOUNT_FIELDS:
        if isinstance(raw, float):
            # YAML turns 0.05 into a float; go through repr to keep the digits
            raw = repr(raw)
        return to_base_units(raw)
    return int(raw)


def load_parameters(path: Optional[Union[str, Path]] = None) -> GlobalParameters:
    """Load parameters from an optional YAML file plus environment overrides.

    Amounts in the file and in the environment are token amounts
    ("0.01"), the rest are plain integers.
    """
    data: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML config: {e}")
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        section = loaded.get("parameters", loaded)
        for name in AMOUNT_FIELDS + INT_FIELDS:
            if name in section:
                data[name] = _parse_field(name, section[name])

    for name in AMOUNT_FIELDS + INT_FIELDS:
        env_value = os.getenv(ENV_PREFIX + name.upper())
        if env_value is not None:
            logger.debug(f"Parameter {name} overridden from environment")
            data[name] = _parse_field(name, env_value)

    return GlobalParameters(**data)


def get_state_dir() -> Path:
    """Get the directory holding persisted engine state."""
    return Path(os.getenv(
        "AGENT_STAKE_HOME",
        os.path.join(os.path.expanduser("~"), ".agent-stake")
    ))


def get_log_level() -> str:
    return os.getenv("AGENT_STAKE_LOG_LEVEL", "INFO").upper()


def get_webhook_url() -> Optional[str]:
    """Indexer endpoint that receives lifecycle events, if configured."""
    return os.getenv("AGENT_STAKE_WEBHOOK_URL") or None
