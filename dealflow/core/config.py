import os
from dotenv import load_dotenv
from dataclasses import dataclass
from typing import Optional, Dict, Any, Callable

load_dotenv()


class EnvConfig:
    """Small helper for reading and casting environment variables.

    Usage: EnvConfig.get('COHERENCE_ENABLED', cast=parse_bool, aliases=['TIER3_COHERENCE_ENABLED'])
    """

    @staticmethod
    def get(name: str, default: Any = None, cast: Optional[Callable] = None, aliases: Optional[list] = None):
        aliases = aliases or []
        for key in (name, *aliases):
            val = os.getenv(key)
            if val is not None:
                if cast is not None:
                    try:
                        return cast(val)
                    except Exception as exc:
                        raise ValueError(f"Invalid value for {key}: {exc}")
                return val
        return default


def parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in ('1', 'true', 'yes', 'on'):
        return True
    if normalized in ('0', 'false', 'no', 'off'):
        return False
    raise ValueError(f"expected a boolean, got {value!r}")


# Debug flag
DEBUG = EnvConfig.get('DEBUG', default='False', cast=lambda v: v.lower() == 'true')


@dataclass
class BaseConfig:
    """Mixin-like helper for dataclasses that load from envs and validate."""

    @classmethod
    def _env(cls, name: str, default: Any = None, cast: Optional[Callable] = None, aliases: Optional[list] = None):
        return EnvConfig.get(name, default=default, cast=cast, aliases=aliases)

    def validate(self, required: bool = True):
        """Default no-op; override in subclasses with required flag."""
        return None


@dataclass
class CoherenceConfig(BaseConfig):
    """Runtime switches for the Tier-3 coherence stage.

    Rule thresholds are not configured here; they live in `CoherencePolicy`
    so they can be reviewed alongside the rules that read them.
    """
    enabled: bool = True
    inject_results: bool = True
    neutral_scepticism: float = 50.0
    irr_holding_years: int = 5

    def __post_init__(self):
        # Respect explicit constructor values: only consult env vars when using dataclass defaults
        if self.enabled is CoherenceConfig.enabled:
            self.enabled = self._env('COHERENCE_ENABLED', default=self.enabled, cast=parse_bool)
        if self.inject_results is CoherenceConfig.inject_results:
            self.inject_results = self._env('COHERENCE_INJECT_RESULTS', default=self.inject_results, cast=parse_bool)
        if self.neutral_scepticism == CoherenceConfig.neutral_scepticism:
            self.neutral_scepticism = self._env(
                'COHERENCE_NEUTRAL_SCEPTICISM', default=self.neutral_scepticism, cast=float,
                aliases=['COHERENCE_NEUTRAL_SKEPTICISM'],
            )
        if self.irr_holding_years == CoherenceConfig.irr_holding_years:
            self.irr_holding_years = self._env('COHERENCE_IRR_HOLDING_YEARS', default=self.irr_holding_years, cast=int)

    def validate(self, required: bool = True) -> None:
        if not 0 <= self.neutral_scepticism <= 100:
            raise ValueError('neutral_scepticism must be between 0 and 100')
        if self.irr_holding_years < 1:
            raise ValueError('irr_holding_years must be >= 1')


class AppConfig:
    """Central application configuration container.

    Access sub-configs as attributes (e.g., `AppConfig.coherence`).
    Use `AppConfig.from_env()` for a validated instance reflecting the
    current environment.
    """

    coherence: CoherenceConfig = CoherenceConfig()

    @staticmethod
    def validate_all(strict: bool = False) -> None:
        AppConfig.coherence.validate(required=strict)

    @staticmethod
    def check_availability() -> Dict[str, Dict[str, Any]]:
        """Return availability map for each config.

        For each named sub-config return a dict with keys:
        - available: bool
        - reason: Optional[str] explaining failure when available is False
        """
        results: Dict[str, Dict[str, Any]] = {}
        # Fresh instances so availability reflects the current environment
        factories = {
            'coherence': CoherenceConfig,
        }
        for name, factory in factories.items():
            try:
                factory().validate(required=True)
                results[name] = {'available': True, 'reason': None}
            except ValueError as e:
                results[name] = {'available': False, 'reason': str(e)}
        return results

    @staticmethod
    def from_env(strict: bool = False) -> 'AppConfig':
        config = AppConfig()
        config.coherence = CoherenceConfig()
        config.coherence.validate(required=strict)
        return config
