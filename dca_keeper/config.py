import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.recovery.errors import ConfigError
from .sui.keypair import decode_private_key


BASE_DIR = Path(__file__).resolve().parents[1]

DEFAULT_RPC_URLS: Dict[str, str] = {
    "mainnet": "https://fullnode.mainnet.sui.io:443",
    "testnet": "https://fullnode.testnet.sui.io:443",
    "devnet": "https://fullnode.devnet.sui.io:443",
    "localnet": "http://127.0.0.1:9000",
}

_OBJECT_ID_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Health server
    health_server_enabled: bool = Field(default=True, description="Serve /health, /status and /trigger")
    health_host: str = Field(default="0.0.0.0", description="Health server host")
    health_port: int = Field(default=8080, description="Health server port")
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: Optional[bool] = Field(
        default=None,
        description="Force JSON (true) or console (false) logs; unset picks by level",
    )

    # Network
    sui_network: Literal["mainnet", "testnet", "devnet", "localnet"] = Field(
        default="mainnet",
        description="Sui network the keeper runs against",
    )
    sui_rpc_url: str = Field(default="", description="JSON-RPC endpoint; defaults to the network fullnode")

    # Protocol objects
    dca_package_id: str = Field(default="", description="Published DCA package id")
    global_config_id: str = Field(default="", description="Shared GlobalConfig object id")
    fee_tracker_id: str = Field(default="", description="Shared FeeTracker object id")
    price_feed_registry_id: str = Field(default="", description="Shared PriceFeedRegistry object id")
    terms_registry_id: str = Field(default="", description="Shared TermsRegistry object id")
    clock_id: str = Field(default="0x6", description="Sui system clock object id")
    price_info_objects: Dict[str, str] = Field(
        default_factory=dict,
        description="Pyth feed id -> PriceInfoObject id overrides (JSON)",
    )

    # Executor identity
    executor_private_key: str = Field(
        default="",
        description="Ed25519 key as suiprivkey bech32, base64 or hex",
    )

    # Execution
    max_batch_size: int = Field(default=5, ge=1, le=100, description="Orders per batch")
    executor_reward_claim: Optional[int] = Field(
        default=None,
        ge=0,
        description="Reward requested per trade in MIST; unset claims the account snapshot value",
    )
    dry_run: bool = Field(default=False, description="Simulate trades without submitting")
    execution_delay_ms: int = Field(default=3000, ge=0, description="Sleep between polling cycles")
    gas_budget: int = Field(default=50_000_000, gt=0, description="Gas budget per transaction in MIST")
    preflight_dry_run: bool = Field(
        default=True,
        description="Dry-run each trade before signing to catch aborts and estimate gas",
    )
    use_legacy_init: bool = Field(default=False, description="Use init_trade_legacy (no oracle objects)")

    # Swap leg
    swap_adapter: Literal["flowx"] = Field(default="flowx", description="Swap adapter used inside trades")
    flowx_package_id: str = Field(
        default="0xba153169476e8c3114962261d1edc70de5ad9781b83cc617ecc8c1923191cae0",
        description="FlowX AMM package id",
    )
    flowx_container_id: str = Field(
        default="0xb65dcbf63fd3ad5d0ebfbf334780dc9f785eff38a4459e37ab08fa79576ee511",
        description="FlowX AMM factory Container object id",
    )

    # Oracle freshness
    oracle_max_age_seconds: int = Field(default=60, gt=0, description="Max age of a Pyth arrival time")
    oracle_max_skew_seconds: int = Field(
        default=30,
        ge=0,
        description="Max distance between Pyth attestation and arrival times",
    )

    # Retry / quarantine policy
    max_submit_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per transient failure")
    retry_initial_delay_seconds: float = Field(default=1.0, ge=0, description="First backoff delay")
    retry_max_delay_seconds: float = Field(default=30.0, ge=0, description="Backoff ceiling")
    quarantine_after_failures: int = Field(
        default=3,
        ge=1,
        description="Terminal failures before an account is quarantined",
    )
    quarantine_cycles: int = Field(default=10, ge=1, description="Scan cycles a quarantined account is skipped")
    rpc_failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive RPC failures before the loop pauses",
    )

    # Timeouts and concurrency
    scan_concurrency: int = Field(default=10, ge=1, le=50, description="Parallel read-only RPC calls")
    scan_page_size: int = Field(default=50, ge=1, le=50, description="Events per suix_queryEvents page")
    rpc_timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request RPC deadline")
    submit_timeout_seconds: float = Field(default=30.0, gt=0, description="Per-submission deadline")
    cycle_timeout_seconds: float = Field(
        default=55.0,
        gt=0,
        description="Scan deadline and window in which new orders may start",
    )
    shutdown_grace_seconds: float = Field(default=30.0, ge=0, description="Drain time on shutdown")

    # Alerts
    alert_webhook_url: str = Field(default="", description="Webhook for quarantine / pause alerts")
    alert_on_success: bool = Field(default=False, description="Also post an alert for each settled trade")

    @property
    def rpc_url(self) -> str:
        return self.sui_rpc_url or DEFAULT_RPC_URLS[self.sui_network]

    def validate_for_keeper(self) -> None:
        """Startup gate: raise ConfigError listing every invalid setting."""

        problems: List[str] = []
        required = {
            "DCA_PACKAGE_ID": self.dca_package_id,
            "GLOBAL_CONFIG_ID": self.global_config_id,
            "FEE_TRACKER_ID": self.fee_tracker_id,
            "PRICE_FEED_REGISTRY_ID": self.price_feed_registry_id,
        }
        for name, value in required.items():
            if not value:
                problems.append(f"{name} is required")
            elif not _OBJECT_ID_RE.match(value):
                problems.append(f"{name} must be a 0x-prefixed object id")

        optional = {
            "TERMS_REGISTRY_ID": self.terms_registry_id,
            "CLOCK_ID": self.clock_id,
            "FLOWX_PACKAGE_ID": self.flowx_package_id,
            "FLOWX_CONTAINER_ID": self.flowx_container_id,
        }
        for name, value in optional.items():
            if value and not _OBJECT_ID_RE.match(value):
                problems.append(f"{name} must be a 0x-prefixed object id")

        for feed_id, object_id in self.price_info_objects.items():
            if not _OBJECT_ID_RE.match(object_id):
                problems.append(f"PRICE_INFO_OBJECTS[{feed_id}] must be a 0x-prefixed object id")

        if not self.rpc_url.startswith(("http://", "https://")):
            problems.append("SUI_RPC_URL must be an http(s) URL")

        if not self.dry_run and not self.executor_private_key:
            problems.append("EXECUTOR_PRIVATE_KEY is required unless DRY_RUN is set")
        elif self.executor_private_key:
            try:
                decode_private_key(self.executor_private_key)
            except ValueError as exc:
                problems.append(f"EXECUTOR_PRIVATE_KEY is invalid: {exc}")

        if self.retry_max_delay_seconds < self.retry_initial_delay_seconds:
            problems.append("RETRY_MAX_DELAY_SECONDS must be >= RETRY_INITIAL_DELAY_SECONDS")

        if problems:
            raise ConfigError("Invalid keeper configuration: " + "; ".join(problems), problems=problems)


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, converting validation errors to ConfigError."""

    try:
        return Settings(**overrides)
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']).upper()}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ConfigError("Invalid keeper configuration: " + "; ".join(problems), problems=problems) from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
