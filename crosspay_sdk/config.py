"""
Network and runtime configuration for the CrossPay SDK.
"""
import importlib.resources
import json
import logging
import os
import urllib.parse
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENVIRONMENTS = ("testnet", "mainnet")
DEFAULT_API_URL = "http://localhost:3001"
INSECURE_HTTP_ENV = "CROSSPAY_INSECURE_HTTP"


def validate_service_url(url: str, name: str = "url") -> str:
    """
    Validate that a service URL is secure.

    Args:
        url: URL to validate
        name: Name used in the error message

    Returns:
        The URL without a trailing slash

    Raises:
        ValueError: If the URL is malformed or uses plain HTTP for a
            non-local host without CROSSPAY_INSECURE_HTTP=1
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"{name} is not a valid http(s) URL: {url!r}")
    host = parsed.hostname or ""
    is_local = host in ("localhost", "127.0.0.1", "::1")
    if parsed.scheme != "https" and not is_local:
        if os.environ.get(INSECURE_HTTP_ENV) != "1":
            raise ValueError(
                f"{name} must use https:// for security (got: {parsed.scheme}://). "
                f"Set {INSECURE_HTTP_ENV}=1 to allow HTTP for development."
            )
    return url.rstrip("/")


class NetworkConfig:
    """Loader for the chain data shipped in networks.json"""

    _networks_cache: Optional[Dict[str, Any]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Any]:
        if cls._networks_cache is None:
            resource = importlib.resources.files("crosspay_sdk").joinpath("networks.json")
            cls._networks_cache = json.loads(resource.read_text(encoding="utf-8"))
        return cls._networks_cache

    @classmethod
    def get_environment(cls, environment: str) -> Dict[str, Any]:
        """
        Get the configuration block for one environment.

        Raises:
            ConfigurationError: If the environment is unknown
        """
        networks = cls.load_networks()
        if environment not in networks:
            available = ", ".join(sorted(networks))
            raise ConfigurationError(
                f"Environment '{environment}' not found. Available environments: {available}"
            )
        return networks[environment]

    @classmethod
    def get_chains(cls, environment: str) -> List[Dict[str, Any]]:
        return list(cls.get_environment(environment).get("chains", []))

    @classmethod
    def get_attestation_url(cls, environment: str) -> str:
        return cls.get_environment(environment)["attestationUrl"]

    @classmethod
    def get_rpc_url(cls, chain_id: int, environment: str, override: Optional[str] = None) -> Optional[str]:
        """
        Resolve the RPC endpoint of a chain.

        Priority: explicit override, CROSSPAY_RPC_<chain_id>, networks.json.
        """
        if override:
            return override
        env_url = os.environ.get(f"CROSSPAY_RPC_{chain_id}")
        if env_url:
            return env_url
        for chain in cls.get_chains(environment):
            if chain["chainId"] == chain_id:
                return chain.get("rpc")
        return None


def _optional_float(raw: str) -> Optional[float]:
    if raw.strip().lower() in ("", "0", "none", "off"):
        return None
    return float(raw)


class Settings(BaseModel):
    """
    Runtime settings shared by the payment flows.

    Every field has a default; ``Settings.from_env`` reads overrides from
    CROSSPAY_* environment variables.
    """
    environment: str = "testnet"
    api_url: str = DEFAULT_API_URL
    attestation_url: Optional[str] = None
    http_timeout: float = 30.0
    http_retries: int = 3

    attestation_interval: float = 5.0
    attestation_timeout: Optional[float] = 30 * 60.0
    order_poll_interval: float = 10.0
    order_poll_max_attempts: int = 30

    mint_max_attempts: int = 3
    mint_retry_delay: float = 5.0
    gas_buffer_percent: int = 50
    min_native_balance_wei: int = 10 ** 16
    min_finality_threshold: int = 1000
    receipt_timeout: float = 120.0

    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_backoff_factor: float = 2.0
    retry_max_elapsed: Optional[float] = None

    rpc_urls: Dict[int, str] = Field(default_factory=dict)

    class Config:
        frozen = True

    @field_validator("environment")
    @classmethod
    def _known_environment(cls, value: str) -> str:
        if value not in ENVIRONMENTS:
            raise ValueError(f"environment must be one of {ENVIRONMENTS}, got {value!r}")
        return value

    @field_validator("api_url")
    @classmethod
    def _secure_api_url(cls, value: str) -> str:
        return validate_service_url(value, "api_url")

    @field_validator("attestation_url")
    @classmethod
    def _secure_attestation_url(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else validate_service_url(value, "attestation_url")

    @field_validator("mint_max_attempts", "order_poll_max_attempts", "retry_max_attempts")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("attempt limits must be at least 1")
        return value

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "Settings":
        """
        Build settings from CROSSPAY_* environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            **overrides: Explicit values taking priority over the environment

        Returns:
            Settings instance
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        if environ.get("CROSSPAY_ENV"):
            values["environment"] = environ["CROSSPAY_ENV"].strip().lower()
        if environ.get("CROSSPAY_API_URL"):
            values["api_url"] = environ["CROSSPAY_API_URL"]
        if environ.get("CROSSPAY_ATTESTATION_URL"):
            values["attestation_url"] = environ["CROSSPAY_ATTESTATION_URL"]
        if environ.get("CROSSPAY_HTTP_TIMEOUT"):
            values["http_timeout"] = float(environ["CROSSPAY_HTTP_TIMEOUT"])
        if "CROSSPAY_ATTESTATION_TIMEOUT" in environ:
            values["attestation_timeout"] = _optional_float(environ["CROSSPAY_ATTESTATION_TIMEOUT"])

        rpc_urls = {}
        for key, value in environ.items():
            if key.startswith("CROSSPAY_RPC_") and value:
                suffix = key[len("CROSSPAY_RPC_"):]
                if suffix.isdigit():
                    rpc_urls[int(suffix)] = value
                else:
                    logger.warning(f"Ignoring {key}: expected CROSSPAY_RPC_<chain_id>")
        if rpc_urls:
            values["rpc_urls"] = rpc_urls

        values.update(overrides)
        return cls(**values)

    def resolved_attestation_url(self) -> str:
        return self.attestation_url or NetworkConfig.get_attestation_url(self.environment)

    def rpc_url_for(self, chain_id: int) -> Optional[str]:
        return NetworkConfig.get_rpc_url(chain_id, self.environment, override=self.rpc_urls.get(chain_id))
