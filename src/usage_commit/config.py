import os
import tomllib
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, PositiveFloat, PositiveInt, SecretStr, ValidationError, field_validator
from web3 import Web3

import usage_commit.constants as C
from usage_commit.errors import ConfigError
from usage_commit.secret_store import EnvSecretStore, JsonSecretStore, SecretStore

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"

# user config file when none is passed explicitly, e.g. for the service started by `serve`
CONFIG_ENV = "USAGE_COMMIT_CONFIG"

# env var -> (toml section, key)
ENV_OVERRIDES = {
    "RPC_URL": ("chain", "rpc_url"),
    "CONTRACT_ADDRESS": ("chain", "contract_address"),
    "SECRETS_FILE": ("secrets", "file"),
    "BATCH_SIZE": ("batch", "size"),
    "GAS_LIMIT": ("batch", "gas_limit"),
    "RECEIPT_MAX_WAIT": ("receipt", "max_wait"),
    "FAILURE_FILE": ("output", "failure_file"),
}


class Settings(BaseModel):
    """Everything a run needs, resolved once at startup."""

    model_config = ConfigDict(frozen=True)

    rpc_url: str
    contract_address: str
    private_key: SecretStr
    batch_size: PositiveInt = C.DEFAULT_BATCH_SIZE
    gas_limit: PositiveInt = C.DEFAULT_GAS_LIMIT
    receipt_poll_interval: PositiveFloat = C.RECEIPT_POLL_INTERVAL
    receipt_max_wait: PositiveFloat | None = C.RECEIPT_MAX_WAIT
    receipt_max_attempts: PositiveInt | None = None
    rpc_timeout: PositiveFloat = C.RPC_TIMEOUT
    startup_timeout: PositiveFloat = C.STARTUP_TIMEOUT
    failure_file: Path = Path(C.FAILED_BATCHES_FILE)
    resync_nonce_on_wait_failure: bool = True

    @field_validator("rpc_url")
    @classmethod
    def _rpc_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"rpc_url must be an http(s) URL, got {v!r}")
        return v

    @field_validator("contract_address")
    @classmethod
    def _contract_address(cls, v: str) -> str:
        if not Web3.is_address(v):
            raise ValueError(f"not an address: {v!r}")
        return Web3.to_checksum_address(v)


def _merge(base: dict, override: Mapping) -> dict:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Packaged defaults, then the optional user file, then environment overrides.

    With no ``path`` the user file named by $USAGE_COMMIT_CONFIG is used, if set.
    """
    environ = os.environ if environ is None else environ
    cfg = tomllib.loads(config_file.read_text())
    if path is None:
        path = environ.get(CONFIG_ENV) or None
    if path is not None:
        try:
            cfg = _merge(cfg, tomllib.loads(Path(path).read_text()))
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"cannot load config file {path}: {e}") from e
    for var, (section, key) in ENV_OVERRIDES.items():
        if environ.get(var):
            cfg.setdefault(section, {})[key] = environ[var]
    return cfg


def secret_store_for(cfg: Mapping[str, Any], environ: Mapping[str, str] | None = None) -> SecretStore:
    secrets_file = cfg.get("secrets", {}).get("file")
    if secrets_file:
        return JsonSecretStore(secrets_file)
    return EnvSecretStore(environ)


def load_settings(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    secrets: SecretStore | None = None,
) -> Settings:
    cfg = load_config(path, environ)
    secrets = secrets or secret_store_for(cfg, environ)
    key_name = cfg["secrets"].get("private_key", C.PRIVATE_KEY_SECRET)

    chain, batch, receipt = cfg["chain"], cfg["batch"], cfg["receipt"]
    try:
        return Settings(
            rpc_url=chain["rpc_url"],
            contract_address=chain["contract_address"],
            private_key=secrets.get(key_name),
            batch_size=batch["size"],
            gas_limit=batch["gas_limit"],
            receipt_poll_interval=receipt["poll_interval"],
            # 0 in the file means unbounded
            receipt_max_wait=float(receipt["max_wait"]) or None,
            receipt_max_attempts=int(receipt["max_attempts"]) or None,
            rpc_timeout=cfg["timeout"]["rpc"],
            startup_timeout=cfg["timeout"]["startup"],
            failure_file=cfg["output"]["failure_file"],
            resync_nonce_on_wait_failure=cfg["nonce"]["resync_on_wait_failure"],
        )
    except ValidationError as e:
        raise ConfigError(f"invalid configuration:\n{e}") from e
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"invalid configuration: {e}") from e
