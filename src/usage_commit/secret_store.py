"""Secret lookup by name."""

import json
import os
from pathlib import Path
from typing import Mapping, Protocol

from usage_commit.errors import ConfigError


class SecretStore(Protocol):
    def get(self, name: str) -> str: ...


class MappingSecretStore:
    def __init__(self, values: Mapping[str, str]):
        self._values = dict(values)

    def get(self, name: str) -> str:
        try:
            value = self._values[name]
        except KeyError:
            raise ConfigError(f"secret {name!r} not found") from None
        if not isinstance(value, str) or not value:
            raise ConfigError(f"secret {name!r} is empty or not a string")
        return value


class EnvSecretStore(MappingSecretStore):
    def __init__(self, environ: Mapping[str, str] | None = None):
        super().__init__(os.environ if environ is None else environ)


class JsonSecretStore(MappingSecretStore):
    """All secrets of a deployment in one JSON object, keys looked up by name."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"cannot load secrets from {self.path}: {e.__class__.__name__}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{self.path} must contain a JSON object")
        super().__init__(data)
