import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .exceptions import ConfigurationError

DEFAULT_API_VERSION = "2018-06-01"
RUNTIME_API_ENV = "AWS_LAMBDA_RUNTIME_API"
API_VERSION_ENV = "LAMBDA_RUNTIME_API_VERSION"


@dataclass(frozen=True)
class RuntimeClientConfig:
    endpoint: str
    api_version: str = DEFAULT_API_VERSION

    def __post_init__(self) -> None:
        endpoint = str(self.endpoint or "").strip().rstrip("/")
        if not endpoint:
            raise ConfigurationError("runtime api endpoint must not be empty")
        api_version = str(self.api_version or "").strip().strip("/")
        if not api_version:
            raise ConfigurationError("runtime api version must not be empty")
        object.__setattr__(self, "endpoint", endpoint)
        object.__setattr__(self, "api_version", api_version)

    @property
    def base_url(self) -> str:
        if "://" in self.endpoint:
            return self.endpoint
        return f"http://{self.endpoint}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RuntimeClientConfig":
        values = os.environ if environ is None else environ
        endpoint = values.get(RUNTIME_API_ENV)
        if not endpoint:
            raise ConfigurationError(f"missing {RUNTIME_API_ENV} in environment")
        api_version = values.get(API_VERSION_ENV) or DEFAULT_API_VERSION
        return cls(endpoint=endpoint, api_version=api_version)
