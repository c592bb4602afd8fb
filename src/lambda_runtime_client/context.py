import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class ClientApplication:
    installation_id: str
    app_title: str
    app_version_name: str
    app_version_code: str
    app_package_name: str

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ClientApplication":
        return cls(
            installation_id=_require_str(payload, "installationId"),
            app_title=_require_str(payload, "appTitle"),
            app_version_name=_require_str(payload, "appVersionName"),
            app_version_code=_require_str(payload, "appVersionCode"),
            app_package_name=_require_str(payload, "appPackageName"),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "installationId": self.installation_id,
            "appTitle": self.app_title,
            "appVersionName": self.app_version_name,
            "appVersionCode": self.app_version_code,
            "appPackageName": self.app_package_name,
        }


@dataclass(frozen=True)
class ClientContext:
    """Client context sent by the AWS Mobile SDK."""

    client: ClientApplication
    custom: Mapping[str, str] = field(default_factory=dict)
    environment: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ClientContext":
        client = payload.get("client")
        if not isinstance(client, Mapping):
            raise ValueError("missing field 'client'")
        return cls(
            client=ClientApplication.from_dict(client),
            custom=_require_str_map(payload, "custom"),
            environment=_require_str_map(payload, "environment"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client": self.client.to_dict(),
            "custom": dict(self.custom),
            "environment": dict(self.environment),
        }


@dataclass(frozen=True)
class CognitoIdentity:
    identity_id: str
    identity_pool_id: str

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CognitoIdentity":
        return cls(
            identity_id=_require_str(payload, "identity_id"),
            identity_pool_id=_require_str(payload, "identity_pool_id"),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "identity_id": self.identity_id,
            "identity_pool_id": self.identity_pool_id,
        }


@dataclass(frozen=True)
class EventContext:
    """Metadata for a single invocation, rebuilt from the headers of each poll.

    ``deadline_ms`` is an absolute wall-clock time in epoch milliseconds, not a
    duration. ``client_context`` is only set for invocations made through a
    mobile SDK and ``identity`` only when the caller used Cognito credentials.
    """

    request_id: str
    function_arn: str
    trace_id: str
    deadline_ms: int
    client_context: Optional[ClientContext] = None
    identity: Optional[CognitoIdentity] = None

    @property
    def deadline(self) -> datetime:
        return datetime.fromtimestamp(self.deadline_ms / 1000.0, tz=timezone.utc)

    def remaining_time_ms(self, now_ms: Optional[int] = None) -> int:
        current = int(time.time() * 1000) if now_ms is None else now_ms
        return max(self.deadline_ms - current, 0)


def _require_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _require_str_map(payload: Mapping[str, Any], key: str) -> Dict[str, str]:
    value = payload.get(key)
    if not isinstance(value, Mapping):
        raise ValueError(f"field {key!r} must be an object")
    result: Dict[str, str] = {}
    for item_key, item_value in value.items():
        if not isinstance(item_value, str):
            raise ValueError(f"field {key!r} must map strings to strings")
        result[str(item_key)] = item_value
    return result
