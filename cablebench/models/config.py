"""
Construction-time options for broadcasters, subscribers and the harness.

All models raise InvalidArgument (never a bare pydantic ValidationError)
when built through `create()` or `from_env()`.
"""
import os
from typing import ClassVar, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import InvalidArgument
from ..utils.validation import require_channel_name

DEFAULT_HOST = "127.0.0.1"


class _Options(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def create(cls, **options):
        try:
            return cls(**options)
        except ValidationError as e:
            raise InvalidArgument(f"Invalid {cls.__name__}: {e.errors()}") from e

    @field_validator("channel", check_fields=False)
    @classmethod
    def validate_channel(cls, v: str) -> str:
        return require_channel_name(v)


class BroadcasterConfig(_Options):
    host: str = Field(default=DEFAULT_HOST, min_length=1)
    port: int = Field(..., gt=0, le=65535)
    broadcast_interval_ms: int = Field(default=1000, gt=0)
    channel: str = "all"
    payload_size: int = Field(default=500, gt=0)
    retry_delay_ms: int = Field(default=5000, ge=0)
    debug: bool = False


class SubscriberConfig(_Options):
    host: str = Field(default=DEFAULT_HOST, min_length=1)
    port: int = Field(..., gt=0, le=65535)
    reconnect_interval_ms: int = Field(default=5000, ge=0)
    channel: str = "all"
    debug: bool = False
    slow: bool = False
    auto_reconnect: bool = True
    name: Optional[str] = None

    @property
    def tag(self) -> str:
        if self.name:
            return self.name
        return "slow" if self.slow else "normal"


def _env_flag(environ: Mapping[str, str], key: str) -> bool:
    # Only the literal "true" enables a flag
    return environ.get(key) == "true"


class HarnessConfig(_Options):
    subscriber_count: int = Field(default=10, ge=0)
    log_slow: bool = False
    skip_slow: bool = False
    host: str = Field(default=DEFAULT_HOST, min_length=1)
    standard_port: int = Field(..., gt=0, le=65535)
    slow_port: int = Field(..., gt=0, le=65535)
    channel: str = "all"
    reconnect_interval_ms: int = Field(default=5000, ge=0)
    shutdown_grace_seconds: float = Field(default=2.0, gt=0)
    debug: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **options) -> "HarnessConfig":
        """
        Build a harness config from `N`, `LOG_SLOW` and `SKIP_SLOW`.

        Explicit keyword options are applied first; environment values win.
        """
        if environ is None:
            environ = os.environ

        values = dict(options)
        raw_count = environ.get("N")
        if raw_count:
            try:
                values["subscriber_count"] = int(raw_count)
            except ValueError as e:
                raise InvalidArgument(f"N must be an integer, got {raw_count!r}") from e
        if "LOG_SLOW" in environ:
            values["log_slow"] = _env_flag(environ, "LOG_SLOW")
        if "SKIP_SLOW" in environ:
            values["skip_slow"] = _env_flag(environ, "SKIP_SLOW")
        return cls.create(**values)

    def subscriber_config(self, slow: bool = False, name: Optional[str] = None) -> SubscriberConfig:
        return SubscriberConfig.create(
            host=self.host,
            port=self.slow_port if slow else self.standard_port,
            reconnect_interval_ms=self.reconnect_interval_ms,
            channel=self.channel,
            debug=self.debug,
            slow=slow,
            name=name,
        )
