import json
from typing import Any, ClassVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ProtocolError
from ..utils.payload import generate_random_bytes
from ..utils.time_utils import iso_now, to_epoch_ms

DEFAULT_PAYLOAD_SIZE = 500


class BenchmarkEnvelope(BaseModel):
    """
    The message published on every broadcaster tick.

    Wire format (JSON):
        {"count": <sequence>, "timestamp": <ISO-8601 or epoch ms>, "value": <hex filler>}
    """

    sequence: int = Field(..., ge=1, alias="count")
    timestamp: Union[str, float, int] = Field(..., description="ISO-8601 or epoch milliseconds")
    filler: str = Field(default="", alias="value")

    model_config: ClassVar[ConfigDict] = ConfigDict(populate_by_name=True)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v):
        try:
            to_epoch_ms(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid timestamp: {v!r}") from e
        return v

    @classmethod
    def create(cls, sequence: int, payload_size: int = DEFAULT_PAYLOAD_SIZE) -> "BenchmarkEnvelope":
        """Build an envelope stamped with the current instant."""
        return cls(
            sequence=sequence,
            timestamp=iso_now(),
            filler=generate_random_bytes(payload_size),
        )

    @property
    def timestamp_ms(self) -> float:
        return to_epoch_ms(self.timestamp)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)

    def serialize(self) -> str:
        return json.dumps(self.to_wire())

    @classmethod
    def parse(cls, raw: Any) -> "BenchmarkEnvelope":
        """
        Parse an inbound payload (JSON text, bytes, or an already decoded dict).

        Raises ProtocolError if the payload is not a benchmark envelope.
        """
        data = raw
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ProtocolError(f"Payload is not valid UTF-8: {e}") from e
        if isinstance(raw, str):
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ProtocolError(f"Payload is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ProtocolError(f"Payload must be a JSON object, got {type(data).__name__}")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Invalid benchmark envelope: {e.errors()}") from e
