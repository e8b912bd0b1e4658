"""
Pydantic models for inbound mint requests.

Callers hand the pipeline plain mappings (from a CLI, a script, or a future
network surface); :class:`MintRequestPayload` checks their shape before
anything is admitted or enqueued.  Business rules (known token type, value
bounds) stay with the token creator.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from mint_pipeline.errors import RequestValidationError


class MintRequestPayload(BaseModel):
    """
    Request to mint one token.

    Attributes:
        token_type: Catalog type to mint (non-blank)
        owner: Account that will own the token (non-blank)
        amount: Value to mint (strictly positive)
        metadata: Free-form key/value data forwarded to the token creator
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    token_type: str
    owner: str
    amount: float = Field(gt=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("token_type", "owner")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be blank")
        return value


def parse_request(raw: Mapping[str, Any] | MintRequestPayload) -> MintRequestPayload:
    """Validate ``raw`` into a :class:`MintRequestPayload`.

    Raises:
        RequestValidationError: With one message per offending field.
    """
    if isinstance(raw, MintRequestPayload):
        return raw
    try:
        return MintRequestPayload.model_validate(raw)
    except PydanticValidationError as exc:
        messages = [
            f"{'.'.join(str(part) for part in err['loc']) or 'request'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise RequestValidationError(messages) from exc
