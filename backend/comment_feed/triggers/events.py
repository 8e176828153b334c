"""
Inbound trigger payloads.

Two shapes are accepted for every trigger:
- flat:  {"connectionId": "...", "body": {...}}
- host:  {"requestContext": {"connectionId": "...", "domainName": "...",
           "stage": "...", "requestId": "..."}, "body": "<json string>"}

`body` may be a JSON object or a JSON-encoded string. Anything that does not
parse is MalformedInput.
"""

from __future__ import annotations

import json
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from shared.utils.exceptions import MalformedInput
from comment_feed.push.http_gateway import endpoint_from_request_context

E = TypeVar("E", bound="TriggerEvent")


class RequestContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    connection_id: str = Field(alias="connectionId", min_length=1)
    domain_name: str | None = Field(default=None, alias="domainName")
    stage: str | None = None
    request_id: str | None = Field(default=None, alias="requestId")
    route_key: str | None = Field(default=None, alias="routeKey")


class TriggerEvent(BaseModel):
    """Common envelope. Connect and disconnect carry nothing else."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    request_context: RequestContext = Field(alias="requestContext")

    @model_validator(mode="before")
    @classmethod
    def lift_connection_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and "requestContext" not in data and "connectionId" in data:
            return {**data, "requestContext": {"connectionId": data["connectionId"]}}
        return data

    @property
    def connection_id(self) -> str:
        return self.request_context.connection_id

    @property
    def request_id(self) -> str | None:
        return self.request_context.request_id

    @property
    def endpoint_url(self) -> str | None:
        return endpoint_from_request_context(
            self.request_context.domain_name,
            self.request_context.stage,
        )


class ConnectEvent(TriggerEvent):
    pass


class DisconnectEvent(TriggerEvent):
    pass


def _decode_body(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"body is not valid JSON: {e.msg}") from e
    return value


class SetChannelBody(BaseModel):
    channel: str = Field(min_length=1)
    new_channel: str = Field(min_length=1)


class SetChannelEvent(TriggerEvent):
    body: SetChannelBody

    @field_validator("body", mode="before")
    @classmethod
    def decode_body(cls, value: Any) -> Any:
        return _decode_body(value)


class SendMessageBody(BaseModel):
    action: Literal["sendmessage"] = "sendmessage"
    channel: str = Field(min_length=1)
    message: str


class SendMessageEvent(TriggerEvent):
    body: SendMessageBody

    @field_validator("body", mode="before")
    @classmethod
    def decode_body(cls, value: Any) -> Any:
        return _decode_body(value)


def parse_event(model: type[E], raw: Any) -> E:
    """
    Validate a raw event into its model.

    Raises:
        MalformedInput: the payload does not match the model.
    """
    try:
        if isinstance(raw, (str, bytes)):
            return model.model_validate_json(raw)
        return model.model_validate(raw)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise MalformedInput(
            f"Invalid {model.__name__}: " + "; ".join(errors),
            event_type=model.__name__,
        ) from e
