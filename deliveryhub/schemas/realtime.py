"""
Real-time protocol Pydantic schemas.

Client frames are JSON objects with an ``action`` discriminator; server
frames are ``{"event": ..., "data": {...}}`` envelopes.
"""

from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter


class AuthenticateAction(BaseModel):
    action: Literal["authenticate"]
    token: str = Field(..., min_length=1)


class SubscribeToOrdersAction(BaseModel):
    action: Literal["subscribe_to_orders"]


class SubscribeAction(BaseModel):
    action: Literal["subscribe"]
    topic: str = Field(..., min_length=1, max_length=100)


class UnsubscribeAction(BaseModel):
    action: Literal["unsubscribe"]
    topic: str = Field(..., min_length=1, max_length=100)


class LocationUpdateAction(BaseModel):
    action: Literal["location_update"]
    order_id: UUID
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class PingAction(BaseModel):
    action: Literal["ping"]


ClientAction = Annotated[
    Union[
        AuthenticateAction,
        SubscribeToOrdersAction,
        SubscribeAction,
        UnsubscribeAction,
        LocationUpdateAction,
        PingAction,
    ],
    Field(discriminator="action"),
]

client_action_adapter: TypeAdapter[ClientAction] = TypeAdapter(ClientAction)
