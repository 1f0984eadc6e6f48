"""Pydantic models for the browser signaling protocol.

Every frame is a JSON object tagged by ``type`` and addressed by ``callId``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class _BrowserMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    call_id: str = Field(alias="callId")

    @field_validator("call_id")
    @classmethod
    def call_id_not_empty(cls, value: str) -> str:
        call_id = value.strip()
        if not call_id:
            raise ValueError("callId may not be empty.")
        return call_id


class AnswerMessage(_BrowserMessage):
    type: Literal["answer"]
    sdp: str


class CandidateMessage(_BrowserMessage):
    type: Literal["candidate"]
    candidate: dict[str, Any]


class HangupMessage(_BrowserMessage):
    type: Literal["hangup"]


class RejectMessage(_BrowserMessage):
    type: Literal["reject"]


BrowserMessage = Annotated[
    Union[AnswerMessage, CandidateMessage, HangupMessage, RejectMessage],
    Field(discriminator="type"),
]

_BROWSER_MESSAGE_ADAPTER: TypeAdapter[BrowserMessage] = TypeAdapter(BrowserMessage)


def parse_browser_message(text: str) -> BrowserMessage:
    """Validate one inbound frame; raises ``pydantic.ValidationError``."""

    return _BROWSER_MESSAGE_ADAPTER.validate_json(text)


def incoming_call_notice(call_id: str, caller_name: str, caller_id: str) -> dict[str, Any]:
    return {"type": "incoming-call", "callId": call_id, "callerName": caller_name, "callerId": caller_id}


def offer_notice(call_id: str, caller_name: str, sdp: str) -> dict[str, Any]:
    return {"type": "offer", "callId": call_id, "callerName": caller_name, "sdp": sdp}


def candidate_notice(call_id: str, candidate: dict[str, Any]) -> dict[str, Any]:
    return {"type": "candidate", "callId": call_id, "candidate": candidate}


def active_notice(call_id: str) -> dict[str, Any]:
    return {"type": "active", "callId": call_id}


def terminated_notice(call_id: str) -> dict[str, Any]:
    return {"type": "terminated", "callId": call_id}
