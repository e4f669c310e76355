"""
MODULE OVERVIEW:
This module defines the strictly typed data structures shared by the streamprobe client,
its metrics reporters and the demo server, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
`Event` is the decoded form of one SSE frame. `ResponseSummary` is what `open()` hands
back once a session is over. `OpenParams` validates the per-call options before any
socket is opened, and `Sample`/`SampleSet` are the telemetry records handed to a reporter.
"""
from datetime import datetime
from enum import Enum
from http.cookiejar import CookieJar
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# WHAT IS HAPPENING HERE:
# One frame on the wire becomes one Event. Nothing is sticky across frames:
# a frame without an `id:` line produces an Event with an empty id.
class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    comment: str = ""
    name: str = ""
    data: str = ""


# WHAT IS HAPPENING HERE:
# Either status + headers are meaningful (the request got a response), or error is.
# Multi-valued response headers are joined with ", ".
class ResponseSummary(BaseModel):
    url: str = ""
    status: int = 0
    headers: dict[str, str] = Field(default_factory=dict)
    error: str = ""


class TLSConfig(BaseModel):
    verify: bool = True
    ca_file: Optional[str] = None
    cert_file: Optional[str] = None
    key_file: Optional[str] = None


class OpenParams(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    headers: dict[str, str] = Field(default_factory=dict)
    tags: dict[str, str] = Field(default_factory=dict)
    jar: Optional[CookieJar] = None
    method: str = ""
    body: str = ""

    @field_validator("method", "body", mode="before")
    @classmethod
    def _trim(cls, value):
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("headers", "tags", mode="before")
    @classmethod
    def _stringify(cls, value):
        if value is None:
            return {}
        return {str(k): str(v) for k, v in dict(value).items()}


class MetricName(str, Enum):
    HTTP_REQ_CONNECTING = "http_req_connecting"
    HTTP_REQS = "http_reqs"
    HTTP_REQ_SENDING = "http_req_sending"
    HTTP_REQ_DURATION = "http_req_duration"
    SSE_EVENT = "sse_event"


class Sample(BaseModel):
    metric: MetricName
    tags: dict[str, str]
    time: datetime
    value: float


class SampleSet(BaseModel):
    samples: list[Sample]
    tags: dict[str, str]
    time: datetime


# Served by the demo server's /stats endpoint
class StreamStats(BaseModel):
    active_streams: int
    total_streams: int
    total_frames_sent: int
    uptime_s: float
    server_time: datetime
