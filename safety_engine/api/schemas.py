"""
API Request Models

Pydantic bodies for the HTTP surface. Field-level constraints give 422
before anything reaches the engine.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ContactIn(BaseModel):
    name: str
    relation: str = ""
    phone: str = ""


class RegisterSubjectRequest(BaseModel):
    name: str = Field(min_length=1)
    age: Optional[int] = Field(default=None, ge=0, le=130)
    gender: Optional[str] = None
    nationality: Optional[str] = None
    contacts: List[ContactIn] = Field(default_factory=list)
    language: str = "en"
    planned_route: List[str] = Field(default_factory=list)
    lat: float = Field(default=0.0, ge=-90, le=90)
    lng: float = Field(default=0.0, ge=-180, le=180)
    zone_name: str = "Unknown"
    battery_level: int = Field(default=100, ge=0, le=100)


class TelemetryRequest(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    zone_name: str
    battery_level: int = Field(ge=0, le=100)


class ReportIncidentRequest(BaseModel):
    subject_id: str
    kind: Literal["SOS", "REPORT"]
    description: str = ""
    image: Optional[str] = None  # data URL
    audio: Optional[str] = None  # data URL


class DispatchRequest(BaseModel):
    unit: Literal["Police", "Medical"]


class RouteRequest(BaseModel):
    start: str = Field(min_length=1)
    destination: str = Field(min_length=1)


class VisionRequest(BaseModel):
    image: str
