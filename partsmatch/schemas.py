"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Account Models
# =============================================================================

class SignUpRequest(BaseModel):
    """
    Pydantic model for account creation.

    Validates:
    - email: contains a single '@' with text on both sides
    - password: at least 8 characters
    """
    email: str = Field(..., max_length=254, description="Login email")
    password: str = Field(..., min_length=8, max_length=128, description="Account password")
    full_name: Optional[str] = Field(None, max_length=100, description="Display name")
    trade_type: Optional[str] = Field(None, max_length=100, description="Trade specialty")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        local, sep, domain = v.strip().partition("@")
        if not sep or not local or not domain or "@" in domain:
            raise ValueError("email must be a valid address")
        return v.strip()

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "email": "sam@example.com",
                    "password": "correct-horse",
                    "full_name": "Sam Ortiz",
                    "trade_type": "electrician"
                }
            ]
        }
    }


class SignInRequest(BaseModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., max_length=128)


class SessionResponse(BaseModel):
    """Issued session; access_token goes into the Authorization header."""
    access_token: str = Field(..., description="Bearer token")
    token_type: str = Field(default="bearer")
    user_id: str
    email: str


class CurrentSessionResponse(BaseModel):
    user_id: str
    email: str


class ProfileResponse(BaseModel):
    id: str
    full_name: Optional[str] = None
    trade_type: Optional[str] = None
    verified: bool = False

    model_config = {"from_attributes": True}


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(None, max_length=100)
    trade_type: Optional[str] = Field(None, max_length=100)


# =============================================================================
# Listing Models
# =============================================================================

class PartCreateRequest(BaseModel):
    """
    A part offered for sale.

    Validates:
    - part_name: 2 to 100 characters
    - category: non-empty
    - condition: new, used or refurbished
    - price: non-negative when given
    """
    part_name: str = Field(..., min_length=2, max_length=100)
    category: str = Field(..., min_length=1, max_length=50)
    condition: Literal["new", "used", "refurbished"] = "new"
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=100)

    @field_validator("part_name", "category")
    @classmethod
    def strip_required(cls, v: str, info) -> str:
        v = v.strip()
        if not v:
            raise ValueError(f"{info.field_name} is required")
        return v


class PartRequestCreateRequest(BaseModel):
    """A part somebody is looking for."""
    part_name: str = Field(..., min_length=2, max_length=100)
    category: str = Field(..., min_length=1, max_length=50)
    condition_preference: Optional[str] = Field(None, max_length=50)
    max_price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=100)

    @field_validator("part_name", "category")
    @classmethod
    def strip_required(cls, v: str, info) -> str:
        v = v.strip()
        if not v:
            raise ValueError(f"{info.field_name} is required")
        return v


class PartResponse(BaseModel):
    id: str
    supplier_id: str
    part_name: str
    category: str
    condition: str
    price: Optional[float] = None
    description: Optional[str] = None
    location: Optional[str] = None
    status: str
    created_at: str
    owner_name: Optional[str] = None
    owner_trade: Optional[str] = None

    model_config = {"from_attributes": True}


class PartRequestResponse(BaseModel):
    id: str
    requester_id: str
    part_name: str
    category: str
    condition_preference: Optional[str] = None
    max_price: Optional[float] = None
    description: Optional[str] = None
    location: Optional[str] = None
    status: str
    created_at: str
    owner_name: Optional[str] = None
    owner_trade: Optional[str] = None

    model_config = {"from_attributes": True}


class PartsListResponse(BaseModel):
    data: list[PartResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)


class PartRequestsListResponse(BaseModel):
    data: list[PartRequestResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)


class ListingRemovedResponse(BaseModel):
    """deleted, or closed when a match still points at the listing."""
    status: Literal["deleted", "closed"]


# =============================================================================
# Match Models
# =============================================================================

class MatchCreateRequest(BaseModel):
    listing_type: Literal["part", "request"] = Field(..., description="Kind of listing being matched")
    listing_id: str = Field(..., min_length=1)


class MatchResponse(BaseModel):
    id: str
    part_id: Optional[str] = None
    request_id: Optional[str] = None
    supplier_id: str
    requester_id: str
    supplier_agreed: bool
    requester_agreed: bool
    status: Literal["pending", "both_agreed"]
    created_at: str

    model_config = {"from_attributes": True}


class MatchSummary(MatchResponse):
    """
    A match as seen by one participant.

    Adds the caller's role, the counterparty's public profile and the
    name of the matched listing.
    """
    role: Literal["supplier", "requester"]
    counterparty_id: str
    counterparty_name: Optional[str] = None
    counterparty_trade: Optional[str] = None
    item_name: str


class MatchesListResponse(BaseModel):
    data: list[MatchSummary] = Field(default_factory=list)
    total: int = Field(..., ge=0)


class AgreeResponse(BaseModel):
    match: MatchResponse
    detail: str


class ContactResponse(BaseModel):
    """Counterparty contact details, available once both parties agreed."""
    user_id: str
    email: str
    full_name: Optional[str] = None
    trade_type: Optional[str] = None


# =============================================================================
# Message Models
# =============================================================================

class SendMessageRequest(BaseModel):
    content: str = Field(..., max_length=4096, description="Message text")


class MessageResponse(BaseModel):
    id: int
    match_id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: str

    model_config = {"from_attributes": True}


class SendMessageResponse(BaseModel):
    """status is 'ignored' for an empty body; nothing was stored."""
    status: Literal["sent", "ignored"]
    message: Optional[MessageResponse] = None


class MessagesListResponse(BaseModel):
    data: list[MessageResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)


# =============================================================================
# Bulk Ingestion Models
# =============================================================================

class IngestTextRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=20000, description="Pasted parts list")

    @field_validator("text")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("text is required")
        return v


class IngestTextResponse(BaseModel):
    success: bool = True
    count: int = Field(..., ge=0)
    parts: list[PartResponse] = Field(default_factory=list)


# =============================================================================
# Shared Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
