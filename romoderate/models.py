from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class AdminLogin(BaseModel):
    username: str
    password: str


class ServerUpdate(BaseModel):
    name: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class BotTokenSubmission(BaseModel):
    bot_token: Optional[str] = None
    skip_token: bool = False


class SetupRequest(BaseModel):
    roblox_universe_id: Optional[str] = None
    roblox_api_key: Optional[str] = None
    log_channel_id: Optional[str] = None
    appeal_channel_id: Optional[str] = None
    moderator_role_id: Optional[str] = None
    vanity_url: Optional[str] = None


class BrandingUpdate(BaseModel):
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    custom_css: Optional[str] = None


class BanCreate(BaseModel):
    server_id: str
    roblox_user_id: str
    roblox_username: str
    reason: str
    expires_at: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class BanUpdate(BaseModel):
    reason: Optional[str] = None
    active: Optional[bool] = None
    expires_at: Optional[str] = None
    roblox_username: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AppealCreate(BaseModel):
    ban_id: str
    server_id: str
    appeal_text: str = Field(..., min_length=1, max_length=4000)
    contact: Optional[str] = None


class AppealReview(BaseModel):
    status: str
    review_note: Optional[str] = None


class TicketCreate(BaseModel):
    server_id: str
    subject: str
    description: str
    category: Optional[str] = None
    priority: Optional[str] = None
    roblox_user_id: Optional[str] = None


class TicketUpdate(BaseModel):
    status: Optional[Literal["open", "in_progress", "closed"]] = None
    priority: Optional[str] = None
    assigned_to: Optional[str] = None
    category: Optional[str] = None


class TicketPanelCreate(BaseModel):
    channel_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    button_label: Optional[str] = None
    color: Optional[int] = None


class ModerationAction(BaseModel):
    server_id: str
    action: Literal["ban", "tempban", "warn", "unban"]
    roblox_user_id: str
    roblox_username: Optional[str] = None
    reason: str = "No reason provided"
    duration_days: Optional[float] = Field(default=None, gt=0)


class ShiftRequest(BaseModel):
    server_id: Optional[str] = None


class MemberCreate(BaseModel):
    user_id: str
    role: str = "moderator"
    permissions: List[str] = []


class MemberUpdate(BaseModel):
    role: Optional[str] = None
    permissions: Optional[List[str]] = None


class InviteCreate(BaseModel):
    role: str = "moderator"
    permissions: List[str] = []
    expires_in: Optional[float] = Field(default=None, gt=0, description="Hours until the invite expires")
    max_uses: Optional[int] = Field(default=None, gt=0)


class AutoActionCreate(BaseModel):
    name: str
    trigger: str
    action: str
    threshold: Optional[int] = None
    enabled: bool = True
    config: Dict[str, Any] = {}


class AutoActionUpdate(BaseModel):
    name: Optional[str] = None
    trigger: Optional[str] = None
    action: Optional[str] = None
    threshold: Optional[int] = None
    enabled: Optional[bool] = None
    config: Optional[Dict[str, Any]] = None


class NoteCreate(BaseModel):
    content: str
    target_roblox_id: Optional[str] = None
    target_username: Optional[str] = None


class NoteUpdate(BaseModel):
    content: str


class BotRegistrationCreate(BaseModel):
    server_id: str
    name: str


class ApiKeyCreate(BaseModel):
    server_id: str
    name: str
    scopes: List[str]


class RobloxApiKeyCreate(BaseModel):
    name: str
    api_key: str
    universe_id: Optional[str] = None


class ExportCreate(BaseModel):
    export_type: Literal["bans", "appeals", "tickets", "moderation_logs"] = "bans"
    format: Literal["csv", "json"] = "csv"


class ChangelogCreate(BaseModel):
    title: str
    content: str
    version: Optional[str] = None


class ListingCreate(BaseModel):
    title: str
    description: str = ""
    price: float = Field(..., ge=0)
    currency: str = "robux"
    category: str = "ugc"
    item_type: Optional[str] = None
    server_id: Optional[str] = None
    images: List[str] = []


class ListingUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    category: Optional[str] = None
    status: Optional[str] = None
    images: Optional[List[str]] = None


class OfferCreate(BaseModel):
    listing_id: str
    amount: float = Field(..., gt=0)
    message: Optional[str] = None


class OfferUpdate(BaseModel):
    status: Literal["pending", "accepted", "rejected", "withdrawn"]


class TransactionCreate(BaseModel):
    listing_id: str
    offer_id: Optional[str] = None


class TransactionUpdate(BaseModel):
    # "completed" is reached only through escrow release.
    status: Optional[Literal["pending", "in_progress", "disputed", "cancelled"]] = None
    notes: Optional[str] = None


class ReviewCreate(BaseModel):
    reviewed_user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    transaction_id: Optional[str] = None


class VerificationUpdate(BaseModel):
    roblox_user_id: Optional[str] = None
    roblox_username: Optional[str] = None
    status: Optional[str] = None
