from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

Sector = Literal["nonprofit", "faith_based", "government", "business"]
ProviderStatus = Literal["active", "paused", "inactive", "pending_approval"]
ReferralType = Literal["standard", "contact_directly"]
ContactType = Literal["provider_admin", "provider_employee"]
ContactStatus = Literal["active", "invited", "archived"]
NoteType = Literal["general", "outreach", "update", "internal", "call_log"]
CrisisType = Literal["suicide", "domestic_violence", "trafficking", "child_abuse"]
Severity = Literal["low", "medium", "high", "critical"]
CallType = Literal["inbound", "outbound"]
SupportCategory = Literal["technical", "account", "billing", "feature_request", "other"]
SupportPriority = Literal["low", "medium", "high", "urgent"]
SupportStatus = Literal["open", "in_progress", "resolved", "closed"]
CustomFieldType = Literal["text", "textarea", "select", "checkbox", "date", "email", "phone"]


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


class TenantCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    slug: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    branding: dict[str, Any] = Field(default_factory=dict)


class TenantUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    slug: str | None = None
    settings: dict[str, Any] | None = None
    branding: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class HostSettings(BaseModel):
    widget_title: str | None = None
    welcome_message: str | None = None
    primary_color: str | None = None
    allowed_domains: list[str] = Field(default_factory=list)
    ticket_rate_limit_per_hour: int = Field(default=20, ge=1, le=10000)
    search_radius_miles: list[int] = Field(default_factory=lambda: [10, 25, 50])


class ProviderCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=300)
    sector: Sector
    description: str | None = None
    status: ProviderStatus = "active"
    referral_type: ReferralType = "standard"
    referral_instructions: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    hours: str | None = None
    sla_hours: int = Field(default=48, ge=1, le=24 * 90)
    is_host: bool = False
    host_settings: HostSettings | None = None


class ProviderUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = None
    sector: Sector | None = None
    status: ProviderStatus | None = None
    referral_type: ReferralType | None = None
    referral_instructions: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    hours: str | None = None
    sla_hours: int | None = Field(default=None, ge=1, le=24 * 90)
    is_host: bool | None = None
    host_settings: HostSettings | None = None


class SetParentRequest(BaseModel):
    parent_provider_id: str | None = None


class LocationCreateRequest(BaseModel):
    name: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    phone: str | None = None
    is_primary: bool = False
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class LocationUpdateRequest(BaseModel):
    name: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    phone: str | None = None
    is_primary: bool | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class ContactCreateRequest(BaseModel):
    user_id: str | None = None
    email: str | None = None
    full_name: str | None = None
    job_title: str | None = None
    phone: str | None = None
    contact_type: ContactType = "provider_employee"
    status: ContactStatus = "active"
    is_default_referral_handler: bool = False


class ContactUpdateRequest(BaseModel):
    user_id: str | None = None
    email: str | None = None
    full_name: str | None = None
    job_title: str | None = None
    phone: str | None = None
    contact_type: ContactType | None = None
    status: ContactStatus | None = None


class NoteCreateRequest(BaseModel):
    content: str = Field(min_length=1)
    note_type: NoteType = "general"
    is_private: bool = False
    is_pinned: bool = False


class NoteUpdateRequest(BaseModel):
    content: str | None = Field(default=None, min_length=1)
    note_type: NoteType | None = None
    is_private: bool | None = None
    is_pinned: bool | None = None


class EventCreateRequest(BaseModel):
    title: str = ""
    event_date: str = ""
    description: str | None = None
    location: str | None = None
    is_public: bool = True


class EventReviewRequest(BaseModel):
    notes: str | None = None


class ProviderNeedsRequest(BaseModel):
    need_ids: list[str] = Field(default_factory=list)


class ProviderApplicationRequest(BaseModel):
    org_name: str = ""
    contact_email: str = ""
    contact_name: str | None = None
    contact_phone: str | None = None
    sector: Sector | None = None
    description: str | None = None
    website: str | None = None
    phone: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    services: list[str] = Field(default_factory=list)


class ApplicationReviewRequest(BaseModel):
    action: Literal["approve", "reject"]
    notes: str | None = None


class ProviderMergeRequest(BaseModel):
    primary_provider_id: str = ""
    merge_provider_id: str = ""
    # field name -> id of the provider whose value is kept
    field_choices: dict[str, str] = Field(default_factory=dict)


class ContactMergeRequest(BaseModel):
    provider_id: str = Field(min_length=1)
    primary_contact_id: str = Field(min_length=1)
    merge_contact_id: str = Field(min_length=1)


class ProviderBulkStatusRequest(BaseModel):
    ids: list[str] = Field(default_factory=list)
    status: ProviderStatus


class InteractionRequest(BaseModel):
    provider_id: str = ""
    interaction_type: str = ""
    session_id: str | None = None
    need_id: str | None = None


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------


class NeedCategoryCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    slug: str | None = None
    description: str | None = None
    sort_order: int = 0
    is_active: bool = True


class NeedCategoryUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    slug: str | None = None
    description: str | None = None
    sort_order: int | None = None
    is_active: bool | None = None


class NeedCreateRequest(BaseModel):
    category_id: str
    name: str = Field(min_length=1, max_length=200)
    synonyms: list[str] = Field(default_factory=list)
    is_active: bool = True


class NeedUpdateRequest(BaseModel):
    category_id: str | None = None
    name: str | None = Field(default=None, min_length=1, max_length=200)
    synonyms: list[str] | None = None
    is_active: bool | None = None


# ---------------------------------------------------------------------------
# Tickets
# ---------------------------------------------------------------------------


class TicketCreateRequest(BaseModel):
    provider_id: str
    need_id: str | None = None
    client_name: str | None = None
    client_email: str | None = None
    client_phone: str | None = None
    client_user_id: str | None = None
    description_of_need: str | None = None
    source: str = "admin"
    custom_data: dict[str, Any] = Field(default_factory=dict)
    force: bool = False


class TicketUpdateRequest(BaseModel):
    status: str | None = None
    description_of_need: str | None = None
    client_name: str | None = None
    client_phone: str | None = None
    client_email: str | None = None
    follow_up_sent: bool | None = None
    provider_id: str | None = None
    need_id: str | None = None
    client_user_id: str | None = None


class TicketAssignRequest(BaseModel):
    contact_id: str


class TicketCommentRequest(BaseModel):
    content: str = ""
    is_private: bool = False


class TicketForwardRequest(BaseModel):
    action: Literal["forward_to_admin", "forward_to_provider"]
    reason: str = Field(min_length=1)
    notes: str | None = None
    target_provider_id: str | None = None
    new_status: str | None = None


class TicketReassignRequest(BaseModel):
    target_provider_id: str
    target_contact_id: str | None = None
    reason: str = "other"
    notes: str | None = None
    preserve_history: bool = True


class TicketBulkUpdateRequest(BaseModel):
    ids: list[str] = Field(default_factory=list)
    status: str = ""


# ---------------------------------------------------------------------------
# Crisis keywords and hosts
# ---------------------------------------------------------------------------


class CrisisKeywordCreateRequest(BaseModel):
    keyword: str = Field(min_length=1, max_length=200)
    crisis_type: CrisisType
    severity: Severity
    response_template: str | None = None
    emergency_resources: list[dict[str, Any]] = Field(default_factory=list)
    is_active: bool = True


class CrisisKeywordUpdateRequest(BaseModel):
    keyword: str | None = Field(default=None, min_length=1, max_length=200)
    crisis_type: CrisisType | None = None
    severity: Severity | None = None
    response_template: str | None = None
    emergency_resources: list[dict[str, Any]] | None = None
    is_active: bool | None = None


class CrisisTestRequest(BaseModel):
    message: str = ""
    tenant_id: str | None = None


class CrisisOverrideRequest(BaseModel):
    keyword_id: str
    action: Literal["include", "exclude"]


class CustomFieldCreateRequest(BaseModel):
    field_key: str
    label: str
    field_type: CustomFieldType
    options: list[str] = Field(default_factory=list)
    is_required: bool = False
    sort_order: int = 0
    placeholder: str | None = None


class CustomFieldUpdateRequest(BaseModel):
    label: str | None = None
    field_type: CustomFieldType | None = None
    options: list[str] | None = None
    is_required: bool | None = None
    sort_order: int | None = None
    placeholder: str | None = None


class LatLng(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class WidgetSearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=1000)
    location: LatLng | None = None
    zip_code: str | None = None
    session_id: str | None = None


class PublicTicketRequest(BaseModel):
    provider_id: str = ""
    need_id: str | None = None
    client_name: str | None = None
    client_email: str | None = None
    client_phone: str | None = None
    description_of_need: str | None = None
    custom_data: dict[str, Any] = Field(default_factory=dict)
    session_id: str | None = None


class CrisisCheckRequest(BaseModel):
    message: str = ""


# ---------------------------------------------------------------------------
# Surveys, call logs, support
# ---------------------------------------------------------------------------


class SurveyCreateRequest(BaseModel):
    ticket_id: str
    client_email: str | None = None


class SurveyResponseRequest(BaseModel):
    rating: Any = None
    feedback: str | None = None


class CallLogCreateRequest(BaseModel):
    ticket_id: str | None = None
    provider_id: str | None = None
    caller_name: str | None = None
    call_type: CallType = "outbound"
    duration_minutes: int | None = Field(default=None, ge=0)
    notes: str | None = None


class CallLogUpdateRequest(BaseModel):
    caller_name: str | None = None
    call_type: CallType | None = None
    duration_minutes: int | None = Field(default=None, ge=0)
    notes: str | None = None


class SupportTicketCreateRequest(BaseModel):
    subject: str = ""
    description: str = ""
    category: SupportCategory = "other"
    priority: SupportPriority = "medium"


class SupportTicketUpdateRequest(BaseModel):
    status: SupportStatus | None = None
    priority: SupportPriority | None = None
    assigned_to: str | None = None
    category: SupportCategory | None = None


class SupportCommentRequest(BaseModel):
    content: str = Field(min_length=1)
    is_internal: bool = False


# ---------------------------------------------------------------------------
# Webhooks and notifications
# ---------------------------------------------------------------------------


class WebhookCreateRequest(BaseModel):
    url: str
    events: list[str] = Field(default_factory=list)
    secret: str | None = None
    is_active: bool = True
    description: str | None = None
    tenant_id: str | None = None


class WebhookUpdateRequest(BaseModel):
    url: str | None = None
    events: list[str] | None = None
    is_active: bool | None = None
    description: str | None = None


class NotificationUpdateRequest(BaseModel):
    is_read: bool


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
