"""
Shared type definitions for the Wedding RSVP service.

This module defines TypedDict classes for stored entities, request payloads and
service results. Stored entities use the attribute names written to DynamoDB.
"""

from typing import TypedDict, Literal, List, Dict, Any, Optional

# Guest RSVP status literal type
RsvpStatus = Literal['pending', 'attending', 'not_attending', 'maybe']

# Statuses a guest may submit (pending is only ever the initial state)
ResponseStatus = Literal['attending', 'not_attending', 'maybe']

# Aggregate status of a guest group
GroupRsvpStatus = Literal['pending', 'partial', 'complete']

ResponseMethod = Literal['web', 'email', 'phone', 'admin']

EntityType = Literal['EVENT', 'GUEST', 'RSVP_RESPONSE', 'INVITATION_CODE', 'GUEST_GROUP']

InvalidReason = Literal[
    'malformed',
    'not_found',
    'inactive',
    'not_yet_valid',
    'expired',
    'exhausted'
]

ChangeEventName = Literal['INSERT', 'MODIFY']


class Attendee(TypedDict, total=False):
    """One member of a responding party."""
    name: str
    dietaryRestrictions: List[str]


class Guest(TypedDict, total=False):
    """Guest row: one per (event, email)."""
    PK: str
    SK: str
    EntityType: str
    event_id: str
    guest_name: str
    email: str
    phone: Optional[str]
    rsvp_status: RsvpStatus
    plus_ones_count: int
    plus_ones_names: List[str]
    plus_ones_allowed: int
    dietary_restrictions: List[str]
    special_requests: Optional[str]
    invitation_code: str
    invitation_sent_at: Optional[str]
    invitation_viewed_at: Optional[str]
    group_id: Optional[str]
    is_primary_contact: bool
    table_number: Optional[str]
    notes: Optional[str]
    last_response_at: Optional[str]
    last_rsvp_id: Optional[str]
    created_at: str
    updated_at: str
    version: int
    # Secondary index shadow attributes
    InvitationCode: str
    EventStatus: str
    AdminDate: str


class RsvpResponse(TypedDict, total=False):
    """Append-only RSVP history record."""
    PK: str
    SK: str
    EntityType: str
    rsvp_id: str
    confirmation_number: str
    event_id: str
    guest_email: str
    guest_name: str
    invitation_code: Optional[str]
    response_status: ResponseStatus
    response_timestamp: str
    party_size: int
    attendees: List[Attendee]
    dietary_notes: Optional[str]
    special_requests: Optional[str]
    response_method: ResponseMethod
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: str


class InvitationCode(TypedDict, total=False):
    """Invitation code row with usage constraints."""
    PK: str
    SK: str
    EntityType: str
    code: str
    event_id: str
    guest_email: str
    max_uses: int
    current_uses: int
    first_used_at: Optional[str]
    last_used_at: Optional[str]
    last_used_by: Optional[str]
    valid_from: Optional[str]
    valid_until: Optional[str]
    is_active: bool
    group_id: Optional[str]
    created_at: str
    updated_at: str


class GuestGroup(TypedDict, total=False):
    """Family or party sharing an invitation context."""
    PK: str
    SK: str
    EntityType: str
    group_id: str
    group_name: str
    event_id: str
    max_party_size: int
    current_party_size: int
    primary_contact_email: str
    primary_contact_name: str
    member_emails: List[str]
    group_rsvp_status: GroupRsvpStatus
    table_number: Optional[str]
    seating_notes: Optional[str]
    created_at: str
    updated_at: str
    version: int


class Event(TypedDict, total=False):
    """Event metadata row. Aggregate counts are a non-authoritative cache."""
    PK: str
    SK: str
    EntityType: str
    event_id: str
    event_name: str
    event_date: str
    event_time: str
    venue_name: str
    capacity: Optional[int]
    rsvp_deadline: Optional[str]
    allow_plus_ones: bool
    max_plus_ones: Optional[int]
    dietary_options: List[str]
    total_invited: Optional[int]
    total_confirmed: Optional[int]
    total_declined: Optional[int]
    total_maybe: Optional[int]


class GuestIdentity(TypedDict):
    """Guest identity returned by a successful invitation check."""
    email: str
    name: str
    invitationCode: str
    maxGuests: int
    eventId: str
    groupId: Optional[str]
    rsvpStatus: RsvpStatus


class InvitationCheck(TypedDict, total=False):
    """Result of validating an invitation code; never raised."""
    valid: bool
    reason: Optional[InvalidReason]
    message: Optional[str]
    guest: Optional[GuestIdentity]
    invitation: Optional[InvitationCode]


class SubmitRsvpRequest(TypedDict, total=False):
    """Request payload for RSVP submission."""
    invitationCode: str
    status: ResponseStatus
    attendees: List[Attendee]
    dietaryNotes: Optional[str]
    specialRequests: Optional[str]


class SubmissionResult(TypedDict):
    """Outcome of an RSVP submission."""
    success: bool
    rsvpId: str
    confirmationNumber: str
    currentStatus: RsvpStatus
    submittedAt: str
    partySize: int


class ChangeEvent(TypedDict):
    """Change-stream event handed to the notification dispatcher."""
    eventId: str
    sequenceNumber: str
    eventName: ChangeEventName
    entity: str
    keys: Dict[str, str]
    newImage: Dict[str, Any]


class ErrorResponse(TypedDict):
    """Standard error response structure."""
    code: str
    message: str
    details: Dict[str, Any]
