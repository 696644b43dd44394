"""Pydantic schemas for API request/response validation.

This module defines the data contracts for the LineScout REST API:
conversations and messages, handoffs, quote payments, wallets, payouts
and platform settings. Money fields are integers in minor units.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# Conversation schemas


class RouteTypeRequest(BaseModel):
    """Request body naming a sourcing route."""

    route_type: str


class StartQuickHumanRequest(RouteTypeRequest):
    source_conversation_id: int | None = None


class SendMessageRequest(BaseModel):
    """Customer message; text is validated by the conversation service."""

    conversation_id: int
    message_text: str = ""


class AgentMessageRequest(BaseModel):
    message_text: str = ""


class MarkReadRequest(BaseModel):
    last_seen_message_id: int = 0


class ConversationResponse(BaseModel):
    """Response schema for a conversation and its access tier."""

    id: int
    user_id: int
    route_type: str
    conversation_kind: str
    chat_mode: str
    human_message_limit: int
    human_message_used: int
    human_access_expires_at: str | None
    payment_status: str
    project_status: str
    assigned_agent_id: int | None
    handoff_id: int | None
    source_conversation_id: int | None
    created_at: str
    updated_at: str

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_type: str
    sender_id: int | None
    message_text: str
    created_at: str

    model_config = ConfigDict(from_attributes=True)


class InboxItemResponse(BaseModel):
    """One row of the agent inbox."""

    conversation: ConversationResponse
    last_message_id: int | None
    last_sender_type: str | None
    last_message_text: str | None
    unread_count: int

    model_config = ConfigDict(from_attributes=True)


# Handoff schemas


class HandoffCreate(BaseModel):
    route_type: str | None = None
    context: str | None = Field(None, max_length=20000)
    conversation_id: int | None = None


class HandoffStatusUpdate(BaseModel):
    """Request schema for a handoff status transition."""

    status: str
    shipper: str | None = None
    tracking_number: str | None = None
    cancel_reason: str | None = None


class HandoffResponse(BaseModel):
    id: int
    user_id: int | None
    route_type: str | None
    status: str
    claimed_by: int | None
    claimed_at: str | None
    manufacturer_found_at: str | None
    paid_at: str | None
    shipped_at: str | None
    shipper: str | None
    tracking_number: str | None
    delivered_at: str | None
    cancelled_at: str | None
    cancel_reason: str | None
    created_at: str
    updated_at: str

    model_config = ConfigDict(from_attributes=True)


class HandoffPaymentResponse(BaseModel):
    id: int
    handoff_id: int
    quote_payment_id: int | None
    amount_minor: int
    currency: str
    purpose: str
    note: str | None
    paid_at: str

    model_config = ConfigDict(from_attributes=True)


# Payment schemas


class QuotePayRequest(BaseModel):
    """Request schema for paying a quote."""

    purpose: str = "full_product_payment"
    provider: Literal["paystack", "paypal"] = "paystack"
    use_wallet: bool = False
    email: str | None = None


class PaidChatCheckoutRequest(RouteTypeRequest):
    """Request schema for paying the sourcing fee of a route."""

    provider: Literal["paystack", "paypal"] = "paystack"
    source_conversation_id: int | None = None


class PaystackVerifyRequest(BaseModel):
    reference: str = Field(..., min_length=1)


class PayPalVerifyRequest(BaseModel):
    order_id: str = Field(..., min_length=1)


# Wallet schemas


class WalletTransactionResponse(BaseModel):
    id: int
    type: str
    amount_minor: int
    currency: str
    reason: str
    reference_type: str | None
    reference_id: str | None
    created_at: str

    model_config = ConfigDict(from_attributes=True)


class WalletResponse(BaseModel):
    id: int
    owner_type: str
    owner_id: int
    currency: str
    balance_minor: int

    model_config = ConfigDict(from_attributes=True)


class WalletAdjustRequest(BaseModel):
    """Request schema for a manual admin credit or debit."""

    owner_type: Literal["user", "agent"]
    owner_id: int
    type: Literal["credit", "debit"]
    amount_minor: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)


# Payout schemas


class UserPayoutCreate(BaseModel):
    amount_minor: int = Field(..., gt=0)


class AgentPayoutCreate(BaseModel):
    amount_minor: int = Field(..., gt=0)
    note: str | None = Field(None, max_length=1000)


class PayoutDecision(BaseModel):
    """Admin note or rejection reason attached to a payout decision."""

    admin_note: str | None = None
    reason: str | None = None


class UserPayoutResponse(BaseModel):
    id: int
    user_id: int
    amount_minor: int
    currency: str
    status: str
    rejection_reason: str | None
    approved_at: str | None
    rejected_at: str | None
    paid_at: str | None
    created_at: str

    model_config = ConfigDict(from_attributes=True)


class AgentPayoutResponse(BaseModel):
    id: int
    agent_id: int
    amount_minor: int
    currency: str
    status: str
    requested_note: str | None
    admin_note: str | None
    approved_at: str | None
    rejected_at: str | None
    paid_at: str | None
    failed_at: str | None
    created_at: str

    model_config = ConfigDict(from_attributes=True)


# Settings schemas


class SettingsResponse(BaseModel):
    agent_percent: float
    min_agent_payout_minor: int

    model_config = ConfigDict(from_attributes=True)


class SettingsPatch(BaseModel):
    agent_percent: float | None = None
    min_agent_payout_minor: int | None = None
