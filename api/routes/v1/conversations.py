"""
api/routes/v1/conversations.py -- Renter/owner message threads.

  POST /conversations                 -- find or create the thread for a listing
  GET  /conversations                 -- threads the caller takes part in
  GET  /conversations/{id}/messages   -- oldest first, participants only
  POST /conversations/{id}/messages   -- send, notify the other participant

A conversation is keyed by (property, renter); the owner side always comes
from the listing. Non-participants get NOT_FOUND.
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Request

from api.errors import api_error, not_found
from api.models import ConversationCreate, ConversationResponse, MessageCreate, MessageOut, ok
from auth.dependencies import get_client_info, require_terms_accepted
from auth.models import User
from core.errors import ErrorCode
from messaging.models import Conversation, Message, Notification
from messaging.store import MessagingStore

router = APIRouter()


def _participant_or_404(store: MessagingStore, conversation_id: str, user: User) -> Conversation:
    conv = store.get_for_participant(conversation_id, user.id)
    if conv is None:
        not_found("Conversation not found.")
    return conv


@router.post("/conversations", status_code=201)
def start_conversation(
    request: Request, body: ConversationCreate, current_user: User = Depends(require_terms_accepted)
) -> dict:
    prop = request.app.state.listing_store.get_property(body.property_id)
    if prop is None:
        not_found("Property not found.")
    if prop.user_id == current_user.id:
        raise api_error(ErrorCode.OWN_PROPERTY, "You cannot start a conversation about your own property.")

    store: MessagingStore = request.app.state.messaging_store
    conv, created = store.find_or_create_conversation(prop.id, prop.user_id, current_user.id)
    if created:
        store.notify(
            Notification(
                user_id=prop.user_id,
                type="NEW_CONVERSATION",
                title="New conversation",
                body=f"{current_user.full_name} is interested in {prop.title}.",
                data={"conversationId": conv.id, "propertyId": prop.id},
            )
        )
    last = store.last_messages([conv.id]).get(conv.id)
    return ok(ConversationResponse.from_domain(conv, prop.title, last))


@router.get("/conversations")
def list_conversations(request: Request, current_user: User = Depends(require_terms_accepted)) -> dict:
    store: MessagingStore = request.app.state.messaging_store
    convs = store.list_for_user(current_user.id)
    last = store.last_messages(c.id for c in convs)
    props = request.app.state.listing_store.get_properties(c.property_id for c in convs)
    return ok(
        [
            ConversationResponse.from_domain(
                c, props[c.property_id].title if c.property_id in props else None, last.get(c.id)
            )
            for c in convs
        ]
    )


@router.get("/conversations/{conversation_id}/messages")
def list_messages(conversation_id: str, request: Request, current_user: User = Depends(require_terms_accepted)) -> dict:
    store: MessagingStore = request.app.state.messaging_store
    conv = _participant_or_404(store, conversation_id, current_user)
    messages = store.list_messages(conv.id)
    senders = request.app.state.user_store.get_many(m.sender_user_id for m in messages)
    return ok(
        [
            MessageOut.from_domain(m, senders[m.sender_user_id].full_name if m.sender_user_id in senders else None)
            for m in messages
        ]
    )


@router.post("/conversations/{conversation_id}/messages", status_code=201)
def send_message(
    conversation_id: str,
    request: Request,
    body: MessageCreate,
    current_user: User = Depends(require_terms_accepted),
) -> dict:
    store: MessagingStore = request.app.state.messaging_store
    conv = _participant_or_404(store, conversation_id, current_user)
    message = store.add_message(
        Message(conversation_id=conv.id, sender_user_id=current_user.id, body=body.body, type=body.type.value)
    )
    request.app.state.audit_store.record(
        "CREATE",
        "Message",
        entity_id=message.id,
        user_id=current_user.id,
        after=asdict(message),
        client=get_client_info(request),
    )
    store.notify(
        Notification(
            user_id=conv.other_participant(current_user.id),
            type="NEW_MESSAGE",
            title=f"New message from {current_user.full_name}",
            body=message.body[:140] if message.type == "text" else None,
            data={"conversationId": conv.id, "messageId": message.id},
        )
    )
    return ok(MessageOut.from_domain(message, current_user.full_name))
