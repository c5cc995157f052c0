# Overview: Flask API routes for chat operations; parses input and returns JSON responses.

# backend/marketplace/routes/chat.py
"""
Chat API routes

Direct admin/seller conversations. New messages are pushed to online
recipients over Socket.IO by message_service.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import conversation_service, message_service
from ..validation import MarketplaceError
from ..decorators import require_auth


chat_bp = Blueprint("chat", __name__, url_prefix="/api/chat")


@chat_bp.get("/conversations")
@require_auth
def list_conversations_route():
    """Conversations containing the current user, newest activity first."""
    try:
        conversations = conversation_service.list_conversations(g.current_user)
        return jsonify([c.to_dict() for c in conversations]), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list conversations")
        return jsonify({"error": "Internal server error"}), 500


@chat_bp.get("/conversations/user/<selector>")
@require_auth
def conversations_by_user_route(selector: str):
    """
    Conversations for a user selector.

    selector: numeric user id, "me", or "admin" (the admin account)
    """
    try:
        conversations = conversation_service.get_conversations_by_user(g.current_user, selector)
        return jsonify([c.to_dict() for c in conversations]), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to fetch conversations by user")
        return jsonify({"error": "Internal server error"}), 500


@chat_bp.get("/conversations/with/<int:user_id>")
@require_auth
def conversation_with_route(user_id: int):
    """Get (creating on first use) the conversation with another user."""
    try:
        conversation, created = conversation_service.get_or_create_conversation(
            g.current_user.id, user_id
        )
        return jsonify(conversation.to_dict()), 201 if created else 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get or create conversation")
        return jsonify({"error": "Internal server error"}), 500


@chat_bp.post("/conversations")
@require_auth
def create_conversation_route():
    """Body: {"recipient_id": int}"""
    try:
        data = request.get_json(silent=True) or {}
        conversation, created = conversation_service.create_conversation(
            g.current_user,
            data.get("recipient_id", data.get("recipientId")),
        )
        return jsonify({"conversation": conversation.to_dict(), "created": created}), 201 if created else 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create conversation")
        return jsonify({"error": "Internal server error"}), 500


@chat_bp.get("/conversations/<int:conversation_id>/messages")
@require_auth
def get_messages_route(conversation_id: int):
    """Messages oldest first; marks incoming messages as read."""
    try:
        messages = message_service.get_messages(conversation_id, g.current_user)
        return jsonify([m.to_dict() for m in messages]), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to fetch messages")
        return jsonify({"error": "Internal server error"}), 500


@chat_bp.post("/conversations/<int:conversation_id>/messages")
@require_auth
def send_message_route(conversation_id: int):
    """Body: {"content": str}"""
    try:
        data = request.get_json(silent=True) or {}
        message = message_service.send_message(conversation_id, g.current_user, data.get("content"))
        return jsonify(message.to_dict()), 201

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to send message")
        return jsonify({"error": "Internal server error"}), 500


@chat_bp.get("/unread")
@require_auth
def unread_count_route():
    try:
        return jsonify({"count": message_service.get_unread_count(g.current_user)}), 200

    except Exception:
        current_app.logger.exception("Failed to count unread messages")
        return jsonify({"error": "Internal server error"}), 500
