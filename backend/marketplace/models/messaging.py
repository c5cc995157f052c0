from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Conversation(db.Model):
    """
    Direct channel between the admin and one seller.

    participant_one_id / participant_two_id hold the canonical pair: the two
    user ids sorted as strings (see conversation_service.canonical_pair).
    The unique constraint on the pair is the atomic insert-if-absent primitive
    the dedup engine relies on.
    """
    __tablename__ = "conversations"
    __table_args__ = (
        db.UniqueConstraint("participant_one_id", "participant_two_id", name="uq_conversations_pair"),
        db.CheckConstraint("participant_one_id <> participant_two_id", name="ck_conversations_distinct_pair"),
        db.Index("ix_conversations_participant_two", "participant_two_id"),
        db.Index("ix_conversations_updated_at", "updated_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    participant_one_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    participant_two_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    # Plain column: messages already reference conversations, so no FK back.
    last_message_id = db.Column(db.Integer, nullable=True)
    unread_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    participant_one = db.relationship("User", foreign_keys=[participant_one_id])
    participant_two = db.relationship("User", foreign_keys=[participant_two_id])
    last_message = db.relationship(
        "Message",
        primaryjoin="Message.id == foreign(Conversation.last_message_id)",
        viewonly=True,
    )

    @property
    def participant_ids(self) -> tuple[int, int]:
        return (self.participant_one_id, self.participant_two_id)

    @property
    def participants(self) -> list:
        return [self.participant_one, self.participant_two]

    def other_participant_id(self, user_id: int) -> int | None:
        if user_id == self.participant_one_id:
            return self.participant_two_id
        if user_id == self.participant_two_id:
            return self.participant_one_id
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "participants": [p.to_summary() for p in self.participants if p is not None],
            "participant_ids": list(self.participant_ids),
            "last_message": self.last_message.to_dict() if self.last_message else None,
            "unread_count": self.unread_count,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Message(db.Model):
    """Chat message; only is_read changes after insert."""
    __tablename__ = "messages"
    __table_args__ = (
        db.Index("ix_messages_pair_created", "sender_id", "recipient_id", "created_at"),
        db.Index("ix_messages_recipient_unread", "recipient_id", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey("conversations.id"), nullable=True, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    recipient_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sender = db.relationship("User", foreign_keys=[sender_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender_id": self.sender_id,
            "sender": {
                "id": self.sender.id,
                "name": self.sender.name,
                "role": self.sender.role,
                "profile_url": self.sender.profile_url,
            } if self.sender else None,
            "recipient_id": self.recipient_id,
            "content": self.content,
            "read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }
