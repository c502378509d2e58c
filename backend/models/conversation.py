# models/conversation.py
from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from models.event import Base, _utcnow


class ConversationMessage(Base):
    __tablename__ = "conversation_messages"
    __table_args__ = (UniqueConstraint("user_id", "seq", name="uq_conversation_user_seq"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    seq = Column(Integer, nullable=False)  # 사용자별 논리 타임스탬프(단조 증가)
    role = Column(String(16), nullable=False)  # user / assistant
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
