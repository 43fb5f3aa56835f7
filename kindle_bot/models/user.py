from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, Integer, Text

from kindle_bot.database import Base


class UserRecord(Base):
    __tablename__ = "users"

    id = Column(BigInteger, primary_key=True, autoincrement=False)  # Telegram user id
    username = Column(Text, nullable=False, default="")
    first_name = Column(Text, nullable=False, default="")
    last_name = Column(Text, nullable=False, default="")
    kindle_email = Column(Text, nullable=False, default="")
    language = Column(Text, nullable=False, default="en")
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    last_active = Column(DateTime(timezone=True), nullable=False)
    books_sent = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    is_banned = Column(Boolean, nullable=False, default=False)
    search_context = Column(JSON)
