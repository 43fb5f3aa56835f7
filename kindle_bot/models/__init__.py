from kindle_bot.models.user import UserRecord

__all__ = ["UserRecord"]
