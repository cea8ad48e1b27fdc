from fastapi_users.db import SQLAlchemyBaseUserTableUUID
from .database import Base


class User(SQLAlchemyBaseUserTableUUID, Base):
    __tablename__ = "users"

    @property
    def to_schema(self):
        """Convert User model to schema dictionary format"""
        return {
            "id": self.id,
            "email": self.email,
            "is_active": self.is_active,
            "is_superuser": self.is_superuser,
        }
