from sqlalchemy import Column, Integer, String

from .database import Base


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True, index=True)
    code = Column(String, nullable=True, unique=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
        }
