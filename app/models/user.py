from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON
from app.database import Base

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    name = Column(String, nullable=False)
    bio = Column(String, nullable=True)
    # ["Python", "Guitar"] 형태
    skills = Column(JSON, nullable=False, default=list)
    learning_goals = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
