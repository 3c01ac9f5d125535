"""Database models.

The orchestrator only reads these tables; they are owned by the dashboard.
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Profile(Base):
    """Caller profile with provider credentials."""

    __tablename__ = "profiles"

    id = Column(String, primary_key=True, index=True)
    twilio_account_sid = Column(String, nullable=True)
    twilio_auth_token = Column(String, nullable=True)
    twilio_phone_number = Column(String, nullable=True)
    elevenlabs_api_key = Column(String, nullable=True)
    elevenlabs_phone_number_id = Column(String, nullable=True)  # Registered with the speech provider
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    prospects = relationship("Prospect", back_populates="owner")
    agent_configs = relationship("AgentConfig", back_populates="owner")


class Prospect(Base):
    """Prospect model."""

    __tablename__ = "prospects"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone_number = Column(String, nullable=False)
    property_address = Column(String, nullable=True)
    status = Column(String, default="New", nullable=False)

    # Relationships
    owner = relationship("Profile", back_populates="prospects")


class AgentConfig(Base):
    """Agent configuration used by standard and development calls."""

    __tablename__ = "agent_configs"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    config_name = Column(String, nullable=False)
    voice_id = Column(String, nullable=True)
    system_prompt = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    owner = relationship("Profile", back_populates="agent_configs")
