# drop_relay/models/key_cache.py

from sqlalchemy import Column, String, Text, DateTime

from drop_relay.models.base import Base


class KeyCacheEntry(Base):
    __tablename__ = "key_cache"

    fingerprint = Column(String(40), primary_key=True)
    armored_key = Column(Text, nullable=False)
    status = Column(String(16), nullable=False)
    validated_at = Column(DateTime, nullable=False)
