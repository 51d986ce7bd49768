# drop_relay/models/message.py

from sqlalchemy import Column, Integer, String, Text, DateTime

from drop_relay.models.base import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Verified signer of the send request, never a client-asserted value
    from_fingerprint = Column(String(40), nullable=False)
    to_fingerprint = Column(String(40), nullable=False, index=True)

    # Armored ciphertext, opaque to the relay
    encrypted_payload = Column(Text, nullable=False)

    # Set by MessageStore from its clock
    created_at = Column(DateTime, nullable=False, index=True)
