# companions/Domain/errors.py
from __future__ import annotations


class SessionError(Exception):
    """Base class for session-layer failures. Operations convert these to boolean outcomes."""


class UnknownIdentityError(SessionError):
    def __init__(self, identity_id: str):
        super().__init__(f"identity not found: {identity_id}")
        self.identity_id = identity_id


class MissingMemoryError(SessionError):
    def __init__(self, conversation_id: str):
        super().__init__(f"no conversation memory for: {conversation_id}")
        self.conversation_id = conversation_id

