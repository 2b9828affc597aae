from pydantic import BaseModel
from typing import Optional


class User(BaseModel):
    """Caller identity resolved from the session JWT."""

    id: str
    email: Optional[str] = None
    role: str = "user"
