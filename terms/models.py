"""
terms/models.py -- Domain dataclasses for terms of service.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Term:
    """A published version of the terms. version is unique."""

    version: str
    title: str
    content: str
    id: Optional[str] = None
    active: bool = True
    created_at: str = ""


@dataclass
class TermsAcceptance:
    """Immutable record that user_id accepted term_id at accepted_at."""

    user_id: str
    term_id: str
    term_version: str
    accepted_at: str
    id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
