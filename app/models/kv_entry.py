# app/models/kv_entry.py
"""
Local key-value table. Each row holds one JSON blob
(e.g. autotrack_data, autotrack_user) rewritten whole on every save.
"""

from sqlalchemy import Column, String, DateTime, Text
from app.database import Base


class KeyValueEntry(Base):
    __tablename__ = "kv_store"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<KeyValueEntry {self.key} ({len(self.value or '')} chars)>"
