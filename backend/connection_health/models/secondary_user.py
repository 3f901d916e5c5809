"""
SecondaryUserRecord model - user rows of the flat-field store.

Connections are stored as one column per platform field
(``youtube_access_token``, ``linkedin_token_expiry``, ...). Only YouTube
and LinkedIn exist in this schema.

SECURITY:
- Tokens are NEVER logged or exposed in __repr__
"""

from typing import Dict

from sqlalchemy import Column, DateTime, String, Text

from connection_health.db_base import SecondaryBase
from connection_health.models.base import TimestampMixin, generate_uuid

# platform -> {canonical field -> column name}. Metadata fields are mapped
# under the "metadata:<key>" canonical name.
FLAT_FIELD_COLUMNS: Dict[str, Dict[str, str]] = {
    "youtube": {
        "access_token": "youtube_access_token",
        "refresh_token": "youtube_refresh_token",
        "token_expiry": "youtube_token_expiry",
        "connected_at": "youtube_connected_at",
        "last_validated": "youtube_last_validated",
        "metadata:channel_name": "youtube_channel_name",
        "metadata:channel_id": "youtube_channel_id",
    },
    "linkedin": {
        "access_token": "linkedin_access_token",
        "refresh_token": "linkedin_refresh_token",
        "token_expiry": "linkedin_token_expiry",
        "connected_at": "linkedin_connected_at",
        "last_validated": "linkedin_last_validated",
        "metadata:user_name": "linkedin_user_name",
    },
}


class SecondaryUserRecord(SecondaryBase, TimestampMixin):
    """
    User record in the secondary (flat-field) store.

    Lookup keys: id, name, email, alt_email.
    """

    __tablename__ = "secondary_users"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Store-native user id"
    )

    name = Column(String(255), nullable=True, index=True, comment="Display/user name")
    email = Column(String(255), nullable=True, index=True, comment="Primary email address")
    alt_email = Column(String(255), nullable=True, index=True, comment="Alternate email address")

    # YouTube
    youtube_access_token = Column(Text, nullable=True)
    youtube_refresh_token = Column(Text, nullable=True)
    youtube_token_expiry = Column(DateTime(timezone=True), nullable=True)
    youtube_channel_name = Column(String(255), nullable=True)
    youtube_channel_id = Column(String(255), nullable=True)
    youtube_connected_at = Column(DateTime(timezone=True), nullable=True)
    youtube_last_validated = Column(DateTime(timezone=True), nullable=True)

    # LinkedIn
    linkedin_access_token = Column(Text, nullable=True)
    linkedin_refresh_token = Column(Text, nullable=True)
    linkedin_token_expiry = Column(DateTime(timezone=True), nullable=True)
    linkedin_user_name = Column(String(255), nullable=True)
    linkedin_connected_at = Column(DateTime(timezone=True), nullable=True)
    linkedin_last_validated = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<SecondaryUserRecord(id={self.id}, name={self.name}, "
            f"youtube={bool(self.youtube_access_token)}, linkedin={bool(self.linkedin_access_token)})>"
        )
