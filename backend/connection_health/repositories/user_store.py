"""
Base repository for the user-record stores.

Each concrete store translates between its native schema and the
canonical PlatformConnection / UserRecord dataclasses. Nothing outside
this package branches on which store a user lives in.

Every operation opens its own short-lived session; I/O failures surface
as SQLAlchemyError (reads) or StoreWriteFailedError (writes) and are
handled by ConnectionStoreAdapter.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from connection_health.database.session import session_scope
from connection_health.errors import PlatformUnsupportedError, StoreWriteFailedError
from connection_health.models.platform_connection import (
    Platform,
    PlatformConnection,
    StoreKind,
    UserRecord,
)

logger = logging.getLogger(__name__)


@dataclass
class UserSummary:
    """Light listing entry for users holding a platform connection."""
    identifier: str
    store: StoreKind
    username: Optional[str]
    email: Optional[str]
    has_refresh_token: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "store": self.store.value,
            "username": self.username,
            "email": self.email,
            "has_refresh_token": self.has_refresh_token,
        }


@dataclass
class StoreStats:
    """Aggregate counts for one store."""
    store: StoreKind
    available: bool
    total_users: int = 0
    users_with_connections: int = 0
    platform_breakdown: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "store": self.store.value,
            "available": self.available,
            "total_users": self.total_users,
            "users_with_connections": self.users_with_connections,
            "platform_breakdown": dict(self.platform_breakdown),
            "error": self.error,
        }


class UserStore(ABC):
    """
    Abstract user-record store.

    Subclasses provide the model class, the lookup columns, and the
    translation between a row and canonical connections.
    """

    kind: StoreKind

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize the store.

        Args:
            session_factory: Session factory bound to this store's database
        """
        self._session_factory = session_factory
        self._model_class = self._get_model_class()

    # ------------------------------------------------------------------
    # Schema hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _get_model_class(self) -> type:
        """Return the SQLAlchemy model class for this store."""
        pass

    @abstractmethod
    def _username_columns(self) -> Sequence[Any]:
        """Columns tried (in order) for username-like lookups."""
        pass

    @abstractmethod
    def _email_columns(self) -> Sequence[Any]:
        """Columns tried (in order) for email-like lookups."""
        pass

    @abstractmethod
    def _row_username(self, row: Any) -> Optional[str]:
        pass

    @abstractmethod
    def _row_email(self, row: Any) -> Optional[str]:
        pass

    @abstractmethod
    def _new_row(self, identifier: str, username: Optional[str], email: Optional[str]) -> Any:
        """Build a bare row with no connections."""
        pass

    @abstractmethod
    def _row_connections(self, row: Any) -> Dict[Platform, PlatformConnection]:
        """Translate a row into canonical connections (connected only)."""
        pass

    @abstractmethod
    def _apply_connection(self, row: Any, connection: PlatformConnection) -> None:
        """Write a full canonical connection onto a row."""
        pass

    @abstractmethod
    def _clear_connection(self, row: Any, platform: Platform) -> None:
        """Unset every field of a platform on a row."""
        pass

    @abstractmethod
    def supports_platform(self, platform: Platform) -> bool:
        """Whether this store's schema can hold the platform."""
        pass

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _to_user(self, row: Any, lookup_key: Optional[str]) -> UserRecord:
        return UserRecord(
            identifier=str(row.id),
            store=self.kind,
            lookup_key=lookup_key,
            username=self._row_username(row),
            email=self._row_email(row),
            connections=self._row_connections(row),
        )

    def _find_row(self, session: Session, identifier: str) -> Optional[Any]:
        model = self._model_class
        row = session.query(model).filter(model.id == identifier).first()
        if row is not None:
            return row
        for column in list(self._username_columns()) + list(self._email_columns()):
            row = session.query(model).filter(column == identifier).first()
            if row is not None:
                return row
        return None

    def find(self, identifier: str) -> Optional[UserRecord]:
        """
        Find a user by id, then username-like field, then email-like field.

        Returns:
            UserRecord if found, None otherwise

        Raises:
            SQLAlchemyError: If the store cannot be queried
        """
        with session_scope(self._session_factory) as session:
            row = self._find_row(session, identifier)
            if row is None:
                return None
            return self._to_user(row, identifier)

    def find_matching(
        self,
        identifier: Optional[str] = None,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[UserRecord]:
        """Find a record matching any of id / username / email."""
        model = self._model_class
        conditions = []
        if identifier:
            conditions.append(model.id == identifier)
        if username:
            conditions.extend(column == username for column in self._username_columns())
        if email:
            conditions.extend(column == email for column in self._email_columns())
        if not conditions:
            return None

        with session_scope(self._session_factory) as session:
            row = session.query(model).filter(or_(*conditions)).first()
            if row is None:
                return None
            return self._to_user(row, identifier or username or email)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def read_connections(self, identifier: str) -> Dict[Platform, PlatformConnection]:
        """Return canonical connections for a user id (empty if the row is gone)."""
        with session_scope(self._session_factory) as session:
            row = session.query(self._model_class).filter(self._model_class.id == identifier).first()
            if row is None:
                return {}
            return self._row_connections(row)

    def write_connection(self, identifier: str, connection: PlatformConnection) -> None:
        """
        Persist a full canonical connection for a user.

        Raises:
            PlatformUnsupportedError: If the schema has no fields for the platform
            StoreWriteFailedError: If the row is missing or the write fails
        """
        if not self.supports_platform(connection.platform):
            raise PlatformUnsupportedError(
                connection.platform.value, detail=f"not stored by {self.kind.value} store"
            )
        try:
            with session_scope(self._session_factory) as session:
                row = session.query(self._model_class).filter(self._model_class.id == identifier).first()
                if row is None:
                    raise StoreWriteFailedError(
                        f"User {identifier} no longer exists",
                        store=self.kind.value,
                        platform=connection.platform.value,
                    )
                self._apply_connection(row, connection)
        except SQLAlchemyError as e:
            raise StoreWriteFailedError(
                f"Failed to write connection: {e.__class__.__name__}",
                store=self.kind.value,
                platform=connection.platform.value,
            ) from e

    def unset_connection(self, identifier: str, platform: Platform) -> None:
        """
        Unset every field of a platform for a user.

        Raises:
            PlatformUnsupportedError: If the schema has no fields for the platform
            StoreWriteFailedError: If the row is missing or the write fails
        """
        if not self.supports_platform(platform):
            raise PlatformUnsupportedError(
                platform.value, detail=f"not stored by {self.kind.value} store"
            )
        try:
            with session_scope(self._session_factory) as session:
                row = session.query(self._model_class).filter(self._model_class.id == identifier).first()
                if row is None:
                    raise StoreWriteFailedError(
                        f"User {identifier} no longer exists",
                        store=self.kind.value,
                        platform=platform.value,
                    )
                self._clear_connection(row, platform)
        except SQLAlchemyError as e:
            raise StoreWriteFailedError(
                f"Failed to remove connection: {e.__class__.__name__}",
                store=self.kind.value,
                platform=platform.value,
            ) from e

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(
        self,
        identifier: str,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> UserRecord:
        """
        Create a bare user (no connections).

        Raises:
            StoreWriteFailedError: If the insert fails
        """
        try:
            with session_scope(self._session_factory) as session:
                row = self._new_row(identifier, username, email)
                session.add(row)
                session.flush()
                user = self._to_user(row, identifier)
        except SQLAlchemyError as e:
            raise StoreWriteFailedError(
                f"Failed to create user: {e.__class__.__name__}",
                store=self.kind.value,
            ) from e

        logger.info(
            "User record created",
            extra={"user_id": identifier, "store": self.kind.value},
        )
        return user

    def list_users_with_platform(
        self,
        platform: Platform,
        has_refresh_token: Optional[bool] = None,
    ) -> List[UserSummary]:
        """List users holding a connection for a platform."""
        if not self.supports_platform(platform):
            return []
        summaries: List[UserSummary] = []
        with session_scope(self._session_factory) as session:
            for row in session.query(self._model_class).order_by(self._model_class.id).all():
                connection = self._row_connections(row).get(platform)
                if connection is None:
                    continue
                if has_refresh_token is not None and connection.has_refresh_token != has_refresh_token:
                    continue
                summaries.append(
                    UserSummary(
                        identifier=str(row.id),
                        store=self.kind,
                        username=self._row_username(row),
                        email=self._row_email(row),
                        has_refresh_token=connection.has_refresh_token,
                    )
                )
        return summaries

    def stats(self) -> StoreStats:
        """Count users and per-platform connections."""
        breakdown: Dict[str, int] = {p.value: 0 for p in Platform if self.supports_platform(p)}
        with_connections = 0
        with session_scope(self._session_factory) as session:
            total = session.query(func.count(self._model_class.id)).scalar() or 0
            for row in session.query(self._model_class).all():
                connections = self._row_connections(row)
                if connections:
                    with_connections += 1
                for platform in connections:
                    breakdown[platform.value] = breakdown.get(platform.value, 0) + 1
        return StoreStats(
            store=self.kind,
            available=True,
            total_users=total,
            users_with_connections=with_connections,
            platform_breakdown=breakdown,
        )
