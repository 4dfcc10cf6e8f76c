"""Server administration: CRUD on corpora, projects, tracks, roles, users, categories."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar
from urllib.parse import quote

from loguru import logger

from labbcat.models import (
    Category,
    Corpus,
    Layer,
    MediaTrack,
    Project,
    Role,
    RolePermission,
    SystemAttribute,
    User,
    WireModel,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from labbcat.session import Session

RecordT = TypeVar("RecordT", bound=WireModel)


def _path(*segments: str) -> str:
    return "/".join(quote(str(s), safe="") for s in segments)


class AdminResource(Generic[RecordT]):
    """Create/read/update/delete for one ``api/admin/<resource>`` collection.

    Records are sent as JSON bodies; deletion addresses the record by the
    key(s) returned from *key*.
    """

    def __init__(
        self,
        session: Session,
        resource: str,
        model: type[RecordT],
        key: Callable[[RecordT], tuple[str, ...]],
    ) -> None:
        """Bind *resource* (e.g. ``corpora``) to *model*."""
        self._session = session
        self.resource = resource
        self._model = model
        self._key = key

    @property
    def url(self) -> str:
        return self._session.url(f"api/admin/{self.resource}")

    def create(self, record: RecordT) -> RecordT:
        """POST a new record and return it as stored."""
        model = self._session.post_json(self.url, record.to_json())
        logger.info(f"Created {self.resource} record {'/'.join(self._key(record))}")
        return self._model.model_validate(model)

    def read(
        self,
        page_number: int | None = None,
        page_length: int | None = None,
        *path: str,
    ) -> list[RecordT]:
        """List records, a page at a time (zero-based); *path* narrows the listing."""
        url = self.url + ("/" + _path(*path) if path else "")
        model = self._session.get(url, {"pageNumber": page_number, "pageLength": page_length})
        return [self._model.model_validate(r) for r in model or []]

    def update(self, record: RecordT) -> RecordT:
        """PUT changes to an existing record."""
        model = self._session.post_json(self.url, record.to_json(), method="PUT")
        return self._model.model_validate(model)

    def delete(self, record: RecordT | str | tuple[str, ...]) -> None:
        """Delete a record, given the record itself or its key."""
        if isinstance(record, str):
            key: tuple[str, ...] = (record,)
        elif isinstance(record, tuple):
            key = record
        else:
            key = self._key(record)
        self._session.delete(f"{self.url}/{_path(*key)}")
        logger.info(f"Deleted {self.resource} record {'/'.join(key)}")


class Administration:
    """Administrator-only operations.

    Each collection is an :class:`AdminResource`::

        admin.corpora.create(Corpus(corpus_name="QB"))
        admin.users.read(page_number=0, page_length=20)
    """

    def __init__(self, session: Session) -> None:
        """Bind every collection to *session*."""
        self._session = session
        self.corpora = AdminResource(session, "corpora", Corpus, lambda r: (r.corpus_name,))
        self.projects = AdminResource(session, "projects", Project, lambda r: (r.project,))
        self.media_tracks = AdminResource(
            session, "mediatracks", MediaTrack, lambda r: (r.suffix,)
        )
        self.roles = AdminResource(session, "roles", Role, lambda r: (r.role_id,))
        self.role_permissions = AdminResource(
            session, "roles/permissions", RolePermission, lambda r: (r.role_id, r.entity)
        )
        self.users = AdminResource(session, "users", User, lambda r: (r.user,))
        self.categories = AdminResource(
            session, "categories", Category, lambda r: (r.class_id, r.category)
        )

    def read_role_permissions(
        self,
        role_id: str,
        page_number: int | None = None,
        page_length: int | None = None,
    ) -> list[RolePermission]:
        """Permissions granted to *role_id*."""
        return self.role_permissions.read(page_number, page_length, role_id)

    def read_categories(
        self,
        class_id: str,
        page_number: int | None = None,
        page_length: int | None = None,
    ) -> list[Category]:
        return self.categories.read(page_number, page_length, class_id)

    # ------------------------------------------------------------------
    # System attributes
    # ------------------------------------------------------------------

    def read_system_attributes(self) -> list[SystemAttribute]:
        model = self._session.get(self._session.url("api/admin/systemattributes"))
        return [SystemAttribute.model_validate(a) for a in model or []]

    def update_system_attribute(self, attribute: str, value: str) -> SystemAttribute:
        """Set a server-wide setting."""
        model = self._session.post_json(
            self._session.url("api/admin/systemattributes"),
            {"attribute": attribute, "value": value},
            method="PUT",
        )
        return SystemAttribute.model_validate(model)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def set_password(self, user: str, password: str, *, reset_password: bool = False) -> None:
        """Set *user*'s password; *reset_password* forces a change at next login."""
        self._session.post_json(
            self._session.url("api/admin/password"),
            {"user": user, "password": password, "resetPassword": reset_password},
            method="PUT",
        )
        logger.info(f"Password set for {user}")

    # ------------------------------------------------------------------
    # Layers
    # ------------------------------------------------------------------

    def new_layer(self, layer: Layer) -> Layer:
        """Define a new annotation layer."""
        return Layer.model_validate(
            self._session.post_json(self._session.admin_url("newLayer"), layer.to_json())
        )

    def save_layer(self, layer: Layer) -> Layer:
        return Layer.model_validate(
            self._session.post_json(self._session.admin_url("saveLayer"), layer.to_json())
        )

    def delete_layer(self, layer_id: str) -> None:
        self._session.post(self._session.admin_url("deleteLayer"), {"id": layer_id})

    def generate_layer(self, layer_id: str) -> str:
        """Regenerate all annotations on *layer_id*; return the task id."""
        # the layer id is both the parameter name and its value
        model: Any = self._session.post(
            self._session.url("admin/layers/regenerate"),
            {layer_id: layer_id, "sure": "true"},
        )
        return str(model["threadId"])
