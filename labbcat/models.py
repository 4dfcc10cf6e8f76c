"""Pydantic models for records exchanged with the LaBB-CAT server.

Field names are snake_case; the server's wire names are kept as aliases so
``Model.model_validate(json_dict)`` and ``model.to_json()`` round-trip.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_WIRE = ConfigDict(frozen=True, populate_by_name=True)


class WireModel(BaseModel):
    model_config = _WIRE

    def to_json(self) -> dict[str, Any]:
        """Serialize with wire names, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ------------------------------------------------------------------
# Tasks
# ------------------------------------------------------------------


class TaskStatus(WireModel):
    """Snapshot of one server-side task (thread)."""

    thread_id: str = Field(alias="threadId")
    thread_name: str = Field(default="", alias="threadName")
    running: bool = False
    percent_complete: int = Field(default=0, alias="percentComplete")
    duration: int = 0
    status: str = ""
    refresh_seconds: int = Field(default=0, alias="refreshSeconds")
    result_url: str | None = Field(default=None, alias="resultUrl")
    result_text: str | None = Field(default=None, alias="resultText")
    log: str | None = None

    @field_validator("thread_id", mode="before")
    @classmethod
    def _thread_id_to_str(cls, v: object) -> object:
        return str(v) if isinstance(v, int) else v

    @field_validator("percent_complete", "duration", "refresh_seconds", mode="before")
    @classmethod
    def _truncate_numbers(cls, v: object) -> object:
        return int(v) if isinstance(v, float) else v

    @field_validator("log", mode="before")
    @classmethod
    def _log_to_str(cls, v: object) -> object:
        if isinstance(v, list):
            return "\n".join(str(line) for line in v)
        return v


# ------------------------------------------------------------------
# Uploads
# ------------------------------------------------------------------


class UploadParameter(WireModel):
    """One input the server needs before it will process an upload."""

    name: str
    label: str | None = None
    hint: str | None = None
    type: str | None = None
    required: bool = False
    value: Any = None
    possible_values: list[Any] | None = Field(default=None, alias="possibleValues")


class Upload(WireModel):
    """State of a two-phase transcript upload."""

    id: str
    parameters: list[UploadParameter] = []
    transcripts: dict[str, str] | None = None

    def parameter(self, name: str) -> UploadParameter | None:
        """Return the parameter called *name*, if the server asked for it."""
        for parameter in self.parameters:
            if parameter.name == name:
                return parameter
        return None

    def with_values(self, values: dict[str, Any]) -> Upload:
        """Return a copy with parameter values from *values* filled in.

        Names the server did not ask for are ignored.
        """
        parameters = [
            p.model_copy(update={"value": values[p.name]}) if p.name in values else p
            for p in self.parameters
        ]
        return self.model_copy(update={"parameters": parameters})

    def missing_required(self) -> list[str]:
        """Names of required parameters that still have no value."""
        return [p.name for p in self.parameters if p.required and p.value is None]

    def values(self) -> dict[str, Any]:
        """Parameter values that are set, in server order."""
        return {p.name: p.value for p in self.parameters if p.value is not None}

    def task_for(self, transcript_name: str) -> str | None:
        """Task id for *transcript_name*, else the first task, else None."""
        if not self.transcripts:
            return None
        if transcript_name in self.transcripts:
            return self.transcripts[transcript_name]
        return next(iter(self.transcripts.values()))


# ------------------------------------------------------------------
# Search results
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MatchId:
    """Components of a match identifier such as ``g_243;n_1-n_9;p_4;#=ew_0_5``."""

    graph_id: str
    start_anchor_id: str | None = None
    end_anchor_id: str | None = None
    start_offset: float | None = None
    end_offset: float | None = None
    utterance_id: str | None = None
    target_id: str | None = None
    prefix: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, match_id: str) -> MatchId:
        """Split *match_id* into its parts."""
        parts = match_id.split(";")
        values: dict[str, Any] = {"graph_id": parts[0]}
        interval = next((p for p in parts[1:] if p.find("-") > 0), None)
        if interval is not None:
            start, _, end = interval.partition("-")
            if start.startswith("n_"):
                values["start_anchor_id"] = start
                values["end_anchor_id"] = end
            else:
                values["start_offset"] = float(start)
                values["end_offset"] = float(end)
        attributes: dict[str, str] = {}
        for part in parts[1:]:
            if part.startswith("prefix="):
                values["prefix"] = part[len("prefix=") :]
            elif part.startswith(("em_", "m_")):
                values["utterance_id"] = part
            elif part.startswith("#="):
                values["target_id"] = part[len("#=") :]
            elif "=" in part:
                key, _, value = part.partition("=")
                attributes[key] = value
        return cls(**values, attributes=attributes)


class Match(WireModel):
    """A single search hit."""

    match_id: str = Field(alias="MatchId")
    transcript: str = Field(default="", alias="Transcript")
    participant: str = Field(default="", alias="Participant")
    corpus: str = Field(default="", alias="Corpus")
    line: float | None = Field(default=None, alias="Line")
    line_end: float | None = Field(default=None, alias="LineEnd")
    before_match: str = Field(default="", alias="BeforeMatch")
    text: str = Field(default="", alias="Text")
    after_match: str = Field(default="", alias="AfterMatch")

    @property
    def parsed_id(self) -> MatchId:
        """Structured view of :attr:`match_id`."""
        return MatchId.parse(self.match_id)


def fragment_id(transcript_id: str, start: float, end: float) -> str:
    """Name for a fragment file: transcript stem plus the interval."""
    stem = PurePath(transcript_id).stem or transcript_id
    return f"{stem}__{start:.3f}-{end:.3f}"


# ------------------------------------------------------------------
# Graph store records
# ------------------------------------------------------------------


class _StoreModel(WireModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")


class Annotation(_StoreModel):
    """An annotation on a layer of a transcript graph."""

    id: str | None = None
    layer_id: str | None = Field(default=None, alias="layerId")
    label: str | None = None
    start_id: str | None = Field(default=None, alias="startId")
    end_id: str | None = Field(default=None, alias="endId")
    parent_id: str | None = Field(default=None, alias="parentId")
    ordinal: int | None = None
    confidence: int | None = None


class Anchor(_StoreModel):
    """A point on a transcript's time line."""

    id: str | None = None
    offset: float | None = None
    confidence: int | None = None


class Layer(_StoreModel):
    """Layer definition from the store schema."""

    id: str
    description: str | None = None
    parent_id: str | None = Field(default=None, alias="parentId")
    alignment: int = 0
    peers: bool = False
    peers_overlap: bool = Field(default=False, alias="peersOverlap")
    parent_includes: bool = Field(default=False, alias="parentIncludes")
    saturated: bool = False
    type: str | None = None
    valid_labels: dict[str, Any] = Field(default_factory=dict, alias="validLabels")
    category: str | None = None


class MediaFile(_StoreModel):
    """A media file available for a transcript."""

    name: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    track_suffix: str | None = Field(default=None, alias="trackSuffix")
    url: str | None = None
    type: str | None = None


class SerializationDescriptor(_StoreModel):
    """A file format the server can convert transcripts to or from."""

    name: str | None = None
    version: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    file_suffixes: list[str] = Field(default_factory=list, alias="fileSuffixes")


class UserInfo(_StoreModel):
    """The current user and their roles."""

    user: str
    roles: list[str] = []


# ------------------------------------------------------------------
# Administration records
# ------------------------------------------------------------------


class Corpus(WireModel):
    """A corpus definition."""

    corpus_id: int | None = None
    corpus_name: str
    corpus_language: str = ""
    corpus_description: str = ""


class Project(WireModel):
    """A project definition."""

    project_id: int | None = None
    project: str
    description: str = ""


class MediaTrack(WireModel):
    """A media track definition, keyed by file suffix."""

    suffix: str
    description: str = ""
    display_order: int | None = None


class Role(WireModel):
    """A user role."""

    role_id: str
    description: str = ""


class RolePermission(WireModel):
    """Access granted to a role for one entity, by transcript attribute value."""

    role_id: str
    entity: str
    attribute_name: str | None = None
    value_pattern: str | None = None


class User(WireModel):
    """A user account."""

    user: str
    email: str | None = None
    reset_password: bool = Field(default=False, alias="resetPassword")
    roles: list[str] = []

    @field_validator("reset_password", mode="before")
    @classmethod
    def _int_to_bool(cls, v: object) -> object:
        if isinstance(v, int) and not isinstance(v, bool):
            return v != 0
        return v


class SystemAttribute(WireModel):
    """A server-wide setting."""

    attribute: str
    type: str | None = None
    style: str | None = None
    label: str | None = None
    description: str | None = None
    options: dict[str, str] = {}
    value: str | None = None


class Category(WireModel):
    """A category that groups attributes of one class (e.g. ``transcript``)."""

    class_id: str
    category: str
    description: str = ""
    display_order: int | None = None
