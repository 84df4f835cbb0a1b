import uuid
from datetime import datetime
from typing import ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from serviceshub.config import DATABASE_URL
from serviceshub.services.field_update import FieldUpdate

Base = declarative_base()

TileTarget = Literal["_blank", "_self"]


def _new_id() -> str:
    return str(uuid.uuid4())


class Tile(Base):
    __tablename__ = "tiles"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(128), nullable=False)
    url = Column(Text, nullable=False)
    icon = Column(Text, nullable=True)  # data:<mime>;base64,...
    icon_source_url = Column(Text, nullable=True)
    icon_origin = Column(String(16), nullable=True)
    category = Column(String(64), nullable=True)
    description = Column(Text, nullable=True)
    target = Column(String(8), nullable=False, default="_blank")
    order = Column(Integer, nullable=False)
    visible = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("ix_tile_order", "order"),)


class Database:
    """Owns the engine and session factory for one process.

    Built once at startup and handed to whoever needs storage; ``close``
    disposes the connection pool at shutdown.
    """

    def __init__(self, url: str = DATABASE_URL, **engine_kwargs):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.url = url
        self.engine = create_engine(url, connect_args=connect_args, **engine_kwargs)
        self.SessionLocal = sessionmaker(autoflush=False, bind=self.engine)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    def close(self) -> None:
        self.engine.dispose()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TileSchema(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: str
    title: str
    url: str
    icon: Optional[str] = None
    icon_source_url: Optional[str] = None
    icon_origin: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    target: TileTarget = "_blank"
    order: int
    visible: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TileCreate(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    title: str = Field(min_length=1, max_length=128)
    url: str = Field(min_length=1)
    icon: Optional[str] = None
    icon_source_url: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = None
    target: TileTarget = "_blank"
    visible: bool = True

    @field_validator("icon", "icon_source_url", mode="before")
    @classmethod
    def blank_icon_fields_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class TileUpdate(CamelModel):
    """Partial update. Absent keys are left alone, ``null`` clears a field."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    NON_NULLABLE: ClassVar[Tuple[str, ...]] = ("title", "url", "target", "visible", "order")

    title: Optional[str] = Field(default=None, min_length=1, max_length=128)
    url: Optional[str] = Field(default=None, min_length=1)
    icon: Optional[str] = None
    icon_source_url: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = None
    target: Optional[TileTarget] = None
    order: Optional[int] = Field(default=None, ge=1)
    visible: Optional[bool] = None

    @field_validator("icon", "icon_source_url", mode="before")
    @classmethod
    def blank_icon_fields_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def reject_null_required_fields(self):
        for name in self.NON_NULLABLE:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def field_update(self, name: str) -> FieldUpdate:
        if name not in self.model_fields_set:
            return FieldUpdate.unchanged()
        value = getattr(self, name)
        if value is None:
            return FieldUpdate.clear()
        return FieldUpdate.set_to(value)

    def changes(self) -> Dict[str, FieldUpdate]:
        return {name: self.field_update(name) for name in self.model_fields_set}


class ReorderRequest(BaseModel):
    ids: List[str]

    @field_validator("ids")
    @classmethod
    def ids_unique(cls, ids: List[str]) -> List[str]:
        if len(set(ids)) != len(ids):
            raise ValueError("ids must not contain duplicates")
        return ids


class PreviewIconRequest(CamelModel):
    url: Optional[str] = None
    icon_source_url: Optional[str] = None
    uploaded_icon: Optional[str] = None


class FetchIconRequest(CamelModel):
    url: str = Field(min_length=1)


class TileResponse(BaseModel):
    tile: TileSchema


class TileListResponse(BaseModel):
    tiles: List[TileSchema]


class IconResponse(BaseModel):
    icon: Optional[str] = None
