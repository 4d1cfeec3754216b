"""SQLAlchemy models for the durable database image."""
from sqlalchemy import (Boolean, CheckConstraint, Column, DateTime, ForeignKey,
                        Integer, String, Text, create_engine, event, inspect,
                        select, text)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from notepocket.models.schema import NoteType

# Bumped whenever the table layout changes incompatibly
SCHEMA_VERSION = "1"

# Tables that must exist for a file to count as a NotePocket image
REQUIRED_TABLES = frozenset(
    {"meta", "folders", "notes", "note_tags", "embedded_images"}
)

Base = declarative_base()


class DBMeta(Base):
    """Key/value metadata stored inside the image."""
    __tablename__ = "meta"
    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)


class DBFolder(Base):
    """Database model for a folder."""
    __tablename__ = "folders"
    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    color = Column(String(64), nullable=False)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<Folder(id='{self.id}', name='{self.name}')>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(64), primary_key=True)
    title = Column(Text, nullable=False)
    content = Column(Text, nullable=False, default="")
    type = Column(String(16), nullable=False, default=NoteType.TEXT.value, index=True)
    folder_id = Column(
        String(64), ForeignKey("folders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    is_favorite = Column(Boolean, nullable=False, default=False, index=True)
    file_url = Column(Text, nullable=True)
    file_name = Column(Text, nullable=True)
    file_size = Column(Integer, nullable=True)
    file_mime_type = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False, index=True)

    # Children are always loaded with the note and kept in display order
    tags = relationship(
        "DBNoteTag",
        order_by="DBNoteTag.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    embedded_images = relationship(
        "DBEmbeddedImage",
        order_by="DBEmbeddedImage.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(
            "type IN ('text', 'image', 'file')", name="ck_notes_type"
        ),
    )

    def __repr__(self) -> str:
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBNoteTag(Base):
    """A tag attached to a note, with its display position."""
    __tablename__ = "note_tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        String(64), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False, index=True)


class DBEmbeddedImage(Base):
    """An inline image belonging to a note."""
    __tablename__ = "embedded_images"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        String(64), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)
    image_id = Column(String(64), nullable=False)
    url = Column(Text, nullable=False)
    alt = Column(Text, nullable=False, default="")
    file_name = Column(Text, nullable=True)
    file_size = Column(Integer, nullable=False, default=0)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


def create_memory_engine():
    """Create the in-memory SQLite engine that holds a durable store's data.

    A StaticPool keeps the single in-memory connection alive for the life of
    the engine; the image file is loaded into and saved from it.
    """
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        # Unicode-aware case folding so search matches the volatile store
        dbapi_connection.create_function("casefold", 1, _casefold, deterministic=True)

    return engine


def init_schema(engine) -> None:
    """Create all tables and stamp the schema version."""
    Base.metadata.create_all(engine)
    with engine.connect() as conn:
        conn.execute(
            text("INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', :v)"),
            {"v": SCHEMA_VERSION},
        )
        conn.commit()


def check_schema(engine) -> list:
    """Return a list of problems that make a loaded image unusable.

    An empty list means the image passed SQLite's integrity check, has every
    required table and carries a compatible schema version.
    """
    problems = []
    with engine.connect() as conn:
        integrity = conn.execute(text("PRAGMA integrity_check")).scalar()
        if integrity != "ok":
            problems.append(f"integrity_check: {integrity}")
            return problems

    missing = REQUIRED_TABLES - set(inspect(engine).get_table_names())
    if missing:
        problems.append(f"missing tables: {', '.join(sorted(missing))}")
        return problems

    with engine.connect() as conn:
        version = conn.execute(
            select(DBMeta.value).where(DBMeta.key == "schema_version")
        ).scalar()
    if version != SCHEMA_VERSION:
        problems.append(f"unsupported schema version: {version!r}")
    return problems


def get_session_factory(engine):
    """Get a session factory for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
