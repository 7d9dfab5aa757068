"""
Advisory resolution cache.

Maps a hint key (``kind:code`` or ``kind:<normalized name>``) to a previously
resolved id. Entries are hints only: the resolver always re-fetches with the
hinted id and evicts the entry when the backend confirms it is gone.

Three backends share one interface: in-memory (tests), a JSON file store and
SQLite through SQLAlchemy.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from sqlalchemy import Column, DateTime, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .identity import normalize_code, normalize_name
from .models import EntityReference

Base = declarative_base()


def hint_keys(ref: EntityReference) -> List[str]:
    """Derivable hint keys for a reference, code first."""
    keys = []
    if ref.code:
        keys.append(f"{ref.kind}:{normalize_code(ref.code)}")
    if ref.name and normalize_name(ref.name):
        keys.append(f"{ref.kind}:{normalize_name(ref.name)}")
    return keys


class MemoryHintCache:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._hints: Dict[str, str] = dict(initial or {})

    def get(self, hint_key: str) -> Optional[str]:
        return self._hints.get(hint_key)

    def set(self, hint_key: str, resolved_id: str) -> None:
        self._hints[hint_key] = resolved_id

    def delete(self, hint_key: str) -> bool:
        return self._hints.pop(hint_key, None) is not None

    def items(self) -> List[Tuple[str, str]]:
        return sorted(self._hints.items())

    def clear(self) -> None:
        self._hints.clear()


class JsonHintCache:
    """Hints persisted as ``{"hints": {key: id}}``; the file is rewritten on every change."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                content = f.read().strip()
                if not content:
                    return {}
                data = json.loads(content)
        except (json.JSONDecodeError, IOError):
            return {}
        hints = data.get("hints") if isinstance(data, dict) else None
        if not isinstance(hints, dict):
            return {}
        return {str(k): str(v) for k, v in hints.items()}

    def _save(self, hints: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            json.dump({"hints": hints}, f, indent=2, ensure_ascii=False)

    def get(self, hint_key: str) -> Optional[str]:
        return self._load().get(hint_key)

    def set(self, hint_key: str, resolved_id: str) -> None:
        hints = self._load()
        if hints.get(hint_key) == resolved_id:
            return
        hints[hint_key] = resolved_id
        self._save(hints)

    def delete(self, hint_key: str) -> bool:
        hints = self._load()
        if hint_key not in hints:
            return False
        del hints[hint_key]
        self._save(hints)
        return True

    def items(self) -> List[Tuple[str, str]]:
        return sorted(self._load().items())

    def clear(self) -> None:
        self._save({})


class ResolutionHint(Base):
    """Cached resolution hint."""

    __tablename__ = "resolution_hints"

    hint_key = Column(String, primary_key=True)  # kind:code or kind:name
    resolved_id = Column(String, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


def init_database(db_path: Path):
    """
    Create the hints table if needed and return the engine.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    return engine


class SqlHintCache:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.engine = init_database(self.db_path)
        self.Session = sessionmaker(bind=self.engine)

    def get(self, hint_key: str) -> Optional[str]:
        session = self.Session()
        try:
            hint = session.get(ResolutionHint, hint_key)
            return hint.resolved_id if hint else None
        finally:
            session.close()

    def set(self, hint_key: str, resolved_id: str) -> None:
        session = self.Session()
        try:
            hint = session.get(ResolutionHint, hint_key)
            if hint is None:
                session.add(ResolutionHint(hint_key=hint_key, resolved_id=resolved_id))
            else:
                hint.resolved_id = resolved_id
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete(self, hint_key: str) -> bool:
        session = self.Session()
        try:
            deleted = session.query(ResolutionHint).filter_by(hint_key=hint_key).delete()
            session.commit()
            return deleted > 0
        finally:
            session.close()

    def items(self) -> List[Tuple[str, str]]:
        session = self.Session()
        try:
            rows = session.query(ResolutionHint).order_by(ResolutionHint.hint_key).all()
            return [(r.hint_key, r.resolved_id) for r in rows]
        finally:
            session.close()

    def clear(self) -> None:
        session = self.Session()
        try:
            session.query(ResolutionHint).delete()
            session.commit()
        finally:
            session.close()


def open_hint_cache(path: Path):
    """Pick a backend by file suffix: .db/.sqlite/.sqlite3 is SQLite, anything else JSON."""
    path = Path(path)
    if path.suffix.lower() in (".db", ".sqlite", ".sqlite3"):
        return SqlHintCache(path)
    return JsonHintCache(path)
