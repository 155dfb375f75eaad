from functools import lru_cache
from typing import Iterator

from sqlalchemy.orm import Session

from config import Settings
from database import SessionLocal
from imaging.cache import CacheLog, CacheStore
from imaging.engine import ImageEngine
from imaging.services import HaarFaceDetector, PaletteColorExtractor
from utils.storage import get_storage


def get_db() -> Iterator[Session]:
    db: Session = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache
def get_engine() -> ImageEngine:
    settings = Settings()
    store    = CacheStore(get_storage(settings), CacheLog(SessionLocal), settings)
    return ImageEngine(
        settings,
        store,
        face_detector   = HaarFaceDetector(),
        color_extractor = PaletteColorExtractor(),
    )
