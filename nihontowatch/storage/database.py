"""Database operations and management"""

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import create_engine, func
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import (
    ActivityEvent,
    Artisan,
    Base,
    DealerClick,
    Listing,
    ListingView,
    Profile,
    UserFavorite,
)

logger = logging.getLogger(__name__)


class Database:
    """Database management class"""

    def __init__(self, db_url: str = "sqlite:///data/db/nihontowatch.db"):
        self.db_url = db_url
        self.engine = create_engine(db_url, echo=False, **self._engine_options(db_url))
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)
        logger.info(f"Database initialized: {db_url}")

    @staticmethod
    def _engine_options(db_url: str) -> Dict:
        url = make_url(db_url)
        if url.get_backend_name() != "sqlite":
            return {"pool_pre_ping": True}

        options = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every session sees an empty database
            options["poolclass"] = StaticPool
        else:
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return options

    @contextmanager
    def session(self):
        """Context manager for database sessions"""
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def get_profile(self, user_id: str) -> Optional[Profile]:
        """Get a profile by ID, detached from the session"""
        with self.session() as session:
            profile = session.get(Profile, user_id)
            if profile:
                session.expunge(profile)
            return profile

    def get_artisan(self, code: str) -> Optional[Artisan]:
        with self.session() as session:
            artisan = session.get(Artisan, code)
            if artisan:
                session.expunge(artisan)
            return artisan

    def heat_counts(
        self,
        session: Session,
        since: datetime,
        listing_ids: Optional[Iterable[int]] = None,
    ) -> Dict[int, Dict[str, int]]:
        """
        Count behavioral events per listing since a cutoff.

        Sources:
        1. user_favorites -> favorites
        2. dealer_clicks -> clicks
        3. activity_events quickview_open -> quickviews
        4. listing_views -> views
        5. activity_events image_pinch_zoom -> pinch_zooms

        Args:
            session: Open session
            since: Start of the heat window
            listing_ids: Restrict counting to these listings (all when None)

        Returns:
            Mapping of listing ID to {metric: count}; listings without events
            are absent
        """
        ids = list(listing_ids) if listing_ids is not None else None
        counts: Dict[int, Dict[str, int]] = {}

        def tally(model, attr: str, *filters) -> None:
            query = session.query(model.listing_id, func.count(model.id)).filter(
                model.created_at >= since, model.listing_id.isnot(None), *filters
            )
            if ids is not None:
                query = query.filter(model.listing_id.in_(ids))
            for listing_id, count in query.group_by(model.listing_id):
                counts.setdefault(listing_id, {})[attr] = count

        tally(UserFavorite, "favorites")
        tally(DealerClick, "clicks")
        tally(ActivityEvent, "quickviews", ActivityEvent.event_type == "quickview_open")
        tally(ListingView, "views")
        tally(ActivityEvent, "pinch_zooms", ActivityEvent.event_type == "image_pinch_zoom")

        return counts

    def update_featured_scores(self, updates: List[Tuple[int, float]]) -> int:
        """Write (listing_id, score) pairs in one transaction"""
        if not updates:
            return 0
        with self.session() as session:
            session.bulk_update_mappings(
                Listing, [{"id": listing_id, "featured_score": score} for listing_id, score in updates]
            )
        return len(updates)

    def zero_unavailable_scores(self) -> int:
        """Clear featured scores on listings that are no longer available"""
        with self.session() as session:
            zeroed = (
                session.query(Listing)
                .filter(Listing.is_available.is_(False), Listing.featured_score > 0)
                .update({Listing.featured_score: 0}, synchronize_session=False)
            )
            logger.info(f"Zeroed featured score on {zeroed} unavailable listings")
            return zeroed
