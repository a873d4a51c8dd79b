"""Data storage and persistence layer"""

from .models import (
    ActivityEvent,
    Alert,
    AlertHistory,
    Artisan,
    ArtisanProvenance,
    ConsentHistory,
    DataDeletionRequest,
    Dealer,
    DealerClick,
    Listing,
    ListingView,
    PriceHistory,
    Profile,
    SavedSearch,
    SavedSearchNotification,
    UserActivity,
    UserFavorite,
    UserSession,
)
from .database import Database

__all__ = [
    "ActivityEvent",
    "Alert",
    "AlertHistory",
    "Artisan",
    "ArtisanProvenance",
    "ConsentHistory",
    "DataDeletionRequest",
    "Dealer",
    "DealerClick",
    "Listing",
    "ListingView",
    "PriceHistory",
    "Profile",
    "SavedSearch",
    "SavedSearchNotification",
    "UserActivity",
    "UserFavorite",
    "UserSession",
    "Database",
]
