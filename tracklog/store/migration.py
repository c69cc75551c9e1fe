"""Upgrades applied to datasets coming from storage, imports or the remote."""

import logging
from dataclasses import replace

from ..models import SCHEMA_VERSION, Category, DashboardCard, Dataset

logger = logging.getLogger(__name__)

DEFAULT_DASHBOARD_CATEGORIES = ("Fruit", "Vegetables", "Sugary drinks")


def migrate_dataset(data: Dataset) -> Dataset:
    """Bring an older dataset up to the current schema version.

    Category sentiment defaults are applied while decoding, so the only
    remaining step is stamping the version marker.
    """
    if data.version >= SCHEMA_VERSION:
        return data
    logger.info(f"Migrating dataset from version {data.version} to {SCHEMA_VERSION}")
    return replace(data, version=SCHEMA_VERSION)


def initialize_default_dashboard_cards(data: Dataset) -> Dataset:
    """Create the starter dashboard cards the first time a dataset is opened."""
    if data.dashboard_initialized:
        return data

    categories: list[Category] = [
        *data.food_categories.values(),
        *data.activity_categories.values(),
    ]
    cards: dict[str, DashboardCard] = {}
    for name in DEFAULT_DASHBOARD_CATEGORIES:
        for category in categories:
            if category.name.lower() == name.lower():
                cards[category.id] = DashboardCard(category_id=category.id)
                break

    return replace(
        data,
        dashboard_cards=cards if cards else data.dashboard_cards,
        dashboard_initialized=True,
    )


def prepare_dataset(data: Dataset) -> Dataset:
    """Run every upgrade step, in order."""
    return initialize_default_dashboard_cards(migrate_dataset(data))
