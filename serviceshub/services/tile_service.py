import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from serviceshub.exceptions import TileNotFoundError
from serviceshub.models import Tile, TileCreate, TileUpdate
from serviceshub.services.field_update import FieldUpdate
from serviceshub.services.icon_resolver import IconOrigin, IconResolution, IconResolver

logger = logging.getLogger(__name__)

PLAIN_FIELDS = ("title", "url", "category", "description", "target", "order", "visible")


class TileService:
    """Tile CRUD on one database session, with icons resolved on the way in."""

    def __init__(self, db: Session, resolver: IconResolver):
        self.db = db
        self.resolver = resolver

    def list_tiles(self) -> List[Tile]:
        return self.db.query(Tile).order_by(Tile.order.asc(), Tile.created_at.asc()).all()

    def get_tile(self, tile_id: str) -> Tile:
        tile = self.db.get(Tile, tile_id)
        if tile is None:
            raise TileNotFoundError(tile_id)
        return tile

    def create_tile(self, data: TileCreate) -> Tile:
        resolution = self.resolver.resolve(
            uploaded_icon=data.icon,
            icon_source_url=data.icon_source_url,
            page_url=data.url,
        )
        max_order = self.db.query(func.max(Tile.order)).scalar()
        tile = Tile(
            title=data.title,
            url=data.url,
            category=data.category,
            description=data.description,
            target=data.target,
            visible=data.visible,
            order=(max_order or 0) + 1,
        )
        self._store_resolution(tile, resolution, data.icon_source_url)
        self.db.add(tile)
        self._commit()
        self.db.refresh(tile)
        logger.info(f"Created tile {tile.id} ({tile.url}) at position {tile.order}, icon origin {tile.icon_origin}")
        return tile

    def update_tile(self, tile_id: str, data: TileUpdate) -> Tile:
        tile = self.get_tile(tile_id)
        old_url = tile.url
        for name in PLAIN_FIELDS:
            setattr(tile, name, data.field_update(name).apply(getattr(tile, name)))

        self._apply_icon_update(
            tile,
            icon_update=data.field_update("icon"),
            source_update=data.field_update("icon_source_url"),
            url_changed=tile.url != old_url,
        )
        self._commit()
        self.db.refresh(tile)
        logger.info(f"Updated tile {tile.id}: {sorted(data.model_fields_set)}")
        return tile

    def refresh_icon(self, tile_id: str) -> Tile:
        tile = self.get_tile(tile_id)
        icon = self.resolver.favicon(tile.url)
        if icon is None:
            logger.info(f"No favicon found for tile {tile.id}; keeping current icon")
            return tile
        tile.icon = icon
        tile.icon_origin = IconOrigin.FAVICON.value
        self._commit()
        self.db.refresh(tile)
        return tile

    def delete_tile(self, tile_id: str) -> None:
        tile = self.get_tile(tile_id)
        self.db.delete(tile)
        self._commit()
        logger.info(f"Deleted tile {tile_id}")

    def reorder_tiles(self, ids: List[str]) -> List[Tile]:
        """Give the listed tiles positions 1..len(ids) in the given order.

        Tiles left out of ``ids`` follow, keeping their relative order. Either
        every position is written or none is: an unknown id or any failure
        rolls the whole batch back.
        """
        try:
            listed = {t.id: t for t in self.db.query(Tile).filter(Tile.id.in_(ids)).all()}
            missing = [tile_id for tile_id in ids if tile_id not in listed]
            if missing:
                raise TileNotFoundError(missing[0])
            rest = (
                self.db.query(Tile)
                .filter(Tile.id.not_in(ids))
                .order_by(Tile.order.asc(), Tile.created_at.asc())
                .all()
            )
            for position, tile in enumerate([listed[i] for i in ids] + rest, start=1):
                self._assign_order(tile, position)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Reordered {len(ids)} tiles")
        return self.list_tiles()

    def _assign_order(self, tile: Tile, position: int) -> None:
        tile.order = position
        self.db.flush()

    def _apply_icon_update(
        self,
        tile: Tile,
        icon_update: FieldUpdate,
        source_update: FieldUpdate,
        url_changed: bool,
    ) -> None:
        if icon_update.is_unchanged and source_update.is_unchanged:
            # A new page URL only invalidates icons that were derived from the old page.
            if url_changed and tile.icon_origin in (None, IconOrigin.FAVICON.value):
                icon = self.resolver.favicon(tile.url)
                if icon is not None:
                    tile.icon, tile.icon_origin = icon, IconOrigin.FAVICON.value
                elif tile.icon_origin == IconOrigin.FAVICON.value:
                    tile.icon, tile.icon_origin = None, None
            return

        if icon_update.is_unchanged and source_update.is_clear:
            tile.icon_source_url = None
            return

        if icon_update.is_clear and source_update.is_unchanged:
            tile.icon, tile.icon_origin = None, None
            return

        # Something new was supplied, or both fields were cleared. Clearing both
        # means "back to automatic", so favicon discovery runs once.
        icon_source_url = source_update.apply(tile.icon_source_url)
        resolution = self.resolver.resolve(
            uploaded_icon=icon_update.value if icon_update.is_set else None,
            icon_source_url=icon_source_url,
            page_url=tile.url,
            allow_favicon=not icon_update.is_clear or source_update.is_clear,
        )
        self._store_resolution(tile, resolution, icon_source_url)

    @staticmethod
    def _store_resolution(tile: Tile, resolution: IconResolution, icon_source_url: Optional[str]) -> None:
        tile.icon = resolution.icon
        tile.icon_origin = resolution.origin.value if resolution.found else None
        # An accepted upload is not derived from any URL.
        tile.icon_source_url = None if resolution.origin is IconOrigin.UPLOAD else icon_source_url

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
