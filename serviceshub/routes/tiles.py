import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from serviceshub.exceptions import TileNotFoundError
from serviceshub.models import (
    FetchIconRequest,
    IconResponse,
    PreviewIconRequest,
    ReorderRequest,
    TileCreate,
    TileListResponse,
    TileResponse,
    TileUpdate,
)
from serviceshub.services.icon_resolver import IconResolver
from serviceshub.services.tile_service import TileService

router = APIRouter(prefix="/tiles", tags=["tiles"])

logger = logging.getLogger(__name__)


def get_db(request: Request):
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def get_icon_resolver(request: Request) -> IconResolver:
    return request.app.state.icon_resolver


def get_tile_service(
    db: Session = Depends(get_db),
    resolver: IconResolver = Depends(get_icon_resolver),
) -> TileService:
    return TileService(db, resolver)


@router.get("", response_model=TileListResponse)
def list_tiles(service: TileService = Depends(get_tile_service)):
    try:
        tiles = service.list_tiles()
        logger.info(f"Fetched {len(tiles)} tiles")
        return {"tiles": tiles}
    except Exception as e:
        logger.error(f"Error fetching tiles: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch tiles")


@router.post("", response_model=TileResponse, status_code=201)
def create_tile(data: TileCreate, service: TileService = Depends(get_tile_service)):
    try:
        logger.info(f"Adding tile: {data.title} -> {data.url}")
        return {"tile": service.create_tile(data)}
    except Exception as e:
        logger.error(f"Error adding tile: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to add tile")


# Declared before the /{tile_id} routes so "reorder" is not taken for an id.
@router.put("/reorder", response_model=TileListResponse)
def reorder_tiles(data: ReorderRequest, service: TileService = Depends(get_tile_service)):
    try:
        return {"tiles": service.reorder_tiles(data.ids)}
    except TileNotFoundError as e:
        logger.warning(f"Reorder rejected, unknown tile {e.tile_id}")
        raise HTTPException(status_code=404, detail=f"Tile not found: {e.tile_id}")
    except Exception as e:
        logger.error(f"Error reordering tiles: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to reorder tiles")


@router.post("/preview-icon", response_model=IconResponse)
def preview_icon(
    data: PreviewIconRequest, resolver: IconResolver = Depends(get_icon_resolver)
):
    try:
        resolution = resolver.resolve(
            uploaded_icon=data.uploaded_icon,
            icon_source_url=data.icon_source_url,
            page_url=data.url,
        )
        return {"icon": resolution.icon}
    except Exception as e:
        logger.error(f"Error previewing icon: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to preview icon")


@router.post("/fetch-icon", response_model=IconResponse)
def fetch_icon(data: FetchIconRequest, resolver: IconResolver = Depends(get_icon_resolver)):
    # The URL may point straight at an image or at a page whose favicon we want.
    try:
        resolution = resolver.resolve(icon_source_url=data.url, page_url=data.url)
        return {"icon": resolution.icon}
    except Exception as e:
        logger.error(f"Error fetching icon for {data.url}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch icon")


@router.get("/{tile_id}", response_model=TileResponse)
def get_tile(tile_id: str, service: TileService = Depends(get_tile_service)):
    try:
        return {"tile": service.get_tile(tile_id)}
    except TileNotFoundError:
        raise HTTPException(status_code=404, detail="Tile not found")
    except Exception as e:
        logger.error(f"Error fetching tile {tile_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch tile")


@router.put("/{tile_id}", response_model=TileResponse)
def update_tile(
    tile_id: str, data: TileUpdate, service: TileService = Depends(get_tile_service)
):
    try:
        logger.info(f"Updating tile {tile_id}: {sorted(data.model_fields_set)}")
        return {"tile": service.update_tile(tile_id, data)}
    except TileNotFoundError:
        raise HTTPException(status_code=404, detail="Tile not found")
    except Exception as e:
        logger.error(f"Error updating tile {tile_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update tile")


@router.delete("/{tile_id}", status_code=204)
def delete_tile(tile_id: str, service: TileService = Depends(get_tile_service)):
    try:
        service.delete_tile(tile_id)
        return Response(status_code=204)
    except TileNotFoundError:
        raise HTTPException(status_code=404, detail="Tile not found")
    except Exception as e:
        logger.error(f"Error deleting tile {tile_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete tile")


@router.put("/{tile_id}/refresh-icon", response_model=TileResponse)
def refresh_tile_icon(tile_id: str, service: TileService = Depends(get_tile_service)):
    try:
        return {"tile": service.refresh_icon(tile_id)}
    except TileNotFoundError:
        raise HTTPException(status_code=404, detail="Tile not found")
    except Exception as e:
        logger.error(f"Error refreshing icon for tile {tile_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to refresh icon")
