from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from serviceshub.exceptions import TileNotFoundError
from serviceshub.models import Tile, TileCreate, TileUpdate
from serviceshub.services.icon_resolver import IconOrigin, IconResolution
from serviceshub.services.tile_service import TileService

UPLOADED = "data:image/png;base64,VVBMT0FE"
REMOTE = "data:image/png;base64,UkVNT1RF"
FAVICON = "data:image/x-icon;base64,RkFWSUNPTg=="


@pytest.fixture
def service(db_session, stub_resolver):
    return TileService(db_session, stub_resolver)


def add_tile(service, title="Grafana", url="https://grafana.local", **fields):
    return service.create_tile(TileCreate(title=title, url=url, **fields))


def orders(service):
    service.db.expire_all()
    return {t.title: t.order for t in service.db.query(Tile).all()}


def test_create_appends_after_highest_order(service):
    first = add_tile(service, "A")
    second = add_tile(service, "B")
    service.update_tile(second.id, TileUpdate(order=10))

    third = add_tile(service, "C")

    assert first.order == 1
    assert third.order == 11
    assert third.target == "_blank"
    assert third.visible is True


def test_create_stores_resolved_icon(service, stub_resolver):
    stub_resolver.resolve.return_value = IconResolution(REMOTE, IconOrigin.SOURCE_URL)

    tile = add_tile(service, icon_source_url="https://cdn.example.org/g.png")

    assert tile.icon == REMOTE
    assert tile.icon_origin == "source_url"
    assert tile.icon_source_url == "https://cdn.example.org/g.png"
    stub_resolver.resolve.assert_called_once_with(
        uploaded_icon=None, icon_source_url="https://cdn.example.org/g.png", page_url="https://grafana.local"
    )


def test_create_with_accepted_upload_drops_source_url(service, stub_resolver):
    stub_resolver.resolve.return_value = IconResolution(UPLOADED, IconOrigin.UPLOAD)

    tile = add_tile(service, icon=UPLOADED, icon_source_url="https://cdn.example.org/g.png")

    assert tile.icon == UPLOADED
    assert tile.icon_source_url is None


def test_create_without_any_icon(service):
    tile = add_tile(service)
    assert tile.icon is None
    assert tile.icon_origin is None


def test_list_is_ordered(service):
    a = add_tile(service, "A")
    add_tile(service, "B")
    add_tile(service, "C")
    service.update_tile(a.id, TileUpdate(order=5))

    assert [t.title for t in service.list_tiles()] == ["B", "C", "A"]


def test_unknown_tile_raises(service):
    with pytest.raises(TileNotFoundError):
        service.get_tile("missing")
    with pytest.raises(TileNotFoundError):
        service.update_tile("missing", TileUpdate(title="x"))
    with pytest.raises(TileNotFoundError):
        service.delete_tile("missing")
    with pytest.raises(TileNotFoundError):
        service.refresh_icon("missing")


def test_delete(service):
    tile = add_tile(service)
    service.delete_tile(tile.id)
    assert service.list_tiles() == []


def test_plain_fields_update(service, stub_resolver):
    tile = add_tile(service, category="Monitoring", description="dashboards")
    stub_resolver.resolve.reset_mock()

    updated = service.update_tile(
        tile.id, TileUpdate.model_validate({"title": "Grafana 10", "category": None, "visible": False})
    )

    assert updated.title == "Grafana 10"
    assert updated.category is None
    assert updated.description == "dashboards"
    assert updated.visible is False
    stub_resolver.resolve.assert_not_called()
    stub_resolver.favicon.assert_not_called()


def test_clearing_both_icon_fields_runs_favicon_discovery(service, stub_resolver):
    stub_resolver.resolve.return_value = IconResolution(REMOTE, IconOrigin.SOURCE_URL)
    tile = add_tile(service, icon_source_url="https://cdn.example.org/g.png")
    stub_resolver.resolve.return_value = IconResolution(FAVICON, IconOrigin.FAVICON)

    updated = service.update_tile(tile.id, TileUpdate.model_validate({"icon": None, "iconSourceUrl": None}))

    assert updated.icon == FAVICON
    assert updated.icon_origin == "favicon"
    assert updated.icon_source_url is None
    stub_resolver.resolve.assert_called_with(
        uploaded_icon=None, icon_source_url=None, page_url="https://grafana.local", allow_favicon=True
    )


def test_clearing_both_icon_fields_with_no_favicon_leaves_no_icon(service, stub_resolver):
    stub_resolver.resolve.return_value = IconResolution(REMOTE, IconOrigin.SOURCE_URL)
    tile = add_tile(service, icon_source_url="https://cdn.example.org/g.png")
    stub_resolver.resolve.return_value = IconResolution()

    updated = service.update_tile(tile.id, TileUpdate.model_validate({"icon": None, "iconSourceUrl": None}))

    assert updated.icon is None
    assert updated.icon_origin is None


def test_clearing_icon_alone_removes_it(service, stub_resolver):
    stub_resolver.resolve.return_value = IconResolution(REMOTE, IconOrigin.SOURCE_URL)
    tile = add_tile(service, icon_source_url="https://cdn.example.org/g.png")
    stub_resolver.resolve.reset_mock()

    updated = service.update_tile(tile.id, TileUpdate.model_validate({"icon": None}))

    assert updated.icon is None
    assert updated.icon_origin is None
    assert updated.icon_source_url == "https://cdn.example.org/g.png"
    stub_resolver.resolve.assert_not_called()
    stub_resolver.favicon.assert_not_called()


def test_clearing_source_url_alone_keeps_icon(service, stub_resolver):
    stub_resolver.resolve.return_value = IconResolution(REMOTE, IconOrigin.SOURCE_URL)
    tile = add_tile(service, icon_source_url="https://cdn.example.org/g.png")
    stub_resolver.resolve.reset_mock()

    updated = service.update_tile(tile.id, TileUpdate.model_validate({"iconSourceUrl": None}))

    assert updated.icon == REMOTE
    assert updated.icon_source_url is None
    stub_resolver.resolve.assert_not_called()


def test_new_upload_replaces_icon_and_source_url(service, stub_resolver):
    stub_resolver.resolve.return_value = IconResolution(REMOTE, IconOrigin.SOURCE_URL)
    tile = add_tile(service, icon_source_url="https://cdn.example.org/g.png")
    stub_resolver.resolve.return_value = IconResolution(UPLOADED, IconOrigin.UPLOAD)

    updated = service.update_tile(tile.id, TileUpdate(icon=UPLOADED))

    assert updated.icon == UPLOADED
    assert updated.icon_origin == "upload"
    assert updated.icon_source_url is None
    assert stub_resolver.resolve.call_args.kwargs["uploaded_icon"] == UPLOADED


def test_new_source_url_with_cleared_icon_skips_favicon(service, stub_resolver):
    tile = add_tile(service)

    service.update_tile(
        tile.id, TileUpdate.model_validate({"icon": None, "iconSourceUrl": "https://cdn.example.org/new.png"})
    )

    kwargs = stub_resolver.resolve.call_args.kwargs
    assert kwargs["icon_source_url"] == "https://cdn.example.org/new.png"
    assert kwargs["allow_favicon"] is False


def test_url_change_refreshes_favicon_derived_icon(service, stub_resolver):
    stub_resolver.resolve.return_value = IconResolution(FAVICON, IconOrigin.FAVICON)
    tile = add_tile(service)
    stub_resolver.favicon.return_value = "data:image/png;base64,TkVX"

    updated = service.update_tile(tile.id, TileUpdate(url="https://grafana.example.net"))

    assert updated.icon == "data:image/png;base64,TkVX"
    stub_resolver.favicon.assert_called_once_with("https://grafana.example.net")


def test_url_change_keeps_uploaded_icon(service, stub_resolver):
    stub_resolver.resolve.return_value = IconResolution(UPLOADED, IconOrigin.UPLOAD)
    tile = add_tile(service, icon=UPLOADED)

    updated = service.update_tile(tile.id, TileUpdate(url="https://grafana.example.net"))

    assert updated.icon == UPLOADED
    stub_resolver.favicon.assert_not_called()


def test_refresh_icon(service, stub_resolver):
    stub_resolver.resolve.return_value = IconResolution(UPLOADED, IconOrigin.UPLOAD)
    tile = add_tile(service, icon=UPLOADED)
    stub_resolver.favicon.return_value = FAVICON

    refreshed = service.refresh_icon(tile.id)

    assert refreshed.icon == FAVICON
    assert refreshed.icon_origin == "favicon"


def test_refresh_icon_without_result_keeps_current(service, stub_resolver):
    stub_resolver.resolve.return_value = IconResolution(UPLOADED, IconOrigin.UPLOAD)
    tile = add_tile(service, icon=UPLOADED)

    refreshed = service.refresh_icon(tile.id)

    assert refreshed.icon == UPLOADED
    assert refreshed.icon_origin == "upload"


def test_reorder_assigns_positions_in_given_order(service):
    a, b, c = (add_tile(service, name) for name in "ABC")

    tiles = service.reorder_tiles([c.id, a.id, b.id])

    assert [t.title for t in tiles] == ["C", "A", "B"]
    assert orders(service) == {"C": 1, "A": 2, "B": 3}


def test_reorder_places_unlisted_tiles_after_listed_ones(service):
    a, b, c, d = (add_tile(service, name) for name in "ABCD")

    service.reorder_tiles([d.id, b.id])

    assert orders(service) == {"D": 1, "B": 2, "A": 3, "C": 4}


def test_reorder_with_unknown_id_changes_nothing(service):
    a, b = (add_tile(service, name) for name in "AB")

    with pytest.raises(TileNotFoundError) as excinfo:
        service.reorder_tiles([b.id, "nope", a.id])

    assert excinfo.value.tile_id == "nope"
    assert orders(service) == {"A": 1, "B": 2}


def test_reorder_failure_midway_rolls_back(service):
    a, b, c = (add_tile(service, name) for name in "ABC")
    calls = []
    original = TileService._assign_order

    def flaky(self, tile, position):
        calls.append(tile.title)
        if len(calls) == 2:
            raise OperationalError("UPDATE tiles", {}, Exception("disk I/O error"))
        original(self, tile, position)

    with patch.object(TileService, "_assign_order", flaky):
        with pytest.raises(OperationalError):
            service.reorder_tiles([c.id, b.id, a.id])

    assert calls == ["C", "B"]
    assert orders(service) == {"A": 1, "B": 2, "C": 3}
