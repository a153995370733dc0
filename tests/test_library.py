"""
Tests for the game library synchronizer and its conversion helpers.
"""

import asyncio
from datetime import datetime

import pytest

from egdata_client.constants import Event
from egdata_client.errors import BackendRejection, TransportError
from egdata_client.models import GameInfo, convert
from egdata_client.sync.library import (
    GameLibrarySynchronizer,
    format_file_size,
    fuzzy_match,
    resolve_images,
    to_installed_item,
)
from tests.factories import make_game_info


def game_info(item_id, **kwargs):
    return convert(make_game_info(item_id, **kwargs), GameInfo)


class TestFormatFileSize:
    @pytest.mark.parametrize("size,expected", [
        (0, "0 Bytes"),
        (-5, "0 Bytes"),
        (512, "512 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (1024 ** 2 * 10, "10 MB"),
        (1024 ** 3 * 5 // 2, "2.5 GB"),
        (1024 ** 4 * 3, "3 TB"),
        (1024 ** 5, "1024 TB"),
    ])
    def test_format(self, size, expected):
        assert format_file_size(size) == expected


class TestConversion:
    def test_tall_image_preferred(self):
        info = game_info("a", key_images=[
            {"type": "DieselGameBox", "url": "https://img/wide.jpg"},
            {"type": "DieselGameBoxTall", "url": "https://img/tall.jpg"},
        ])
        assert resolve_images(info) == ("https://img/tall.jpg", "https://img/tall.jpg")

    def test_wide_image_fallback(self):
        info = game_info("a", key_images=[{"type": "DieselGameBox", "url": "https://img/wide.jpg"}])
        assert resolve_images(info)[0] == "https://img/wide.jpg"

    def test_placeholders_are_stable_per_app(self):
        first = resolve_images(game_info("a"))
        second = resolve_images(game_info("a", key_images=[{"type": "Thumbnail", "url": "x"}]))
        assert first == second
        assert "a-app" in first[0]
        assert first != resolve_images(game_info("b"))

    def test_installed_item_fields(self):
        scanned = datetime(2025, 3, 1, 9, 30)
        item = to_installed_item(game_info("fortnite", name="Fortnite", size=1536), scanned)
        assert item.id == "fortnite"
        assert item.name == "Fortnite"
        assert item.size == "1.5 KB"
        assert item.install_size == 1536
        assert item.install_path == "C:/Games/Fortnite"
        assert item.last_scanned == scanned
        assert item.manifest_hash == "fortnite-hash"

    def test_metadata_title_wins(self):
        info = convert(
            dict(make_game_info("a", name="a_internal", key_images=[]), metadata={"id": "a", "title": "Alpha"}),
            GameInfo,
        )
        assert to_installed_item(info).name == "Alpha"


class TestFuzzyMatch:
    def test_substring(self):
        assert fuzzy_match("Rocket League", "league")

    def test_characters_in_order(self):
        assert fuzzy_match("Rocket League", "rktlg")
        assert not fuzzy_match("Rocket League", "glr")

    def test_empty_term_matches(self):
        assert fuzzy_match("anything", "")


class TestRefresh:
    @pytest.mark.asyncio
    async def test_initial_refresh(self, backend, context):
        library = GameLibrarySynchronizer(context, backend.gateway)
        items = await library.refresh()
        assert sorted(i.id for i in items) == ["a", "b", "c"]
        assert context.operations.get("refresh").state == "succeeded"

    @pytest.mark.asyncio
    async def test_refresh_reconciles_without_empty_intermediate(self, backend, context):
        library = GameLibrarySynchronizer(context, backend.gateway)
        await library.refresh()

        live = library.query()
        observed = []
        live.subscribe(lambda games: observed.append([g.id for g in games]))

        backend.games = [make_game_info("b"), make_game_info("c"), make_game_info("d")]
        await library.refresh()

        assert observed == [["b", "c", "d"]]
        assert [g.id for g in live.value] == ["b", "c", "d"]

    @pytest.mark.asyncio
    async def test_failed_refresh_leaves_collection(self, backend, context):
        library = GameLibrarySynchronizer(context, backend.gateway)
        await library.refresh()
        backend.fail_get_games = True

        with pytest.raises(TransportError):
            await library.refresh()

        assert sorted(context.games.keys()) == ["a", "b", "c"]
        status = context.operations.get("refresh")
        assert status.state == "failed"
        assert "games store locked" in status.error

    @pytest.mark.asyncio
    async def test_malformed_list_is_a_rejection(self, backend, context):
        library = GameLibrarySynchronizer(context, backend.gateway)
        backend.games = [{"display_name": "broken"}]
        with pytest.raises(BackendRejection):
            await library.refresh()
        assert len(context.games) == 0

    @pytest.mark.asyncio
    async def test_stale_refresh_is_dropped(self, backend, context):
        library = GameLibrarySynchronizer(context, backend.gateway)
        release_slow = asyncio.Event()
        responses = [[make_game_info("old")], [make_game_info("new")]]

        async def get_installed_games():
            batch = responses.pop(0)
            if batch[0]["catalog_item_id"] == "old":
                await release_slow.wait()
            return batch

        backend.gateway.register("get_installed_games", get_installed_games)

        slow = asyncio.create_task(library.refresh())
        await asyncio.sleep(0)
        await library.refresh()
        release_slow.set()
        await slow

        assert context.games.keys() == ["new"]

    @pytest.mark.asyncio
    async def test_search_query(self, backend, context):
        backend.games = [make_game_info("rl", name="Rocket League"), make_game_info("fn", name="Fortnite")]
        library = GameLibrarySynchronizer(context, backend.gateway)
        await library.refresh()
        assert [g.id for g in library.search("rocket").value] == ["rl"]
        assert len(library.search("  ").value) == 2

    @pytest.mark.asyncio
    async def test_find_by_manifest_hash(self, backend, context):
        library = GameLibrarySynchronizer(context, backend.gateway)
        await library.refresh()
        assert library.find_by_manifest_hash("b-hash").id == "b"
        assert library.find_by_manifest_hash("nope") is None


class TestScan:
    @pytest.mark.asyncio
    async def test_scan_refreshes(self, backend, context):
        library = GameLibrarySynchronizer(context, backend.gateway)
        backend.games.append(make_game_info("d"))
        items = await library.scan()
        assert len(items) == 4
        assert context.operations.get("scan").state == "succeeded"


class TestGamesUpdatedEvent:
    @pytest.mark.asyncio
    async def test_event_triggers_refresh(self, backend, context):
        library = GameLibrarySynchronizer(context, backend.gateway)
        library.attach()
        backend.games = [make_game_info("z")]

        backend.gateway.emit(Event.GAMES_UPDATED, [])
        for _ in range(5):
            await asyncio.sleep(0)

        assert context.games.keys() == ["z"]

    @pytest.mark.asyncio
    async def test_failed_event_refresh_is_logged_not_raised(self, backend, context):
        library = GameLibrarySynchronizer(context, backend.gateway)
        library.attach()
        backend.fail_get_games = True

        backend.gateway.emit(Event.GAMES_UPDATED)
        for _ in range(5):
            await asyncio.sleep(0)

        assert context.operations.get("refresh").state == "failed"

    @pytest.mark.asyncio
    async def test_event_refresh_runs_on_context_tasks(self, backend, context):
        library = GameLibrarySynchronizer(context, backend.gateway)
        library.attach()

        backend.gateway.emit(Event.GAMES_UPDATED)

        assert context.tasks.task_names() == ["games-updated-refresh"]
        assert backend.gateway.tasks.active_count() == 0
        await context.tasks.cancel_all()
        assert context.games.keys() == []

    def test_detach(self, backend, context):
        library = GameLibrarySynchronizer(context, backend.gateway)
        library.attach()
        library.attach()
        assert backend.gateway.handler_count(Event.GAMES_UPDATED) == 1
        library.detach()
        assert backend.gateway.handler_count(Event.GAMES_UPDATED) == 0
