"""
Shared fixtures: an in-process fake of the background process and a fresh
store context per test.
"""

import asyncio
import copy

import pytest

from egdata_client.constants import Operation
from egdata_client.errors import BackendRejection
from egdata_client.gateway import InProcessGateway
from egdata_client.store.context import StoreContext
from tests.factories import make_game_info


class FakeBackend:
    """Stands in for the background process behind an InProcessGateway."""

    def __init__(self):
        self.games = [make_game_info("a"), make_game_info("b"), make_game_info("c")]
        self.settings = {
            "concurrency": 1,
            "upload_speed_limit": 0,
            "allowed_environments": ["Live"],
            "upload_interval": 60,
            "scan_interval_minutes": 1,
        }
        self.scan_delay = 0.0
        self.fail_get_games = False
        self.fail_set_settings = False
        self.upload_responses = []
        self.upload_calls = []
        self.saved_settings = []

        self.gateway = InProcessGateway()
        self.gateway.register(Operation.GET_INSTALLED_GAMES, self.get_installed_games)
        self.gateway.register(Operation.SCAN_GAMES_NOW, self.scan_games_now)
        self.gateway.register(Operation.GET_SETTINGS, self.get_settings)
        self.gateway.register(Operation.SET_SETTINGS, self.set_settings)
        self.gateway.register(Operation.UPLOAD_MANIFEST, self.upload_manifest)
        self.gateway.register(Operation.UPLOAD_ALL_MANIFESTS, self.upload_all_manifests)
        self.gateway.register(Operation.CLEAR_UPLOADED_MANIFESTS, self.clear_uploaded_manifests)

    async def get_installed_games(self):
        if self.fail_get_games:
            raise RuntimeError("games store locked")
        return copy.deepcopy(self.games)

    async def scan_games_now(self):
        await asyncio.sleep(self.scan_delay)
        return copy.deepcopy(self.games)

    async def get_settings(self):
        return dict(self.settings)

    async def set_settings(self, new_settings):
        await asyncio.sleep(0)
        self.saved_settings.append(new_settings)
        if self.fail_set_settings:
            raise BackendRejection(Operation.SET_SETTINGS, "settings file is read-only")
        self.settings = dict(new_settings)

    async def upload_manifest(self, game_id, installation_guid):
        self.upload_calls.append((game_id, installation_guid))
        response = self.upload_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def upload_all_manifests(self):
        return [self.upload_responses.pop(0) for _ in self.games]

    async def clear_uploaded_manifests(self):
        return None


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def context():
    return StoreContext()
