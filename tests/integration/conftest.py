"""Integration test fixtures with the HTTP client."""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from piecerate_engine.api.app import create_app


@pytest_asyncio.fixture
async def client(hold_engine) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client serving the test engine."""
    app = create_app(hold_engine)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def damage_payload(**overrides) -> dict:
    payload = {
        "bundle_number": "B-1001",
        "operator_id": "op-ram",
        "operator_name": "Ram",
        "total_pieces": 22,
        "completed_pieces": 22,
        "damage_count": 1,
        "damage_type": "fabric_hole",
    }
    payload.update(overrides)
    return payload


def rework_payload(**overrides) -> dict:
    payload = {
        "supervisor_id": "sup-1",
        "replacement_pieces": 1,
        "assigned_to": "op1",
        "rework_instructions": "Replace damaged panel",
    }
    payload.update(overrides)
    return payload
