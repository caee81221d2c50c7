"""Tests for the per-run AnalysisContext lifecycle."""
from __future__ import annotations

import asyncio

import httpx
import pytest

from backend.app.census_service import ApiConfig
from backend.app.config import Settings
from backend.app.site_analysis_service import AnalysisContext


def test_context_cancels_in_flight_tasks_on_exit() -> None:
    state = {"finished": False, "cancelled": False}

    async def slow_fetch() -> str:
        try:
            await asyncio.sleep(10)
            state["finished"] = True
            return "late result"
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise

    async def go() -> AnalysisContext:
        async with AnalysisContext(ApiConfig()) as context:
            task = context.spawn(slow_fetch())
            await asyncio.sleep(0)
            assert context.pending_tasks == 1
        assert task.cancelled()
        return context

    context = asyncio.run(go())
    assert context.closed
    assert state == {"finished": False, "cancelled": True}


def test_context_closes_owned_client() -> None:
    async def go() -> httpx.AsyncClient:
        async with AnalysisContext(ApiConfig()) as context:
            client = context.client
            assert not client.is_closed
        return client

    assert asyncio.run(go()).is_closed


def test_context_leaves_borrowed_client_open() -> None:
    async def go() -> None:
        async with httpx.AsyncClient() as client:
            async with AnalysisContext(ApiConfig(), client=client) as context:
                assert context.client is client
            assert not client.is_closed

    asyncio.run(go())


def test_context_cannot_be_reused() -> None:
    async def go() -> None:
        context = AnalysisContext(ApiConfig())
        async with context:
            pass
        with pytest.raises(RuntimeError):
            context.client
        with pytest.raises(RuntimeError):
            async with context:
                pass

    asyncio.run(go())


def test_context_from_settings_uses_http_limits() -> None:
    context = AnalysisContext.from_settings(Settings(http_timeout=7.5, http_retries=1))
    assert context.config == ApiConfig(timeout=7.5, retries=1)
