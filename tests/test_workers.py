"""Tests for the media worker pool."""
from __future__ import annotations

import asyncio
import logging

import pytest

from meetroom.core.config import Settings
from meetroom.media.local import LocalMediaEngine
from meetroom.services.workers import WorkerPool, load_engine


@pytest.mark.asyncio
async def test_start_spawns_configured_workers():
    settings = Settings(num_workers=3, rtc_min_port=42000, rtc_max_port=42010)

    pool = await WorkerPool.start(LocalMediaEngine(), settings, terminate=lambda: None)

    assert len(pool) == 3
    pool.close()


@pytest.mark.asyncio
async def test_assign_next_rotates_through_workers():
    engine = LocalMediaEngine()
    workers = [await engine.create_worker(rtc_min_port=42000, rtc_max_port=42010) for _ in range(3)]
    pool = WorkerPool(workers, terminate=lambda: None)

    assigned = [pool.assign_next() for _ in range(7)]

    assert assigned == [workers[0], workers[1], workers[2], workers[0], workers[1], workers[2], workers[0]]


def test_assign_next_without_workers_fails():
    pool = WorkerPool(terminate=lambda: None)

    with pytest.raises(RuntimeError):
        pool.assign_next()


@pytest.mark.asyncio
async def test_worker_death_terminates_once_after_grace():
    engine = LocalMediaEngine()
    workers = [await engine.create_worker(rtc_min_port=42000, rtc_max_port=42010) for _ in range(2)]
    exits: list[str] = []
    pool = WorkerPool(workers, grace_seconds=0.01, terminate=lambda: exits.append("exit"))

    workers[0].kill()
    workers[1].kill()
    assert exits == []

    await asyncio.sleep(0.05)

    assert exits == ["exit"]
    pool.close()


def test_load_engine_rejects_unknown_names():
    with pytest.raises(ValueError):
        load_engine("gstreamer")


def test_local_engine_warns_that_no_media_flows(caplog):
    with caplog.at_level(logging.WARNING, logger="meetroom.services.workers"):
        engine = load_engine("local")

    assert isinstance(engine, LocalMediaEngine)
    assert any("no media is forwarded" in record.getMessage() for record in caplog.records)
