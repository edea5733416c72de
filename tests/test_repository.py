from __future__ import annotations

import sqlite3
from typing import Any, Dict, List

import pytest

from clipstudio.config import AppConfig
from clipstudio.services.storage import ClipRepository


def test_clip_round_trip_and_missing_thumbnail_listing(temp_config: AppConfig) -> None:
    repository = ClipRepository(temp_config)

    first = repository.add_clip("https://cdn.test/1.mp4", description="Intro", duration_seconds=4.0)
    second = repository.add_clip("https://cdn.test/2.mp4", thumbnail_url="https://cdn.test/2.jpg")

    clip = repository.get_clip(first)
    assert clip is not None
    assert clip.description == "Intro"
    assert clip.source_resolution == "1080p"
    assert repository.get_clip("missing") is None
    assert [record.id for record in repository.list_clips_without_thumbnail()] == [first]
    assert {record.id for record in repository.list_clips()} == {first, second}


def test_rendition_pair_is_unique(temp_config: AppConfig) -> None:
    repository = ClipRepository(temp_config)
    clip_id = repository.add_clip("https://cdn.test/1.mp4", source_resolution="4k")

    repository.upsert_rendition(clip_id, "720p", width=1280, height=720, clip_url="v1")
    repository.upsert_rendition(clip_id, "720p", width=1280, height=720, clip_url="v2")

    renditions = repository.list_renditions(clip_id)
    assert [record.clip_url for record in renditions] == ["v2"]

    with sqlite3.connect(temp_config.database_file) as connection:
        with pytest.raises(sqlite3.IntegrityError):
            connection.execute(
                "INSERT INTO clip_renditions(clip_id, resolution, width, height, clip_url, created_at)"
                " VALUES (?, '720p', 1, 1, 'dup', 'now')",
                (clip_id,),
            )


def test_duration_update_is_mirrored_onto_renditions(temp_config: AppConfig) -> None:
    repository = ClipRepository(temp_config)
    clip_id = repository.add_clip("https://cdn.test/1.mp4", source_resolution="4k")
    repository.upsert_rendition(clip_id, "1080p", width=1920, height=1080, clip_url="a")
    repository.upsert_rendition(clip_id, "720p", width=1280, height=720, clip_url="b")

    assert repository.update_clip_duration(clip_id, 42.5) is True
    assert repository.update_clip_duration("missing", 1.0) is False

    assert repository.get_clip(clip_id).duration_seconds == 42.5
    assert {record.duration_seconds for record in repository.list_renditions(clip_id)} == {42.5}


def test_set_default_voice_keeps_a_single_default(temp_config: AppConfig) -> None:
    repository = ClipRepository(temp_config)
    repository.add_voice("Narrator", voice_id="v1", is_default=True)
    repository.add_voice("Host", voice_id="v2")
    repository.add_voice("Guest", voice_id="v3")

    assert repository.set_default_voice("v3") is True
    defaults = [voice.id for voice in repository.list_voices() if voice.is_default]
    assert defaults == ["v3"]

    assert repository.set_default_voice("missing") is False
    defaults = [voice.id for voice in repository.list_voices() if voice.is_default]
    assert defaults == ["v3"]


def test_event_emitter_receives_db_events(temp_config: AppConfig) -> None:
    events: List[Dict[str, Any]] = []

    def emitter(event_type: str, message: str, **kwargs: Any) -> None:
        events.append({"type": event_type, "message": message, **kwargs})

    repository = ClipRepository(temp_config, event_emitter=emitter)
    clip_id = repository.add_clip("https://cdn.test/1.mp4")
    repository.get_clip(clip_id)

    assert [event["message"] for event in events] == ["add_clip", "get_clip"]
    assert all(event["type"] == "DB_QUERY" for event in events)
    assert events[1]["payload"]["found"] is True
    assert events[1]["payload"]["status"] == "ok"
    assert events[1]["duration_ms"] >= 0


def test_agent_job_json_fields_are_decoded(temp_config: AppConfig) -> None:
    repository = ClipRepository(temp_config)
    job_id = repository.add_agent_job("user-1", "voiceover", input={"script": "hello", "takes": 2})

    job = repository.get_agent_job(job_id, "user-1")

    assert job.input == {"script": "hello", "takes": 2}
    assert repository.get_agent_job(job_id, "user-2") is None
