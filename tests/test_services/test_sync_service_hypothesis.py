"""Property-based tests for sync engine invariants."""

from __future__ import annotations

import string
from pathlib import Path

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from themesync.services.sync_service import (
    THEME_FOLDERS,
    AssetSyncEngine,
    batch_key_for,
    hash_content,
)

PROPERTY_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

ROOT = Path("/bundle")
CATALOG = {
    "sections/hero.liquid": ROOT / "hero.liquid",
    "assets/hero.css": ROOT / "hero.css",
    "assets/hero.js": ROOT / "hero.js",
}
_PATHS = list(CATALOG.values())

_CONTENT = st.binary(max_size=64)
_CONTENTS = st.dictionaries(keys=st.sampled_from(_PATHS), values=_CONTENT, max_size=3)
# Each step is one file observation plus whether its upload succeeds.
_STEPS = st.lists(
    st.tuples(st.sampled_from(_PATHS), _CONTENT, st.booleans()), min_size=1, max_size=25
)
_SEGMENT = st.text(alphabet=string.ascii_lowercase + string.digits + "_-", min_size=1, max_size=8)
_NAME = st.builds(
    lambda parts, ext: "/".join(parts) + f".{ext}",
    st.lists(_SEGMENT, min_size=1, max_size=3),
    st.sampled_from(["webp", "css", "js", "liquid"]),
)


def _engine() -> AssetSyncEngine:
    return AssetSyncEngine(CATALOG, root=ROOT)


@PROPERTY_SETTINGS
@given(contents=_CONTENTS)
def test_delta_is_idempotent_without_intervening_changes(contents: dict[Path, bytes]) -> None:
    engine = _engine()
    first = engine.compute_delta("1", contents)
    assert engine.compute_delta("1", contents) == []
    assert {r.local_path for r in first} == set(contents)


@PROPERTY_SETTINGS
@given(contents=_CONTENTS)
def test_successful_sync_makes_delta_empty(contents: dict[Path, bytes]) -> None:
    engine = _engine()
    for request in engine.compute_delta("1", contents):
        assert engine.apply_result(request, success=True)
    assert engine.compute_delta("1", contents) == []
    by_key = {r.remote_key: r.content_hash for r in engine.records("1")}
    for path, content in contents.items():
        key = engine.key_for_path(path)
        assert key is not None
        assert by_key[key] == hash_content(content)


@PROPERTY_SETTINGS
@given(steps=_STEPS)
def test_record_tracks_last_successful_upload(steps: list[tuple[Path, bytes, bool]]) -> None:
    engine = _engine()
    confirmed: dict[Path, str] = {}
    for path, content, success in steps:
        for request in engine.compute_delta("1", {path: content}):
            engine.apply_result(request, success=success)
            if success:
                confirmed[path] = request.content_hash

    for record in engine.records("1"):
        assert record.content_hash == confirmed.get(record.local_path, "")
        assert (record.last_synced_at is None) == (record.local_path not in confirmed)


@PROPERTY_SETTINGS
@given(contents=_CONTENTS)
def test_targets_do_not_share_records(contents: dict[Path, bytes]) -> None:
    engine = _engine()
    for request in engine.compute_delta("1", contents):
        engine.apply_result(request, success=True)
    second = engine.compute_delta("2", contents)
    assert {r.local_path for r in second} == set(contents)


@PROPERTY_SETTINGS
@given(name=_NAME)
def test_batch_keys_stay_inside_a_theme_folder(name: str) -> None:
    key = batch_key_for(name)
    parts = key.split("/")
    assert parts[0] in THEME_FOLDERS
    assert ".." not in parts
    assert key.endswith(name.split("/")[-1])
