"""
Unit tests for correspondence persistence
"""

import json

import pytest

from calibration.store import (
    FileStore,
    MemoryStore,
    decode_correspondences,
    encode_correspondences,
    load_correspondences,
    save_correspondences,
    store_from_config,
)
from common.errors import InvalidPersistedData


KEY = "calibration/correspondences"


def _records(pairs):
    return [p.to_dict() for p in pairs]


class TestCodec:
    """Test cases for encode/decode of the persisted array"""

    def test_encoded_shape(self, campus_pairs):
        data = json.loads(encode_correspondences(campus_pairs))

        assert len(data) == 4
        assert data[0] == {"pixel": {"x": 0.0, "y": 0.0}, "geo": {"lat": 38.873, "lon": -77.06}}

    def test_decode_encoded(self, campus_pairs):
        assert decode_correspondences(encode_correspondences(campus_pairs)) == campus_pairs

    def test_encode_requires_four(self, campus_pairs):
        with pytest.raises(ValueError):
            encode_correspondences(campus_pairs[:2])

    def test_integers_accepted(self):
        raw = json.dumps([{"pixel": {"x": i, "y": 0}, "geo": {"lat": 0, "lon": i}} for i in range(4)])
        pairs = decode_correspondences(raw.encode())
        assert pairs[3].pixel.x == 3.0

    @pytest.mark.parametrize(
        "raw",
        [
            b"not json",
            b"\xff\xfe",
            b"{}",
            b"[]",
            b"[" * 100000 + b"]" * 100000,
        ],
    )
    def test_rejects_malformed_documents(self, raw):
        with pytest.raises(InvalidPersistedData):
            decode_correspondences(raw)

    def test_rejects_three_records(self, campus_pairs):
        raw = json.dumps(_records(campus_pairs)[:3]).encode()
        with pytest.raises(InvalidPersistedData):
            decode_correspondences(raw)

    def test_rejects_missing_field(self, campus_pairs):
        recs = _records(campus_pairs)
        del recs[1]["geo"]["lon"]
        with pytest.raises(InvalidPersistedData):
            decode_correspondences(json.dumps(recs).encode())

    def test_rejects_extra_field(self, campus_pairs):
        recs = _records(campus_pairs)
        recs[0]["pixel"]["z"] = 1.0
        with pytest.raises(InvalidPersistedData):
            decode_correspondences(json.dumps(recs).encode())

    @pytest.mark.parametrize("bad", ["12.5", True, None])
    def test_rejects_non_numeric(self, campus_pairs, bad):
        recs = _records(campus_pairs)
        recs[2]["pixel"]["x"] = bad
        with pytest.raises(InvalidPersistedData):
            decode_correspondences(json.dumps(recs).encode())

    def test_rejects_non_finite(self, campus_pairs):
        recs = _records(campus_pairs)
        recs[0]["geo"]["lat"] = float("nan")
        with pytest.raises(InvalidPersistedData):
            decode_correspondences(json.dumps(recs).encode())

    def test_rejects_integer_beyond_float_range(self, campus_pairs):
        recs = _records(campus_pairs)
        recs[0]["pixel"]["x"] = 10**400
        raw = json.dumps(recs).encode()
        with pytest.raises(InvalidPersistedData):
            decode_correspondences(raw)

    def test_rejects_out_of_range_geo(self, campus_pairs):
        recs = _records(campus_pairs)
        recs[0]["geo"]["lat"] = 95.0
        with pytest.raises(InvalidPersistedData):
            decode_correspondences(json.dumps(recs).encode())


class TestLoadSave:
    """Test cases for load_correspondences / save_correspondences"""

    def test_absent_is_none(self):
        assert load_correspondences(MemoryStore(), KEY) is None

    def test_invalid_is_none(self):
        store = MemoryStore({KEY: b"[1, 2, 3]"})
        assert load_correspondences(store, KEY) is None

    def test_oversized_integer_is_none(self, campus_pairs):
        recs = _records(campus_pairs)
        recs[1]["pixel"]["y"] = 10**400
        raw = json.dumps(recs).encode()
        assert load_correspondences(MemoryStore({KEY: raw}), KEY) is None

    def test_save_then_load(self, campus_pairs):
        store = MemoryStore()
        save_correspondences(store, KEY, campus_pairs)
        assert load_correspondences(store, KEY) == campus_pairs


class TestFileStore:
    """Test cases for FileStore"""

    def test_missing_key(self, tmp_path):
        assert FileStore(str(tmp_path)).get(KEY) is None

    def test_set_get(self, tmp_path):
        store = FileStore(str(tmp_path))
        store.set(KEY, b"[]")

        assert store.get(KEY) == b"[]"
        assert (tmp_path / "calibration" / "correspondences.json").is_file()

    def test_overwrite_leaves_no_temp_files(self, tmp_path):
        store = FileStore(str(tmp_path))
        store.set(KEY, b"first")
        store.set(KEY, b"second")

        assert store.get(KEY) == b"second"
        assert [p.name for p in (tmp_path / "calibration").iterdir()] == ["correspondences.json"]

    @pytest.mark.parametrize("key", ["", "/etc/passwd", "../escape", "a/../../b"])
    def test_invalid_keys(self, tmp_path, key):
        with pytest.raises(ValueError):
            FileStore(str(tmp_path)).get(key)


class TestStoreFromConfig:
    """Test cases for store_from_config"""

    def test_memory(self):
        assert isinstance(store_from_config({"backend": "memory"}), MemoryStore)

    def test_file(self, tmp_path):
        store = store_from_config({"backend": "file", "root": str(tmp_path)})
        assert isinstance(store, FileStore)
        assert store.root == tmp_path

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            store_from_config({"backend": "redis"})
