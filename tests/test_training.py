"""Unit tests for the training feedback store."""
import json
import threading

import pytest

from pcb_registration.geometry import Point2D
from pcb_registration.vias import SampleLabel, Side, TrainingSample, TrainingStore
from pcb_registration.utils.error_handler import InvalidInputError, NotFoundError


class TestTrainingStore:
    """Test suite for TrainingStore."""

    def test_add_and_count(self):
        store = TrainingStore()
        pos = store.add_positive(Point2D(10, 20), 5.0, Side.FRONT)
        neg = store.add_negative(Point2D(30, 40), 4.0, Side.BACK)

        assert pos.id == "ts-0001" and neg.id == "ts-0002"
        assert pos.label == SampleLabel.POSITIVE and pos.source == "manual"
        assert neg.label == SampleLabel.NEGATIVE and neg.source == "rejected"
        assert store.counts() == {'positive': 1, 'negative': 1, 'total': 2}
        assert len(store) == 2

    def test_remove(self):
        store = TrainingStore()
        sample = store.add_positive(Point2D(1, 1), 2.0, Side.FRONT)
        assert store.remove(sample.id) == sample
        assert len(store) == 0
        with pytest.raises(NotFoundError):
            store.remove(sample.id)

    def test_find_near(self):
        store = TrainingStore()
        store.add_positive(Point2D(10, 10), 3.0, Side.FRONT)
        near = store.add_positive(Point2D(12, 10), 3.0, Side.FRONT)
        store.add_positive(Point2D(12, 10), 3.0, Side.BACK)

        hits = store.find_near(Point2D(13, 10), 5.0, Side.FRONT)

        assert [s.id for s in hits][0] == near.id
        assert len(hits) == 2
        assert len(store.find_near(Point2D(13, 10), 5.0)) == 3

    def test_round_trip(self, temp_dir):
        path = temp_dir / "nested" / "training.json"
        store = TrainingStore(path)
        store.add_positive(Point2D(10.25, 20.5), 5.125, Side.FRONT, source="manual")
        store.add_negative(Point2D(30, 40), 4.0, Side.BACK)

        store.save()
        loaded = TrainingStore.load(path)

        assert loaded.samples == store.samples
        assert loaded.add_positive(Point2D(0, 0), 1.0, Side.FRONT).id == "ts-0003"

    def test_save_deduplicates(self, temp_dir):
        path = temp_dir / "training.json"
        store = TrainingStore()
        store.add_positive(Point2D(10, 10), 5.0, Side.FRONT)
        store.add_positive(Point2D(10.01, 10), 5.0, Side.FRONT)
        store.add_positive(Point2D(10, 10), 5.0, Side.BACK)

        store.save(path)

        with open(path) as f:
            document = json.load(f)
        assert len(document['samples']) == 2

    def test_load_missing_file(self, temp_dir):
        store = TrainingStore.load(temp_dir / "absent.json")
        assert len(store) == 0
        assert store.add_positive(Point2D(0, 0), 1.0, Side.FRONT).id == "ts-0001"

    def test_load_corrupt_file(self, temp_dir):
        path = temp_dir / "broken.json"
        path.write_text("{not json")
        with pytest.raises(InvalidInputError):
            TrainingStore.load(path)

    @pytest.mark.parametrize("content", ["[1, 2]", "\"text\"", "{\"samples\": 5}"])
    def test_load_rejects_wrong_document_shape(self, temp_dir, content):
        path = temp_dir / "shape.json"
        path.write_text(content)
        with pytest.raises(InvalidInputError):
            TrainingStore.load(path)

    def test_save_without_path(self):
        with pytest.raises(InvalidInputError):
            TrainingStore().save()

    def test_from_dict_rejects_bad_label(self):
        data = TrainingStore().add_positive(Point2D(0, 0), 1.0, Side.FRONT).to_dict()
        data['label'] = 'maybe'
        with pytest.raises(InvalidInputError):
            TrainingSample.from_dict(data)

    def test_concurrent_adds(self):
        store = TrainingStore()

        def worker():
            for i in range(50):
                store.add_positive(Point2D(i, i), 1.0, Side.FRONT)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store) == 200
        assert len({s.id for s in store.samples}) == 200

    def test_clear(self):
        store = TrainingStore()
        store.add_positive(Point2D(0, 0), 1.0, Side.FRONT)
        store.clear()
        assert len(store) == 0
        assert store.add_positive(Point2D(0, 0), 1.0, Side.FRONT).id == "ts-0001"
