"""
Training Feedback Store
=======================

Records user corrections as labelled samples for later detector tuning:
vias added by hand become positives, vias deleted by hand become
negatives. Samples are persisted as a JSON document.

Usage:
------
>>> store = TrainingStore.load("data/via_training.json")
>>> store.add_positive(Point2D(120, 340), 14.0, Side.FRONT)
>>> store.save()
"""

import json
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from ..geometry import Point2D
from ..utils.error_handler import InvalidInputError, NotFoundError
from .models import Side


logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class SampleLabel(Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


@dataclass(frozen=True)
class TrainingSample:
    """One labelled via location."""
    id: str
    location: Point2D
    radius: float
    side: Side
    label: SampleLabel
    source: str = "manual"
    timestamp: str = ""

    def dedupe_key(self) -> Tuple:
        return (self.label, self.side, round(self.location.x, 1), round(self.location.y, 1),
                round(self.radius, 2), self.source)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'location': {'x': self.location.x, 'y': self.location.y},
            'radius': self.radius,
            'side': self.side.value,
            'label': self.label.value,
            'source': self.source,
            'timestamp': self.timestamp
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'TrainingSample':
        try:
            return cls(
                id=str(data['id']),
                location=Point2D(float(data['location']['x']), float(data['location']['y'])),
                radius=float(data['radius']),
                side=Side(data['side']),
                label=SampleLabel(data['label']),
                source=str(data.get('source', 'manual')),
                timestamp=str(data.get('timestamp', ''))
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInputError(f"Malformed training sample: {e}") from e


class TrainingStore:
    """
    Thread-safe collection of training samples.

    Parameters
    ----------
    path : str or Path, optional
        Default location used by ``save()``
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else None
        self._samples: List[TrainingSample] = []
        self._counter = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    # ============================================================
    # RECORDING
    # ============================================================

    def _add(self, location: Point2D, radius: float, side: Side, label: SampleLabel,
             source: str) -> TrainingSample:
        with self._lock:
            self._counter += 1
            sample = TrainingSample(
                id=f"ts-{self._counter:04d}",
                location=location,
                radius=float(radius),
                side=side,
                label=label,
                source=source,
                timestamp=datetime.now().isoformat(timespec='seconds')
            )
            self._samples.append(sample)
        logger.debug(f"Recorded {label.value} sample {sample.id} at "
                     f"({location.x:.1f}, {location.y:.1f}) [{source}]")
        return sample

    def add_positive(self, location: Point2D, radius: float, side: Side,
                     source: str = "manual") -> TrainingSample:
        return self._add(location, radius, side, SampleLabel.POSITIVE, source)

    def add_negative(self, location: Point2D, radius: float, side: Side,
                     source: str = "rejected") -> TrainingSample:
        return self._add(location, radius, side, SampleLabel.NEGATIVE, source)

    def remove(self, sample_id: str) -> TrainingSample:
        with self._lock:
            for i, sample in enumerate(self._samples):
                if sample.id == sample_id:
                    return self._samples.pop(i)
        raise NotFoundError("Training sample", sample_id)

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()
            self._counter = 0

    # ============================================================
    # QUERIES
    # ============================================================

    @property
    def samples(self) -> List[TrainingSample]:
        with self._lock:
            return list(self._samples)

    @property
    def positives(self) -> List[TrainingSample]:
        return [s for s in self.samples if s.label == SampleLabel.POSITIVE]

    @property
    def negatives(self) -> List[TrainingSample]:
        return [s for s in self.samples if s.label == SampleLabel.NEGATIVE]

    def counts(self) -> Dict[str, int]:
        samples = self.samples
        positives = sum(1 for s in samples if s.label == SampleLabel.POSITIVE)
        return {'positive': positives, 'negative': len(samples) - positives, 'total': len(samples)}

    def find_near(self, p: Point2D, tolerance: float,
                  side: Optional[Side] = None) -> List[TrainingSample]:
        """Samples within ``tolerance`` of ``p``, nearest first."""
        hits = [s for s in self.samples
                if (side is None or s.side == side) and s.location.distance(p) <= tolerance]
        return sorted(hits, key=lambda s: s.location.distance(p))

    # ============================================================
    # PERSISTENCE
    # ============================================================

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """
        Write all samples as JSON, dropping exact duplicates.

        Raises
        ------
        InvalidInputError
            If no path is given and the store has none
        """
        target = Path(path) if path is not None else self.path
        if target is None:
            raise InvalidInputError("No path to save training samples to")

        seen = set()
        unique = []
        for sample in self.samples:
            key = sample.dedupe_key()
            if key not in seen:
                seen.add(key)
                unique.append(sample)

        target.parent.mkdir(parents=True, exist_ok=True)
        document = {
            'version': FORMAT_VERSION,
            'samples': [s.to_dict() for s in unique]
        }
        with open(target, 'w') as f:
            json.dump(document, f, indent=2)

        logger.info(f"Saved {len(unique)} training samples to {target}")
        return target

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'TrainingStore':
        """Read a store from ``path``; a missing file gives an empty store."""
        store = cls(path)
        if not store.path.exists():
            logger.info(f"No training file at {store.path}, starting empty")
            return store

        try:
            with open(store.path, 'r') as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidInputError(f"Corrupt training file {store.path}: {e}") from e

        samples = document.get('samples', []) if isinstance(document, dict) else None
        if not isinstance(samples, list):
            raise InvalidInputError(f"Training file {store.path} does not hold a sample list")

        store._samples = [TrainingSample.from_dict(d) for d in samples]
        numbers = [int(m.group(1)) for m in
                   (re.search(r"(\d+)$", s.id) for s in store._samples) if m]
        store._counter = max(numbers, default=0)
        logger.info(f"Loaded {len(store._samples)} training samples from {store.path}")
        return store
