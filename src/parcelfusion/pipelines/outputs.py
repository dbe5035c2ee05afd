"""
Output Streams

Builds the two GeoJSON products of a run and writes them so that readers
never see a partial file: everything goes to a temporary file beside the
target and is renamed into place only on publish.
"""
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal, Optional, TextIO

from src.parcelfusion.aggregation.clustering import AggregatedFeature
from src.parcelfusion.models.evidence import DateEvidence
from src.parcelfusion.models.parcel import NormalizedParcel
from src.parcelfusion.transformers.land_use import category_color, category_label
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)

DetailFormat = Literal["geojson", "ndjson"]


def detail_feature(parcel: NormalizedParcel, evidence: DateEvidence) -> Dict[str, Any]:
    """Full-resolution feature for one dated parcel."""
    category = parcel.land_use_category
    return {
        "type": "Feature",
        "properties": {
            "id": parcel.id,
            "year": evidence.year,
            "estimated": evidence.estimated,
            "method": evidence.method.value,
            "confidence": evidence.confidence.name.lower(),
            "use": category.value,
            "label": category_label(category),
            "color": category_color(category),
            "landUse": parcel.land_use_raw,
            "address": parcel.address,
            "city": parcel.city,
            "area": round(parcel.area_sqm, 2) if parcel.area_sqm is not None else None,
            "stories": parcel.stories,
            "units": parcel.units,
            "startTime": evidence.start_time,
        },
        "geometry": parcel.geometry.to_geojson(),
    }


def output_paths(output_dir: Path, source_id: str, detail_format: DetailFormat) -> Dict[str, Path]:
    suffix = "ndjson" if detail_format == "ndjson" else "geojson"
    return {
        "detailed": output_dir / f"{source_id}-detailed.{suffix}",
        "aggregated": output_dir / f"{source_id}-aggregated.geojson",
    }


class AtomicFileWriter:
    """
    Writes to ``<target>.tmp`` and renames over the target on publish.

    Usage:
        writer = AtomicFileWriter(path)
        writer.open()
        try:
            ...
            writer.publish()
        except Exception:
            writer.abort()
            raise
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.temp_path = self.path.with_name(self.path.name + ".tmp")
        self._handle: Optional[TextIO] = None

    def open(self) -> "AtomicFileWriter":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self.temp_path.open("w", encoding="utf-8")
        self._write_header()
        return self

    def _write_header(self) -> None:
        pass

    def _write_footer(self) -> None:
        pass

    def write(self, text: str) -> None:
        if self._handle is None:
            raise RuntimeError(f"{self.temp_path} is not open")
        self._handle.write(text)

    def close(self) -> None:
        """Finish the temporary file without publishing it."""
        if self._handle is not None:
            self._write_footer()
            self._handle.close()
            self._handle = None

    def publish(self) -> Path:
        self.close()
        os.replace(self.temp_path, self.path)
        logger.info("output_published", path=str(self.path))
        return self.path

    def abort(self) -> None:
        """Drop the temporary file; the previously published file stays."""
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        if self.temp_path.exists():
            self.temp_path.unlink()
            logger.info("output_aborted", path=str(self.path))


class DetailWriter(AtomicFileWriter):
    """
    Incremental writer for the detailed stream.

    ``geojson`` writes one FeatureCollection; ``ndjson`` writes one feature
    per line for tile tooling.
    """

    def __init__(self, path: Path, detail_format: DetailFormat = "geojson"):
        super().__init__(path)
        self.detail_format = detail_format
        self.count = 0

    def _write_header(self) -> None:
        if self.detail_format == "geojson":
            self.write('{"type":"FeatureCollection","features":[\n')

    def _write_footer(self) -> None:
        if self.detail_format == "geojson":
            self.write("\n]}\n")

    def write_feature(self, feature: Dict[str, Any]) -> None:
        text = json.dumps(feature, separators=(",", ":"))
        if self.detail_format == "ndjson":
            self.write(text + "\n")
        else:
            self.write((",\n" if self.count else "") + text)
        self.count += 1


def publish_together(*writers: AtomicFileWriter) -> List[Path]:
    """
    Publish several outputs of one run.

    Every temporary file is finished first, so a write or flush failure
    leaves all previous outputs in place. The renames that follow are
    individually atomic but not as a group: if one fails, the files renamed
    before it already hold the new run.
    """
    for writer in writers:
        writer.close()
    return [writer.publish() for writer in writers]


def write_aggregated(writer: AtomicFileWriter, features: Iterable[AggregatedFeature]) -> int:
    """Write the aggregated FeatureCollection into an open writer."""
    collection = {
        "type": "FeatureCollection",
        "features": [feature.to_geojson() for feature in features],
    }
    writer.write(json.dumps(collection, separators=(",", ":")))
    return len(collection["features"])
