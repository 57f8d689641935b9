# explorer_utils.py
# ──────────────────────────────────────────────────────────────────────────────
# Shared utilities for the Paper Space Explorer.
#
# Imported by explorer.py, build_corpus.py and corpus_assert.py.  Everything
# here is pure computation over a memory-resident corpus; rendering, the
# table widget and the autocomplete box live outside this repo.
#
# Contents
# --------
#   §1  Errors                ConfigurationError, NotificationLoopError,
#                             UnknownPropertyError, UnknownRecordError
#   §2  Corpus                Record, load_corpus, records_from_json,
#                             records_from_frame
#   §3  Facet index           FacetOption, build_facet_options,
#                             search_facet_options
#   §4  Filter matching       Filter, make_filter, compute_matches,
#                             filter_colors
#   §5  Neighbour ranking     DistanceEntry, NeighborRanker
#   §6  Presentation data     marker_styles, display_frame, axis_extents,
#                             neighbor_table, corpus_table
# ──────────────────────────────────────────────────────────────────────────────

import json
import os
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

import numpy as np
import pandas as pd


def _env_bool(name: str, default: bool) -> bool:
    v = os.environ.get(name, "").strip().lower()
    if v == "":
        return default
    return v in ("1", "true", "t", "yes", "y", "on")


# ══════════════════════════════════════════════════════════════════════════════
# CONFIGURATION: all tuning knobs in one place
# ══════════════════════════════════════════════════════════════════════════════

CORPUS_PATH = os.environ.get("EXPLORER_CORPUS_PATH", "data/publications.json")

# Number of nearest neighbours (selection included) in the highlight set.
NEIGHBOR_COUNT = int(os.environ.get("EXPLORER_NEIGHBOR_COUNT", "16"))

# Repeated picks of the same facet value are kept by default.  Set to true to
# drop a pick whose key is already in the active filter list.
DEDUPE_FILTERS = _env_bool("EXPLORER_DEDUPE_FILTERS", False)

# Property shown as the paper heading and in the neighbour table.
DOCUMENT_TITLE_FIELD = os.environ.get("EXPLORER_TITLE_FIELD", "paperKey")

# Embedding slots inside Record.embeddings
SEMANTIC_EMBEDDING = 0
DISPLAY_EMBEDDING  = 1

# Nested set()/trigger() calls allowed before the store gives up.
MAX_NOTIFY_DEPTH = 32

# Autocomplete shows at most this many facet options.
MAX_SEARCH_RESULTS = 100

CATEGORICAL_COLOR_SCHEME = [
    "#4269d0",
    "#efb118",
    "#ff725c",
    "#6cc5b0",
    "#3ca951",
    "#ff8ab7",
    "#a463f2",
    "#97bbf5",
    "#9c6b4e",
]

FacetKind = Literal["array", "number", "string"]

FILTER_CONFIG: list[dict[str, str]] = [
    {"property": "authors",     "type": "array"},
    {"property": "keywords",    "type": "array"},
    {"property": "branches",    "type": "array"},
    {"property": "year",        "type": "number"},
    {"property": "firstAuthor", "type": "string"},
]

# ── Marker styling ───────────────────────────────────────────────────────────
HIGHLIGHT_COLOR   = "#bdbdbd"
BACKGROUND_COLOR  = "#d9d9d9"
HIGHLIGHT_SIZE    = 9
BACKGROUND_SIZE   = 5
HIGHLIGHT_OPACITY = 1.0
BACKGROUND_OPACITY = 0.2

DISTANCE_DECIMALS = 3


# ══════════════════════════════════════════════════════════════════════════════
# §1  ERRORS
# ══════════════════════════════════════════════════════════════════════════════

class ConfigurationError(RuntimeError):
    """Corpus / schema / wiring problem detected at startup. Not recoverable."""


class NotificationLoopError(ConfigurationError):
    """A listener kept re-notifying past MAX_NOTIFY_DEPTH."""


class UnknownPropertyError(KeyError):
    """Access to a store property (or facet) that was never declared."""


class UnknownRecordError(KeyError):
    """Lookup or selection of a record id that is not in the corpus."""


# ══════════════════════════════════════════════════════════════════════════════
# §2  CORPUS
#
# Wire format (JSON)
# ──────────────────
#   [
#     {"id": "...", "properties": {...}, "text": "...",
#      "embeddings": [{"vector": [...semantic...]}, {"vector": [x, y, z]}]},
#     ...
#   ]
#
# Parquet layout
# ──────────────
#   id, text, embedding (semantic), display_embedding, + one column per
#   property.  This is what build_corpus.py keeps alongside the JSON export.
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Record:
    id:         Any
    properties: Mapping[str, Any]
    text:       str
    embeddings: tuple[tuple[float, ...], ...]

    @property
    def semantic_vector(self) -> tuple[float, ...]:
        return self.embeddings[SEMANTIC_EMBEDDING]

    @property
    def display_vector(self) -> tuple[float, ...]:
        return self.embeddings[DISPLAY_EMBEDDING]

    @property
    def title(self) -> Any:
        return self.properties.get(DOCUMENT_TITLE_FIELD, self.id)


_FRAME_RESERVED = ("id", "text", "embedding", "display_embedding")


def _as_vector(raw) -> tuple[float, ...]:
    return tuple(float(x) for x in raw)


def _clean_property(value):
    """Turn parquet/numpy cell values back into plain Python values."""
    if isinstance(value, np.ndarray):
        return [_clean_property(v) for v in value.tolist()]
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, float) and np.isnan(value):
        return None
    return value


def _is_null(cell) -> bool:
    return cell is None or (isinstance(cell, float) and np.isnan(cell))


def records_from_json(rows: Sequence[Mapping[str, Any]]) -> list[Record]:
    """Build Records from decoded wire-format JSON rows."""
    records = []
    for i, row in enumerate(rows):
        if "id" not in row:
            raise ConfigurationError(f"Corpus row {i} has no 'id'.")
        embeddings = row.get("embeddings") or []
        try:
            vectors = tuple(_as_vector(e["vector"]) for e in embeddings)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Corpus row {i} (id={row['id']!r}) has a malformed embedding: {e}"
            ) from e
        records.append(Record(
            id         = row["id"],
            properties = dict(row.get("properties") or {}),
            text       = row.get("text") or "",
            embeddings = vectors,
        ))
    return records


def records_from_frame(df: pd.DataFrame) -> list[Record]:
    """Build Records from the parquet layout (one column per property)."""
    missing = [c for c in ("id", "embedding") if c not in df.columns]
    if missing:
        raise ConfigurationError(f"Corpus frame is missing columns: {missing}")

    prop_cols = [c for c in df.columns if c not in _FRAME_RESERVED]
    records   = []
    for i, row in enumerate(df.to_dict(orient="records")):
        rid = _clean_property(row["id"])
        if _is_null(row["embedding"]):
            raise ConfigurationError(f"Corpus row {i} (id={rid!r}) has no embedding.")
        try:
            vectors = [_as_vector(row["embedding"])]
            display = row.get("display_embedding")
            if not _is_null(display):
                vectors.append(_as_vector(display))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Corpus row {i} (id={rid!r}) has a malformed embedding: {e}"
            ) from e
        text = row.get("text")
        records.append(Record(
            id         = rid,
            properties = {c: _clean_property(row[c]) for c in prop_cols},
            text       = text if isinstance(text, str) else "",
            embeddings = tuple(vectors),
        ))
    return records


def load_corpus(path: str = CORPUS_PATH) -> list[Record]:
    """Load the whole corpus into memory from .json or .parquet.

    Raises ConfigurationError when the file is missing or malformed.  The
    dimensionality check happens when a NeighborRanker is built over the
    result, so every consumer of the corpus goes through it once.
    """
    if not os.path.exists(path):
        raise ConfigurationError(f"Corpus file not found: {path}")

    if path.endswith(".parquet"):
        records = records_from_frame(pd.read_parquet(path))
    else:
        try:
            with open(path, encoding="utf-8") as f:
                rows = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Corpus file {path} is not valid JSON: {e}") from e
        if not isinstance(rows, list):
            raise ConfigurationError(f"Corpus file {path} must hold a JSON array.")
        records = records_from_json(rows)

    print(f"  Loaded {len(records)} records from {path}.")
    return records


# ══════════════════════════════════════════════════════════════════════════════
# §3  FACET INDEX
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FacetOption:
    property: str
    value:    Any


def build_facet_options(
    records: Sequence[Record],
    schema:  Sequence[Mapping[str, str]] = FILTER_CONFIG,
) -> list[FacetOption]:
    """Enumerate every (property, value) pair seen in the corpus.

    Grouped by schema order; within a property, values keep the order in
    which they were first seen.  dict keys double as an insertion-ordered set,
    keyed with a bool flag so True and 1 stay separate options.

    Raises ConfigurationError when an array facet holds a non-list or a value
    cannot be hashed; either means the corpus does not fit the schema.
    """
    options = []
    for facet in schema:
        prop   = facet["property"]
        values = {}
        for record in records:
            value = record.properties.get(prop)
            if value is None:
                continue
            if facet["type"] == "array":
                if not isinstance(value, (list, tuple)):
                    raise ConfigurationError(
                        f"Record {record.id!r}: array facet '{prop}' holds "
                        f"{type(value).__name__} {value!r}."
                    )
                items = value
            else:
                items = (value,)
            for v in items:
                try:
                    values[(type(v) is bool, v)] = v
                except TypeError:
                    raise ConfigurationError(
                        f"Record {record.id!r}: facet '{prop}' value {v!r} is not hashable."
                    ) from None
        options.extend(FacetOption(prop, v) for v in values.values())
    return options


def search_facet_options(
    options: Sequence[FacetOption],
    query:   str,
    limit:   int = MAX_SEARCH_RESULTS,
) -> list[FacetOption]:
    """Case-insensitive substring lookup over option values, in option order."""
    needle = query.strip().lower()
    if not needle:
        return []
    hits = [o for o in options if needle in str(o.value).lower()]
    return hits[:limit]


# ══════════════════════════════════════════════════════════════════════════════
# §4  FILTER MATCHING
#
# A match tag is either ALL_MATCH (no filters active) or the tuple of filters
# the record satisfies, in filter-list order.  bool(tag) is True exactly when
# the record counts as a match, so callers can write `if tag:`.
# ══════════════════════════════════════════════════════════════════════════════

class _AllMatch:
    __slots__ = ()

    def __repr__(self) -> str:
        return "ALL_MATCH"


ALL_MATCH = _AllMatch()


@dataclass(frozen=True)
class Filter:
    key:      str
    property: str
    kind:     FacetKind
    value:    Any


def make_filter(
    prop:   str,
    value:  Any,
    schema: Sequence[Mapping[str, str]] = FILTER_CONFIG,
) -> Filter:
    for facet in schema:
        if facet["property"] == prop:
            return Filter(key=f"{prop}:{value}", property=prop,
                          kind=facet["type"], value=value)
    raise UnknownPropertyError(prop)


def _match_array(f: Filter, record: Record) -> bool:
    values = record.properties.get(f.property)
    if values is None:
        return False
    return any(_strict_equal(v, f.value) for v in values)


def _strict_equal(a, b) -> bool:
    # No coercion across types: "2020" != 2020 and True != 1.
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    return type(a) is type(b) and a == b


def _match_scalar(f: Filter, record: Record) -> bool:
    value = record.properties.get(f.property)
    if value is None:
        return False
    return _strict_equal(value, f.value)


_MATCHERS = {
    "array":  _match_array,
    "number": _match_scalar,
    "string": _match_scalar,
}


def compute_matches(
    records: Sequence[Record],
    filters: Sequence[Filter],
) -> dict[Any, Any]:
    """Return {record_id: match_tag} for every record."""
    if not filters:
        return {r.id: ALL_MATCH for r in records}

    matchers = [(f, _MATCHERS[f.kind]) for f in filters]
    return {
        r.id: tuple(f for f, match in matchers if match(f, r))
        for r in records
    }


def filter_colors(filters: Sequence[Filter]) -> dict[str, str]:
    """Colour each distinct filter key, cycling through the palette.

    Keys are numbered by first appearance, so a repeated pick keeps the
    colour it already had.
    """
    colors: dict[str, str] = {}
    for f in filters:
        if f.key not in colors:
            colors[f.key] = CATEGORICAL_COLOR_SCHEME[len(colors) % len(CATEGORICAL_COLOR_SCHEME)]
    return colors


# ══════════════════════════════════════════════════════════════════════════════
# §5  NEIGHBOUR RANKING
#
# Brute-force scan over a dense (n × d) float64 matrix.  Fine for a corpus of
# a few thousand papers.  A spatial index can replace the scan as long as it
# keeps the stable, corpus-order tie-break.
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DistanceEntry:
    record:   Record
    distance: float


@dataclass(eq=False)
class NeighborRanker:
    """Rank the corpus by semantic distance from a selected record.

    Parameters
    ----------
    records : the full corpus, in display order (the tie-break order)
    k       : highlight set size, selection included

    Raises ConfigurationError at construction if ids repeat, a record has no
    semantic embedding, or semantic vectors differ in length.
    """
    records: Sequence[Record]
    k:       int = NEIGHBOR_COUNT
    _index:  dict = field(init=False, repr=False)
    _matrix: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.k < 1:
            raise ConfigurationError(f"Neighbour count must be >= 1, got {self.k}.")

        self._index = {}
        for pos, r in enumerate(self.records):
            if r.id in self._index:
                raise ConfigurationError(f"Duplicate record id: {r.id!r}")
            self._index[r.id] = pos

        dims = set()
        for r in self.records:
            if len(r.embeddings) <= SEMANTIC_EMBEDDING:
                raise ConfigurationError(f"Record {r.id!r} has no semantic embedding.")
            dims.add(len(r.semantic_vector))
        if len(dims) > 1:
            raise ConfigurationError(
                f"Semantic embeddings have mixed dimensionality: {sorted(dims)}"
            )

        n_dims = dims.pop() if dims else 0
        self._matrix = np.array(
            [r.semantic_vector for r in self.records], dtype=np.float64
        ).reshape(len(self.records), n_dims)

    def __contains__(self, record_id) -> bool:
        return record_id in self._index

    def record(self, record_id) -> Record:
        try:
            return self.records[self._index[record_id]]
        except KeyError:
            raise UnknownRecordError(record_id) from None

    def distances(self, record_id) -> np.ndarray:
        """Distance from record_id to every record, in corpus order."""
        if record_id not in self._index:
            raise UnknownRecordError(record_id)
        origin = self._matrix[self._index[record_id]]
        return np.sqrt(np.sum((self._matrix - origin) ** 2, axis=1))

    def rank(self, record_id) -> list[DistanceEntry]:
        dist  = self.distances(record_id)
        order = np.argsort(dist, kind="stable")
        return [DistanceEntry(self.records[i], float(dist[i])) for i in order]

    def highlight(self, record_id) -> frozenset:
        if record_id is None:
            return frozenset()
        return frozenset(e.record.id for e in self.rank(record_id)[:self.k])

    @staticmethod
    def nearest_others(ranking: Sequence[DistanceEntry], record_id) -> list[DistanceEntry]:
        return [e for e in ranking if e.record.id != record_id]


# ══════════════════════════════════════════════════════════════════════════════
# §6  PRESENTATION DATA
#
# Plain tables for whatever draws the plot and the grid.  No charting-library
# configuration here, just the per-marker values it needs.
# ══════════════════════════════════════════════════════════════════════════════

def marker_styles(
    records:   Sequence[Record],
    matches:   Mapping[Any, Any],
    colors:    Mapping[str, str],
    highlight: frozenset,
) -> pd.DataFrame:
    """Per-record marker colour, size and opacity.

    A record matching at least one active filter takes the colour of the first
    filter it matched.  Otherwise highlighted records are a darker grey than
    the rest.  ALL_MATCH carries no filter colour, so with no filters active
    colouring falls through to the highlight rule.
    """
    rows = []
    for r in records:
        tag  = matches.get(r.id, ALL_MATCH)
        lit  = r.id in highlight
        if tag and tag is not ALL_MATCH:
            color = colors[tag[0].key]
        elif lit:
            color = HIGHLIGHT_COLOR
        else:
            color = BACKGROUND_COLOR
        rows.append({
            "id":      r.id,
            "color":   color,
            "size":    HIGHLIGHT_SIZE if lit else BACKGROUND_SIZE,
            "opacity": HIGHLIGHT_OPACITY if lit else BACKGROUND_OPACITY,
        })
    return pd.DataFrame(rows, columns=["id", "color", "size", "opacity"])


def display_frame(records: Sequence[Record]) -> pd.DataFrame:
    """3D display coordinates plus title, one row per record."""
    rows = []
    for r in records:
        if len(r.embeddings) <= DISPLAY_EMBEDDING:
            raise ConfigurationError(f"Record {r.id!r} has no display embedding.")
        x, y, z = r.display_vector[:3]
        rows.append({"id": r.id, "x": x, "y": y, "z": z, "title": r.title})
    return pd.DataFrame(rows, columns=["id", "x", "y", "z", "title"])


def axis_extents(frame: pd.DataFrame) -> dict[str, float]:
    """Largest absolute coordinate per axis, for symmetric axis lines."""
    if frame.empty:
        return {"x": 0.0, "y": 0.0, "z": 0.0}
    return {axis: float(frame[axis].abs().max()) for axis in ("x", "y", "z")}


def neighbor_table(ranking: Sequence[DistanceEntry]) -> pd.DataFrame:
    rows = [
        {"id": e.record.title, "distance": round(e.distance, DISTANCE_DECIMALS)}
        for e in ranking
    ]
    return pd.DataFrame(rows, columns=["id", "distance"])


def corpus_table(records: Sequence[Record]) -> pd.DataFrame:
    return pd.DataFrame({"id": [r.title for r in records]}, columns=["id"])
