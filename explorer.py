#!/usr/bin/env python3
# explorer.py
# ──────────────────────────────────────────────────────────────────────────────
# Paper Space Explorer: headless application layer.
#
# Wires one State to the filter matcher and the neighbour ranker:
#
#   filters   ─▶ compute_matches + filter_colors ─▶ marker styles
#   selection ─▶ NeighborRanker.rank ─▶ highlight (state) + neighbour table
#   highlight ─▶ marker styles
#
# Whatever renders the plot / table / search box reads the attributes below
# after each change, or subscribes to the same State properties.  Setting
# "selection" to an unknown id on the State directly rolls it back and raises
# UnknownRecordError, same as Explorer.select.
#
# Run standalone:
#   python explorer.py data/publications.json --filter year:2020 --select p42
# ──────────────────────────────────────────────────────────────────────────────

import argparse
import sys
from typing import Any, Mapping, Sequence

import pandas as pd

from explorer_state import State
from explorer_utils import (
    CORPUS_PATH,
    DEDUPE_FILTERS,
    FILTER_CONFIG,
    NEIGHBOR_COUNT,
    Filter,
    NeighborRanker,
    Record,
    UnknownRecordError,
    axis_extents,
    build_facet_options,
    compute_matches,
    corpus_table,
    display_frame,
    filter_colors,
    load_corpus,
    make_filter,
    marker_styles,
    neighbor_table,
    search_facet_options,
)


class Explorer:
    """Reactive view model over a memory-resident corpus."""

    def __init__(
        self,
        records:        Sequence[Record],
        state:          State | None = None,
        schema:         Sequence[Mapping[str, str]] = FILTER_CONFIG,
        k:              int = NEIGHBOR_COUNT,
        dedupe_filters: bool = DEDUPE_FILTERS,
    ):
        self.records        = list(records)
        self.schema         = list(schema)
        self.dedupe_filters = dedupe_filters

        # Fails here, before any state exists, on a bad corpus.
        self.ranker        = NeighborRanker(self.records, k=k)
        self.facet_options = build_facet_options(self.records, self.schema)

        self.state = state if state is not None else State()
        self.state.define_property("selection", None)
        self.state.define_property("filters", [])
        self.state.define_property("highlight", frozenset())

        self.matches       = compute_matches(self.records, [])
        self.filter_colors: dict[str, str] = {}
        self.ranking       = []
        self._selected     = None
        self.neighbors     = corpus_table(self.records)
        self.document      = None
        self.markers       = self._restyle()

        self.state.subscribe("filters", self._listen_filters)
        self.state.subscribe("selection", self._listen_selection)
        self.state.subscribe("highlight", self._listen_highlight)

    # ── State shortcuts ──────────────────────────────────────────────────────

    @property
    def filters(self) -> list[Filter]:
        return self.state.get("filters")

    @property
    def selection(self) -> Any:
        return self.state.get("selection")

    @property
    def highlight(self) -> frozenset:
        return self.state.get("highlight")

    @property
    def can_reset(self) -> bool:
        return len(self.filters) > 0 or self.selection is not None

    # ── User actions ─────────────────────────────────────────────────────────

    def add_filter(self, prop: str, value: Any) -> Filter:
        """Append a facet pick to the active filter list and notify."""
        f = make_filter(prop, value, self.schema)
        if self.dedupe_filters and any(a.key == f.key for a in self.filters):
            return f
        self.filters.append(f)
        self.state.trigger("filters")
        return f

    def select(self, record_id: Any) -> None:
        """Select a record. An unknown id raises before any state changes."""
        if record_id is None:
            self.clear_selection()
            return
        if record_id not in self.ranker:
            raise UnknownRecordError(record_id)
        self.state.set("selection", record_id)

    def clear_selection(self) -> None:
        self.state.set("selection", None)

    def reset(self) -> None:
        self.state.set("filters", [])
        self.state.set("selection", None)

    def search(self, query: str) -> list:
        return search_facet_options(self.facet_options, query)

    # ── Listeners ────────────────────────────────────────────────────────────

    def _listen_filters(self) -> None:
        filters            = self.filters
        self.filter_colors = filter_colors(filters)
        self.matches       = compute_matches(self.records, filters)
        self.markers       = self._restyle()

    def _listen_selection(self) -> None:
        selected = self.selection
        if selected is not None and selected not in self.ranker:
            # Set on the store directly with a stale id: put the last good
            # selection back, then report.
            self.state.set("selection", self._selected)
            raise UnknownRecordError(selected)
        self._selected = selected
        if selected is not None:
            row           = self.ranker.record(selected)
            self.document = {"heading": row.title, "text": row.text}
            self.ranking  = self.ranker.rank(selected)
            self.neighbors = neighbor_table(
                NeighborRanker.nearest_others(self.ranking, selected)
            )
            self.state.set("highlight", frozenset(
                e.record.id for e in self.ranking[:self.ranker.k]
            ))
        else:
            self.document  = None
            self.ranking   = []
            self.neighbors = corpus_table(self.records)
            self.state.set("highlight", frozenset())

    def _listen_highlight(self) -> None:
        self.markers = self._restyle()

    def _restyle(self) -> pd.DataFrame:
        return marker_styles(
            self.records, self.matches, self.filter_colors, self.state.get("highlight"),
        )

    # ── Read-only views ──────────────────────────────────────────────────────

    def display_frame(self) -> pd.DataFrame:
        return display_frame(self.records)

    def axis_extents(self) -> dict[str, float]:
        return axis_extents(self.display_frame())

    def match_counts(self) -> dict[str, int]:
        """Records matching each active filter key, in filter order."""
        counts = {f.key: 0 for f in self.filters}
        for tag in self.matches.values():
            if not isinstance(tag, tuple):
                continue
            for f in {m.key for m in tag}:
                counts[f] += 1
        return counts


# ══════════════════════════════════════════════════════════════════════════════
# MAIN
# ══════════════════════════════════════════════════════════════════════════════

def _parse_filter(raw: str, schema: Sequence[Mapping[str, str]]) -> tuple[str, Any]:
    """'year:2020' → ('year', 2020); numeric facets get an int/float value."""
    prop, sep, value = raw.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"Filter must look like property:value, got {raw!r}")
    kinds = {f["property"]: f["type"] for f in schema}
    if kinds.get(prop) == "number":
        try:
            return prop, int(value)
        except ValueError:
            return prop, float(value)
    return prop, value


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Explore a publication corpus from the terminal.")
    p.add_argument("corpus", nargs="?", default=CORPUS_PATH,
                   help=f"corpus .json or .parquet (default {CORPUS_PATH})")
    p.add_argument("--filter", action="append", default=[], metavar="PROPERTY:VALUE",
                   help="facet filter; repeat for several")
    p.add_argument("--select", metavar="ID", help="record id to rank neighbours for")
    p.add_argument("--k", type=int, default=NEIGHBOR_COUNT,
                   help=f"highlight set size (default {NEIGHBOR_COUNT})")
    p.add_argument("--dedupe", action="store_true", default=DEDUPE_FILTERS,
                   help="ignore repeated picks of the same filter")
    p.add_argument("--top", type=int, default=10, help="neighbour rows to print")
    return p


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    print("═" * 60)
    print("  Paper Space Explorer")
    print(f"  corpus={args.corpus}  k={args.k}  dedupe={args.dedupe}")
    print("═" * 60)

    print("\n▶  Loading corpus...")
    records  = load_corpus(args.corpus)
    explorer = Explorer(records, k=args.k, dedupe_filters=args.dedupe)

    by_prop: dict[str, int] = {}
    for o in explorer.facet_options:
        by_prop[o.property] = by_prop.get(o.property, 0) + 1
    for prop, n in by_prop.items():
        print(f"  Facet {prop:<12} {n} values")

    if args.filter:
        print("\n▶  Applying filters...")
        for raw in args.filter:
            prop, value = _parse_filter(raw, explorer.schema)
            explorer.add_filter(prop, value)
        for key, n in explorer.match_counts().items():
            print(f"  {key:<40} {n} records  ({explorer.filter_colors[key]})")
        n_match = sum(1 for tag in explorer.matches.values() if tag)
        print(f"  {n_match}/{len(records)} records match at least one filter.")

    if args.select is not None:
        print("\n▶  Ranking neighbours...")
        selection = args.select
        # ids in JSON are often ints; accept either spelling on the command line
        if selection not in explorer.ranker and selection.isdigit():
            selection = int(selection)
        try:
            explorer.select(selection)
        except UnknownRecordError:
            print(f"  No record with id {args.select!r}.")
            return 1
        print(f"  Selected: {explorer.document['heading']}")
        print(f"  Highlight set: {len(explorer.highlight)} records.")
        print(explorer.neighbors.head(args.top).to_string(index=False))

    print("\n✓  Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
