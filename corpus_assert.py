#!/usr/bin/env python3
# corpus_assert.py
# ──────────────────────────────────────────────────────────────────────────────
# Paper Space Explorer: corpus health assertions.
#
# Run after build_corpus.py (or whenever a corpus file is swapped in).  Loads
# the corpus and checks the things the explorer assumes at startup, plus a
# few softer signals that usually mean the upstream table was off.
#
# Exit codes
# ──────────
#   0   All checks passed (PASS + WARN only)
#   1   One or more FAIL checks
#
# Usage
# ─────
#   python corpus_assert.py                         # EXPLORER_CORPUS_PATH
#   python corpus_assert.py data/publications.json
#   python corpus_assert.py data/publications.json --strict   # WARN → FAIL
# ──────────────────────────────────────────────────────────────────────────────

import sys
from collections import Counter
from dataclasses import dataclass, field
from itertools import groupby
from typing import Literal, Sequence

import numpy as np

from explorer_utils import (
    CORPUS_PATH,
    DISPLAY_EMBEDDING,
    DOCUMENT_TITLE_FIELD,
    FILTER_CONFIG,
    NEIGHBOR_COUNT,
    SEMANTIC_EMBEDDING,
    ConfigurationError,
    Record,
    build_facet_options,
    load_corpus,
)

# ══════════════════════════════════════════════════════════════════════════════
# THRESHOLDS
# ══════════════════════════════════════════════════════════════════════════════

DISPLAY_DIMENSIONS      = 3
FACET_COVERAGE_WARN     = 0.50  # facet missing on > 50% of records is worth flagging
TITLE_COVERAGE_FAIL     = 0.10  # heading field missing on > 10% of records
EMPTY_TEXT_WARN         = 0.25
DUPLICATE_VECTOR_WARN   = 0.05  # > 5% identical semantic vectors skews tie-breaks


# ══════════════════════════════════════════════════════════════════════════════
# RESULT MODEL
# ══════════════════════════════════════════════════════════════════════════════

Status = Literal["PASS", "WARN", "FAIL"]
ICONS: dict[str, str] = {"PASS": "✓", "WARN": "⚠", "FAIL": "✗"}

@dataclass
class Result:
    status:  Status
    section: str
    message: str


@dataclass
class Checker:
    """Collects results and emits them at the end."""
    results: list[Result] = field(default_factory=list)

    def record(self, status: Status, section: str, message: str) -> None:
        self.results.append(Result(status, section, message))

    def ok(self, section: str, message: str) -> None:
        self.record("PASS", section, message)

    def warn(self, section: str, message: str) -> None:
        self.record("WARN", section, message)

    def fail(self, section: str, message: str) -> None:
        self.record("FAIL", section, message)

    @property
    def tally(self) -> Counter:
        return Counter(r.status for r in self.results)

    def failed(self, strict: bool = False) -> bool:
        t = self.tally
        return t["FAIL"] > 0 or (strict and t["WARN"] > 0)

    def summary(self, strict: bool = False) -> int:
        """Print results grouped by section; 1 if the corpus should not ship."""
        for section, group in groupby(self.results, key=lambda r: r.section):
            print(f"\n  [{section}]")
            for r in group:
                print(f"    {ICONS[r.status]} {r.message}")

        t      = self.tally
        failed = self.failed(strict)
        print(f"\n  {'═'*56}")
        print("  " + "  ".join(f"{s}={t[s]}" for s in ICONS))
        print(f"  Status: {'FAILED' if failed else 'OK'}")
        print(f"  {'═'*56}")
        return int(failed)


# ══════════════════════════════════════════════════════════════════════════════
# SECTION CHECKS
# ══════════════════════════════════════════════════════════════════════════════

def check_records(c: Checker, records: Sequence[Record]) -> None:
    sec = "records"
    n   = len(records)
    if n == 0:
        c.fail(sec, "Corpus is empty.")
        return
    c.ok(sec, f"{n} records loaded.")

    dupes = [rid for rid, k in Counter(r.id for r in records).items() if k > 1]
    if dupes:
        c.fail(sec, f"{len(dupes)} duplicate ids, e.g. {dupes[:3]}")
    else:
        c.ok(sec, "No duplicate ids.")

    if n < NEIGHBOR_COUNT:
        c.warn(sec, f"Only {n} records, so every selection highlights the whole corpus "
                    f"(k={NEIGHBOR_COUNT}).")

    missing_title = sum(1 for r in records if r.properties.get(DOCUMENT_TITLE_FIELD) is None)
    rate = missing_title / n
    if rate > TITLE_COVERAGE_FAIL:
        c.fail(sec, f"'{DOCUMENT_TITLE_FIELD}' missing on {rate:.1%} of records.")
    elif missing_title:
        c.warn(sec, f"'{DOCUMENT_TITLE_FIELD}' missing on {missing_title} record(s).")
    else:
        c.ok(sec, f"'{DOCUMENT_TITLE_FIELD}' present on every record.")

    empty_text = sum(1 for r in records if not r.text.strip()) / n
    if empty_text > EMPTY_TEXT_WARN:
        c.warn(sec, f"{empty_text:.1%} of records have no text.")


def check_embeddings(c: Checker, records: Sequence[Record]) -> None:
    sec = "embeddings"
    if not records:
        return

    no_semantic = [r.id for r in records if len(r.embeddings) <= SEMANTIC_EMBEDDING]
    if no_semantic:
        c.fail(sec, f"{len(no_semantic)} records have no semantic embedding.")
        return

    dims = Counter(len(r.embeddings[SEMANTIC_EMBEDDING]) for r in records)
    if len(dims) > 1:
        c.fail(sec, f"Mixed semantic dimensionality: {dict(dims)}")
        return
    dim = next(iter(dims))
    c.ok(sec, f"Semantic vectors share dimensionality {dim}.")

    matrix = np.array([r.embeddings[SEMANTIC_EMBEDDING] for r in records], dtype=np.float64)
    if not np.isfinite(matrix).all():
        c.fail(sec, "Semantic vectors contain NaN or infinite values.")
        return

    n_unique = len(np.unique(matrix, axis=0))
    dup_rate = 1 - n_unique / len(records)
    if dup_rate > DUPLICATE_VECTOR_WARN:
        c.warn(sec, f"{dup_rate:.1%} of semantic vectors are duplicates.")
    else:
        c.ok(sec, f"{n_unique} distinct semantic vectors.")

    bad_display = [r.id for r in records
                   if len(r.embeddings) <= DISPLAY_EMBEDDING
                   or len(r.embeddings[DISPLAY_EMBEDDING]) < DISPLAY_DIMENSIONS]
    if bad_display:
        c.fail(sec, f"{len(bad_display)} records lack a {DISPLAY_DIMENSIONS}D display vector.")
    else:
        c.ok(sec, f"Every record has a {DISPLAY_DIMENSIONS}D display vector.")


def check_facets(c: Checker, records: Sequence[Record], schema=FILTER_CONFIG) -> None:
    sec = "facets"
    if not records:
        return

    coverage = {}
    for facet in schema:
        prop    = facet["property"]
        present = [r.properties.get(prop) for r in records if r.properties.get(prop) is not None]
        coverage[prop] = len(present) / len(records)

        if facet["type"] == "array":
            wrong = sum(1 for v in present if not isinstance(v, (list, tuple)))
        elif facet["type"] == "number":
            wrong = sum(1 for v in present
                        if isinstance(v, bool) or not isinstance(v, (int, float)))
        else:
            wrong = sum(1 for v in present if not isinstance(v, str))
        if wrong:
            c.fail(sec, f"'{prop}': {wrong} value(s) are not of type {facet['type']}.")

    # The explorer refuses to start on these; report instead of crashing.
    try:
        per_prop = Counter(o.property for o in build_facet_options(records, schema))
    except ConfigurationError as e:
        c.fail(sec, str(e))
        return

    for prop, cov in coverage.items():
        if cov == 0:
            c.warn(sec, f"'{prop}' never appears, facet offers no options.")
        elif 1 - cov > FACET_COVERAGE_WARN:
            c.warn(sec, f"'{prop}' missing on {1 - cov:.1%} of records.")
        else:
            c.ok(sec, f"'{prop}': {per_prop[prop]} options, coverage {cov:.1%}.")


# ══════════════════════════════════════════════════════════════════════════════
# MAIN
# ══════════════════════════════════════════════════════════════════════════════

def run_checks(records: Sequence[Record]) -> Checker:
    c = Checker()
    check_records(c, records)
    check_embeddings(c, records)
    check_facets(c, records)
    return c


def main(argv: Sequence[str] | None = None) -> int:
    argv   = list(sys.argv[1:] if argv is None else argv)
    strict = "--strict" in argv
    paths  = [a for a in argv if not a.startswith("--")]
    path   = paths[0] if paths else CORPUS_PATH

    print("═" * 60)
    print("  Paper Space Explorer: Corpus Assertions")
    print(f"  {path}")
    if strict:
        print("  Mode: STRICT (WARN treated as FAIL)")
    print("═" * 60)

    try:
        records = load_corpus(path)
    except ConfigurationError as e:
        c = Checker()
        c.fail("load", str(e))
        return c.summary(strict=strict)

    return run_checks(records).summary(strict=strict)


if __name__ == "__main__":
    sys.exit(main())
