# conftest.py
# Shared fixtures for the explorer tests.

import json
import sys
from pathlib import Path

import pytest

# add project root to sys.path
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from explorer_utils import Record  # noqa: E402


def make_record(rid, semantic, display=(0.0, 0.0, 0.0), text="", **properties):
    return Record(
        id=rid,
        properties=properties,
        text=text,
        embeddings=(tuple(float(x) for x in semantic), tuple(float(x) for x in display)),
    )


@pytest.fixture
def papers():
    """Five small papers on a line, plus facets of every kind."""
    return [
        make_record("p1", [0, 0], (1, 0, 0), "alpha text", paperKey="Smith 2019",
                    authors=["Smith", "Jones"], keywords=["cancer"], year=2019,
                    firstAuthor="Smith"),
        make_record("p2", [1, 0], (0, 2, 0), "beta text", paperKey="Jones 2020",
                    authors=["Jones"], keywords=["cancer", "genomics"], year=2020,
                    firstAuthor="Jones"),
        make_record("p3", [3, 0], (0, 0, -3), "gamma text", paperKey="Lee 2020",
                    authors=["Lee", "Smith"], keywords=["genomics"], year=2020,
                    firstAuthor="Lee"),
        make_record("p4", [6, 0], (-4, 0, 0), "delta text", paperKey="Kim 2021",
                    authors=["Kim"], keywords=None, year=2021, firstAuthor="Kim"),
        make_record("p5", [10, 0], (0, 1, 1), "", paperKey="Park 2021",
                    authors=[], year=2021, firstAuthor="Park"),
    ]


@pytest.fixture
def corpus_json(tmp_path, papers):
    """The papers fixture written out in wire format."""
    rows = [{
        "id": r.id,
        "properties": dict(r.properties),
        "text": r.text,
        "embeddings": [{"vector": list(v)} for v in r.embeddings],
    } for r in papers]
    path = tmp_path / "corpus.json"
    path.write_text(json.dumps(rows))
    return str(path)
