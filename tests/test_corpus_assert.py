import json

from conftest import make_record
from corpus_assert import (
    Checker,
    check_embeddings,
    check_facets,
    check_records,
    main,
    run_checks,
)
from explorer_utils import Record


def _statuses(c: Checker, section: str) -> list[str]:
    return [r.status for r in c.results if r.section == section]


def test_checker_summary_exit_codes(capsys):
    c = Checker()
    c.ok("s", "fine")
    c.warn("s", "hmm")
    assert c.summary() == 0
    assert c.summary(strict=True) == 1
    c.fail("s", "broken")
    assert c.summary() == 1
    out = capsys.readouterr().out
    assert "PASS=1  WARN=1  FAIL=1" in out


def test_healthy_fixture_has_no_failures(papers):
    c = run_checks(papers)
    assert c.tally["FAIL"] == 0
    assert not c.failed(strict=False)


def test_empty_corpus_fails():
    c = Checker()
    check_records(c, [])
    assert _statuses(c, "records") == ["FAIL"]


def test_duplicate_ids_fail(papers):
    c = Checker()
    check_records(c, papers + [papers[0]])
    assert "FAIL" in _statuses(c, "records")


def test_missing_titles_fail():
    records = [make_record(i, [0]) for i in range(20)]
    c = Checker()
    check_records(c, records)
    assert "FAIL" in _statuses(c, "records")


def test_mixed_dimensionality_fails():
    records = [make_record(1, [0, 0]), make_record(2, [0, 0, 0])]
    c = Checker()
    check_embeddings(c, records)
    assert _statuses(c, "embeddings") == ["FAIL"]


def test_nan_vectors_fail():
    records = [make_record(1, [0, float("nan")]), make_record(2, [0, 1])]
    c = Checker()
    check_embeddings(c, records)
    assert _statuses(c, "embeddings")[-1] == "FAIL"


def test_missing_display_vector_fails():
    records = [Record(id=1, properties={}, text="", embeddings=((0.0, 1.0),))]
    c = Checker()
    check_embeddings(c, records)
    assert "FAIL" in _statuses(c, "embeddings")


def test_duplicate_vectors_warn():
    records = [make_record(i, [1, 1]) for i in range(5)]
    c = Checker()
    check_embeddings(c, records)
    assert "WARN" in _statuses(c, "embeddings")


def test_wrong_facet_type_fails():
    records = [make_record(1, [0], authors="Smith", year="2020")]
    c = Checker()
    check_facets(c, records)
    fails = [r.message for r in c.results if r.status == "FAIL"]
    assert any("'authors'" in m for m in fails)
    assert any("'year'" in m for m in fails)


def test_main_on_file(corpus_json, capsys):
    assert main([corpus_json]) == 0
    out = capsys.readouterr().out
    assert "Status: OK" in out


def test_main_strict_turns_warnings_into_failure(corpus_json):
    # five records < NEIGHBOR_COUNT always warns
    assert main([corpus_json, "--strict"]) == 1


def test_main_unreadable_file(tmp_path, capsys):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"not": "a list"}))
    assert main([str(path)]) == 1
    assert "FAIL=1" in capsys.readouterr().out


def test_unbuildable_facets_fail_instead_of_raising():
    records = [make_record("p9", [0], authors=5)]
    c = Checker()
    check_facets(c, records)
    fails = [r.message for r in c.results if r.status == "FAIL"]
    assert any("'p9'" in m and "'authors'" in m for m in fails)


def test_main_on_corpus_with_scalar_array_facet(tmp_path, capsys):
    rows = [{
        "id": "p9",
        "properties": {"paperKey": "X 2020", "authors": 5},
        "text": "x",
        "embeddings": [{"vector": [0.0, 1.0]}, {"vector": [0.0, 0.0, 0.0]}],
    }]
    path = tmp_path / "corpus.json"
    path.write_text(json.dumps(rows))
    assert main([str(path)]) == 1
    assert "Status: FAILED" in capsys.readouterr().out


def test_summary_groups_results_by_section(capsys):
    c = Checker()
    c.ok("a", "one")
    c.ok("a", "two")
    c.fail("b", "three")
    assert c.tally == {"PASS": 2, "FAIL": 1}
    assert c.summary() == 1
    out = capsys.readouterr().out
    assert out.count("[a]") == 1 and out.count("[b]") == 1
    assert "PASS=2  WARN=0  FAIL=1" in out
