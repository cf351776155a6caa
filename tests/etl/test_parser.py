import pytest

from jobnet.etl.errors import GraphSyntaxError, MissingSubsystemError
from jobnet.etl.parser import Parser
from jobnet.etl.reference import JobNetRef, JobRef


def edges(text, subsystem="dwh"):
    parser = Parser(JobNetRef(subsystem, "main"), "main.jobnet")
    return [(str(src), str(dest)) for src, dest in parser.each_edge(text.splitlines())]


def test_first_bare_line_starts_from_jobnet_start():
    assert edges("extract") == [("dwh/@main@start", "dwh/extract")]


def test_bare_lines_chain_from_previous_destination():
    assert edges("extract\ntransform\nload") == [
        ("dwh/@main@start", "dwh/extract"),
        ("dwh/extract", "dwh/transform"),
        ("dwh/transform", "dwh/load"),
    ]


def test_arrow_without_source_uses_previous_destination():
    assert edges("extract\n-> transform\n-> load") == [
        ("dwh/@main@start", "dwh/extract"),
        ("dwh/extract", "dwh/transform"),
        ("dwh/transform", "dwh/load"),
    ]


def test_explicit_edges():
    assert edges("a -> b\nc->b") == [("dwh/a", "dwh/b"), ("dwh/c", "dwh/b")]


def test_comments_and_blank_lines_are_ignored():
    text = "# daily load\n\na -> b   # after a\n   \n"
    assert edges(text) == [("dwh/a", "dwh/b")]


def test_subsystem_and_jobnet_refs():
    assert edges("mart/a -> *mart/daily") == [("mart/a", "*mart/daily")]


def test_edge_refs_carry_location():
    parser = Parser(JobNetRef("dwh", "main"), "main.jobnet")
    (_, dest), = list(parser.each_edge(["", "a -> b"]))
    assert dest == JobRef("dwh", "b")
    assert str(dest.location) == "main.jobnet:2"


def test_leading_arrow_is_a_syntax_error():
    with pytest.raises(GraphSyntaxError, match="must follow any job"):
        edges("-> a")


def test_bad_line_reports_location():
    with pytest.raises(GraphSyntaxError) as excinfo:
        edges("a -> b\na => c")
    assert str(excinfo.value.location) == "main.jobnet:2"


def test_missing_subsystem():
    with pytest.raises(MissingSubsystemError):
        edges("a -> b", subsystem=None)
