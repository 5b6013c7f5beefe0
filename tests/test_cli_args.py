from __future__ import annotations

import pytest

from ragqa.persistence.db import get_connection
from ragqa.persistence.repository import list_test_runs_for_tenant
from run import config_overrides, parse_args, run


def test_tenant_run_with_config_flags():
    args = parse_args([
        "--tenant", "acme",
        "--min-questions", "20",
        "--categories", "retrieval", "citation",
        "--languages", "nl", "en",
        "--strictness", "lenient",
    ])
    assert args.tenant == "acme"
    assert config_overrides(args) == {
        "min_questions": 20,
        "questions_per_document": None,
        "categories": ["retrieval", "citation"],
        "languages": ["nl", "en"],
        "strictness": "lenient",
    }


def test_defaults_leave_config_to_qa_toml():
    args = parse_args(["--tenant", "acme"])
    assert set(config_overrides(args).values()) == {None}
    assert args.create_only is False
    assert args.show_questions is False


def test_report_reads_sys_argv(monkeypatch):
    monkeypatch.setattr("sys.argv", ["run.py", "--report", "run-1", "--show-questions"])
    args = parse_args()
    assert args.report == "run-1"
    assert args.show_questions is True
    assert args.tenant is None


def test_action_required():
    with pytest.raises(SystemExit):
        parse_args([])


def test_actions_mutually_exclusive():
    with pytest.raises(SystemExit):
        parse_args(["--tenant", "acme", "--report", "run-1"])


def test_unknown_category_rejected():
    with pytest.raises(SystemExit):
        parse_args(["--tenant", "acme", "--categories", "vibes"])


@pytest.mark.asyncio
async def test_create_only_plans_pending_run(tmp_path):
    db = str(tmp_path / "cli.db")
    code = await run(["--tenant", "acme", "--min-questions", "5", "--create-only", "--db", db])

    assert code == 0
    conn = get_connection(db)
    try:
        runs = list_test_runs_for_tenant(conn, "acme")
    finally:
        conn.close()
    assert len(runs) == 1
    assert runs[0].status == "pending"
    assert runs[0].total_questions == 5


@pytest.mark.asyncio
async def test_report_of_unknown_run_fails(tmp_path):
    assert await run(["--report", "missing", "--db", str(tmp_path / "cli.db")]) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "action",
    [["--list", "acme"], ["--progress", "missing"], ["--report", "missing"]],
)
async def test_read_only_actions_build_no_llm_client(monkeypatch, tmp_path, action):
    def no_client(*args, **kwargs):  # noqa: ANN002, ANN003
        raise AssertionError("answer generator built for a read-only action")

    monkeypatch.setattr("run.LLMAnswerGenerator", no_client)
    await run([*action, "--db", str(tmp_path / "cli.db")])


@pytest.mark.asyncio
async def test_create_only_builds_no_llm_client(monkeypatch, tmp_path):
    def no_client(*args, **kwargs):  # noqa: ANN002, ANN003
        raise AssertionError("answer generator built without running a test")

    monkeypatch.setattr("run.LLMAnswerGenerator", no_client)
    code = await run(["--tenant", "acme", "--create-only", "--db", str(tmp_path / "cli.db")])
    assert code == 0
