import json

from autoapply.scripts import evaluate, run_daily_batch


def test_dry_run_batch(capsys):
    exit_code = run_daily_batch.main(["--dry-run", "--candidates", "6", "--jobs", "20", "--page-size", "4"])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "Matching Run Summary" in out
    assert "- Candidates Evaluated: 6" in out


def test_batch_rejects_bad_page_size():
    assert run_daily_batch.main(["--dry-run", "--page-size", "0"]) == 2


def test_evaluate_writes_report(tmp_path, capsys):
    output = tmp_path / "report.json"

    exit_code = evaluate.main(["--candidates", "8", "--jobs", "25", "--seed", "1", "--output", str(output)])

    report = json.loads(output.read_text())
    assert exit_code in (0, 1)
    assert exit_code == (0 if all(report["summary"]["meets_targets"].values()) else 1)
    assert set(report["results"]) == {"hybrid", "keyword", "semantic", "random"}
    assert "Evaluation Results Summary" in capsys.readouterr().out


def test_evaluate_rejects_bad_counts():
    assert evaluate.main(["--candidates", "0"]) == 2
