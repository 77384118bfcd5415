import json
import subprocess
import sys
from pathlib import Path

from segcall.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "segcall"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def _read_calls(path: Path) -> list[dict]:
    lines = [ln for ln in path.read_text().splitlines() if ln and not ln.startswith("@")]
    columns = lines[0].split("\t")
    return [dict(zip(columns, ln.split("\t"))) for ln in lines[1:]]


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "segcall call" in cp.stdout
    assert "segcall make-toy-data" in cp.stdout


def test_call_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "calls"
    cp = _run_cli(["call", "--input", toy["segments"], "--output", str(outdir), "--dry-run"])
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert "toy.called.seg" in cp.stdout
    assert not outdir.exists()


def test_make_toy_data_and_call(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0

    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "call",
            "-I",
            str(toy_dir / "toy.modelFinal.seg"),
            "-O",
            str(outdir),
            "--output-prefix",
            "tumor",
            "--max-components",
            "4",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    calls_path = outdir / "tumor.called.seg"
    assert cp.stdout.strip() == str(calls_path)
    assert (outdir / "logs" / "call.log").exists()

    rows = _read_calls(calls_path)
    assert len(rows) == 48
    assert {r["CALL"] for r in rows} <= {"NORMAL", "NOT_NORMAL", "INDETERMINATE"}
    assert any(r["CALL"] == "NORMAL" for r in rows)
    assert calls_path.read_text().startswith("@HD")

    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["mode"] == "joint"
    assert summary["counts"]["segments_total"] == 48
    assert summary["normal_peak"] is not None
    lo, hi = summary["copy_ratio_reference_range"]
    assert lo < hi

    # diagnostics are on by default
    assert (outdir / "report.html").exists()
    for suffix in (
        ".png",
        "_classification.png",
        "_summary_plot.png",
        "_allele_fraction_CN1_and_CN2_candidate_intervals.png",
        "_copy_ratio_fit.png",
        "_copy_ratio_clusters.png",
    ):
        assert (outdir / f"tumor{suffix}").exists(), suffix
    assert "tumor_summary_plot.png" in (outdir / "report.html").read_text()


def test_interactive_false_skips_diagnostics(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    cp = _run_cli(
        ["call", "--input", toy["segments"], "--output", str(outdir), "--interactive", "false"]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "toy.called.seg").exists()
    assert not (outdir / "report.html").exists()
    assert list(outdir.glob("*.png")) == []


def test_interactive_writes_report_and_plots(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "call",
            "--input",
            toy["segments"],
            "--output",
            str(outdir),
            "--load-allele-fraction",
            "false",
            "--interactive",
            "true",
            "--log",
            "false",
            "--max-components",
            "4",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "toy.called.seg").exists()
    assert (outdir / "toy.png").exists()
    assert (outdir / "toy_copy_ratio_fit.png").exists()
    assert (outdir / "toy_copy_ratio_clusters.png").exists()
    assert (outdir / "toy_classification.png").exists()
    assert (outdir / "toy_summary_plot.png").exists()
    # the candidate histograms need allele fractions
    assert not (outdir / "toy_allele_fraction_CN1_and_CN2_candidate_intervals.png").exists()
    assert not (outdir / "logs").exists()

    html = (outdir / "report.html").read_text()
    assert "toy.called.seg" in html

    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["mode"] == "copy_ratio"


def test_out_of_range_threshold_is_reported(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "call",
            "--input",
            toy["segments"],
            "--output",
            str(outdir),
            "--normal-minor-allele-fraction-threshold",
            "0.7",
        ]
    )
    assert cp.returncode == 2
    assert "ConfigurationError" in cp.stderr
    assert "normal_minor_allele_fraction_threshold" in cp.stderr
    assert not (outdir / "toy.called.seg").exists()


def test_no_data_type_loaded_is_rejected(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "call",
            "--input",
            toy["segments"],
            "--output",
            str(tmp_path / "out"),
            "--load-copy-ratio",
            "false",
            "--load-allele-fraction",
            "false",
        ]
    )
    assert cp.returncode == 2
    assert "load_copy_ratio" in cp.stderr


def test_malformed_input_is_reported(tmp_path: Path) -> None:
    bad = tmp_path / "bad.seg"
    bad.write_text("CONTIG\tSTART\tEND\nchr1\t1\t100\n")
    cp = _run_cli(["call", "--input", str(bad), "--output", str(tmp_path / "out")])
    assert cp.returncode == 2
    assert "DataError" in cp.stderr
    assert "NUM_POINTS_COPY_RATIO" in cp.stderr


def test_bad_boolean_flag_is_rejected(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        ["call", "--input", toy["segments"], "--output", str(tmp_path / "out"), "--interactive", "maybe"]
    )
    assert cp.returncode == 2
    assert "Not a boolean" in cp.stderr


def test_doctor_lists_modules() -> None:
    cp = _run_cli(["doctor", "--dry-run"])
    assert cp.returncode == 0
    assert "numpy" in cp.stdout
    assert "sklearn" in cp.stdout
