import sys
from pathlib import Path

import pytest

from segcall.caller import CallerConfig
from segcall.external import (
    ExternalCommandError,
    build_caller_command,
    run_command,
    run_segment_caller,
)
from segcall.toy_data import make_toy_data


def test_build_caller_command_spells_out_config(tmp_path: Path) -> None:
    cmd = build_caller_command(
        input_path=tmp_path / "in.seg",
        outdir=tmp_path / "out",
        config=CallerConfig(load_allele_fraction=False, seed=5),
        output_prefix="tumor",
        python="python3",
    )
    assert cmd[:4] == ["python3", "-m", "segcall", "call"]

    def value(flag: str) -> str:
        return cmd[cmd.index(flag) + 1]

    assert value("--output-prefix") == "tumor"
    assert value("--interactive") == "true"
    assert value("--peak-merge-sd") == "2.0"
    assert value("--load-allele-fraction") == "false"
    assert value("--load-copy-ratio") == "true"
    assert value("--seed") == "5"
    assert value("--normal-minor-allele-fraction-threshold") == "0.475"


def test_run_command_failure_raises() -> None:
    with pytest.raises(ExternalCommandError) as excinfo:
        run_command([sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"])
    assert excinfo.value.returncode == 3
    assert "boom" in str(excinfo.value)


def test_run_segment_caller_propagates_failure(tmp_path: Path) -> None:
    with pytest.raises(ExternalCommandError) as excinfo:
        run_segment_caller(input_path=tmp_path / "missing.seg", outdir=tmp_path / "out")
    assert excinfo.value.returncode == 2


def test_run_segment_caller(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = run_segment_caller(
        input_path=toy["segments"],
        outdir=tmp_path / "out",
        config=CallerConfig(max_components=4),
        output_prefix="toy",
    )
    assert cp.returncode == 0
    assert (tmp_path / "out" / "toy.called.seg").exists()
