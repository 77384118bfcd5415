from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .caller import CallerConfig, call_segments, summarize
from .doctor import REQUIRED_MODULES, collect_checks
from .external import ExternalCommandError
from .plotting import plot_diagnostics
from .report import render_report
from .segfile import read_modeled_segments, write_called_segments
from .toy_data import make_toy_data
from .utils import ensure_outdir, parse_bool, write_json
from .validation import validate_config

_DEFAULTS = CallerConfig()


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        # the log file always gets progress messages
        fh.setLevel(min(level, logging.INFO))
        fh.setFormatter(logging.Formatter(log_fmt))
        root = logging.getLogger()
        root.addHandler(fh)
        root.setLevel(min(root.level, logging.INFO))


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _bool_arg(v: str) -> bool:
    try:
        return parse_bool(v)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, ExternalCommandError):
        msg = str(err)
    else:
        msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None and log_path.exists():
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _default_prefix(input_path: str) -> str:
    # tumor.modelFinal.seg -> tumor
    return Path(input_path).name.split(".")[0] or "segments"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="segcall",
        description=(
            "SegCall: calls normal vs. copy-number-event segments from ModelSegments "
            "copy ratio and allele fraction posteriors."
        ),
    )
    p.add_argument("--version", action="version", version=f"segcall {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a small synthetic modelFinal.seg for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--seed", type=int, default=7, help="Random seed for the synthetic segments.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # call
    # -----------------
    c = sub.add_parser(
        "call",
        help="Call normal / not-normal segments from a ModelSegments modelFinal.seg file.",
    )
    c.add_argument(
        "-I", "--input", required=True, type=_path_exists, help="Input modelFinal.seg (.seg/.seg.gz)."
    )
    c.add_argument("-O", "--output", required=True, help="Output directory.")
    c.add_argument(
        "--output-prefix",
        default="",
        help="Prefix of output files (default: input file name up to the first dot).",
    )
    c.add_argument("--output-image-suffix", default=".png", help="Suffix of the genome-wide segment plot.")
    c.add_argument("--output-calls-suffix", default=".called.seg", help="Suffix of the calls file.")
    c.add_argument(
        "--log", type=_bool_arg, default=True, help="Write a log file into <output>/logs (true/false)."
    )
    c.add_argument(
        "--interactive",
        type=_bool_arg,
        default=True,
        help="Also write diagnostic plots and report.html (true/false). Does not change calls.",
    )
    c.add_argument(
        "--interactive-output-calls-image-suffix", default="_classification.png",
        help="Suffix of the per-segment classification plot.",
    )
    c.add_argument(
        "--interactive-output-summary-plot-suffix", default="_summary_plot.png",
        help="Suffix of the summary plot.",
    )
    c.add_argument(
        "--interactive-output-allele-fraction-plot-suffix",
        default="_allele_fraction_CN1_and_CN2_candidate_intervals.png",
        help="Suffix of the allele fraction histograms of the copy-number-1 and -2 candidate peaks.",
    )
    c.add_argument(
        "--interactive-output-copy-ratio-suffix", default="_copy_ratio_fit.png",
        help="Suffix of the copy ratio histogram with fitted peaks.",
    )
    c.add_argument(
        "--interactive-output-copy-ratio-clustering-suffix", default="_copy_ratio_clusters.png",
        help="Suffix of the cluster scatter plot.",
    )

    # Data types
    c.add_argument(
        "--load-copy-ratio", type=_bool_arg, default=_DEFAULTS.load_copy_ratio,
        help="Use copy ratio posteriors (true/false).",
    )
    c.add_argument(
        "--load-allele-fraction", type=_bool_arg, default=_DEFAULTS.load_allele_fraction,
        help="Use minor allele fraction posteriors (true/false).",
    )

    # Normal peak thresholds
    c.add_argument(
        "--normal-minor-allele-fraction-threshold",
        type=float,
        default=_DEFAULTS.normal_minor_allele_fraction_threshold,
        help="Lower edge of the balanced allele fraction band (0-0.5).",
    )
    c.add_argument(
        "--copy-ratio-peak-min-weight",
        type=float,
        default=_DEFAULTS.copy_ratio_peak_min_weight,
        help="Peaks with smaller mixture weight are ignored (0-1).",
    )
    c.add_argument(
        "--min-fraction-of-points-in-normal-allele-fraction-region",
        type=float,
        default=_DEFAULTS.min_fraction_of_points_in_normal_allele_fraction_region,
        help="Fraction of a peak's points that must lie above the allele fraction threshold (0-1).",
    )
    c.add_argument(
        "--min-weight-first-cr-peak-cr-data-only",
        type=float,
        default=_DEFAULTS.min_weight_first_cr_peak_cr_data_only,
        help="First copy ratio peak is normal if its weight exceeds this (0-1).",
    )
    c.add_argument(
        "--min-weight-second-cr-peak",
        type=float,
        default=_DEFAULTS.min_weight_second_cr_peak,
        help="First peak is also normal if the second peak weighs less than this (0-1).",
    )
    c.add_argument(
        "--zero-copy-ratio-threshold",
        type=float,
        default=_DEFAULTS.zero_copy_ratio_threshold,
        help="Peaks at or below this copy ratio are treated as homozygous deletions.",
    )

    # Classification / fitting
    c.add_argument(
        "--classification-confidence",
        type=float,
        default=_DEFAULTS.classification_confidence,
        help="Chi-square quantile for a segment to count as consistent with the normal peak.",
    )
    c.add_argument(
        "--normal-range-sd",
        type=float,
        default=_DEFAULTS.normal_range_sd,
        help="Half-width of the reported normal copy ratio range, in peak standard deviations.",
    )
    c.add_argument(
        "--peak-merge-sd",
        type=float,
        default=_DEFAULTS.peak_merge_sd,
        help="Merge mixture components whose mean +/- this many standard deviations overlap (0 disables).",
    )
    c.add_argument(
        "--max-components", type=int, default=_DEFAULTS.max_components,
        help="Maximum number of mixture components.",
    )
    c.add_argument(
        "--max-sampled-points", type=int, default=_DEFAULTS.max_sampled_points,
        help="Cap on the number of points sampled across all segments.",
    )
    c.add_argument(
        "--min-points", type=int, default=_DEFAULTS.min_points,
        help="Minimum number of sampled points required to fit peaks.",
    )
    c.add_argument("--seed", type=int, default=_DEFAULTS.seed, help="Random seed.")

    c.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    c.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # doctor
    # -----------------
    d = sub.add_parser(
        "doctor",
        help="Check that the Python packages needed by the caller are importable.",
    )
    d.add_argument("--dry-run", action="store_true", help="Print checks without exiting nonzero.")
    d.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "SegCall quickstart (copy/paste):",
        "",
        "1) Copy ratio + allele fraction (default):",
        "   segcall call \\",
        "     --input tumor.modelFinal.seg \\",
        "     --output results/ \\",
        "     --output-prefix tumor",
        "   Outputs: results/tumor.called.seg, results/summary.json, report.html and plots",
        "",
        "2) Copy ratio only, without diagnostics:",
        "   segcall call \\",
        "     --input tumor.modelFinal.seg \\",
        "     --output results_cr/ \\",
        "     --load-allele-fraction false \\",
        "     --interactive false",
        "   Outputs: results_cr/<prefix>.called.seg and summary.json only",
        "",
        "3) Try it on synthetic data:",
        "   segcall make-toy-data --outdir toy/",
        "   segcall call --input toy/toy.modelFinal.seg --output toy/calls/",
        "",
        "Tip: use --dry-run to validate inputs and options without writing anything.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir, seed=int(args.seed))
    print(json.dumps(summary, indent=2))
    return 0


def _config_from_args(args: argparse.Namespace) -> CallerConfig:
    return CallerConfig(
        load_copy_ratio=bool(args.load_copy_ratio),
        load_allele_fraction=bool(args.load_allele_fraction),
        normal_minor_allele_fraction_threshold=float(args.normal_minor_allele_fraction_threshold),
        copy_ratio_peak_min_weight=float(args.copy_ratio_peak_min_weight),
        min_fraction_of_points_in_normal_allele_fraction_region=float(
            args.min_fraction_of_points_in_normal_allele_fraction_region
        ),
        min_weight_first_cr_peak_cr_data_only=float(args.min_weight_first_cr_peak_cr_data_only),
        min_weight_second_cr_peak=float(args.min_weight_second_cr_peak),
        zero_copy_ratio_threshold=float(args.zero_copy_ratio_threshold),
        classification_confidence=float(args.classification_confidence),
        normal_range_sd=float(args.normal_range_sd),
        peak_merge_sd=float(args.peak_merge_sd),
        max_components=int(args.max_components),
        max_sampled_points=int(args.max_sampled_points),
        min_points=int(args.min_points),
        seed=int(args.seed),
    )


def _image_suffixes(args: argparse.Namespace) -> dict:
    return {
        "segments": args.output_image_suffix,
        "classification": args.interactive_output_calls_image_suffix,
        "summary": args.interactive_output_summary_plot_suffix,
        "allele_fraction_candidates": args.interactive_output_allele_fraction_plot_suffix,
        "copy_ratio_fit": args.interactive_output_copy_ratio_suffix,
        "clusters": args.interactive_output_copy_ratio_clustering_suffix,
    }


def cmd_call(args: argparse.Namespace) -> int:
    outdir = Path(args.output).expanduser().resolve()
    log_path = _log_path(outdir, "call.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run or not args.log else log_path)

    logger = logging.getLogger("segcall")
    logger.info("segcall %s", __version__)

    try:
        config = _config_from_args(args)
        validate_config(config)

        prefix = args.output_prefix or _default_prefix(args.input)
        calls_path = outdir / f"{prefix}{args.output_calls_suffix}"

        table = read_modeled_segments(args.input)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Segments: {len(table.segments)}")
            print(f"Mode: {config.mode}")
            print("Planned outputs:")
            print(f"  calls -> {calls_path}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if args.interactive:
                print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        outdir = ensure_outdir(outdir)

        if args.resume and calls_path.exists() and (outdir / "summary.json").exists():
            logger.info("Resume enabled: %s already exists", calls_path)
            print(str(calls_path))
            return 0

        result = call_segments(table.segments, config, progress=args.verbose > 0)
        write_called_segments(calls_path, table, result.classifications)

        summary = summarize(result, config)
        summary["input"] = str(args.input)
        summary["calls"] = str(calls_path)
        write_json(outdir / "summary.json", summary)

        if args.interactive:
            plots = plot_diagnostics(
                result=result,
                outdir=outdir,
                prefix=prefix,
                suffixes=_image_suffixes(args),
                allele_fraction_threshold=config.normal_minor_allele_fraction_threshold,
            )
            report_path = render_report(
                outdir=outdir,
                version=__version__,
                summary=summary,
                input_path=str(args.input),
                calls_path=calls_path.name,
                plots=plots,
            )
            logger.info("Report written: %s", report_path)

        logger.info("Copy number calling task complete.")
        print(str(calls_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None if args.dry_run or not args.log else log_path)


def cmd_doctor(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    checks = collect_checks()

    lines = []
    ok_required = True
    for name, r in checks.items():
        status = "OK" if r.ok else "MISSING"
        lines.append(f"{name:10s} : {status:7s}  {r.detail}")
        if not r.ok and name in REQUIRED_MODULES:
            ok_required = False

    print("\n".join(lines))

    for name, r in checks.items():
        if not r.ok and r.howto:
            print("\n---")
            print(f"How to install/fix '{name}':")
            print(r.howto)

    if args.dry_run:
        return 0
    return 0 if ok_required else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "call":
        return cmd_call(args)
    if args.cmd == "doctor":
        return cmd_doctor(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
