from __future__ import annotations

import argparse
import logging
from pathlib import Path

from camisp.calib.model import CalibrationFlags, SolverCriteria
from camisp.calib.pattern import parse_pattern_size
from camisp.calib.session import CalibrationSession
from camisp.calib.store import load_calibration
from camisp.config import load_isp_parameters
from camisp.core.buffer import PixelFormat
from camisp.core.image_io import load_image, save_image
from camisp.errors import CamIspError
from camisp.isp.params import ISPParameters
from camisp.isp.pipeline import IspPipeline
from camisp.sim.chessboard import render_chessboard
from camisp.sources import ImageSequenceSource


logger = logging.getLogger("camisp")


def _flags_from_args(args: argparse.Namespace) -> CalibrationFlags:
    fixed = set(args.fix_k or [])
    return CalibrationFlags(
        fix_principal_point=args.fix_principal_point,
        zero_tangent_dist=not args.keep_tangential,
        fix_aspect_ratio=args.fix_aspect_ratio,
        rational_model=args.rational,
        thin_prism_model=args.thin_prism,
        fix_k1=1 in fixed,
        fix_k2=2 in fixed,
        fix_k3=3 in fixed,
        fix_k4=4 in fixed,
        fix_k5=5 in fixed,
        fix_k6=6 in fixed,
    )


def _run_calibrate(args: argparse.Namespace) -> int:
    pattern_size = parse_pattern_size(args.pattern)
    session = CalibrationSession()
    with ImageSequenceSource(args.images, PixelFormat.BGR) as source:
        for path, buffer in zip(source.paths, source):
            if session.add_calibration_image(buffer, pattern_size, args.square_mm):
                print(f"{path}: board found")
            else:
                print(f"{path}: no board")

    criteria = SolverCriteria(max_iterations=args.max_iter)
    if not session.calibrate(_flags_from_args(args), criteria):
        print(f"Calibration failed ({session.view_count} usable views)")
        return 1
    result = session.result
    assert result is not None
    print(f"fx={result.fx:.3f} fy={result.fy:.3f} cx={result.cx:.3f} cy={result.cy:.3f}")
    print("dist=" + " ".join(f"{v:.6g}" for v in result.distortion.tolist()))
    print(f"rms={result.rms_error:.4f} px over {result.view_count} views")
    if not session.save_calibration(args.out):
        return 1
    print(f"Wrote {args.out}")
    return 0


def _run_process(args: argparse.Namespace) -> int:
    params = load_isp_parameters(args.config) if args.config else ISPParameters()
    calibration = None
    if args.calibration:
        calibration = load_calibration(args.calibration)
        params.lens_correction = True
    fmt = PixelFormat(args.raw) if args.raw else PixelFormat.BGR
    buffer = load_image(args.input, fmt)

    run = IspPipeline().run(buffer, params, calibration)
    save_image(args.output, run.output)
    print(f"stages: {', '.join(run.stages_run) or '(none)'}")
    print(f"Wrote {args.output}")
    return 0


def _run_render_board(args: argparse.Namespace) -> int:
    board = render_chessboard(parse_pattern_size(args.pattern), square_px=args.square_px, margin_px=args.margin_px)
    save_image(args.out, board)
    print(f"Wrote {args.out} ({board.width}x{board.height})")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="camisp")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug logging.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    cal = sub.add_parser("calibrate", help="Calibrate a camera from chessboard images.")
    cal.add_argument("images", type=Path, nargs="+")
    cal.add_argument("--pattern", type=str, default="9x6", help="Inner corners as COLSxROWS.")
    cal.add_argument("--square-mm", type=float, default=25.0, help="Chessboard square size (mm).")
    cal.add_argument("--out", type=Path, default=Path("calibration.json"), help=".json, .yml or .xml")
    cal.add_argument("--fix-principal-point", action="store_true")
    cal.add_argument("--keep-tangential", action="store_true", help="Estimate p1/p2 (fixed at 0 by default).")
    cal.add_argument("--fix-aspect-ratio", action="store_true")
    cal.add_argument("--rational", action="store_true", help="8-coefficient rational model.")
    cal.add_argument("--thin-prism", action="store_true", help="12-coefficient model with thin prism terms.")
    cal.add_argument("--fix-k", type=int, action="append", choices=[1, 2, 3, 4, 5, 6], help="Fix radial term kN at 0.")
    cal.add_argument("--max-iter", type=int, default=30)

    proc = sub.add_parser("process", help="Run the ISP pipeline on one image.")
    proc.add_argument("input", type=Path)
    proc.add_argument("output", type=Path)
    proc.add_argument("--config", type=Path, default=None, help="ISP parameters (JSON).")
    proc.add_argument("--calibration", type=Path, default=None, help="Calibration file; enables lens correction.")
    proc.add_argument(
        "--raw",
        type=str,
        default=None,
        choices=[f.value for f in PixelFormat if f.is_raw],
        help="Treat the input as a single-channel Bayer mosaic with this layout.",
    )

    board = sub.add_parser("render-board", help="Write a printable chessboard image.")
    board.add_argument("--pattern", type=str, default="9x6")
    board.add_argument("--square-px", type=int, default=80)
    board.add_argument("--margin-px", type=int, default=None)
    board.add_argument("--out", type=Path, required=True)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose >= 2 else logging.INFO if args.verbose == 1 else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.cmd == "calibrate":
            return _run_calibrate(args)
        if args.cmd == "process":
            return _run_process(args)
        if args.cmd == "render-board":
            return _run_render_board(args)
    except (CamIspError, ValueError) as e:
        logger.error("%s", e)
        return 1

    raise AssertionError(f"Unhandled cmd: {args.cmd}")
