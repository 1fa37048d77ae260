import argparse
import logging
import sys

from .distance import DistanceConfig, DistanceEngine, DistanceMeasure, DistanceNormalization, MONTE_CARLO_SIZE
from .errors import MidNetworkError
from .logging_utils import configure_logging


def _parse_mid(text):
    try:
        return [float(x) for x in text.split(",") if x.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a comma-separated list of numbers: {text!r}") from None


def _add_config_args(p):
    p.add_argument("--gap-penalty", type=float, default=0.2)
    p.add_argument(
        "--measure", type=str, default="euclidean", choices=[m.value for m in DistanceMeasure] + ["cosine"]
    )
    p.add_argument(
        "--normalization", type=str, default="sum", choices=[n.value for n in DistanceNormalization]
    )


def _add_distance_parser(sub):
    p = sub.add_parser("distance", help="Align two MIDs and print their distance")
    p.add_argument("mid1", type=_parse_mid, help="Comma-separated abundances, e.g. 0.8,0.15,0.05")
    p.add_argument("mid2", type=_parse_mid, help="Comma-separated abundances")
    _add_config_args(p)
    p.add_argument("--zscore", action="store_true", help="Also print the Monte-Carlo z-score")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--n-jobs", dest="n_jobs", type=int, default=1)
    return p


def _add_null_model_parser(sub):
    p = sub.add_parser("null-model", help="Monte-Carlo distance distribution of random MIDs")
    p.add_argument("len1", type=int)
    p.add_argument("len2", type=int)
    _add_config_args(p)
    p.add_argument("--size", type=int, default=MONTE_CARLO_SIZE)
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--n-jobs", dest="n_jobs", type=int, default=None)
    return p


def _engine(args):
    cfg = DistanceConfig(measure=args.measure, normalization=args.normalization, gap_penalty=args.gap_penalty)
    return DistanceEngine(cfg, seed=args.seed, n_jobs=args.n_jobs)


def _fmt(values):
    return ",".join(f"{v:g}" for v in values)


def main(argv=None):
    argv = argv if argv is not None else sys.argv[1:]
    ap = argparse.ArgumentParser(prog="mid-network", description="Isotopomer distribution distances")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="cmd", required=True)
    _add_distance_parser(sub)
    _add_null_model_parser(sub)
    args = ap.parse_args(argv)

    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        if args.cmd == "distance":
            engine = _engine(args)
            al1, al2 = engine.align(args.mid1, args.mid2)
            dist = engine.distance(args.mid1, args.mid2)
            print(f"aligned1\t{_fmt(al1)}")
            print(f"aligned2\t{_fmt(al2)}")
            print(f"distance\t{dist:.6g}")
            if args.zscore:
                z = engine.zscore(dist, len(args.mid1), len(args.mid2))
                print(f"zscore\t{z:.6g}")
            return 0

        if args.cmd == "null-model":
            engine = _engine(args)
            mean, sd = engine.null_model(args.len1, args.len2, size=args.size)
            print(f"mean\t{mean:.6g}")
            print(f"sd\t{sd:.6g}")
            return 0
    except MidNetworkError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
