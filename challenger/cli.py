#!/usr/bin/env python3
"""
Challenger CLI — run 15-bit word program images
Commands: run · version
"""

import argparse
import logging
import sys

VERSION = "1.0.0"
DEFAULT_IMAGE = "challenge.bin"


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _configure_logging(trace: bool) -> None:
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if trace else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# sub-command handlers
# ---------------------------------------------------------------------------

def cmd_run(args) -> int:
    """challenger run [challenge.bin] [--trace] [--keep-cr] [-v]"""
    from challenger.image import ImageError, load_image
    from challenger.vm import MachineError

    _configure_logging(args.trace)
    try:
        vm = load_image(
            args.input,
            stdin=sys.stdin.buffer,
            stdout=sys.stdout,
            swallow_cr=not args.keep_cr,
            trace=args.trace,
        )
    except ImageError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    try:
        vm.run()
    except MachineError:
        # already logged by the machine with ip/opcode context
        return 1
    except KeyboardInterrupt:
        print(f"\n[VM] interrupted at ip={vm.ip}", file=sys.stderr)
        return 130
    finally:
        if args.verbose:
            print(f"\n[VM] steps={vm.steps} ip={vm.ip} stack={len(vm.stack)}",
                  file=sys.stderr)
            print(f"[VM] registers={vm.registers}", file=sys.stderr)
    return 0


def cmd_version(args) -> int:
    print(f"challenger {VERSION}")
    return 0


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="challenger",
        description=(
            "Challenger — 15-bit word bytecode virtual machine\n\n"
            "  run        Run a program image\n"
            "  version    Show version info\n"
        ),
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"challenger {VERSION}"
    )

    sub = parser.add_subparsers(dest="cmd", required=True)

    # ── run ────────────────────────────────────────────────────────────────
    p_run = sub.add_parser("run", help="Run a program image")
    p_run.add_argument("input", nargs="?", default=DEFAULT_IMAGE,
                       help=f"image file (default: {DEFAULT_IMAGE})")
    p_run.add_argument("--trace", action="store_true",
                       help="Log every instruction to stderr")
    p_run.add_argument("--keep-cr", action="store_true",
                       help="Pass carriage returns through to `in` instead of dropping them")
    p_run.add_argument("-v", "--verbose", action="store_true",
                       help="Show machine summary after the run")
    p_run.set_defaults(func=cmd_run)

    # ── version ────────────────────────────────────────────────────────────
    p_ver = sub.add_parser("version", help="Show version info")
    p_ver.set_defaults(func=cmd_version)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
