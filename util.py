"""Command-line helpers shared by the cards.

Each card module ends with ``main(CardClass)``, so e.g.

    python3 alu_card.py generate -t il > alu_card.il
    python3 alu_card.py --formal generate alu_card_formal.il

emits RTLIL for the card itself, or for its formal verification harness
(to be run through SymbiYosys). The ``generate`` and ``simulate`` actions
are Amaranth's own.
"""
import argparse
import contextlib
import io
import logging
from typing import List, Optional

from amaranth import Signal, Elaboratable
from amaranth.cli import main_parser, main_runner

logger = logging.getLogger(__name__)


def _parser(cls) -> argparse.ArgumentParser:
    parser = main_parser(argparse.ArgumentParser(description=f"Tools for {cls.__name__}."))
    parser.add_argument("--formal", action="store_true",
                        help="use the formal verification harness as the design")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="log what is being generated")
    return parser


def _run(cls, parser: argparse.ArgumentParser, args: argparse.Namespace):
    ports: List[Signal]
    design: Elaboratable
    if args.formal:
        if not hasattr(cls, "formal"):
            parser.error(f"{cls.__name__} has no formal verification harness")
        design, ports = cls.formal()
    else:
        design = cls()
        ports = design.ports()
    main_runner(parser, args, design, name=cls.__name__.lower(), ports=ports)


def generate(cls, formal: bool = False) -> str:
    """Returns the RTLIL text for the card, or for its formal harness."""
    parser = _parser(cls)
    argv = ["--formal"] if formal else []
    args = parser.parse_args(argv + ["generate", "-t", "il"])
    with contextlib.redirect_stdout(io.StringIO()) as out:
        _run(cls, parser, args)
    return out.getvalue()


def main(cls, filename: str = "toplevel.il", argv: Optional[List[str]] = None):
    """Runs the command line for a card class.

    With --formal and no output file, generate writes to filename.
    """
    parser = _parser(cls)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(levelname)s: %(name)s: %(message)s")

    if args.action is None:
        parser.error("no action given")
    if args.action == "generate" and args.formal and not args.generate_file:
        args.generate_file = filename

    _run(cls, parser, args)
    if args.action == "generate" and args.generate_file:
        logger.info("wrote %s for %s", args.generate_file, cls.__name__)
