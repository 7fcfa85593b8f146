#!/usr/bin/env python3
"""lsystem_render.py

Draws L-system generations as SVG.

A JSON config names the grammar (axiom, alphabet, rules), a per-symbol draw
table for the turtle, and SVG output options. The grammar is run through
``lsystem_engine.RewritingEngine``; this module only consumes the symbols it
produces.

Run:
  python lsystem_render.py render config.json output.svg
  python lsystem_render.py validate config.json
  python lsystem_render.py derive config.json --iterations 3
  python lsystem_render.py --help
"""

from __future__ import annotations

import argparse
import itertools
import json
import logging
import math
import os
import sys
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, cast

from lsystem_engine import ConfigError, Production, RewritingEngine, derive

log = logging.getLogger(__name__)

Point = tuple[float, float]


# -------------------------
# Validation
# -------------------------


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _expect(x: Any, kind: type | tuple[type, ...], path: str, what: str) -> Any:
    # bool is an int subclass; never accept it where a number is wanted
    ok = isinstance(x, kind) and (kind is bool or not isinstance(x, bool))
    _require(ok, f"{path} must be {what}")
    return x


def _number(obj: dict[str, Any], key: str, default: float, path: str) -> float:
    value = _expect(obj.get(key, default), (int, float), f"{path}.{key}", "a number")
    return float(value)


def _flag(obj: dict[str, Any], key: str, default: bool, path: str) -> bool:
    value = _expect(obj.get(key, default), bool, f"{path}.{key}", "a boolean")
    return cast(bool, value)


def _text(obj: dict[str, Any], key: str, default: str, path: str) -> str:
    value = _expect(obj.get(key, default), str, f"{path}.{key}", "a string")
    return cast(str, value)


def _section(obj: dict[str, Any], key: str, path: str) -> dict[str, Any]:
    where = f"{path}.{key}" if path else key
    return cast(dict[str, Any], _expect(obj.get(key, {}), dict, where, "an object"))


def _size(obj: dict[str, Any], key: str) -> float | None:
    if obj.get(key) is None:
        return None
    value = _number(obj, key, 0, "svg")
    _require(value > 0, f"svg.{key} must be > 0")
    return value


def _word(x: Any, path: str) -> list[str]:
    """A word is either a string of one-character symbols or a list of symbols."""
    if isinstance(x, str):
        return list(x)
    _require(
        isinstance(x, list) and all(isinstance(s, str) and s for s in x),
        f"{path} must be a string or a list of non-empty strings",
    )
    return list(x)


# -------------------------
# Config model
# -------------------------


@dataclass(frozen=True)
class TurtleState:
    x: float
    y: float
    heading_deg: float


@dataclass(frozen=True)
class DrawRule:
    """How the turtle reacts to one symbol.

    ``turn`` is in degrees; its sign picks the direction. With ``end_branch``
    the segment is drawn but the turtle stays where it was.
    """

    length: float = 0.0
    turn: float = 0.0
    push: bool = False
    pop: bool = False
    end_branch: bool = False

    @classmethod
    def from_json(cls, obj: Any, path: str) -> DrawRule:
        obj = _expect(obj, dict, path, "an object")
        unknown = sorted(set(obj) - {"length", "turn", "push", "pop", "end_branch"})
        _require(not unknown, f"{path} has unknown fields: {', '.join(unknown)}")
        return cls(
            length=_number(obj, "length", 0, path),
            turn=_number(obj, "turn", 0, path),
            push=_flag(obj, "push", False, path),
            pop=_flag(obj, "pop", False, path),
            end_branch=_flag(obj, "end_branch", False, path),
        )


@dataclass(frozen=True)
class DrawOptions:
    rules: dict[str, DrawRule] = field(default_factory=dict)
    start: TurtleState = TurtleState(0.0, 0.0, 90.0)
    scale: float = 1.0

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> DrawOptions:
        scale = _number(obj, "scale", 1.0, "draw")
        _require(scale > 0, "draw.scale must be > 0")
        start = _section(obj, "start", "draw")
        rules = _section(obj, "rules", "draw")
        return cls(
            rules={
                sym: DrawRule.from_json(rule, f"draw.rules['{sym}']")
                for sym, rule in rules.items()
            },
            start=TurtleState(
                x=_number(start, "x", 0, "draw.start"),
                y=_number(start, "y", 0, "draw.start"),
                heading_deg=_number(start, "heading", 90, "draw.start"),
            ),
            scale=scale,
        )


@dataclass(frozen=True)
class SvgOptions:
    margin: float = 10.0
    precision: int = 3
    flip_y: bool = True
    width: float | None = None
    height: float | None = None
    background: str | None = None
    stroke: str = "#000"
    stroke_width: float = 1.0
    fill: str = "none"
    linecap: str = "round"
    linejoin: str = "round"

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> SvgOptions:
        precision = _expect(
            obj.get("precision", 3), int, "svg.precision", "an integer"
        )
        _require(0 <= precision <= 10, "svg.precision must be between 0 and 10")

        width, height = _size(obj, "width"), _size(obj, "height")

        background = obj.get("background")
        if background is not None:
            background = _text(obj, "background", "", "svg")

        style = _section(obj, "style", "svg")
        return cls(
            margin=_number(obj, "margin", 10, "svg"),
            precision=precision,
            flip_y=_flag(obj, "flip_y", True, "svg"),
            width=width,
            height=height,
            background=background,
            stroke=_text(style, "stroke", "#000", "svg.style"),
            stroke_width=_number(style, "stroke_width", 1.0, "svg.style"),
            fill=_text(style, "fill", "none", "svg.style"),
            linecap=_text(style, "stroke_linecap", "round", "svg.style"),
            linejoin=_text(style, "stroke_linejoin", "round", "svg.style"),
        )


@dataclass(frozen=True)
class RenderConfig:
    name: str
    axiom: list[str]
    iterations: int
    alphabet: frozenset[str]
    productions: list[Production[str]]
    strict: bool
    draw: DrawOptions
    svg: SvgOptions

    def build_engine(self) -> RewritingEngine[str]:
        return RewritingEngine(
            self.axiom, self.productions, self.alphabet, strict=self.strict
        )


def parse_config(obj: dict[str, Any]) -> RenderConfig:
    obj = _expect(obj, dict, "root", "an object")

    axiom = _word(obj.get("axiom", ""), "axiom")
    _require(len(axiom) > 0, "axiom must be non-empty")

    iterations = _expect(obj.get("iterations", 0), int, "iterations", "an integer")
    _require(iterations >= 0, "iterations must be >= 0")

    productions = [
        Production(pred, _word(succ, f"rules['{pred}']"))
        for pred, succ in _section(obj, "rules", "").items()
    ]
    _require(all(p.predecessor for p in productions), "rules keys must be non-empty")

    if "alphabet" in obj:
        alphabet = frozenset(_word(obj["alphabet"], "alphabet"))
    else:
        used = itertools.chain(
            axiom, *((p.predecessor, *p.successor) for p in productions)
        )
        alphabet = frozenset(used)

    return RenderConfig(
        name=_text(obj, "name", "L-System", "root"),
        axiom=axiom,
        iterations=iterations,
        alphabet=alphabet,
        productions=productions,
        strict=_flag(obj, "strict", False, "root"),
        draw=DrawOptions.from_json(_section(obj, "draw", "")),
        svg=SvgOptions.from_json(_section(obj, "svg", "")),
    )


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        text = f.read()
    try:
        return cast(dict[str, Any], json.loads(text))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e


def format_word(symbols: Sequence[str]) -> str:
    sep = "" if all(len(s) == 1 for s in symbols) else " "
    return sep.join(symbols)


# -------------------------
# Turtle interpreter
# -------------------------


@dataclass
class PolylineBuffer:
    polylines: list[list[Point]]

    def start_new(self, p: Point) -> None:
        self.polylines.append([p])

    def add_point(self, p: Point) -> None:
        if not self.polylines:
            raise RuntimeError("add_point() called before start_new()")
        cur = self.polylines[-1]
        if cur[-1] != p:
            cur.append(p)

    def drawn(self) -> list[list[Point]]:
        return [pl for pl in self.polylines if len(pl) >= 2]


def interpret_to_polylines(
    symbols: Iterable[str],
    *,
    rules: dict[str, DrawRule],
    start: TurtleState,
    scale: float = 1.0,
) -> list[list[Point]]:
    """Interpret symbols to polylines.

    For each symbol its rule is applied in this order: push, pop, turn, draw.
    Symbols without a rule do nothing. A pop restarts the polyline at the
    restored point; so does the first segment after an ``end_branch`` symbol.
    """

    _require(scale > 0, "scale must be > 0")

    turtle = start
    buf = PolylineBuffer(polylines=[])
    buf.start_new((turtle.x, turtle.y))

    stack: list[TurtleState] = []
    noop = DrawRule()

    for sym in symbols:
        rule = rules.get(sym, noop)

        if rule.push:
            stack.append(turtle)

        if rule.pop:
            _require(bool(stack), f"pop symbol '{sym}' encountered with empty stack")
            turtle = stack.pop()
            buf.start_new((turtle.x, turtle.y))

        heading = turtle.heading_deg + rule.turn
        dist = rule.length * scale
        rad = math.radians(heading)
        moved = TurtleState(
            turtle.x + dist * math.cos(rad), turtle.y + dist * math.sin(rad), heading
        )

        if dist:
            buf.add_point((moved.x, moved.y))

        if not rule.end_branch:
            turtle = moved
        elif dist:
            # The turtle stays put; its next segment starts a fresh polyline.
            buf.start_new((turtle.x, turtle.y))

    return buf.drawn()


# -------------------------
# SVG writing
# -------------------------


def compute_bounds(polylines: list[list[Point]]) -> tuple[float, float, float, float]:
    _require(len(polylines) > 0, "No drawable geometry produced.")
    xs = [x for pl in polylines for x, _ in pl]
    ys = [y for pl in polylines for _, y in pl]
    return (min(xs), min(ys), max(xs), max(ys))


def _fmt(x: float, precision: int) -> str:
    s = f"{x:.{precision}f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    # rounding can leave "-0" behind
    return "0" if s in ("-0", "") else s


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _svg_body(
    polylines: list[list[Point]], opts: SvgOptions, title: str | None
) -> Iterator[str]:
    minx, miny, maxx, maxy = compute_bounds(polylines)
    pad = opts.margin
    box = (minx - pad, miny - pad, maxx - minx + 2 * pad, maxy - miny + 2 * pad)
    _require(
        box[2] > 0 and box[3] > 0,
        "Degenerate bounds after margin (width or height is zero). "
        "Set svg.margin > 0 to render collinear or single-point geometry.",
    )

    def num(v: float) -> str:
        return _fmt(v, opts.precision)

    size = "".join(
        f' {attr}="{num(v)}"'
        for attr, v in (("width", opts.width), ("height", opts.height))
        if v
    )
    yield '<?xml version="1.0" encoding="UTF-8"?>'
    yield (
        '<svg xmlns="http://www.w3.org/2000/svg" version="1.1" '
        f'viewBox="{" ".join(map(num, box))}"{size}>'
    )

    if title:
        yield f"  <title>{_escape(title)}</title>"

    if opts.background and opts.background.lower() != "none":
        x, y, w, h = map(num, box)
        yield (
            f'  <rect x="{x}" y="{y}" width="{w}" height="{h}" '
            f'fill="{opts.background}" />'
        )

    indent = "  "
    if opts.flip_y:
        # Mirror about the box's horizontal centre line so +Y points up.
        yield f'  <g transform="translate(0,{num(miny + maxy)}) scale(1,-1)">'
        indent = "    "

    paint = (
        f'stroke="{opts.stroke}" stroke-width="{num(opts.stroke_width)}" '
        f'fill="{opts.fill}" stroke-linecap="{opts.linecap}" '
        f'stroke-linejoin="{opts.linejoin}"'
    )
    for pl in polylines:
        points = " ".join(f"{num(x)},{num(y)}" for x, y in pl)
        yield f'{indent}<polyline points="{points}" {paint} />'

    if opts.flip_y:
        yield "  </g>"
    yield "</svg>"


def write_svg(
    polylines: list[list[Point]],
    out_path: str,
    opts: SvgOptions,
    *,
    title: str | None = None,
) -> None:
    # Build the whole document first so a config error leaves no partial file.
    doc = "\n".join(_svg_body(polylines, opts, title)) + "\n"
    os.makedirs(os.path.dirname(os.path.abspath(out_path)), exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(doc)


# -------------------------
# CLI / Help
# -------------------------

HELP_EPILOG = r"""
INPUT JSON SYNTAX

  name: string (optional)
      Written into the SVG <title>.

  axiom: string or list of strings (required)
      Generation 0. A string is split into one-character symbols; use a list
      for longer symbols.

  iterations: integer >= 0 (default 0)
      Number of rewriting steps.

  alphabet: string or list of strings (optional)
      Every symbol allowed in rules. Defaults to the symbols used by the axiom
      and rules. Alphabet symbols without a rule rewrite to themselves.

  rules: object mapping predecessor -> successor (optional)
      The successor is a string or a list of strings, like the axiom.
      All rules are applied at once on each step.

  strict: boolean (default false)
      Reject axiom symbols that are not in the alphabet.

  draw: object (optional)
    draw.scale: number > 0 (default 1)
        Multiplies every segment length.
    draw.start: {x, y, heading} (defaults 0, 0, 90)
        Heading in degrees; 0 = +X, 90 = +Y.
    draw.rules: object mapping symbol -> draw rule
        { "length": <number>, "turn": <degrees, signed>,
          "push": <bool>, "pop": <bool>, "end_branch": <bool> }
        Applied in order push, pop, turn, draw. With end_branch the segment
        is drawn but the turtle does not move. Symbols without a draw rule
        are ignored.

  svg: object (optional)
    margin (10), precision 0..10 (3), flip_y (true), width, height,
    background, style {stroke, stroke_width, fill, stroke_linecap,
    stroke_linejoin}

Example (binary tree):

    {
      "axiom": "0",
      "iterations": 5,
      "rules": {"1": "11", "0": "1[0]0"},
      "draw": {
        "rules": {
          "0": {"length": 5, "end_branch": true},
          "1": {"length": 5},
          "[": {"push": true, "turn": 45},
          "]": {"pop": true, "turn": -45}
        }
      }
    }
"""


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="lsystem-render",
        description="Derive L-system generations and draw them as SVG.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
    )
    p.add_argument(
        "-v", "--verbose", action="store_true", help="Log engine activity to stderr."
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    pr = sub.add_parser("render", help="Render a JSON config to an SVG file.")
    pr.add_argument("config", help="Path to the input JSON config.")
    pr.add_argument("output", help="Path to write the SVG output.")
    pr.add_argument(
        "--iterations", type=int, default=None, help="Override config iterations."
    )
    pr.add_argument("--scale", type=float, default=None, help="Override draw.scale.")

    pv = sub.add_parser("validate", help="Validate a JSON config and summarise it.")
    pv.add_argument("config", help="Path to the input JSON config.")

    pd = sub.add_parser("derive", help="Print generations 0..N, one per line.")
    pd.add_argument("config", help="Path to the input JSON config.")
    pd.add_argument(
        "--iterations", type=int, default=None, help="Override config iterations."
    )

    return p


# -------------------------
# Commands
# -------------------------


def _iterations(cfg: RenderConfig, override: int | None) -> int:
    if override is None:
        return cfg.iterations
    _require(override >= 0, "--iterations must be >= 0")
    return override


def cmd_render(args: argparse.Namespace) -> None:
    cfg = parse_config(load_json(args.config))
    symbols = derive(cfg.build_engine(), _iterations(cfg, args.iterations))
    polylines = interpret_to_polylines(
        symbols,
        rules=cfg.draw.rules,
        start=cfg.draw.start,
        scale=cfg.draw.scale if args.scale is None else args.scale,
    )
    write_svg(polylines, args.output, cfg.svg, title=cfg.name)


_VALIDATE_SYMBOL_LIMIT = 10_000


def _upcoming(engine: RewritingEngine[str]) -> Iterator[str]:
    """Lazily yield the generation the next ``step`` would produce."""
    rules = engine.rules
    for s in engine.state:
        rule = rules.get(s)
        yield from (rule.successor if rule is not None else (s,))


def cmd_validate(args: argparse.Namespace) -> None:
    cfg = parse_config(load_json(args.config))
    engine = cfg.build_engine()
    draw, svg = cfg.draw, cfg.svg

    print(f"name: {cfg.name}")
    print(f"axiom length: {len(cfg.axiom)}")
    print(f"iterations: {cfg.iterations}")
    print(f"rules: {len(cfg.productions)}")
    print(f"alphabet: {len(cfg.alphabet)}")
    print(
        f"draw: rules={len(draw.rules)} scale={draw.scale} "
        f"start=({draw.start.x},{draw.start.y},{draw.start.heading_deg}deg)"
    )
    print(f"svg: margin={svg.margin} precision={svg.precision} flip_y={svg.flip_y}")

    # Never hold more than limit + 1 symbols of a generation that is too long.
    sample: Sequence[str] = engine.state[:_VALIDATE_SYMBOL_LIMIT]
    truncated = len(engine.state) > _VALIDATE_SYMBOL_LIMIT
    done = 0
    while done < cfg.iterations and not truncated:
        peek = list(itertools.islice(_upcoming(engine), _VALIDATE_SYMBOL_LIMIT + 1))
        if len(peek) > _VALIDATE_SYMBOL_LIMIT:
            truncated = True
            sample = peek[:_VALIDATE_SYMBOL_LIMIT]
            break
        sample = engine.step()
        done += 1

    polylines = interpret_to_polylines(
        sample, rules=draw.rules, start=draw.start, scale=draw.scale
    )
    print(f"symbols (sampled): {len(sample)}{'+' if truncated else ''}")
    print(f"polylines: {len(polylines)}")
    if truncated:
        log.warning(
            "generation %d exceeds %d symbols; geometry stats are based on "
            "its first portion only",
            done + 1,
            _VALIDATE_SYMBOL_LIMIT,
        )
    if not polylines:
        raise ConfigError("Config produces no drawable geometry")


def cmd_derive(args: argparse.Namespace) -> None:
    cfg = parse_config(load_json(args.config))
    engine = cfg.build_engine()

    print(format_word(engine.state))
    for _ in range(_iterations(cfg, args.iterations)):
        print(format_word(engine.step()))


COMMANDS = {
    "render": cmd_render,
    "validate": cmd_validate,
    "derive": cmd_derive,
}


def _setup_logging(verbose: bool) -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    args = build_argparser().parse_args(argv)
    _setup_logging(args.verbose)

    try:
        COMMANDS[args.cmd](args)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
