"""lsystem_engine.py

Deterministic, context-free L-system rewriting.

An engine owns an alphabet, a table of productions keyed by predecessor and an
axiom. Every call to ``step`` rewrites all symbols of the current generation at
once and returns the next generation.

Example:
  >>> engine = RewritingEngine("A", [Production("A", "AB"), Production("B", "A")], "AB")
  >>> engine.step(), engine.step(), engine.step()
  (['A', 'B'], ['A', 'B', 'A'], ['A', 'B', 'A', 'A', 'B'])
"""

from __future__ import annotations

import logging
from collections.abc import Generator, Hashable, Iterable, Mapping
from collections.abc import Set as AbstractSet
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Generic, TypeVar

log = logging.getLogger(__name__)

Symbol = TypeVar("Symbol", bound=Hashable)


# -------------------------
# Errors
# -------------------------


class ConfigError(ValueError):
    pass


class InvalidProductionError(ConfigError):
    def __init__(self, production: Production) -> None:
        super().__init__(
            f"production for {production.predecessor!r} uses symbols outside "
            "the alphabet"
        )
        self.production = production
        self.symbol = production.predecessor


class DuplicatePredecessorError(ConfigError):
    def __init__(self, symbol: Hashable) -> None:
        super().__init__(f"more than one production for predecessor {symbol!r}")
        self.symbol = symbol


class UnknownSymbolError(ConfigError):
    def __init__(self, symbol: Hashable) -> None:
        super().__init__(f"axiom symbol {symbol!r} is not in the alphabet")
        self.symbol = symbol


class MissingProductionError(ConfigError):
    def __init__(self, symbol: Hashable) -> None:
        super().__init__(f"no production for alphabet symbol {symbol!r}")
        self.symbol = symbol


# -------------------------
# Productions
# -------------------------


@dataclass(frozen=True)
class Production(Generic[Symbol]):
    """Rewrite rule ``predecessor -> successor``.

    Two productions compare equal when their predecessors match, whatever their
    successors are.
    """

    predecessor: Symbol
    successor: tuple[Symbol, ...] = field(compare=False)

    def __init__(self, predecessor: Symbol, successor: Iterable[Symbol]) -> None:
        object.__setattr__(self, "predecessor", predecessor)
        object.__setattr__(self, "successor", tuple(successor))


def is_valid_production(
    production: Production[Symbol], alphabet: AbstractSet[Symbol]
) -> bool:
    """True iff the predecessor and every successor symbol are in ``alphabet``."""
    if production.predecessor not in alphabet:
        return False
    return all(s in alphabet for s in production.successor)


# -------------------------
# Engine
# -------------------------


class RewritingEngine(Generic[Symbol]):
    """Parallel rewriting over a fixed alphabet.

    Alphabet symbols without an explicit production rewrite to themselves, and
    so does any axiom symbol outside the alphabet, so ``step`` never fails.
    ``strict`` rejects such axiom symbols up front instead, and
    ``require_coverage`` rejects alphabet symbols that lack a production.

    Not safe for concurrent use; give each thread its own engine or lock
    around ``step``/``reset``.
    """

    def __init__(
        self,
        axiom: Iterable[Symbol],
        productions: Iterable[Production[Symbol]],
        alphabet: Iterable[Symbol],
        *,
        strict: bool = False,
        require_coverage: bool = False,
    ) -> None:
        self._axiom: tuple[Symbol, ...] = tuple(axiom)
        self._alphabet: frozenset[Symbol] = frozenset(alphabet)

        # A set would already have collapsed duplicates, so take a list.
        prods = list(productions)

        for p in prods:
            if not is_valid_production(p, self._alphabet):
                raise InvalidProductionError(p)

        rules: dict[Symbol, Production[Symbol]] = {}
        for p in prods:
            if p.predecessor in rules:
                raise DuplicatePredecessorError(p.predecessor)
            rules[p.predecessor] = p

        if strict:
            for s in self._axiom:
                if s not in self._alphabet:
                    raise UnknownSymbolError(s)

        explicit = len(rules)
        # sorted by repr so the identity rules are added in a stable order
        for s in sorted(self._alphabet - rules.keys(), key=repr):
            if require_coverage:
                raise MissingProductionError(s)
            log.debug("no production for %r; using identity", s)
            rules[s] = Production(s, (s,))

        log.debug(
            "rule table built: %d explicit, %d identity, alphabet of %d",
            explicit,
            len(rules) - explicit,
            len(self._alphabet),
        )

        self._rules = rules
        self._state: tuple[Symbol, ...] = self._axiom

    @property
    def axiom(self) -> tuple[Symbol, ...]:
        return self._axiom

    @property
    def alphabet(self) -> frozenset[Symbol]:
        return self._alphabet

    @property
    def rules(self) -> Mapping[Symbol, Production[Symbol]]:
        return MappingProxyType(self._rules)

    @property
    def state(self) -> tuple[Symbol, ...]:
        """Current generation (the axiom until the first ``step``)."""
        return self._state

    def reset(self) -> None:
        self._state = self._axiom

    def step(self) -> list[Symbol]:
        """Rewrite every symbol of the current generation simultaneously.

        Only the pre-step generation is scanned. Symbols appended during this
        call are never rewritten again until the next call.
        """
        rules = self._rules
        result: list[Symbol] = []
        for s in self._state:
            rule = rules.get(s)
            if rule is None:
                result.append(s)
            else:
                result.extend(rule.successor)

        log.debug("step: %d -> %d symbols", len(self._state), len(result))
        self._state = tuple(result)
        return result

    __call__ = step

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(axiom={self._axiom!r}, "
            f"rules={len(self._rules)}, alphabet={len(self._alphabet)})"
        )


# -------------------------
# Iteration drivers
# -------------------------


def generations(
    engine: RewritingEngine[Symbol], n: int
) -> Generator[list[Symbol], None, None]:
    """Lazily yield the results of ``n`` successive steps.

    Continues from the engine's current state; call ``reset`` first to start
    from the axiom. A negative ``n`` is rejected at call time, before any
    step runs.
    """
    if n < 0:
        raise ValueError("n must be >= 0")
    return _steps(engine, n)


def _steps(
    engine: RewritingEngine[Symbol], n: int
) -> Generator[list[Symbol], None, None]:
    for _ in range(n):
        yield engine.step()


def derive(engine: RewritingEngine[Symbol], n: int) -> list[Symbol]:
    """Step ``n`` times and return only the last generation."""
    if n < 0:
        raise ValueError("n must be >= 0")
    result = list(engine.state)
    for result in generations(engine, n):
        pass
    return result
