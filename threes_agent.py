import random
import re
from dataclasses import dataclass, fields
from typing import Optional, Tuple

from approximator import NTupleApproximator, WeightFileError, load_weights, save_weights
from threes_env import ILLEGAL, PLACEMENT_SPACES, Action

OPCODES = (0, 1, 2, 3)
DEFAULT_ALPHA = 0.1 / 32
SEARCHES = ("td", "greedy", "random")


# ------------------------------
# Configuration
# ------------------------------

def _parse_bool(value):
    if value.lower() in ("1", "true", "yes", "on"):
        return True
    if value.lower() in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def _parse_sizes(value):
    # any non-digit separates sizes, e.g. "65536,65536"
    sizes = tuple(int(s) for s in re.split(r"\D+", value) if s)
    if not sizes:
        raise ValueError(f"No table sizes in {value!r}")
    return sizes


@dataclass
class AgentConfig:
    """Options of a sliding agent, parsed and checked once at construction."""

    name: str = "slide"
    role: str = "slider"
    search: str = "td"
    depth: int = 1
    expectimax: bool = False
    seed: Optional[int] = None
    init: Optional[Tuple[int, ...]] = None
    load: Optional[str] = None
    save: Optional[str] = None
    alpha: float = DEFAULT_ALPHA

    def __post_init__(self):
        if self.search not in SEARCHES:
            raise ValueError(f"Unknown search {self.search!r}, expected one of {SEARCHES}")
        if not 1 <= self.depth <= 3:
            raise ValueError(f"depth must be within 1..3, got {self.depth}")
        if self.alpha < 0:
            raise ValueError(f"alpha must be non-negative, got {self.alpha}")
        if self.init is not None:
            self.init = tuple(int(s) for s in self.init)
            if any(s <= 0 for s in self.init):
                raise ValueError(f"Table sizes must be positive, got {self.init}")
        for key in ("load", "save"):
            path = getattr(self, key)
            if path is None:
                continue
            if not path:
                raise ValueError(f"{key} needs a file path")
            if self.search != "td":
                raise ValueError(f"{key} only applies to search=td, got search={self.search}")

    @classmethod
    def from_args(cls, args=""):
        """Build a config from 'key=value' tokens, e.g. 'alpha=0.0025 save=weights.bin'"""
        parsers = {
            "name": str, "role": str, "search": str, "load": str, "save": str,
            "depth": int, "seed": int, "alpha": float,
            "expectimax": _parse_bool, "init": _parse_sizes,
        }
        known = {f.name for f in fields(cls)}
        options = {}
        for token in args.split():
            key, sep, value = token.partition("=")
            if key not in known:
                raise ValueError(f"Unknown option {key!r}")
            if not sep:
                raise ValueError(f"Option {key!r} has no value")
            try:
                options[key] = parsers[key](value)
            except ValueError as e:
                raise ValueError(f"Bad value for {key}: {e}") from e
        return cls(**options)


# ------------------------------
# Action Selector
# ------------------------------

class ActionSelector:
    """1-ply afterstate evaluation, optionally with an expectimax bonus over the next placement."""

    def __init__(self, approximator, expectimax=False):
        self.approximator = approximator
        self.expectimax = expectimax

    def best_move(self, board):
        """Returns (direction, reward, afterstate); direction is None when nothing is legal"""
        best_op, best_reward, best_after = None, ILLEGAL, None
        best_score = -float('inf')
        for op in OPCODES:
            after = board.copy()
            reward = after.slide(op)
            if reward == ILLEGAL:
                continue
            score = reward + self.approximator.value(after.grid)
            if self.expectimax:
                score += self.expectimax_bonus(after, op)
            if score > best_score:
                best_op, best_reward, best_after, best_score = op, reward, after, score
        return best_op, best_reward, best_after

    def select_action(self, board):
        return self.best_move(board)[0]

    def expectimax_bonus(self, after, move):
        """
        Average, over the empty cells the placer may fill after `move`, of the
        best reward + value reachable once the hinted tile lands there.
        Cells with no legal follow-up are left out of the average.
        """
        hint = after.current_hint()
        if not hint:
            return 0.0
        total, evaluated = 0.0, 0
        for pos in PLACEMENT_SPACES[move]:
            if after.read(pos) != 0:
                continue
            placed = after.copy()
            placed.place(pos, hint)
            best = -float('inf')
            for op in OPCODES:
                nxt = placed.copy()
                reward = nxt.slide(op)
                if reward == ILLEGAL:
                    continue
                best = max(best, reward + self.approximator.value(nxt.grid))
            if best == -float('inf'):
                continue
            total += best
            evaluated += 1
        if evaluated == 0:
            return 0.0
        return total / evaluated


# ------------------------------
# TD Learner
# ------------------------------

class TDLearner:
    """TD(0) on afterstates: moves the previous afterstate's value towards reward + value(next)."""

    def __init__(self, approximator, alpha=DEFAULT_ALPHA):
        self.approximator = approximator
        self.alpha = alpha
        self.prev = None
        self.steps = 0

    def reset(self):
        self.prev = None
        self.steps = 0

    def learn(self, after, reward):
        """Record the afterstate of the move just chosen; returns the TD error or None on the first move"""
        self.steps += 1
        if self.prev is None:
            self.prev = after.copy()
            return None
        delta = self.approximator.value(after.grid) - self.approximator.value(self.prev.grid) + reward
        self._apply(delta)
        self.prev = after.copy()
        return delta

    def terminal(self):
        """No legal move left: the previous afterstate is pulled towards 0"""
        if self.prev is None:
            return None
        delta = -self.approximator.value(self.prev.grid)
        self._apply(delta)
        self.prev = None
        return delta

    def _apply(self, delta):
        if self.alpha:
            self.approximator.update(self.prev.grid, delta, self.alpha)


# ------------------------------
# Slider strategies
# ------------------------------

class RandomSlider:
    """Any legal slide, in shuffled order."""

    def __init__(self, rng):
        self.rng = rng

    def open_episode(self):
        pass

    def close_episode(self):
        pass

    def take_action(self, board):
        ops = list(OPCODES)
        self.rng.shuffle(ops)
        for op in ops:
            if board.copy().slide(op) != ILLEGAL:
                return Action.slide(op)
        return Action()


class GreedySlider:
    """Maximises the summed reward of the next `depth` slides, ignoring placements."""

    def __init__(self, depth=1):
        self.depth = depth

    def open_episode(self):
        pass

    def close_episode(self):
        pass

    def lookahead(self, board, depth):
        if depth == 0:
            return 0
        best = None
        for op in OPCODES:
            after = board.copy()
            reward = after.slide(op)
            if reward == ILLEGAL:
                continue
            total = reward + self.lookahead(after, depth - 1)
            if best is None or total > best:
                best = total
        return 0 if best is None else best

    def take_action(self, board):
        best_op, best_total = None, None
        for op in OPCODES:
            after = board.copy()
            reward = after.slide(op)
            if reward == ILLEGAL:
                continue
            total = reward + self.lookahead(after, self.depth - 1)
            if best_total is None or total > best_total:
                best_op, best_total = op, total
        if best_op is None:
            return Action()
        return Action.slide(best_op)


class TDSlider:
    """Plays the selector's choice and trains the network after every move."""

    def __init__(self, approximator, alpha=DEFAULT_ALPHA, expectimax=False):
        self.selector = ActionSelector(approximator, expectimax)
        self.learner = TDLearner(approximator, alpha)

    def open_episode(self):
        self.learner.reset()

    def close_episode(self):
        self.learner.reset()

    def take_action(self, board):
        op, reward, after = self.selector.best_move(board)
        if op is None:
            self.learner.terminal()
            return Action()
        self.learner.learn(after, reward)
        return Action.slide(op)


# ------------------------------
# Agent
# ------------------------------

def build_network(config, patterns=None):
    """Weights from `load`, else zero tables sized by `init`, else sized by the patterns"""
    if config.load is not None:
        weights = load_weights(config.load)
        try:
            return NTupleApproximator(patterns, weights)
        except ValueError as e:
            raise WeightFileError(f"Weights in {config.load} do not fit the patterns: {e}") from e
    approximator = NTupleApproximator(patterns)
    if config.init is not None and tuple(config.init) != tuple(approximator.table_sizes()):
        raise ValueError(f"init sizes {config.init} do not match pattern tables {approximator.table_sizes()}")
    print(f"[Agent] Initialized {len(approximator.weights)} zero tables for {config.name}")
    return approximator


class Agent:
    """
    A slider: optional RNG, optional weight network and a move-selection strategy.
    The strategy follows `config.search` unless one is injected.
    """

    def __init__(self, config=None, strategy=None, approximator=None, patterns=None):
        self.config = config if config is not None else AgentConfig()
        self.rng = random.Random(self.config.seed)
        self.approximator = approximator
        if strategy is None:
            if self.config.search == "td":
                if self.approximator is None:
                    self.approximator = build_network(self.config, patterns)
                strategy = TDSlider(self.approximator, self.config.alpha, self.config.expectimax)
            elif self.config.search == "greedy":
                strategy = GreedySlider(self.config.depth)
            else:
                strategy = RandomSlider(self.rng)
        self.strategy = strategy

    @classmethod
    def from_args(cls, args=""):
        return cls(AgentConfig.from_args(args))

    @property
    def name(self):
        return self.config.name

    @property
    def role(self):
        return self.config.role

    def open_episode(self, flag=""):
        self.strategy.open_episode()

    def close_episode(self, flag=""):
        self.strategy.close_episode()

    def take_action(self, board):
        return self.strategy.take_action(board)

    def close(self):
        """Persist the weight network if a save path is configured"""
        if self.approximator is not None and self.config.save is not None:
            save_weights(self.approximator.weights, self.config.save)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
