import random
import numpy as np
import matplotlib.pyplot as plt
import gym
from gym import spaces

# ------------------------------
# Threes! constants
# ------------------------------

ILLEGAL = -1
MAX_RANK = 15  # rank 15 is the 12288 tile
INITIAL_TILES = 9

UP, RIGHT, DOWN, LEFT = 0, 1, 2, 3
NO_SLIDE = 4
ACTIONS = ["up", "right", "down", "left"]

# cells the placer may fill after a slide in each direction (index 4: before any slide)
PLACEMENT_SPACES = [
    [12, 13, 14, 15],
    [0, 4, 8, 12],
    [0, 1, 2, 3],
    [3, 7, 11, 15],
    list(range(16)),
]

# score of a tile by rank: 3^(rank-2) from the "3" tile upwards
TILE_SCORE = np.array([0, 0, 0] + [3 ** (r - 2) for r in range(3, MAX_RANK + 1)], dtype=np.int64)


def tile_value(rank):
    """Face value of a tile rank (0 for empty)"""
    if rank < 3:
        return int(rank)
    return 3 * 2 ** (int(rank) - 3)


# ------------------------------
# Board
# ------------------------------

class Board:
    """4x4 Threes! board holding tile ranks, the tile bag and the next-tile hint."""

    size = 4

    def __init__(self, grid=None):
        if grid is None:
            self.tile = np.zeros((self.size, self.size), dtype=int)
        else:
            self.tile = np.array(grid, dtype=int).reshape(self.size, self.size)
        self.last = NO_SLIDE
        self.bag = np.array([0, 1, 1, 1], dtype=int)  # counts of tiles 1, 2 and 3
        self.hint = 0

    @property
    def grid(self):
        return self.tile

    def copy(self):
        other = Board.__new__(Board)
        other.tile = self.tile.copy()
        other.last = self.last
        other.bag = self.bag.copy()
        other.hint = self.hint
        return other

    def __getitem__(self, key):
        if isinstance(key, tuple):
            return int(self.tile[key])
        return int(self.tile.flat[key])

    def __eq__(self, other):
        return isinstance(other, Board) and np.array_equal(self.tile, other.tile)

    def __repr__(self):
        rows = "\n".join(" ".join(f"{tile_value(r):>5}" for r in row) for row in self.tile)
        return f"{rows}\nhint: {tile_value(self.hint)}"

    def read(self, cell):
        return int(self.tile.flat[cell])

    def score(self):
        return int(TILE_SCORE[self.tile].sum())

    def max_rank(self):
        return int(self.tile.max())

    def last_placement_region(self):
        return self.last

    def bag_count(self, tile):
        # only 1, 2 and 3 come from the bag
        if tile < 1 or tile > 3:
            return 0
        return int(self.bag[tile])

    def current_hint(self):
        return self.hint

    # --- mutators ---

    def place(self, pos, tile, hint=0):
        """
        Put a tile on an empty cell. With a hint this is an environment placement:
        the tile (when no hint was pending) and the new hint are drawn from the bag.
        Without a hint only the cell changes.
        """
        if pos < 0 or pos >= self.size * self.size or self.tile.flat[pos] != 0:
            return ILLEGAL
        if tile < 1 or tile > MAX_RANK:
            return ILLEGAL
        self.tile.flat[pos] = tile
        if hint:
            if self.hint == 0 and tile <= 3:
                self._draw(tile)
            self._draw(hint)
            self.hint = hint
        return 0

    def _draw(self, tile):
        if self.bag[tile] > 0:
            self.bag[tile] -= 1
        if not self.bag[1:].any():
            self.bag[1:] = 1

    def slide_row(self, row):
        """Shift a row one step towards index 0, merging where allowed"""
        for c in range(1, self.size):
            tile, hold = row[c], row[c - 1]
            if tile == 0:
                continue
            if hold == 0:
                row[c - 1], row[c] = tile, 0
            elif tile + hold == 3 and tile != hold:
                row[c - 1], row[c] = 3, 0
            elif tile == hold and 3 <= tile < MAX_RANK:
                row[c - 1], row[c] = tile + 1, 0

    def _lines(self, direction):
        # views whose rows run from the leading edge of the slide
        if direction == UP:
            return self.tile.T
        if direction == RIGHT:
            return self.tile[:, ::-1]
        if direction == DOWN:
            return self.tile.T[:, ::-1]
        return self.tile

    def slide(self, direction):
        """Slide every tile one cell; returns the score gained or ILLEGAL if nothing moves"""
        if direction not in (UP, RIGHT, DOWN, LEFT):
            raise ValueError(f"Invalid direction: {direction}")
        before = self.tile.copy()
        score_before = self.score()
        lines = self._lines(direction)
        for i in range(self.size):
            self.slide_row(lines[i])
        if np.array_equal(before, self.tile):
            return ILLEGAL
        self.last = direction
        return self.score() - score_before

    def rotate_clockwise(self):
        self.tile = np.rot90(self.tile, -1).copy()
        if self.last != NO_SLIDE:
            self.last = (self.last + 1) % 4

    def reflect_horizontal(self):
        self.tile = np.fliplr(self.tile).copy()
        if self.last in (RIGHT, LEFT):
            self.last = RIGHT if self.last == LEFT else LEFT


# ------------------------------
# Actions
# ------------------------------

class Action:
    """A slide, a tile placement, or no action at all (falsy)."""

    def __init__(self, kind=None, op=None, tile=0, hint=0):
        self.kind = kind
        self.op = op
        self.tile = tile
        self.hint = hint

    @classmethod
    def slide(cls, direction):
        return cls("slide", direction)

    @classmethod
    def place(cls, pos, tile, hint):
        return cls("place", pos, tile, hint)

    def apply(self, board):
        if self.kind == "slide":
            return board.slide(self.op)
        if self.kind == "place":
            return board.place(self.op, self.tile, self.hint)
        return ILLEGAL

    def __bool__(self):
        return self.kind is not None

    def __eq__(self, other):
        return (isinstance(other, Action) and
                (self.kind, self.op, self.tile, self.hint) == (other.kind, other.op, other.tile, other.hint))

    def __repr__(self):
        if self.kind == "slide":
            return f"Action.slide({ACTIONS[self.op]})"
        if self.kind == "place":
            return f"Action.place({self.op}, {self.tile}, {self.hint})"
        return "Action()"


class RandomPlacer:
    """Environment side: drops the hinted tile on the edge opposite the last slide."""

    def __init__(self, seed=None):
        self.rng = random.Random(seed)

    def take_action(self, board):
        space = list(PLACEMENT_SPACES[board.last_placement_region()])
        self.rng.shuffle(space)
        for pos in space:
            if board.read(pos) != 0:
                continue
            bag = [t for t in (1, 2, 3) for _ in range(board.bag_count(t))]
            self.rng.shuffle(bag)
            tile = board.current_hint() or bag.pop()
            if not bag:
                bag = [1, 2, 3]
                self.rng.shuffle(bag)
            hint = bag.pop()
            return Action.place(pos, tile, hint)
        return Action()


# ------------------------------
# Threes Environment
# ------------------------------

class ThreesEnv(gym.Env):
    def __init__(self, seed=None):
        super(ThreesEnv, self).__init__()
        self.size = 4
        # Action space: 0: up, 1: right, 2: down, 3: left
        self.action_space = spaces.Discrete(4)
        self.actions = ACTIONS
        self.placer = RandomPlacer(seed)
        self.board = Board()
        self.score = 0
        self.last_move_valid = True
        self.reset()

    def reset(self):
        """Reset the environment and drop the opening tiles"""
        self.board = Board()
        for _ in range(INITIAL_TILES):
            self.placer.take_action(self.board).apply(self.board)
        self.score = self.board.score()
        self.last_move_valid = True
        return self.board

    def is_move_legal(self, action):
        return self.board.copy().slide(action) != ILLEGAL

    def is_game_over(self):
        """Check if there are no legal moves left"""
        return not any(self.is_move_legal(a) for a in range(4))

    def step(self, action):
        """Execute one slide and let the placer answer it"""
        if not self.action_space.contains(action):
            raise ValueError(f"Invalid action: {action}")
        reward = self.board.slide(action)
        moved = reward != ILLEGAL
        self.last_move_valid = moved
        if moved:
            self.placer.take_action(self.board).apply(self.board)
            self.score = self.board.score()
        done = self.is_game_over()
        return self.board, self.score, done, {"reward": reward, "legal": moved}

    def render(self, mode="human", action=None):
        """Render the current board using Matplotlib"""
        fig, ax = plt.subplots(figsize=(4, 4))
        ax.set_xticks([])
        ax.set_yticks([])
        ax.set_xlim(-0.5, self.size - 0.5)
        ax.set_ylim(-0.5, self.size - 0.5)
        COLOR_MAP = {0: "#cdc1b4", 1: "#66ccff", 2: "#ff6680"}
        TEXT_COLOR = {1: "white", 2: "white"}
        for i in range(self.size):
            for j in range(self.size):
                rank = self.board[i, j]
                color = COLOR_MAP.get(rank, "#fefefe")
                text_color = TEXT_COLOR.get(rank, "black")
                rect = plt.Rectangle((j - 0.5, i - 0.5), 1, 1, facecolor=color, edgecolor="black")
                ax.add_patch(rect)
                if rank != 0:
                    ax.text(j, i, str(tile_value(rank)), ha='center', va='center',
                            fontsize=16, fontweight='bold', color=text_color)
        title = f"score: {self.score} | next: {tile_value(self.board.current_hint())}"
        if action is not None:
            title += f" | action: {self.actions[action]}"
        plt.title(title)
        plt.gca().invert_yaxis()
        if mode == "human":
            plt.show()
        return fig
