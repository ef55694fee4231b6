import os
import numpy as np

# ------------------------------
# Feature table
# ------------------------------

# one digit per cell; tile ranks run 0..15 so 16 covers every rank the board can hold
RADIX = 16
BOARD_SIZE = 4

# the four rows and the four columns, as flat cell indices
DEFAULT_PATTERNS = [
    [0, 1, 2, 3],
    [4, 5, 6, 7],
    [8, 9, 10, 11],
    [12, 13, 14, 15],
    [0, 4, 8, 12],
    [1, 5, 9, 13],
    [2, 6, 10, 14],
    [3, 7, 11, 15],
]

NUM_TRANSFORMS = 8


class WeightFileError(OSError):
    """A weight snapshot could not be read or written."""


# --- Symmetry Transformations ---
def transform(board, transform_id, board_size=BOARD_SIZE):
    """
    Pure symmetry transform of a board grid. Ids 0-3 rotate clockwise by
    0/90/180/270 degrees, ids 4-7 reflect horizontally first and then rotate.
    """
    if not 0 <= transform_id < NUM_TRANSFORMS:
        raise ValueError(f"Invalid transform id: {transform_id}")
    grid = np.asarray(getattr(board, "grid", board)).reshape(board_size, board_size)
    if transform_id >= 4:
        grid = np.fliplr(grid)
    return np.rot90(grid, -(transform_id % 4))


def feature_index(board, pattern, radix=RADIX):
    """Mixed-radix encoding of the pattern cells of a board, read left to right"""
    flat = np.asarray(getattr(board, "grid", board)).ravel()
    index = 0
    for cell in pattern:
        value = int(flat[cell])
        if value < 0 or value >= radix:
            raise ValueError(f"Tile rank {value} at cell {cell} does not fit radix {radix}")
        index = index * radix + value
    return index


# --- NTupleApproximator ---
class NTupleApproximator:
    def __init__(self, patterns=None, weights=None, radix=RADIX, board_size=BOARD_SIZE):
        self.board_size = board_size
        self.radix = radix
        self.patterns = [list(p) for p in (DEFAULT_PATTERNS if patterns is None else patterns)]
        if weights is not None:
            self.weights = [np.asarray(w, dtype=np.float32) for w in weights]  # one dense table per pattern
        else:
            self.weights = [np.zeros(size, dtype=np.float32) for size in self.table_sizes()]
        if len(self.weights) != len(self.patterns):
            raise ValueError(f"{len(self.weights)} weight tables for {len(self.patterns)} patterns")
        for pattern, table in zip(self.patterns, self.weights):
            if table.shape != (self.radix ** len(pattern),):
                raise ValueError(f"Table of size {table.size} for a {len(pattern)}-tuple pattern")

        # Precompute, per pattern, the board cells read under every symmetry transform.
        self.symmetry_patterns = []
        self.powers = []
        for pattern in self.patterns:
            syms = self.generate_symmetries(pattern)
            self.symmetry_patterns.append(np.array(syms, dtype=np.intp))
            self.powers.append(self.radix ** np.arange(len(pattern) - 1, -1, -1, dtype=np.int64))

    def table_sizes(self):
        return [self.radix ** len(p) for p in self.patterns]

    def generate_symmetries(self, pattern):
        """
        Cells of the original board that land on the pattern cells after each
        of the eight transforms. Transforms that read the very same cells in
        the same order are kept once.
        """
        cells = np.arange(self.board_size * self.board_size)
        syms = []
        for t in range(NUM_TRANSFORMS):
            moved = transform(cells, t, self.board_size).ravel()
            coords = [int(moved[c]) for c in pattern]
            if coords not in syms:
                syms.append(coords)
        return syms

    def features(self, board):
        """Table indices touched by a board, one array per pattern"""
        flat = np.asarray(getattr(board, "grid", board)).ravel()
        if flat.max() >= self.radix or flat.min() < 0:
            raise ValueError(f"Board holds a tile rank outside 0..{self.radix - 1}")
        return [flat[syms] @ powers for syms, powers in zip(self.symmetry_patterns, self.powers)]

    def value(self, board):
        total = 0.0
        for table, indices in zip(self.weights, self.features(board)):
            total += float(table[indices].sum())
        return total

    def update(self, board, delta, alpha):
        """Add alpha * delta to every weight the board's value was summed from"""
        step = np.float32(alpha * delta)
        for table, indices in zip(self.weights, self.features(board)):
            np.add.at(table, indices, step)

    def copy(self):
        return NTupleApproximator(self.patterns, [w.copy() for w in self.weights], self.radix, self.board_size)


# ------------------------------
# Weight persistence
# ------------------------------

def save_weights(weights, path):
    """
    Snapshot layout, little-endian: uint32 table count, then per table a
    uint64 length followed by that many float32 weights.
    """
    try:
        with open(path, "wb") as f:
            f.write(np.array([len(weights)], dtype="<u4").tobytes())
            for table in weights:
                f.write(np.array([len(table)], dtype="<u8").tobytes())
                f.write(np.asarray(table, dtype="<f4").tobytes())
    except OSError as e:
        raise WeightFileError(f"Could not write weights to {path}: {e}") from e
    print(f"[Weights] Saved {len(weights)} tables to {path}")


def load_weights(path):
    if not os.path.exists(path):
        raise WeightFileError(f"Weight file {path} not found")
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise WeightFileError(f"Could not read weights from {path}: {e}") from e

    if len(data) < 4:
        raise WeightFileError(f"Weight file {path} is truncated")
    count = int(np.frombuffer(data, dtype="<u4", count=1)[0])
    offset = 4
    weights = []
    for i in range(count):
        if offset + 8 > len(data):
            raise WeightFileError(f"Weight file {path} is truncated at table {i}")
        size = int(np.frombuffer(data, dtype="<u8", count=1, offset=offset)[0])
        offset += 8
        if offset + 4 * size > len(data):
            raise WeightFileError(f"Weight file {path} is truncated at table {i}")
        table = np.frombuffer(data, dtype="<f4", count=size, offset=offset).astype(np.float32)
        weights.append(table)
        offset += 4 * size
    if offset != len(data):
        raise WeightFileError(f"Weight file {path} has {len(data) - offset} trailing bytes")
    print(f"[Weights] Loaded {count} tables from {path}")
    return weights
