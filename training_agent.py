import argparse
import sys
import time
from collections import Counter

import numpy as np
import matplotlib.pyplot as plt

from approximator import WeightFileError
from threes_agent import Agent, AgentConfig
from threes_env import ThreesEnv, tile_value


def play_episode(agent, env):
    """Play one game to the end; returns (score, max rank, number of slides)"""
    env.reset()
    agent.open_episode()
    steps = 0
    while True:
        action = agent.take_action(env.board)
        if not action:
            break
        env.step(action.op)
        steps += 1
    agent.close_episode()
    return env.score, env.board.max_rank(), steps


def block_statistics(scores, max_ranks):
    """Average/max score and, per max tile reached, the share of games ending on it or above"""
    counts = Counter(max_ranks)
    reached = {}
    above = 0
    for rank in sorted(counts, reverse=True):
        above += counts[rank]
        reached[tile_value(rank)] = above / len(max_ranks)
    return {
        "avg": float(np.mean(scores)),
        "max": int(np.max(scores)),
        "reached": dict(sorted(reached.items())),
    }


def train(agent, env, num_episodes, block=1000):
    score_history = []
    rank_history = []
    start_time = time.time()
    total_steps = 0
    for episode in range(num_episodes):
        score, max_rank, steps = play_episode(agent, env)
        score_history.append(score)
        rank_history.append(max_rank)
        total_steps += steps
        if (episode + 1) % block == 0 or episode + 1 == num_episodes:
            n = (episode % block) + 1
            stats = block_statistics(score_history[-n:], rank_history[-n:])
            elapsed = time.time() - start_time
            ops = total_steps / elapsed if elapsed > 0 else 0.0
            print(f"[Train] Episode {episode+1} | Time: {elapsed:.2f}s | Avg Score: {stats['avg']:.2f} | "
                  f"Max Score: {stats['max']} | Ops: {ops:.0f}/s")
            for tile, share in stats["reached"].items():
                print(f"[Train]   {tile:>6}  {share * 100:6.2f}%")
    return score_history


def plot_scores(scores, path, window=100):
    fig, ax = plt.subplots(figsize=(8, 4))
    ax.plot(scores, alpha=0.3, label="score")
    if len(scores) >= window:
        smooth = np.convolve(scores, np.ones(window) / window, mode="valid")
        ax.plot(range(window - 1, len(scores)), smooth, label=f"mean of {window}")
    ax.set_xlabel("Episodes")
    ax.set_ylabel("Scores")
    ax.set_title("Training Progress")
    ax.legend()
    fig.savefig(path)
    plt.close(fig)
    print(f"[Train] Saved training curve to {path}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Train a Threes! n-tuple agent by TD(0) self-play")
    parser.add_argument("--episodes", type=int, default=1000)
    parser.add_argument("--block", type=int, default=100, help="episodes per statistics block")
    parser.add_argument("--slider", default="", help="agent options, e.g. 'alpha=0.003 save=weights.bin'")
    parser.add_argument("--seed", type=int, default=None, help="seed of the tile placer")
    parser.add_argument("--plot", default=None, help="write the training curve to this image")
    args = parser.parse_args(argv)

    try:
        config = AgentConfig.from_args(args.slider)
        agent = Agent(config)
    except (ValueError, WeightFileError) as e:
        print(f"[Train] {e}")
        sys.exit(1)

    env = ThreesEnv(seed=args.seed)
    try:
        scores = train(agent, env, args.episodes, args.block)
    finally:
        try:
            agent.close()
        except WeightFileError as e:
            print(f"[Train] {e}")
            sys.exit(1)
    if args.plot:
        plot_scores(scores, args.plot)
    print("Training complete.")


if __name__ == "__main__":
    main()
