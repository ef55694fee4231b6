import argparse
import sys
import time
from multiprocessing import Pool

import numpy as np
import matplotlib.pyplot as plt

from approximator import NTupleApproximator, WeightFileError
from threes_agent import Agent, AgentConfig
from threes_env import ThreesEnv
from training_agent import block_statistics, play_episode


def frozen_agent(weights, expectimax=False):
    """An agent playing a private copy of the weights with learning switched off"""
    approximator = NTupleApproximator(weights=[w.copy() for w in weights])
    return Agent(AgentConfig(alpha=0.0, expectimax=expectimax), approximator=approximator)


def evaluate(weights, num_games, seed=None, expectimax=False):
    """Scores and max ranks of `num_games` games played without learning"""
    agent = frozen_agent(weights, expectimax)
    env = ThreesEnv(seed=seed)
    scores, ranks = [], []
    for _ in range(num_games):
        score, max_rank, _ = play_episode(agent, env)
        scores.append(score)
        ranks.append(max_rank)
    return scores, ranks


def evaluate_worker(args):
    weights, num_games, seed, expectimax = args
    return evaluate(weights, num_games, seed, expectimax)


def parallel_evaluate(weights, num_games, num_processes=4, seed=None, expectimax=False):
    """
    Spread the games over worker processes. Every worker gets its own replica of
    the weights; nothing is written back.
    """
    shares = [num_games // num_processes + (1 if i < num_games % num_processes else 0)
              for i in range(num_processes)]
    jobs = []
    for i, share in enumerate(shares):
        if share == 0:
            continue
        worker_seed = None if seed is None else seed + i
        jobs.append((weights, share, worker_seed, expectimax))

    scores, ranks = [], []
    with Pool(processes=len(jobs)) as pool:
        for s, r in pool.imap_unordered(evaluate_worker, jobs):
            scores.extend(s)
            ranks.extend(r)
            print(f"[Play] Collected {len(scores)} games so far...")
    return scores, ranks


def watch(weights, seed=None, expectimax=False, pause=0.5):
    """Play one game on screen"""
    agent = frozen_agent(weights, expectimax)
    env = ThreesEnv(seed=seed)
    env.reset()
    agent.open_episode()
    while True:
        action = agent.take_action(env.board)
        if not action:
            break
        env.step(action.op)
        env.render(mode="rgb_array", action=action.op)
        plt.pause(pause)
        plt.close("all")
    agent.close_episode()
    print("Game Over!")
    print("Final Score:", env.score)
    return env.score


def main(argv=None):
    parser = argparse.ArgumentParser(description="Evaluate a trained Threes! n-tuple agent")
    parser.add_argument("--load", required=True, help="weight snapshot to play with")
    parser.add_argument("--games", type=int, default=100)
    parser.add_argument("--processes", type=int, default=1)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--expectimax", action="store_true")
    parser.add_argument("--render", action="store_true", help="watch a single game instead")
    args = parser.parse_args(argv)

    try:
        weights = Agent(AgentConfig(load=args.load, alpha=0.0)).approximator.weights
    except WeightFileError as e:
        print(f"[Play] {e}")
        sys.exit(1)

    if args.render:
        watch(weights, args.seed, args.expectimax)
        return

    start_time = time.time()
    if args.processes > 1:
        scores, ranks = parallel_evaluate(weights, args.games, args.processes, args.seed, args.expectimax)
    else:
        scores, ranks = evaluate(weights, args.games, args.seed, args.expectimax)
    stats = block_statistics(scores, ranks)
    print(f"[Play] {len(scores)} games | Time: {time.time() - start_time:.2f}s | "
          f"Avg Score: {stats['avg']:.2f} | Max Score: {stats['max']} | Std: {np.std(scores):.2f}")
    for tile, share in stats["reached"].items():
        print(f"[Play]   {tile:>6}  {share * 100:6.2f}%")


if __name__ == '__main__':
    main()
