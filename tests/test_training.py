import numpy as np
import pytest

import playing
import training_agent
from approximator import NTupleApproximator, save_weights
from threes_agent import Agent
from threes_env import ThreesEnv


def test_play_episode_runs_to_game_over():
    agent = Agent.from_args("search=random seed=3")
    env = ThreesEnv(seed=3)
    score, max_rank, steps = training_agent.play_episode(agent, env)
    assert env.is_game_over()
    assert score == env.board.score()
    assert max_rank == env.board.max_rank()
    assert steps > 0


def test_train_learns_weights(capsys):
    agent = Agent.from_args("alpha=0.1")
    scores = training_agent.train(agent, ThreesEnv(seed=1), num_episodes=3, block=2)
    assert len(scores) == 3
    assert all(s >= 0 for s in scores)
    assert any(w.any() for w in agent.approximator.weights)
    out = capsys.readouterr().out
    assert "[Train] Episode 2" in out
    assert "[Train] Episode 3" in out


def test_block_statistics():
    stats = training_agent.block_statistics([10, 30, 20, 40], [4, 5, 5, 6])
    assert stats["avg"] == 25.0
    assert stats["max"] == 40
    assert stats["reached"] == {6: 1.0, 12: 0.75, 24: 0.25}


def test_plot_scores(tmp_path):
    path = tmp_path / "curve.png"
    training_agent.plot_scores(list(range(150)), path)
    assert path.exists()


def test_training_main_saves_weights(tmp_path):
    path = tmp_path / "weights.bin"
    training_agent.main(["--episodes", "2", "--block", "1", "--seed", "0", "--slider", f"save={path}"])
    assert path.exists()


def test_training_main_rejects_bad_options():
    with pytest.raises(SystemExit):
        training_agent.main(["--episodes", "1", "--slider", "alpha=oops"])


def test_evaluate_does_not_touch_weights():
    weights = NTupleApproximator().weights
    scores, ranks = playing.evaluate(weights, num_games=2, seed=4)
    assert len(scores) == 2 and len(ranks) == 2
    assert not any(w.any() for w in weights)


def test_parallel_evaluate_uses_independent_replicas():
    weights = NTupleApproximator().weights
    scores, ranks = playing.parallel_evaluate(weights, num_games=3, num_processes=2, seed=8)
    assert len(scores) == 3 and len(ranks) == 3
    assert not any(w.any() for w in weights)


def test_playing_main(tmp_path, capsys):
    path = tmp_path / "weights.bin"
    save_weights(NTupleApproximator().weights, path)
    playing.main(["--load", str(path), "--games", "2", "--seed", "1"])
    assert "[Play] 2 games" in capsys.readouterr().out


def test_playing_main_missing_weights_exits(tmp_path):
    with pytest.raises(SystemExit):
        playing.main(["--load", str(tmp_path / "missing.bin")])
