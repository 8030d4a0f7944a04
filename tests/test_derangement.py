import pytest

from derangement import (
    MixedEntropySource,
    SequenceRandomSource,
    SystemRandomSource,
    backtracking_derangement,
    closed_form_derangement,
    generate_derangement,
    is_derangement,
    shuffle_derangement,
)
from errors import DerangementGenerationFailed


@pytest.mark.parametrize("strategy", ["shuffle", "backtrack"])
@pytest.mark.parametrize("n", [2, 3, 4, 5, 8, 13, 50])
def test_output_is_derangement(n, strategy):
    for _ in range(20):
        result = generate_derangement(n, SystemRandomSource(), strategy)
        assert len(result) == n
        assert is_derangement(result)


@pytest.mark.parametrize("strategy", ["shuffle", "backtrack"])
def test_three_participants_get_a_three_cycle(strategy):
    seen = set()
    for _ in range(200):
        seen.add(tuple(generate_derangement(3, MixedEntropySource("admin"), strategy)))
    assert seen <= {(1, 2, 0), (2, 0, 1)}


@pytest.mark.parametrize("n", [-1, 0, 1])
def test_too_small_fails_fast(n):
    with pytest.raises(ValueError):
        generate_derangement(n, SystemRandomSource())
    with pytest.raises(ValueError):
        closed_form_derangement(n)


def test_unknown_strategy():
    with pytest.raises(ValueError):
        generate_derangement(4, SystemRandomSource(), "sattolo")


def test_closed_form():
    assert closed_form_derangement(2) == [1, 0]
    assert closed_form_derangement(3) == [1, 2, 0]
    assert closed_form_derangement(4) == [1, 2, 3, 0]
    assert is_derangement(closed_form_derangement(17))


def test_shuffle_gives_up_after_max_attempts():
    # 2 % 3 == 2 and 1 % 2 == 1: every swap is a no-op, every shuffle is the identity
    source = SequenceRandomSource([2, 1])
    with pytest.raises(DerangementGenerationFailed):
        shuffle_derangement(3, source, max_attempts=100)


def test_shuffle_retries_past_fixed_points():
    # First attempt draws the identity, second draws (0 % 3, 0 % 2) -> [1, 2, 0]
    source = SequenceRandomSource([2, 1, 0, 0])
    assert shuffle_derangement(3, source, max_attempts=2) == [1, 2, 0]


def test_backtrack_falls_back_to_closed_form_when_budget_is_spent():
    assert backtracking_derangement(5, SystemRandomSource(), step_budget=0) == [1, 2, 3, 4, 0]


def test_backtrack_survives_adversarial_source():
    for values in ([0], [1], [2, 1], [7, 3, 3, 9]):
        assert is_derangement(backtracking_derangement(9, SequenceRandomSource(values)))


def test_is_derangement():
    assert is_derangement([1, 0])
    assert not is_derangement([0, 1])
    assert not is_derangement([1, 1])
    assert not is_derangement([2, 0])


def test_mixed_entropy_source_decorrelates_draws():
    source = MixedEntropySource("admin", b"salt")
    draws = {source.next_uint() for _ in range(10)}
    assert len(draws) == 10
    assert source.counter == 10


def test_sequence_source_needs_values():
    with pytest.raises(ValueError):
        SequenceRandomSource([])
