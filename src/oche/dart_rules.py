"""
Darts scoring rules for a single throw, plus small scoring helpers.

All functions are pure. ``target`` is the number hit: 0 for a miss, 1-20,
or 25 for the bull. ``multiplier`` is 1 (single), 2 (double) or 3 (treble).
"""
from typing import List

from .errors import ValidationError

MISS = 0
BULL = 25
MULTIPLIERS = (1, 2, 3)
MIN_CHECKOUT = 2
MAX_CHECKOUT = 170
DARTS_PER_TURN = 3


class DartOutcome:
    """Result of evaluating one dart against the score it was thrown at."""

    def __init__(self, value, score_before, score_after, is_bust, is_checkout):
        self.value = value
        self.score_before = score_before
        self.score_after = score_after
        self.is_bust = is_bust
        self.is_checkout = is_checkout

    def __repr__(self):
        return (f"DartOutcome(value={self.value}, score_after={self.score_after}, "
                f"is_bust={self.is_bust}, is_checkout={self.is_checkout})")


def is_valid_dart(multiplier: int, target: int) -> bool:
    """Check a multiplier/target combination."""
    if multiplier not in MULTIPLIERS:
        return False
    if target == BULL:
        # Bull can only be single or double
        return multiplier <= 2
    if target == MISS:
        return multiplier == 1
    return 1 <= target <= 20


def validate_dart(multiplier: int, target: int):
    """Raise ``ValidationError`` for an impossible dart."""
    if isinstance(multiplier, bool) or isinstance(target, bool) \
            or not isinstance(multiplier, int) or not isinstance(target, int):
        raise ValidationError(f'Dart must be integers, got multiplier={multiplier!r}, target={target!r}')
    if not is_valid_dart(multiplier, target):
        raise ValidationError(f'Invalid dart: multiplier {multiplier} on target {target}')


def calculate_dart_value(multiplier: int, target: int) -> int:
    if target == BULL:
        return 50 if multiplier == 2 else 25
    if target == MISS:
        return 0
    return multiplier * target


def is_bust(current_score: int, value: int, multiplier: int) -> bool:
    """A throw busts if it leaves less than zero, exactly one, or zero off a non-double."""
    new_score = current_score - value
    if new_score < 0:
        return True
    if new_score == 1:
        return True
    if new_score == 0 and multiplier != 2:
        return True
    return False


def is_checkout(current_score: int, value: int, multiplier: int) -> bool:
    return current_score - value == 0 and multiplier == 2


def is_checkable(score: int) -> bool:
    """Whether a remaining score can be finished in one visit (2 up to 170)."""
    return MIN_CHECKOUT <= score <= MAX_CHECKOUT


def evaluate_dart(current_score: int, multiplier: int, target: int) -> DartOutcome:
    """Validate and score one dart thrown at ``current_score``.

    On a bust ``score_after`` stays at ``current_score``; the caller reverts
    the whole turn.
    """
    validate_dart(multiplier, target)
    value = calculate_dart_value(multiplier, target)
    bust = is_bust(current_score, value, multiplier)
    checkout = is_checkout(current_score, value, multiplier)
    score_after = current_score if bust else current_score - value
    return DartOutcome(value, current_score, score_after, bust, checkout)


def format_dart(multiplier: int, target: int) -> str:
    """Short label for a dart, e.g. "T20", "D16", "25", "D25", "0"."""
    if target == MISS:
        return '0'
    if target == BULL:
        return 'D25' if multiplier == 2 else '25'
    prefix = {3: 'T', 2: 'D'}.get(multiplier, '')
    return f'{prefix}{target}'


def get_max_possible_score(darts_remaining: int) -> int:
    return darts_remaining * 60


def calculate_three_dart_average(total_score: int, darts_thrown: int) -> float:
    if darts_thrown == 0:
        return 0
    return (total_score / darts_thrown) * 3


def calculate_checkout_percentage(successful_checkouts: int, checkout_attempts: int) -> float:
    if checkout_attempts == 0:
        return 0
    return (successful_checkouts / checkout_attempts) * 100


SUGGESTED_CHECKOUTS = {
    170: ['T20 T20 D25'],
    167: ['T20 T19 D25'],
    164: ['T20 T18 D25'],
    161: ['T20 T17 D25'],
    160: ['T20 T20 D20'],
    158: ['T20 T20 D19'],
    157: ['T20 T19 D20'],
    156: ['T20 T20 D18'],
    155: ['T20 T19 D19'],
    154: ['T20 T18 D20'],
    153: ['T20 T19 D18'],
    152: ['T20 T20 D16'],
    151: ['T20 T17 D20'],
    150: ['T20 T18 D18'],
    149: ['T20 T19 D16'],
    148: ['T20 T20 D14'],
    147: ['T20 T17 D18'],
    146: ['T20 T18 D16'],
    145: ['T20 T19 D14'],
    144: ['T20 T20 D12'],
    143: ['T20 T17 D16'],
    142: ['T20 T14 D20'],
    141: ['T20 T19 D12'],
    140: ['T20 T20 D10'],
    139: ['T20 T13 D20'],
    138: ['T20 T18 D12'],
    137: ['T20 T19 D10'],
    136: ['T20 T20 D8'],
    135: ['T20 T17 D12'],
    134: ['T20 T14 D16'],
    133: ['T20 T19 D8'],
    132: ['T20 T16 D12'],
    131: ['T20 T13 D16'],
    130: ['T20 T18 D8'],
    129: ['T19 T16 D12'],
    128: ['T18 T14 D16'],
    127: ['T20 T17 D8'],
    126: ['T19 T19 D6'],
    125: ['T20 T19 D4'],
    124: ['T20 T16 D8'],
    123: ['T19 T16 D9'],
    122: ['T18 T18 D7'],
    121: ['T20 T11 D14'],
    120: ['T20 S20 D20'],
    100: ['T20 D20'],
    80: ['T20 D10'],
    60: ['S20 D20'],
    50: ['S10 D20', 'D25'],
    40: ['D20'],
    36: ['D18'],
    32: ['D16'],
    20: ['D10'],
    16: ['D8'],
    12: ['D6'],
    10: ['D5'],
    8: ['D4'],
    6: ['D3'],
    4: ['D2'],
    2: ['D1'],
}


def get_suggested_checkouts(score: int) -> List[str]:
    return list(SUGGESTED_CHECKOUTS.get(score, []))
