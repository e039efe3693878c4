import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trackprop.constrained_step import ConstrainedStep, ConstraintType
from trackprop.definitions import UNCONSTRAINED_STEP, NavigationDirection


def test_initial_value_lives_in_user_tier():
    cs = ConstrainedStep(-123.0)
    assert cs.direction is NavigationDirection.BACKWARD
    assert float(cs) == -123.0
    assert cs.value_of(ConstraintType.USER) == -123.0
    assert cs.value_of(ConstraintType.ACTOR) == -UNCONSTRAINED_STEP
    assert cs.current_type() is ConstraintType.USER


def test_default_is_unconstrained_forward():
    cs = ConstrainedStep()
    assert cs.direction is NavigationDirection.FORWARD
    assert float(cs) == UNCONSTRAINED_STEP


def test_update_only_tightens():
    cs = ConstrainedStep(100.0)
    cs.update(20.0, ConstraintType.ACTOR)
    assert float(cs) == 20.0
    cs.update(50.0, ConstraintType.ACTOR)
    assert cs.value_of(ConstraintType.ACTOR) == 20.0
    cs.update(5.0, ConstraintType.ACTOR)
    assert float(cs) == 5.0
    assert cs.current_type() is ConstraintType.ACTOR


def test_update_with_release_can_loosen_same_tier():
    cs = ConstrainedStep(100.0)
    cs.update(20.0, ConstraintType.ACTOR)
    cs.update(50.0, ConstraintType.ACTOR, release=True)
    assert float(cs) == 50.0


def test_release_keeps_other_tiers():
    cs = ConstrainedStep(100.0)
    cs.update(30.0, ConstraintType.ABORTER)
    cs.update(10.0, ConstraintType.ACTOR)
    assert float(cs) == 10.0
    cs.release(ConstraintType.ACTOR)
    assert float(cs) == 30.0
    cs.release(ConstraintType.ABORTER)
    assert float(cs) == 100.0


def test_release_without_constraints_is_unconstrained():
    cs = ConstrainedStep(-UNCONSTRAINED_STEP)
    cs.update(-4.0, ConstraintType.ACTOR)
    cs.release(ConstraintType.ACTOR)
    assert float(cs) == -UNCONSTRAINED_STEP


def test_assign_sets_accuracy_and_direction():
    cs = ConstrainedStep(100.0)
    cs.assign(-7.0)
    assert cs.direction is NavigationDirection.BACKWARD
    assert cs.value_of(ConstraintType.ACCURACY) == -7.0


def test_huge_values_do_not_overflow():
    cs = ConstrainedStep(UNCONSTRAINED_STEP)
    cs.update(UNCONSTRAINED_STEP, ConstraintType.ABORTER)
    assert float(cs) == UNCONSTRAINED_STEP


def test_copy_is_independent():
    cs = ConstrainedStep(10.0)
    cp = cs.copy()
    cp.update(1.0, ConstraintType.ACTOR)
    assert float(cs) == 10.0
    assert float(cp) == 1.0


def test_string_lists_all_tiers():
    cs = ConstrainedStep(12.5)
    assert str(cs) == "(inf, inf, inf, 12.5)"
