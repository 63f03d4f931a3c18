"""
Penalty weights, soft-thresholding, and the squared-error and Huber losses.
"""

import numpy as np
import pytest

from ilamm import ncvx


@pytest.fixture
def model():
    X = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
    Y = np.array([1.0, -2.0, 3.0])
    return ncvx(X, Y)


def test_lasso_weights_ignore_beta(model):
    for beta in [np.zeros(5), np.array([3.0, -1.0, 0.0, 10.0, 0.2])]:
        w = model.penalty_weight(beta, 0.7, "Lasso")
        assert w[0] == 0
        assert np.all(w[1:] == 0.7)


def test_scad_weights_piecewise(model):
    beta = np.array([5.0, 0.5, 1.0, 2.0, 3.7, 4.0, -2.0])
    w = model.penalty_weight(beta, 1.0, "SCAD")
    expected = np.array([0, 1, 1, 1.7 / 2.7, 0, 0, 1.7 / 2.7])
    assert np.allclose(w, expected)


def test_mcp_weights_piecewise(model):
    beta = np.array([5.0, 0.0, 1.5, -1.5, 3.0, 4.0])
    w = model.penalty_weight(beta, 1.0, "MCP")
    assert np.allclose(w, [0, 1, 0.5, 0.5, 0, 0])


@pytest.mark.parametrize("penalty, a", [("SCAD", 3.7), ("MCP", 3)])
def test_concave_weights_nonincreasing(model, penalty, a):
    Lambda = 0.8
    b = np.r_[0, np.linspace(0, 5, 401)]
    w = model.penalty_weight(b, Lambda, penalty)
    assert np.all(np.diff(w[1:]) <= 1e-12)
    assert np.all(w[1:] <= Lambda)
    assert np.all(w[1:][b[1:] > a * Lambda] == 0)
    # symmetric in the sign of beta
    assert np.allclose(w, model.penalty_weight(-b, Lambda, penalty))


def test_unknown_penalty(model):
    with pytest.raises(ValueError):
        model.penalty_weight(np.zeros(3), 1.0, "Ridge")


def test_soft_thresh_zero_and_shrinkage(model):
    t = np.array([0.0, 0.5, 2.0, 10.0])
    assert np.all(model.soft_thresh(np.zeros(4), t) == 0)

    v = np.array([-3.0, 0.2, 2.5, -0.1])
    out = model.soft_thresh(v, t)
    assert np.all(abs(out) <= np.maximum(abs(v) - t, 0) + 1e-15)
    assert np.allclose(out, [-3.0, 0.0, 0.5, 0.0])


def test_l2_and_huber_loss(model):
    res = np.array([0.5, -2.0, 3.0])
    assert np.isclose(model.loss(res), 13.25 / 6)
    assert np.isclose(model.loss(res, "Huber", 1.0), (0.125 + 1.5 + 2.5) / 3)
    # Huber loss is continuous at the hinge
    tau = 1.3
    eps = 1e-9
    lo = model.loss(np.array([tau - eps]), "Huber", tau)
    hi = model.loss(np.array([tau + eps]), "Huber", tau)
    assert abs(lo - hi) < 1e-8


def test_gradient_intercept_flag():
    X = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
    Y = np.array([1.0, -2.0, 3.0])
    res = np.array([0.5, -2.0, 3.0])

    frozen = ncvx(X, Y, intercept=False).gradient(res)
    free = ncvx(X, Y, intercept=True).gradient(res)
    assert frozen[0] == 0
    assert np.isclose(free[0], -np.mean(res))
    assert np.allclose(frozen[1:], free[1:])
    assert np.allclose(free[1:], [-(0.5 + 3.0) / 3, -(-2.0 + 3.0) / 3])


def test_huber_gradient_clips_residuals():
    X = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
    Y = np.zeros(3)
    model = ncvx(X, Y, intercept=True)
    res = np.array([0.5, -2.0, 3.0])
    grad = model.gradient(res, "Huber", 1.0)
    assert np.allclose(grad, -model.X.T.dot([0.5, -1.0, 1.0]) / 3)
    # a large tau gives back the squared-error gradient
    assert np.allclose(model.gradient(res, "Huber", 1e6), model.gradient(res))
