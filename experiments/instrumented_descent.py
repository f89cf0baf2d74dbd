"""
Instrumented Descent: watching a solver through lenses.

Runs gradient descent on an ill-conditioned quadratic and instruments it
with three lenses:
    1. "iterate"  - the current point (positional)
    2. "step"     - loss and gradient norm (keyed)
    3. "restart"  - fired when the step size is cut back

A live listener prints progress every few steps; a capture session collects
the full trajectory for analysis afterwards. The solver itself never knows
who is watching.
"""

import numpy as np

import lensing


def quadratic(A: np.ndarray, b: np.ndarray):
    """Return loss and gradient callables for 0.5 x^T A x - b^T x."""

    def loss(x):
        return float(0.5 * x @ A @ x - b @ x)

    def grad(x):
        return A @ x - b

    return loss, grad


def descend(loss, grad, x0: np.ndarray, lr: float = 0.5, n_steps: int = 60) -> np.ndarray:
    """Plain gradient descent with step-size backtracking."""
    x = x0.copy()
    f = loss(x)
    for step in range(n_steps):
        g = grad(x)
        candidate = x - lr * g
        f_new = loss(candidate)
        while f_new > f:
            lr *= 0.5
            lensing.fire("restart", step=step, lr=lr)
            candidate = x - lr * g
            f_new = loss(candidate)
        x, f = candidate, f_new
        lensing.fire("iterate", x)
        lensing.fire("step", step=step, loss=f, grad_norm=float(np.linalg.norm(g)))
    return x


def main():
    A = np.array([[10.0, 0.0], [0.0, 1.0]])
    b = np.array([1.0, 1.0])
    loss, grad = quadratic(A, b)

    def report(values):
        if values["step"] % 10 == 0:
            print(f"step={values['step']:3d}  loss={values['loss']:+.6f}  |g|={values['grad_norm']:.2e}")

    lensing.register("step", "report", report, kwargs=True)
    lensing.register("restart", "warn", lambda v: print(f"  backtrack at step {v['step']}: lr={v['lr']:.4f}"), kwargs=True)

    print("🔬 Instrumented gradient descent")
    print("=" * 60)
    x_final, session = lensing.capture(descend, loss, grad, np.array([1.0, 1.0]))

    trajectory = session.stack("iterate")
    losses = session.stack("step", key="loss")
    x_star = np.linalg.solve(A, b)

    print("=" * 60)
    print(f"firings captured: {len(session)} across {session.lens_names()}")
    print(f"trajectory shape: {trajectory.shape}")
    print(f"backtracks:       {len(session.query('restart'))}")
    print(f"final loss:       {losses[-1]:+.6f}")
    print(f"distance to x*:   {np.linalg.norm(x_final - x_star):.2e}")

    # Same run, listeners silenced: capture still sees everything
    lensing.disable_all_listeners()
    _, quiet = lensing.capture(descend, loss, grad, np.array([1.0, 1.0]))
    lensing.enable_all_listeners()
    print(f"quiet rerun captured {len(quiet)} firings")


if __name__ == "__main__":
    main()
