from typing import Dict, Sequence

import matplotlib.pyplot as plt
from matplotlib.figure import Figure

from mhdprec.solvers.newton import Solution


def plot_residual_history(
    solution: Solution, title: str = "Newton convergence", show: bool = True
) -> Figure:
    """
    Plot the infinity norm of the Newton residual at every iteration.

    :param solution:
        Solution returned by the Newton-Raphson solver.

    :param title:
        Title for the plot.

    :param show:
        Whether to display the figure.

    :return:
        The matplotlib Figure.
    """
    fig, ax = plt.subplots()
    history = solution.residual_history
    ax.semilogy(range(len(history)), history, marker="o")
    ax.axhline(
        solution.initial_residual * 1e-6, color="gray", linestyle="--", label="1e-6 x initial"
    )
    ax.set_xlabel("Newton iteration")
    ax.set_ylabel(r"$\|F(x_k)\|_\infty$")
    ax.set_title(title)
    ax.legend()
    if show:
        plt.show()
    return fig


def plot_linear_iterations(
    linear_iterations: Dict[str, Sequence[int]],
    title: str = "GMRES iterations per Newton step",
    show: bool = True,
) -> Figure:
    """
    Compare the Krylov iterations spent in each Newton step by several approaches.

    :param linear_iterations:
        Dict mapping an approach label to its per-step iteration counts.

    :param title:
        Title for the plot.

    :param show:
        Whether to display the figure.
    """
    fig, ax = plt.subplots()
    for label, iterations in linear_iterations.items():
        ax.plot(range(1, len(iterations) + 1), iterations, marker="s", label=label)
    ax.set_xlabel("Newton iteration")
    ax.set_ylabel("Krylov iterations")
    ax.set_title(title)
    ax.legend()
    if show:
        plt.show()
    return fig
