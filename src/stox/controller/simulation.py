"""
Simulation Engine
=================
This module runs the stochastic propagation of a population through a checked
model.

Why is this file needed?
------------------------
1. Bootstrapping: In every iteration each caster stage picks one row of its
   casting at random and splits its population accordingly, so repeated
   iterations yield resampled trajectories.
2. Quasi-zero floor: Probabilities below epsilon are raised to epsilon, so no
   stage ever receives exactly nothing (which would break ratios computed
   later).
3. Responsiveness: The loop is synchronous, but it calls a progress callback
   and polls a cancellation token between iterations. A GUI passes a callback
   that processes its events (see stox.view.table_models).

Classes:
    CancellationToken: Advisory stop flag polled between iterations.
    SimulationEngine: Owns the random generator and runs the iterations.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

import numpy as np

from stox.config import DIRECT, TERMINAL_KINDS
from stox.model.casting import CastingTable
from stox.model.errors import NotValidated
from stox.model.output import OutputLog, ReportedStage

if TYPE_CHECKING:
    from stox.model.stages import Stage, StageTree
    from stox.model.state import Model

logger = logging.getLogger(__name__)

# Called after every iteration with (iteration, output log of the run)
ProgressCallback = Callable[[int, OutputLog], None]


class CancellationToken:
    """Cooperative cancellation flag. Only observed at iteration boundaries."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def make_seed_sequence() -> np.random.SeedSequence:
    """
    Seed from the OS entropy source mixed with a coarse (seconds) and a fine
    (microseconds) clock reading, so rapid successive runs never collide.
    """
    hardware = int.from_bytes(os.urandom(16), "little")
    coarse = int(time.time())
    fine = time.time_ns() // 1000
    return np.random.SeedSequence([hardware, coarse, fine])


class SimulationEngine:
    """
    Propagates populations through a stage tree.

    The engine owns its pseudorandom generator. Pass `seed` (or a ready
    `rng`) for reproducible runs; otherwise the generator is seeded once from
    high-entropy sources when the engine is built.
    """

    def __init__(self, seed: Optional[int] = None, rng: Optional[np.random.Generator] = None) -> None:
        if rng is not None:
            self.rng = rng
        elif seed is not None:
            self.rng = np.random.default_rng(seed)
            logger.debug(f"Random generator seeded with {seed}.")
        else:
            self.rng = np.random.default_rng(make_seed_sequence())
            logger.debug("Random generator seeded from OS entropy and the clock.")

        # Population that reached each stage in the latest iteration
        self.arrivals: Dict[int, float] = {}
        self._tree: Optional[StageTree] = None
        self._tables: Dict[str, CastingTable] = {}
        self._epsilon: float = 0.0

    def draw_row(self, table: CastingTable) -> int:
        """Bootstrap one row index; single-row castings always use row 0."""
        if table.rows > 1:
            return int(self.rng.integers(0, table.rows))
        return 0

    def cast(self, stage: Stage, population: float) -> None:
        """Receive population at stage and pass it on through the subtree below it."""
        tree = self._tree
        if tree is None:
            raise RuntimeError("Populations can only be cast while a run is in progress.")

        # Explicit stack, so the depth of the tree is not bound by the recursion limit
        pending: List[Tuple[Stage, float]] = [(stage, population)]
        while pending:
            current, arriving = pending.pop()
            self.arrivals[current.handle] = arriving

            ref = current.casting_ref
            if ref in TERMINAL_KINDS:
                continue

            children = current.children
            if ref == DIRECT or (ref == "" and len(children) == 1):
                pending.append((tree[children[0]], arriving))
                continue

            table = self._tables[ref]
            row = table.values[self.draw_row(table)]
            shares = [
                (tree[child], arriving * max(float(row[c]), self._epsilon))
                for c, child in enumerate(children)
            ]
            # Reversed so the children are visited (and draw their rows) in order
            pending.extend(reversed(shares))

    def run(
        self,
        model: Model,
        n: float,
        iters: int,
        eps: float,
        cancel_token: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> OutputLog:
        """
        Run iters iterations starting with population n at the Start stage.

        Raises NotValidated (doing nothing) unless the model passed its check
        since the last edit.
        """
        if not model.checked:
            raise NotValidated("Cannot run a model not validated by checking.")
        if iters < 0:
            raise ValueError(f"Iterations must be >= 0, got {iters}.")
        if n < 0:
            raise ValueError(f"Initial population must be >= 0, got {n}.")
        if eps < 0:
            raise ValueError(f"Epsilon must be >= 0, got {eps}.")

        tree = model.tree
        reported: List[ReportedStage] = [
            ReportedStage(s.handle, s.hierarchical_id, s.name)
            for s in tree.iter_preorder() if s.report
        ]
        log = OutputLog(initial_population=n, epsilon=eps, iterations=iters, stages=reported)

        self._tree = tree
        self._tables = dict(model.tables)
        self._epsilon = eps
        root = tree[tree.root]

        logger.info(f"Running model: N={n:g}, iterations={iters}, eps={eps:g}, reported stages={len(reported)}.")
        try:
            for i in range(1, iters + 1):
                if cancel_token is not None and cancel_token.cancelled:
                    log.cancelled = True
                    logger.info(f"Run cancelled after {i - 1} of {iters} iterations.")
                    break

                self.arrivals.clear()
                self.cast(root, n)
                log.record_iteration(i, [self.arrivals.get(s.handle, 0.0) for s in reported])

                if progress_callback is not None:
                    progress_callback(i, log)
        finally:
            self._tree = None
            self._tables = {}

        if not log.cancelled:
            logger.info("Model successfully ran.")
        return log
