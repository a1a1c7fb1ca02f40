"""
Step driver for the Barnes-Hut simulation.

Simulation owns the current tree and repeatedly replaces it with
``tree.advance(dt)``. After every step the new state is handed to the
output collaborators (per-step CSV files and a checkpoint store) through a
bounded background writer, so disk I/O never stalls the step loop.
"""

from __future__ import annotations

import logging
import math
import warnings
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Sequence, Union

from .checkpoint import CheckpointStore, CheckpointWarning, StorageError
from .constants import DEFAULT_MARGIN, DEFAULT_OPENING_ANGLE, G
from .export import BackgroundWriter, OutputWarning, step_path, write_csv
from .spatial.octree import Octree
from .types import Body, BodyLike, Event, EventType, VectorLike
from .validation import (
    ValidationError,
    validate_max_workers,
    validate_steps,
    validate_time_step,
)

if TYPE_CHECKING:
    from typing_extensions import Self

logger = logging.getLogger(__name__)

DEFAULT_STEPS = 100


class Simulation:
    """
    Runs a fixed number of Barnes-Hut steps.

    Provides:
    - Event system (start/tick/end events)
    - Bounded thread pool for the per-body force pass
    - Background CSV output and checkpointing with backpressure

    Example:
        sim = Simulation(
            bodies=uniform_sphere(1000, radius=100.0, rng=1),
            opening_angle=0.5,
            dt=0.01,
            steps=200,
            gravitational_constant=1.0,
            output_dir="output",
        )
        sim.run()

        print(sim.time, sim.tree.count)
    """

    def __init__(
        self,
        *,
        bodies: Optional[Sequence[BodyLike]] = None,
        tree: Optional[Octree] = None,
        opening_angle: Optional[float] = None,
        region: Optional[tuple[VectorLike, float]] = None,
        dt: float = 1.0,
        steps: Optional[int] = None,
        duration: Optional[float] = None,
        start_time: float = 0.0,
        max_workers: Optional[int] = None,
        gravitational_constant: Optional[float] = None,
        margin: Optional[float] = None,
        output_dir: Optional[Union[str, Path]] = None,
        checkpoint: Optional[Union[str, Path, CheckpointStore]] = None,
        max_pending_writes: int = 8,
        log_interval: int = 10,
        validate_each_step: bool = False,
        on_start: Optional[Callable[[Optional[Event]], None]] = None,
        on_tick: Optional[Callable[[Optional[Event]], None]] = None,
        on_end: Optional[Callable[[Optional[Event]], None]] = None,
    ) -> None:
        """
        Initialize a simulation.

        Args:
            bodies: Initial bodies (Body objects or 7-value rows)
            tree: A prebuilt initial tree (instead of bodies). The tree carries
                its own opening angle, G, margin and region, so none of those
                may be passed alongside it.
            opening_angle: Barnes-Hut threshold (default 0.5)
            region: Initial (origin, edge) cube. Fitted around the bodies if None.
            dt: Time step
            steps: Number of steps to run
            duration: Total simulated time (alternative to steps)
            start_time: Simulation time of the initial state
            max_workers: Force-pass thread pool size (None for the default)
            gravitational_constant: G used by the force law (default SI G)
            margin: Padding when refitting the region each step (default 1.0)
            output_dir: Directory for per-step CSV files (None disables)
            checkpoint: CheckpointStore or database path (None disables)
            max_pending_writes: Bound on outstanding background writes
            log_interval: Log progress every this many steps (0 disables)
            validate_each_step: Run the tree invariant check after every step
            on_start: Callback for start event
            on_tick: Callback for tick event
            on_end: Callback for end event

        Raises:
            ValidationError: On inconsistent or invalid parameters
            OutOfBoundsError: If a body lies outside the given region
        """
        if tree is not None and bodies is not None:
            raise ValidationError("Pass either bodies or tree, not both")
        if tree is not None:
            given = [
                name
                for name, value in (
                    ("opening_angle", opening_angle),
                    ("region", region),
                    ("gravitational_constant", gravitational_constant),
                    ("margin", margin),
                )
                if value is not None
            ]
            if given:
                raise ValidationError(
                    f"{', '.join(given)} cannot be combined with a prebuilt tree; "
                    "configure the tree instead"
                )
        if steps is not None and duration is not None:
            raise ValidationError("Pass either steps or duration, not both")

        self._dt = validate_time_step(dt)
        if duration is not None:
            self._steps = validate_steps(math.ceil(validate_time_step(duration) / self._dt))
        else:
            self._steps = validate_steps(DEFAULT_STEPS if steps is None else steps)

        self._max_workers = validate_max_workers(max_workers)
        self._time = float(start_time)
        self._step = 0
        self._log_interval = max(0, int(log_interval))
        self._validate_each_step = validate_each_step
        self._output_dir = Path(output_dir) if output_dir is not None else None
        self._max_pending_writes = max_pending_writes
        self._events: dict[EventType, Callable[[Optional[Event]], None]] = {}

        if tree is None:
            items = [b if isinstance(b, Body) else Body.from_row(b) for b in bodies or []]
            origin, edge = region if region is not None else (None, None)
            tree = Octree.from_bodies(
                items,
                opening_angle=DEFAULT_OPENING_ANGLE if opening_angle is None else opening_angle,
                gravitational_constant=G if gravitational_constant is None else gravitational_constant,
                margin=DEFAULT_MARGIN if margin is None else margin,
                region_origin=origin,
                region_edge=edge,
            )
        self._tree = tree

        self._owns_store = False
        if checkpoint is None or isinstance(checkpoint, CheckpointStore):
            self._store = checkpoint
        else:
            self._store = CheckpointStore(checkpoint)
            self._owns_store = True

        # Register event callbacks
        if on_start:
            self._events[EventType.start] = on_start
        if on_tick:
            self._events[EventType.tick] = on_tick
        if on_end:
            self._events[EventType.end] = on_end

        self._executor: Optional[ThreadPoolExecutor] = None
        self._writer: Optional[BackgroundWriter] = None

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def tree(self) -> Octree:
        """The current simulation state."""
        return self._tree

    @property
    def bodies(self) -> list[Body]:
        return self._tree.bodies()

    @property
    def time(self) -> float:
        """Simulated time of the current state."""
        return self._time

    @property
    def step(self) -> int:
        """Number of steps completed."""
        return self._step

    @property
    def steps(self) -> int:
        """Number of steps run() performs."""
        return self._steps

    @steps.setter
    def steps(self, value: int) -> None:
        self._steps = validate_steps(value)

    @property
    def dt(self) -> float:
        return self._dt

    @dt.setter
    def dt(self, value: float) -> None:
        """Set the time step used by subsequent ticks."""
        self._dt = validate_time_step(value)

    @property
    def log_interval(self) -> int:
        return self._log_interval

    @log_interval.setter
    def log_interval(self, value: int) -> None:
        """Set the progress logging interval, 0 disables it."""
        self._log_interval = max(0, int(value))

    @property
    def checkpoint_store(self) -> Optional[CheckpointStore]:
        return self._store

    # -------------------------------------------------------------------------
    # Event System
    # -------------------------------------------------------------------------

    def on(self, event: EventType | str, callback: Callable[[Optional[Event]], None]) -> Self:
        """
        Subscribe to a simulation event.

        Args:
            event: Event type (EventType enum or string name)
            callback: Function to call when event fires

        Returns:
            self (for chaining)
        """
        if isinstance(event, str):
            event = EventType[event]
        self._events[event] = callback
        return self

    def trigger(self, event: Event) -> None:
        """Trigger an event, calling the registered callback."""
        event_type = event.get("type")
        if event_type is not None and event_type in self._events:
            self._events[event_type](event)

    def _event(self, event_type: EventType) -> Event:
        return {"type": event_type, "step": self._step, "time": self._time, "tree": self._tree}

    # -------------------------------------------------------------------------
    # Lifecycle Methods
    # -------------------------------------------------------------------------

    def tick(self) -> Octree:
        """
        Advance the simulation by one step.

        Returns:
            The new tree

        Raises:
            OutOfBoundsError: If the rebuilt tree cannot hold a moved body
            InvariantViolationError: If validate_each_step finds corruption
        """
        self._tree = self._tree.advance(
            self._dt, executor=self._executor, max_workers=self._max_workers
        )
        self._step += 1
        self._time += self._dt

        if self._validate_each_step:
            self._tree.validate()

        logger.debug(
            "step %d t=%g: %d bodies, region edge %g",
            self._step,
            self._time,
            self._tree.count,
            self._tree.region_edge,
        )
        if self._log_interval and self._step % self._log_interval == 0:
            logger.info("step %d/%d t=%g bodies=%d", self._step, self._steps, self._time, self._tree.count)

        self._emit_output()
        self.trigger(self._event(EventType.tick))
        return self._tree

    def run(self) -> Self:
        """
        Run every step.

        Fires start, writes the initial state, ticks ``steps`` times, waits
        for all output to be written and fires end.

        Returns:
            self (for chaining)
        """
        logger.info(
            "starting run: %d bodies, %d steps of dt=%g, theta=%g",
            self._tree.count,
            self._steps,
            self._dt,
            self._tree.opening_angle,
        )
        self._writer = BackgroundWriter(max_pending=self._max_pending_writes)
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="octree-nbody-force"
        )
        try:
            self.trigger(self._event(EventType.start))
            self._emit_output()
            for _ in range(self._steps):
                self.tick()
        finally:
            self._executor.shutdown(wait=True)
            self._executor = None
            self._writer.close()
            errors = self._writer.errors
            self._writer = None

        for error in errors:
            warnings.warn(f"Output write failed: {error}", OutputWarning, stacklevel=2)

        logger.info("run finished at t=%g with %d bodies", self._time, self._tree.count)
        self.trigger(self._event(EventType.end))
        return self

    def close(self) -> None:
        """Close the checkpoint store if this simulation opened it."""
        if self._owns_store and self._store is not None:
            self._store.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    def _emit_output(self) -> None:
        """Hand the current state to the output collaborators."""
        tree, time, step = self._tree, self._time, self._step

        if self._output_dir is not None:
            path = step_path(self._output_dir, step)
            if self._writer is not None:
                self._writer.submit(write_csv, path, tree)
            else:
                write_csv(path, tree)

        if self._store is not None:
            if self._writer is not None:
                self._writer.submit(self._persist, time, tree)
            else:
                self._persist(time, tree)

    def _persist(self, time: float, tree: Octree) -> None:
        """Store a checkpoint; storage failures do not stop the run."""
        assert self._store is not None
        try:
            self._store.persist(time, tree)
        except StorageError as e:
            logger.warning("checkpoint @ t=%g failed: %s", time, e)
            warnings.warn(
                f"Checkpoint at t={time} was not persisted: {e}",
                CheckpointWarning,
                stacklevel=2,
            )


__all__ = ["Simulation", "DEFAULT_STEPS"]
