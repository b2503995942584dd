"""This module comprises the basic functionality and paradigms of the autotls
controller: a simple "control loop mechanism" in Python. Resources are watched
by a :class:`Reflector`, their keys are put into a :class:`WorkQueue`, and
workers consume the queue to transfer the state of the real-world resources to
the desired state.
"""
import asyncio
import logging
import signal

from math import exp
from statistics import mean
from contextlib import suppress

from aiohttp import ClientError
from kubernetes_asyncio.client.rest import ApiException

from autotls.data.core import WatchEventType
from .kubernetes import create_api_client

logger = logging.getLogger(__name__)


class WorkQueue(object):
    """Simple asynchronous work queue of keys.

    The queue guarantees strict sequential processing of keys: A key retrieved
    via :meth:`get` is not returned via :meth:`get` again until :meth:`done` with
    the corresponding key is called, even if the key was put into the queue again
    during the time of processing. Puts of a key that is already waiting in the
    queue are coalesced.

    Args:
        maxsize (int, optional): Maximal number of items in the queue before
            :meth:`put` blocks. Defaults to 0 which means the size is infinite
        debounce (float): default delay in seconds of :meth:`put`. A number higher
            than 0 means that the queue will wait the given time before giving a
            key.

    :attr:`dirty` holds the keys that should be given (again) by the :meth:`get`
    method.

    :attr:`timers` holds the current delayed put of a key, together with the loop
    time it is due at. Either this coroutine is canceled (if the key is put again
    with an earlier due time) or the key is added to :attr:`dirty`.

    :attr:`active` ensures that a key isn't added twice to the :attr:`queue`. Keys are
    added to this set when they are added to the :attr:`queue`, and are removed
    from the set when the worker calls the :meth:`done` method.

    """

    def __init__(self, maxsize=0, debounce=0):
        self.dirty = set()
        self.timers = dict()
        self.active = set()
        self.debounce = debounce
        self.queue = asyncio.Queue(maxsize=maxsize)

    async def _add_key_to_queue(self, key):
        """Puts the key in active and in the queue

        Args:
            key: Key that should be processed

        """
        self.active.add(key)
        await self.queue.put(key)

    async def _put_key(self, key):
        """Actually adds the key to the :attr:`dirty` set, and adds the key to the
        :attr:`queue` if it's not currently waiting or being worked on.

        """
        self.dirty.add(key)

        if key not in self.active:
            await self._add_key_to_queue(key)

    async def put(self, key, delay=None):
        """Put a key into the queue.

        A key already waiting for a delayed put is only rescheduled if the new put
        is due earlier. Hence bursts of puts are coalesced, and a retry scheduled
        far in the future never postpones an earlier put.

        Args:
            key: Key that should be processed
            delay (float, optional): Number of seconds the put should be
                delayed. If :data:`None` is given, :attr:`debounce` will be
                used.

        """
        if delay is None:
            delay = self.debounce

        loop = asyncio.get_running_loop()
        due = loop.time() + delay

        # Another put may register a timer while the previous one is cancelled.
        while key in self.timers:
            _, _, pending_due = self.timers[key]
            if pending_due <= due:
                return
            await self.cancel(key)

        if delay <= 0:
            await self._put_key(key)
            return

        async def delayed():
            await asyncio.sleep(delay)
            await self._put_key(key)

        def remove_timer(_):
            """Remove timer from dictionary and resolve the waiter for the removal"""
            _, removed, _ = self.timers.pop(key)
            removed.set_result(None)

        timer = loop.create_task(delayed())

        # We attach a waiter (future) to the timer task that will be used
        # to await the removal of the key from the timers dictionary. This
        # is required because it is not ensured that "done" callbacks of
        # futures are executed before other coroutines blocking in the
        # future are continued.
        removed = loop.create_future()
        timer.add_done_callback(remove_timer)

        self.timers[key] = timer, removed, due

    async def get(self):
        """Retrieve a key from the queue.

        The queue will not return this key as long as :meth:`done` is not
        called with this key.

        Returns:
            the key to process

        """
        key = await self.queue.get()
        self.dirty.discard(key)
        return key

    async def done(self, key):
        """Called by the worker to notify that the work on the given key is done. This
        method first removes the key from the :attr:`active` set, and then adds this key
        to the queue again if it was put in the meantime.

        Args:
            key: Key that was processed

        """
        self.active.discard(key)

        if key in self.dirty:
            await self._add_key_to_queue(key)

    async def cancel(self, key):
        """Cancel the delayed put for the given key. An attempt to cancel the put of a
        key which was not delayed does not raise any error, and is simply ignored.

        Args:
            key: Key of the delayed put

        """
        if key in self.timers:
            timer, removed, _ = self.timers[key]
            timer.cancel()
            with suppress(asyncio.CancelledError):
                await removed

    async def close(self):
        """Cancel all pending delayed puts."""
        for key in list(self.timers):
            await self.cancel(key)

    def empty(self):
        """Check if the queue is empty

        Returns
            bool: True if there are no dirty keys

        """
        return len(self.dirty) == 0

    def full(self):
        """Check if the queue is full

        Returns:
            bool: True if the queue is full

        """
        return self.queue.full()

    def size(self):
        """Returns the number of keys marked as "dirty"

        Returns:
            int: Number of dirty keys in the queue

        """
        return len(self.dirty)

    def is_active(self, key):
        """Check if a key is waiting in the queue or being processed."""
        return key in self.active


class Action(object):
    """Outcome of a reconciliation pass, telling the worker when the key should
    be processed again.

    Args:
        requeue_after (float, optional): number of seconds after which the key
            should be processed again. :data:`None` means the key is only
            processed again on a new event.

    """

    def __init__(self, requeue_after=None):
        self.requeue_after = requeue_after

    @classmethod
    def requeue(cls, delay=0):
        return cls(requeue_after=delay)

    @classmethod
    def await_change(cls):
        return cls(requeue_after=None)

    def __eq__(self, other):
        if not isinstance(other, Action):
            return NotImplemented
        return self.requeue_after == other.requeue_after

    def __repr__(self):
        return f"Action(requeue_after={self.requeue_after!r})"


class Reflector(object):
    """Component used to contact the Kubernetes API, fetch resources and handle
    disconnections.

    Args:
        listing (coroutine): the coroutine used to get the list of resources currently
            stored by the API. Its signature is: ``() -> list[resource]``.
        watching (callable): the callable used to watch updates on the resources, as
            as sent by the API. Its signature is: ``() -> watching object``. This
            watching object should be able to be used as asynchronous context
            manager, and as asynchronous generator of events with ``type`` and
            ``object`` attributes.
        on_list (coroutine): the coroutine called when listing all resources with the
            fetched resources as parameter. Its signature is: ``(resource) -> None``.
        on_add (coroutine, optional): the coroutine called during watch, when an
            ADDED event has been received. Its signature is: ``(resource) -> None``.
        on_update (coroutine, optional): the coroutine called during watch, when a
            MODIFIED event has been received. Its signature is: ``(resource) -> None``.
        on_delete (coroutine, optional): the coroutine called during watch, when a
            DELETED event has been received. Its signature is: ``(resource) -> None``.
        resource_plural (str, optional): name of the resource that the reflector is
            monitoring. For logging purpose. Default is ``"resources"``

    """

    def __init__(
        self,
        listing,
        watching,
        on_list=None,
        on_add=None,
        on_update=None,
        on_delete=None,
        resource_plural=None,
    ):
        self.client_list = listing
        self.client_watch = watching
        self.on_list = on_list
        self.on_add = on_add
        self.on_update = on_update
        self.on_delete = on_delete

        if not resource_plural:
            resource_plural = "resources"
        self.resource_plural = resource_plural

    async def list_resource(self):
        """Pass each resource returned by the current instance's listing function
        as parameter to the receiving function.
        """
        logger.info(f"Listing {self.resource_plural}")
        if self.on_list is None:
            return

        for resource in await self.client_list():
            logger.debug("Received %r", resource)
            await self.on_list(resource)

    async def watch_resource(self, watcher):
        """Pass each resource returned by the current instance's watching object
        as parameter to the event receiving functions.

        Args:
            watcher: an object that returns a new event every time an update on a
                resource occurs

        """
        logger.info(f"Watching {self.resource_plural}")
        async for event in watcher:
            logger.debug("Received %r", event)
            resource = event.object

            if event.type == WatchEventType.ADDED and self.on_add:
                await self.on_add(resource)
            elif event.type == WatchEventType.MODIFIED and self.on_update:
                await self.on_update(resource)
            elif event.type == WatchEventType.DELETED and self.on_delete:
                await self.on_delete(resource)

    async def list_and_watch(self):
        """Start the given list and watch coroutines."""
        async with self.client_watch() as watcher:
            await joint(self.list_resource(), self.watch_resource(watcher))

    async def __call__(self, min_interval=2):
        """Start the Reflector. Encapsulate the connections with a retry logic, as
        disconnections are expected. If any other kind of error occurs, they are not
        swallowed.

        Between two connection attempts, the connection will be retried later with a
        delay. If the connection fails to fast, the delay will be increased, to wait for
        the API to be ready. If the connection succeeded for a certain interval, the
        value of the delay is reset.

        Args:
            min_interval (int, optional): if the connection was kept longer than this
                value, the delay is reset to the base value, as it is considered that a
                connection was possible.

        """
        loop = asyncio.get_running_loop()
        retries = 0
        base_delay = sigmoid_delay(retries)
        while True:
            start = loop.time()
            try:
                await self.list_and_watch()
            except (ClientError, ApiException, asyncio.TimeoutError) as err:
                logger.error(err)

            elapsed = loop.time() - start

            if elapsed > min_interval:
                # If the connection succeeded for at least a certain period,
                # reset the delay
                delay = base_delay
                retries = 0
            else:
                delay = sigmoid_delay(retries)

            await asyncio.sleep(delay)
            retries += 1


def sigmoid_delay(retries, maximum=60.0, steepness=0.75, midpoint=10.0, base=1.0):
    """Compute a waiting time (delay) depending on the number of retries already
    performed. The computing function is a sigmoid.

    Args:
        retries (int): the number of attempts that happened already.
        maximum (float): the maximum delay that can be attained. Maximum of the sigmoid.
        steepness (float): how fast the delay increases. Steepness of the sigmoid.
        midpoint (float): number of retries to reach the delay between maximum and base.
            Midpoint of the sigmoid.
        base (float): minimum value for the delay.

    Returns:
        float: the computed next delay.

    """
    return base + (maximum - base) / (1 + exp(-steepness * (retries - midpoint)))


async def joint(*aws):
    """Start several coroutines together. Ensure that if one stops, all others
    are cancelled as well.

    Args:
        aws (Awaitable): a list of awaitables to start concurrently.

    """
    loop = asyncio.get_running_loop()

    # Run every coroutine in a background task
    tasks = [loop.create_task(c) for c in aws]

    try:
        return await asyncio.gather(*tasks)
    finally:
        # Cancel all tasks when returning ensuring that there are no leftover.
        for task in tasks:
            if not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task


class Controller(object):
    """Base class for the autotls controllers providing basic functionality for
    watching and enqueuing Kubernetes resources.

    The basic workflow is as follows: the controller holds several background
    tasks. The resources are watched by a Reflector, which calls a handler
    on each received state of a resource. The key of any received resource is put
    into a :class:`WorkQueue`. Multiple workers consume this queue. Workers are
    responsible for doing the actual state transitions. The work queue ensures
    that a key is processed by one worker at a time (strict sequential).

    Args:
        kubeconfig (str, optional): path to the kubeconfig file used to connect to
            the cluster. The in-cluster configuration is used if not given.
        debounce (float, optional): value of the debounce for the
            :class:`WorkQueue`.

    """

    def __init__(self, kubeconfig=None, debounce=0):
        self.queue = WorkQueue(debounce=debounce)
        self.tasks = []
        self.max_retry = 3
        self.burst_time = 10

        self.kubeconfig = kubeconfig
        self.api_client = None

    async def prepare(self, api_client):
        """Start all API clients that the controller will be using. Create all
        necessary coroutines and register them as background tasks that will be
        started by the Controller.

        Args:
            api_client (kubernetes_asyncio.client.ApiClient): the base client to
                connect to the Kubernetes API.

        """
        raise NotImplementedError("Implement prepare")

    async def cleanup(self):
        """Unregister all background tasks that are attributes."""
        raise NotImplementedError("Implement cleanup")

    def register_task(self, corofactory, name=None):
        """Add a coroutine to the list of task that will be run in the background
         of the Controller.

        Args:
            corofactory (coroutine): the coroutine that will be used as task. It must
                be running indefinitely and not catch :class:`asyncio.CancelledError`.
            name (str, optional): the name of the background task, for logging
                purposes.

        """
        if not name:
            name = corofactory.__name__
        self.tasks.append((corofactory, name))

    async def simple_on_receive(self, resource, condition=bool):
        """Example of a resource receiving handler, that accepts a resource
        under conditions, and if they are met, add its key to the queue.

        Args:
            resource (autotls.data.ingress.RoutingObject): a resource received by
                listing or watching.
            condition (callable, optional): a condition to accept the given
                resource. The signature should be ``(resource) -> bool``.

        """
        if condition(resource):
            await self.queue.put(resource.key)
        else:
            logger.debug("Resource rejected: %s", resource.key)

    async def retry(self, coro, name=""):
        """Start a background task. If the task fails not too regularly, restart it
        A :class:`BurstWindow` is used to decide if the task should be restarted.

        Args:
            coro (coroutine): the background task to try to restart.
            name (str): the name of the background task (for debugging purposes).

        Raises:
            RuntimeError: if a background task keep on failing more regularly
                than what the burst time allows.

        """
        window = BurstWindow(name, self.burst_time, max_retry=self.max_retry)

        while True:
            with window:
                try:
                    await coro()
                except asyncio.CancelledError:
                    break
                except Exception as err:
                    logger.exception(err)

    async def run(self):
        """Start at once all the registered background tasks with the retry logic."""
        api_client = await create_api_client(self.kubeconfig)
        try:
            await self.prepare(api_client)

            retry_tasks = (self.retry(task, name) for task, name in self.tasks)
            await joint(*retry_tasks)
        finally:
            await api_client.close()
            await self.queue.close()
            await self.cleanup()
            self.tasks = []
            self.api_client = None


class BurstWindow(object):
    """Context manager that can be used to check the time arbitrary code took to
    run. This arbitrary code should be something that needs to run indefinitely. If
    this code fails too quickly, it is not restarted.

    The criteria is as follow: every :attr:`max_retry` times, if the average
    running time of the task is more than the :attr:`burst_time`, the task
    is considered savable and the context manager is exited. If not, an
    exception will be raised.

    .. code:: python

        window = BurstWindow("my_task", 10, max_retry=3)

        while True:  # use any kind of loop
            with window:
                # code to retry
                # ...

    Args:
        name (str): the name of the background task (for debugging purposes).
        burst_time (float): maximal accepted average time for a retried
            task.
        max_retry (int, optional): number of times the task should be retried before
            testing the burst time. If 0, the task will be retried indefinitely,
            without looking for attr:`burst_time`.

    """

    def __init__(self, name, burst_time, max_retry=0):
        self.name = name

        self.burst_time = burst_time
        self.max_retry = max_retry

        self.retries = 0
        self.times = [0] * max_retry
        self.start = None

    @staticmethod
    def _time():
        return asyncio.get_running_loop().time()

    def __enter__(self):
        self.start = self._time()

    def __exit__(self, *exc):
        """After the given number of tries, raise an exception if the content of the
        context manager failed too fast.

        Raises:
            RuntimeError: if a background task keep on failing more regularly
                than what the burst time allows.

        """
        if not self.max_retry:
            return

        end = self._time()
        self.times[self.retries] = end - self.start

        # When errors occurred "max_try" times, check again if the average
        # error time is less than the burst time
        if self.retries + 1 == self.max_retry and mean(self.times) < self.burst_time:
            raise RuntimeError(
                f"Task {self.name} failed {self.max_retry} times in a row"
            )
        # Increase retries to update the times list with the current try
        self.retries = (self.retries + 1) % self.max_retry


class Executor(object):
    """Component used to encapsulate the Controller. It takes care of starting
    the Controller, and handles all logic not directly dependent to the
    Controller, such as the handlers for the UNIX signals.

    It implements the asynchronous context manager protocol. The controller
    itself can be awaited. The "await" call blocks until the Controller
    terminates.

    .. code:: python

        executor = Executor(controller)
        async with executor:
            await executor

    Args:
        controller (autotls.controller.Controller): the controller that the
            executor is tasked with starting.
        catch_signals (bool, optional): if True, the Executor will add handlers
            to catch killing signals in order to stop the Controller and the
            Executor gracefully.
    """

    def __init__(self, controller, catch_signals=True):
        self.controller = controller
        self.loop = None
        self._waiter = None
        self._catch_signals = catch_signals

    def stop(self):
        """Called as signal handler. Stop the Controller managed by the
        instance.
        """
        logger.info("Received signal, exiting...")
        self._waiter.cancel()

    async def __aenter__(self):
        """Create the signal handlers and start the Controller as background
        task.
        """
        self.loop = asyncio.get_running_loop()
        if self._catch_signals:
            self.loop.add_signal_handler(signal.SIGINT, self.stop)
            self.loop.add_signal_handler(signal.SIGTERM, self.stop)
        self._waiter = self.loop.create_task(self.controller.run())
        logger.info("Controller started")

    def __await__(self):
        return self._waiter.__await__()

    async def __aexit__(self, *exc):
        """Wait for the managed controller to be finished and cleanup."""
        if not self._waiter.done():
            self._waiter.cancel()

        try:
            await self._waiter
        except asyncio.CancelledError:
            pass
        finally:
            if self._catch_signals:
                self.loop.remove_signal_handler(signal.SIGINT)
                self.loop.remove_signal_handler(signal.SIGTERM)
            self._waiter = None

        logger.info("Controller stopped")


def run(controller):
    """Start the controller using an executor.

    Args:
        controller (autotls.controller.Controller): the controller to start

    """
    executor = Executor(controller)

    async def _run_controller():
        async with executor:
            await executor

    try:
        asyncio.run(_run_controller())
    except asyncio.CancelledError:
        pass
