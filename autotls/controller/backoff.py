import random


class Backoff(object):
    """Exponential backoff with downward jitter.

    The delay of the retry ``n`` (starting at 0) is ``min_delay * factor ** n``,
    capped at ``max_delay``. A random fraction of at most ``jitter`` of this
    delay is subtracted, but the result never goes below ``min_delay``.

    Args:
        min_delay (float): delay of the first retry, in seconds.
        max_delay (float): maximal delay, in seconds.
        factor (float): growth factor of the delay between two retries.
        jitter (float): maximal fraction of the delay randomly removed.
        rng (random.Random, optional): source of randomness, mostly useful for
            testing.

    """

    def __init__(self, min_delay=1.0, max_delay=300.0, factor=2.0, jitter=0.1, rng=None):
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.factor = factor
        self.jitter = jitter
        self.rng = rng or random.Random()

    @classmethod
    def from_config(cls, config, rng=None):
        """Create a backoff from the ``backoff`` section of the configuration.

        Args:
            config (autotls.data.config.BackoffConfiguration): the configuration.
            rng (random.Random, optional): source of randomness.

        Returns:
            Backoff: the configured backoff.

        """
        return cls(
            min_delay=config.min_delay,
            max_delay=config.max_delay,
            factor=config.factor,
            jitter=config.jitter,
            rng=rng,
        )

    def base_delay(self, retries):
        """Delay without jitter for the given number of previous retries."""
        try:
            delay = self.min_delay * self.factor ** retries
        except OverflowError:
            return self.max_delay
        return min(self.max_delay, delay)

    def delay(self, retries):
        """Compute the delay before the next retry.

        Args:
            retries (int): number of retries already performed.

        Returns:
            float: number of seconds to wait.

        """
        delay = self.base_delay(retries)
        delay *= 1 - self.jitter * self.rng.random()
        return max(self.min_delay, delay)

    def capped_delay(self):
        """Compute a delay at the capped interval, with jitter applied."""
        delay = self.max_delay * (1 - self.jitter * self.rng.random())
        return max(self.min_delay, delay)
