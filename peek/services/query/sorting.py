"""Sort expressions shared by the library query builders."""

from sqlalchemy import BigInteger, cast, func

# Largest 32-bit prime (2^31 - 1)
RANDOM_PRIME = 2147483647
RANDOM_MULTIPLIER_A = 52959209
RANDOM_MULTIPLIER_B = 1047483763


def seeded_random(pk_column, seed: int):
    """Deterministic pseudo-random ordering key for a numeric primary key.

    The same seed always yields the same permutation, so paging through a
    randomly sorted listing never repeats or skips rows. All intermediate
    values stay below 2^63.
    """
    seed = seed % RANDOM_PRIME
    mixed = (cast(pk_column, BigInteger) + seed) % RANDOM_PRIME
    squared = (mixed * mixed) % RANDOM_PRIME
    return (
        (squared * RANDOM_MULTIPLIER_A) % RANDOM_PRIME
        + (mixed * RANDOM_MULTIPLIER_B) % RANDOM_PRIME
    ) % RANDOM_PRIME


def unseeded_random():
    """Non-deterministic ordering. Unsuitable for paginated consumption."""
    return func.random()


def case_insensitive(column):
    return func.lower(column)
