from collections.abc import Iterator


def shifted_batch_starts(n_samples: int,
                         batch_size: int) -> Iterator[int]:
    """Start indices of full-size mini-batches covering a dataset once.

    Batches start at 0, batch_size, 2*batch_size, ... If the last batch would run over the end of the dataset, it is
    moved back to start at n_samples - batch_size instead of being padded or shortened. So every batch is full, and
    some samples near the end are visited twice per epoch.

    Parameters:
        n_samples: Size of the dataset.
        batch_size: Size of each batch. Must not be larger than n_samples.
    """
    if batch_size <= 0 or batch_size > n_samples:
        raise ValueError(f"Batch size must be in [1, {n_samples}], got {batch_size}.")
    start = 0
    while start < n_samples:
        if start + batch_size > n_samples:
            start = n_samples - batch_size
        yield start
        start += batch_size
